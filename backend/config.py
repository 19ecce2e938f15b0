"""
Runtime configuration for the medication engine.

Values are read from the environment (and a local .env file) once at import
time. Per-school overrides for the day-part times and reminder windows live in
the app_config table and are resolved through crud.app_config.
"""

from dotenv import load_dotenv
import os

load_dotenv()

# Timezone the school operates in. Scheduled dates/times are wall-clock values
# in this zone.
SITE_TIMEZONE = os.getenv("SITE_TIMEZONE", "Asia/Ho_Chi_Minh")

# Reminder coordinator
REMINDER_INTERVAL_SECONDS = int(os.getenv("REMINDER_INTERVAL_SECONDS", "60"))
REMINDER_LEAD_MINUTES = int(os.getenv("REMINDER_LEAD_MINUTES", "30"))
REMINDER_OVERDUE_MINUTES = int(os.getenv("REMINDER_OVERDUE_MINUTES", "60"))
REMINDER_MAX_COUNT = int(os.getenv("REMINDER_MAX_COUNT", "3"))

# Bulk administration worker pool
BULK_MAX_WORKERS = int(os.getenv("BULK_MAX_WORKERS", "4"))

# Cleanup job
ARCHIVE_RETENTION_DAYS = int(os.getenv("ARCHIVE_RETENTION_DAYS", "30"))
CLEANUP_CRON_HOUR = int(os.getenv("CLEANUP_CRON_HOUR", "2"))

# Default clock time for each named day-part, "HH:MM".
DEFAULT_DAY_PART_TIMES = {
    "BEFORE_BREAKFAST": "07:00",
    "AFTER_BREAKFAST": "08:30",
    "BEFORE_LUNCH": "11:30",
    "AFTER_LUNCH": "13:00",
    "BEFORE_DINNER": "17:30",
    "AFTER_DINNER": "19:00",
    "BEFORE_BED": "21:00",
}
