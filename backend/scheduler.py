from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import CLEANUP_CRON_HOUR, REMINDER_INTERVAL_SECONDS, SITE_TIMEZONE
from tasks.cleanup_tasks import run_cleanup
from tasks.reminder_tasks import run_reminder_pass

scheduler = BackgroundScheduler(timezone=SITE_TIMEZONE)

# Reminder pass on a fixed interval; a slow pass is never run twice at once.
scheduler.add_job(
    run_reminder_pass,
    IntervalTrigger(seconds=REMINDER_INTERVAL_SECONDS),
    id='reminder_pass_job',
    max_instances=1,
    coalesce=True,
)

# Order expiry and archiving once a day, school time
scheduler.add_job(run_cleanup, CronTrigger(hour=CLEANUP_CRON_HOUR, minute=0, timezone=SITE_TIMEZONE), id='cleanup_job')
