from datetime import datetime
import pytz

from config import SITE_TIMEZONE


def site_now() -> datetime:
    """Current wall-clock time at the school, without tzinfo.

    Scheduled dates and times are stored as naive local values, so comparisons
    against them use this rather than an aware datetime.
    """
    return datetime.now(pytz.timezone(SITE_TIMEZONE)).replace(tzinfo=None)


def get_now() -> datetime:
    """FastAPI dependency for the request's notion of now."""
    return site_now()
