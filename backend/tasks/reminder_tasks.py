import logging
from datetime import datetime
from sqlalchemy.orm import Session

from database import SessionLocal
from crud.reminders import run_pass
from utils.attendance import get_attendance
from utils.clock import site_now
from utils.notifier import default_notifier

logger = logging.getLogger(__name__)


def run_reminder_pass(now: datetime = None, session_factory=SessionLocal, notifier=None, attendance=None):
    """
    Timer entry point for the reminder coordinator.

    Errors are logged and the pass is abandoned; the next tick starts over
    from whatever state was committed.
    """
    now = now or site_now()
    db: Session = session_factory()
    try:
        return run_pass(db, now, notifier or default_notifier, attendance=attendance or get_attendance())
    except Exception as e:
        logger.error(f"Error during reminder pass at {now}: {e}", exc_info=True)
        return None
    finally:
        db.close()
