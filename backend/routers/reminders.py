from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from datetime import datetime
from typing import Optional

from database import get_db
from crud.reminders import run_pass
from schemas.notification import ReminderPassResult
from utils.attendance import AttendanceProvider, get_attendance
from utils.clock import get_now
from utils.notifier import Notifier, get_notifier

router = APIRouter(prefix="/reminders", tags=["reminders"])


@router.post("/run", response_model=ReminderPassResult)
def run_reminder_pass(
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
    notifier: Notifier = Depends(get_notifier),
    attendance: Optional[AttendanceProvider] = Depends(get_attendance),
):
    """Run one reminder pass now instead of waiting for the timer."""
    return run_pass(db, now, notifier, attendance=attendance)
