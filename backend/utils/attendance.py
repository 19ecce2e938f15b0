from datetime import date
from typing import Optional, Protocol, Set, Tuple


class AttendanceProvider(Protocol):
    def is_present(self, student_id: str, on_date: date) -> bool:
        ...


class StaticAttendance:
    """Absences supplied up front as (student_id, date) pairs."""

    def __init__(self, absences=None):
        self.absences: Set[Tuple[str, date]] = set(absences or [])

    def mark_absent(self, student_id: str, on_date: date):
        self.absences.add((student_id, on_date))

    def is_present(self, student_id: str, on_date: date) -> bool:
        return (student_id, on_date) not in self.absences


# None until a school's attendance feed is wired in at startup. Without a
# feed the nurse's call is the attendance record and reminders are never
# suppressed for absence.
_attendance_provider: Optional[AttendanceProvider] = None


def set_attendance_provider(provider: Optional[AttendanceProvider]) -> None:
    global _attendance_provider
    _attendance_provider = provider


def get_attendance() -> Optional[AttendanceProvider]:
    """FastAPI dependency and timer-job lookup for the attendance feed."""
    return _attendance_provider
