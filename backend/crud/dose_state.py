"""
Dose schedule state machine.

    Pending ──► AwaitingConfirmation ──► Administered
       │                                      ▲
       ├──────────────────────────────────────┘
       ├──► Missed
       └──► StudentAbsent

Administered, Missed and StudentAbsent are terminal. Corrections never move a
schedule; they append compensating administration events instead.
"""

import logging
from typing import Dict, FrozenSet

from sqlalchemy import update
from sqlalchemy.orm import Session

from crud.audit_log import log_transition
from exceptions import InvalidStatusTransitionError
from models.dose_schedule import DoseSchedule, ScheduleStatus

logger = logging.getLogger(__name__)


TRANSITIONS: Dict[ScheduleStatus, FrozenSet[ScheduleStatus]] = {
    ScheduleStatus.PENDING: frozenset({
        ScheduleStatus.AWAITING_CONFIRMATION,
        ScheduleStatus.ADMINISTERED,
        ScheduleStatus.MISSED,
        ScheduleStatus.STUDENT_ABSENT,
    }),
    ScheduleStatus.AWAITING_CONFIRMATION: frozenset({ScheduleStatus.ADMINISTERED}),
    ScheduleStatus.ADMINISTERED: frozenset(),
    ScheduleStatus.MISSED: frozenset(),
    ScheduleStatus.STUDENT_ABSENT: frozenset(),
}


def can_transition(current: ScheduleStatus, requested: ScheduleStatus) -> bool:
    return requested in TRANSITIONS[current]


def check_transition(current: ScheduleStatus, requested: ScheduleStatus) -> None:
    if not can_transition(current, requested):
        raise InvalidStatusTransitionError(current, requested)


def apply(
    db: Session,
    schedule: DoseSchedule,
    requested: ScheduleStatus,
    changed_by: str,
    **values,
) -> DoseSchedule:
    """Move `schedule` to `requested` and write the other column `values`.

    The UPDATE is conditional on the status the caller last saw, so when a
    concurrent writer got there first nothing is written and
    InvalidStatusTransitionError reports the status actually stored.
    """
    current = schedule.status
    check_transition(current, requested)
    db.flush()

    result = db.execute(
        update(DoseSchedule)
        .where(DoseSchedule.id == schedule.id, DoseSchedule.status == current)
        .values(status=requested, updated_by=changed_by, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        stored = db.query(DoseSchedule.status).filter(DoseSchedule.id == schedule.id).scalar()
        logger.warning(
            f"Schedule {schedule.id} changed underneath {changed_by}: expected {current.value}, found "
            f"{stored.value if stored else None}"
        )
        raise InvalidStatusTransitionError(stored or current, requested)

    db.refresh(schedule)
    log_transition(db, schedule, current, requested, changed_by)
    logger.info(f"Schedule {schedule.id} moved from {current.value} to {requested.value} by {changed_by}")
    return schedule
