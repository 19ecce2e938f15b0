"""
Expands an order's recurrence configuration into dose schedules.

generate() is pure: it builds unsaved DoseSchedule rows and never touches the
session, so a cancelled or failed generation leaves nothing behind.
materialize() and regenerate() persist the result inside the caller's
transaction.
"""

from datetime import date, datetime, timedelta
import logging
import threading
from typing import Dict, Iterator, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from crud.app_config import get_day_part_times
from crud.audit_log import create_audit_log
from exceptions import OperationCancelled, ValidationError
from models.dose_schedule import DoseSchedule, ScheduleStatus
from models.medication_order import MedicationOrder
from schemas.audit_log import AuditLogCreate
from schemas.medication_order import RegenerateResult
from schemas.recurrence import RecurrenceConfig

logger = logging.getLogger(__name__)


def _slots(
    order: MedicationOrder,
    recurrence: RecurrenceConfig,
    day_part_times: Dict[str, str],
    cancel_event: Optional[threading.Event] = None,
) -> Iterator[Tuple[date, "datetime.time"]]:
    if order.start_date > order.expiry_date:
        raise ValidationError("start_date", "start date is after the expiry date")
    times = recurrence.resolved_times(day_part_times)

    current = order.start_date
    last_day = order.last_day
    while current <= last_day:
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelled(f"Schedule generation for order {order.id} cancelled at {current}.")
        if not recurrence.is_skipped(current):
            for scheduled_time in times:
                yield current, scheduled_time
        current += timedelta(days=1)


def _new_schedule(order: MedicationOrder, day: date, scheduled_time, sequence: int) -> DoseSchedule:
    return DoseSchedule(
        order_id=order.id,
        scheduled_date=day,
        scheduled_time=scheduled_time,
        scheduled_dosage=order.dosage,
        dose_sequence=sequence,
        priority=order.priority,
        status=ScheduleStatus.PENDING,
        student_present=True,
        reminder_sent=False,
        reminder_count=0,
        reminders_suppressed=False,
        escalated=False,
        requires_nurse_confirmation=order.require_nurse_confirmation,
    )


def generate(
    order: MedicationOrder,
    day_part_times: Dict[str, str],
    recurrence: RecurrenceConfig = None,
    cancel_event: Optional[threading.Event] = None,
) -> List[DoseSchedule]:
    """Build every dose for the order, numbered from 1 across the whole order.

    Raises ValidationError for a bad configuration or when the skip rules
    leave no dose at all.
    """
    recurrence = recurrence or RecurrenceConfig.from_order(order)
    schedules = [
        _new_schedule(order, day, scheduled_time, sequence)
        for sequence, (day, scheduled_time) in enumerate(
            _slots(order, recurrence, day_part_times, cancel_event), start=1
        )
    ]
    if not schedules:
        raise ValidationError("schedule", "empty schedule: no dose falls inside the validity window")
    return schedules


def materialize(
    db: Session,
    order: MedicationOrder,
    changed_by: str = None,
    cancel_event: Optional[threading.Event] = None,
) -> List[DoseSchedule]:
    """Generate and add the order's schedules. The order must have none yet."""
    existing = db.query(func.count(DoseSchedule.id)).filter(DoseSchedule.order_id == order.id).scalar()
    if existing:
        raise ValidationError("schedule", f"order {order.id} already has {existing} schedule(s); regenerate instead")

    schedules = generate(order, get_day_part_times(db, order.tenant_id), cancel_event=cancel_event)
    db.add_all(schedules)
    db.flush()

    create_audit_log(db, AuditLogCreate(
        table_name='medication_order',
        record_id=order.id,
        changed_by=changed_by or "SYSTEM",
        action='GENERATE',
        old_values={},
        new_values={
            "schedules": len(schedules),
            "first": schedules[0].scheduled_at.isoformat(),
            "last": schedules[-1].scheduled_at.isoformat(),
        },
    ))
    logger.info(f"Generated {len(schedules)} schedules for order {order.id}")
    return schedules


def regenerate(
    db: Session,
    order: MedicationOrder,
    now: datetime,
    changed_by: str = None,
    cancel_event: Optional[threading.Event] = None,
) -> RegenerateResult:
    """Apply an edited recurrence configuration.

    Resolved schedules, doses awaiting a second nurse and anything already due
    (at or before `now`) are kept with their sequence numbers and status.
    Pending schedules in the future are replaced by the future part of the new
    plan, numbered after the highest kept sequence. A slot already taken by a
    kept schedule is not emitted again.
    """
    recurrence = RecurrenceConfig.from_order(order)
    day_part_times = get_day_part_times(db, order.tenant_id)
    # Build the whole replacement before deleting anything.
    planned = [
        (day, scheduled_time)
        for day, scheduled_time in _slots(order, recurrence, day_part_times, cancel_event)
        if datetime.combine(day, scheduled_time) > now
    ]

    existing = db.query(DoseSchedule).filter(DoseSchedule.order_id == order.id).order_by(DoseSchedule.dose_sequence).all()
    removable = [s for s in existing if s.status == ScheduleStatus.PENDING and s.scheduled_at > now]
    kept = [s for s in existing if s not in removable]

    taken = {s.scheduled_at for s in kept}
    future_slots = [(day, t) for day, t in planned if datetime.combine(day, t) not in taken]

    if not kept and not future_slots:
        raise ValidationError("schedule", "empty schedule: no dose falls inside the validity window")

    for schedule in removable:
        db.delete(schedule)
    db.flush()

    next_sequence = max((s.dose_sequence for s in kept), default=0) + 1
    created = [
        _new_schedule(order, day, scheduled_time, sequence)
        for sequence, (day, scheduled_time) in enumerate(future_slots, start=next_sequence)
    ]
    db.add_all(created)
    db.flush()
    db.expire(order, ["schedules"])

    result = RegenerateResult(order_id=order.id, kept=len(kept), removed=len(removable), created=len(created))
    create_audit_log(db, AuditLogCreate(
        table_name='medication_order',
        record_id=order.id,
        changed_by=changed_by or "SYSTEM",
        action='REGENERATE',
        old_values={"schedules": len(existing)},
        new_values=result.model_dump(),
    ))
    logger.info(
        f"Regenerated order {order.id}: kept {result.kept}, removed {result.removed}, created {result.created}"
    )
    return result
