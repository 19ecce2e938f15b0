"""
Records what happened at each scheduled dose.

Every entry point here is one transaction on one order: it takes the
in-process lock for the order, re-reads the order row FOR UPDATE, does its
checks before writing anything, commits, and only then hands queued
notification requests to the notifier. Any error rolls the whole operation
back.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
import logging
import threading
from typing import Callable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from config import BULK_MAX_WORKERS
from crud import dose_state, stock_ledger
from crud.audit_log import create_audit_log
from exceptions import (
    InsufficientStockError,
    InvalidStatusTransitionError,
    InvalidTimingError,
    MedicationEngineError,
    NotFoundError,
    OperationCancelled,
    ValidationError,
)
from models.administration_event import AdministrationEvent, AdministrationKind
from models.dose_schedule import DoseSchedule, ScheduleStatus, OPEN_STATUSES
from models.medication_order import (
    MedicationOrder,
    MedicationPriority,
    OrderStatus,
    ADMINISTRABLE_ORDER_STATUSES,
)
from models.usage_history import UsageHistoryEntry, UsageStatus
from schemas.administration import BulkItemResult
from schemas.audit_log import AuditLogCreate
from schemas.notification import NotificationRequest, NotificationKind
from utils.attendance import AttendanceProvider
from utils.locking import order_transaction
from utils.notifier import Notifier, default_notifier, queue

logger = logging.getLogger(__name__)

URGENT_PRIORITIES = (MedicationPriority.HIGH, MedicationPriority.CRITICAL)


# --- loading and locking -------------------------------------------------------

def _get_schedule(db: Session, schedule_id: int) -> DoseSchedule:
    schedule = db.query(DoseSchedule).filter(DoseSchedule.id == schedule_id).first()
    if not schedule:
        raise NotFoundError("DoseSchedule", schedule_id)
    return schedule


def _get_administration(db: Session, administration_id: int) -> AdministrationEvent:
    event = db.query(AdministrationEvent).filter(AdministrationEvent.id == administration_id).first()
    if not event:
        raise NotFoundError("AdministrationEvent", administration_id)
    return event


def _lock_order(db: Session, order_id: int) -> MedicationOrder:
    order = (
        db.query(MedicationOrder)
        .filter(MedicationOrder.id == order_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not order:
        raise NotFoundError("MedicationOrder", order_id)
    return order


def _reload_schedule(db: Session, schedule_id: int) -> DoseSchedule:
    schedule = (
        db.query(DoseSchedule)
        .filter(DoseSchedule.id == schedule_id)
        .populate_existing()
        .first()
    )
    if not schedule:
        raise NotFoundError("DoseSchedule", schedule_id)
    return schedule


# --- guards --------------------------------------------------------------------

def _check_order_administrable(order: MedicationOrder, schedule: DoseSchedule):
    if order.status not in ADMINISTRABLE_ORDER_STATUSES:
        raise ValidationError("order_status", f"order {order.id} is {order.status.value}")
    if schedule.scheduled_date > order.expiry_date:
        raise ValidationError("expiry_date", f"order {order.id} expired on {order.expiry_date}")


def _check_timing(schedule: DoseSchedule, now: datetime, early: bool):
    if schedule.scheduled_date > now.date() and not early:
        raise InvalidTimingError(
            f"Schedule {schedule.id} is due on {schedule.scheduled_date}; pass early=True to give it now."
        )


def _check_actor(actor: str):
    if not actor or not actor.strip():
        raise ValidationError("actor", "an acting user is required")


# --- writers -------------------------------------------------------------------

def _record_usage(
    db: Session,
    order: MedicationOrder,
    schedule: Optional[DoseSchedule],
    status: UsageStatus,
    now: datetime,
    actor: str,
    event: AdministrationEvent = None,
    dosage: str = None,
    reason: str = None,
    note: str = None,
) -> UsageHistoryEntry:
    entry = UsageHistoryEntry(
        order_id=order.id,
        student_id=order.student_id,
        schedule_id=schedule.id if schedule else None,
        administration_id=event.id if event else None,
        medication_name=order.medication_name,
        usage_date=schedule.scheduled_date if schedule else now.date(),
        dosage_used=dosage,
        status=status,
        reason=reason,
        note=note,
        administered_by=actor,
        administered_time=now,
        created_by=actor,
    )
    db.add(entry)
    return entry


def _complete_order_if_done(db: Session, order: MedicationOrder, now: datetime, actor: str) -> bool:
    if order.status not in ADMINISTRABLE_ORDER_STATUSES or order.last_day >= now.date():
        return False
    open_count = db.query(func.count(DoseSchedule.id)).filter(
        DoseSchedule.order_id == order.id,
        DoseSchedule.status.in_(OPEN_STATUSES),
    ).scalar()
    if open_count:
        return False

    old_status = order.status
    order.status = OrderStatus.COMPLETED
    order.updated_by = actor
    create_audit_log(db, AuditLogCreate(
        table_name='medication_order',
        record_id=order.id,
        changed_by=actor,
        action='UPDATE',
        old_values={"status": old_status.value},
        new_values={"status": OrderStatus.COMPLETED.value},
    ))
    logger.info(f"Order {order.id} completed: no open schedules left after {order.last_day}")
    return True


def _give_dose(
    db: Session,
    order: MedicationOrder,
    schedule: DoseSchedule,
    administered_by: str,
    actual_dosage: str,
    now: datetime,
    early: bool = False,
    notes: str = None,
    side_effects: str = None,
    confirmed_by: str = None,
) -> AdministrationEvent:
    dose_state.check_transition(schedule.status, ScheduleStatus.ADMINISTERED)

    event = AdministrationEvent(
        order_id=order.id,
        schedule_id=schedule.id,
        kind=AdministrationKind.ADMINISTRATION,
        administered_by=administered_by,
        administered_at=now,
        actual_dosage=actual_dosage,
        quantity=order.dose_quantity,
        side_effects=side_effects,
        notes=notes,
        early_override=early and schedule.scheduled_date > now.date(),
        created_by=confirmed_by or administered_by,
    )
    db.add(event)
    db.flush()

    stock_ledger.consume(
        db, order, order.dose_quantity,
        administration_id=event.id,
        changed_by=administered_by,
        note=f"Dose {schedule.dose_sequence} on {schedule.scheduled_date}",
    )

    values = {"administration_id": event.id, "completed_at": now}
    if notes:
        values["notes"] = notes
    if confirmed_by:
        values["confirmed_by"] = confirmed_by
        values["confirmed_at"] = now
    dose_state.apply(db, schedule, ScheduleStatus.ADMINISTERED, confirmed_by or administered_by, **values)

    _record_usage(db, order, schedule, UsageStatus.GIVEN, now, administered_by, event=event, dosage=actual_dosage, note=notes)
    _complete_order_if_done(db, order, now, confirmed_by or administered_by)
    return event


def _record_refusal(
    db: Session,
    order: MedicationOrder,
    schedule: DoseSchedule,
    actor: str,
    now: datetime,
    refusal_reason: str = None,
    notes: str = None,
) -> AdministrationEvent:
    dose_state.check_transition(schedule.status, ScheduleStatus.MISSED)
    reason = (refusal_reason or "").strip() or "Student refused"

    event = AdministrationEvent(
        order_id=order.id,
        schedule_id=schedule.id,
        kind=AdministrationKind.ADMINISTRATION,
        administered_by=actor,
        administered_at=now,
        quantity=0,
        student_refused=True,
        refusal_reason=reason,
        notes=notes,
        created_by=actor,
    )
    db.add(event)
    db.flush()

    dose_state.apply(
        db, schedule, ScheduleStatus.MISSED, actor,
        administration_id=event.id, missed_at=now, missed_reason=reason,
    )
    _record_usage(db, order, schedule, UsageStatus.REFUSED, now, actor, event=event, reason=reason, note=notes)
    if order.priority in URGENT_PRIORITIES:
        _queue_missed(db, order, schedule, reason)
    _complete_order_if_done(db, order, now, actor)
    return event


def _queue_missed(db: Session, order: MedicationOrder, schedule: DoseSchedule, reason: str):
    queue(db, NotificationRequest(
        kind=NotificationKind.MISSED,
        order_id=order.id,
        schedule_id=schedule.id,
        payload={
            "student_id": order.student_id,
            "guardian_id": order.guardian_id,
            "medication_name": order.medication_name,
            "priority": order.priority.value,
            "scheduled_at": schedule.scheduled_at.isoformat(),
            "reason": reason,
        },
    ))


# --- operations ----------------------------------------------------------------

def administer(
    db: Session,
    schedule_id: int,
    actor: str,
    actual_dosage: str,
    *,
    now: datetime,
    early: bool = False,
    notes: str = None,
    side_effects: str = None,
    student_refused: bool = False,
    refusal_reason: str = None,
    notifier: Notifier = default_notifier,
) -> Optional[AdministrationEvent]:
    """Give (or record the refusal of) one scheduled dose.

    Returns the AdministrationEvent, or None when the order needs a second
    nurse and the dose is now AwaitingConfirmation. Administering a dose that
    is already AwaitingConfirmation confirms it, so `actor` must then differ
    from the nurse who requested it.
    """
    _check_actor(actor)
    order_id = _get_schedule(db, schedule_id).order_id

    with order_transaction(db, order_id, notifier):
        order = _lock_order(db, order_id)
        schedule = _reload_schedule(db, schedule_id)

        if student_refused:
            dose_state.check_transition(schedule.status, ScheduleStatus.MISSED)
            _check_order_administrable(order, schedule)
            _check_timing(schedule, now, early)
            event = _record_refusal(db, order, schedule, actor, now, refusal_reason, notes)
        elif schedule.status == ScheduleStatus.AWAITING_CONFIRMATION:
            event = _confirm_locked(db, order, schedule, actor, actual_dosage, now, notes)
        elif schedule.status == ScheduleStatus.PENDING and schedule.requires_nurse_confirmation:
            _check_order_administrable(order, schedule)
            _check_timing(schedule, now, early)
            available = stock_ledger.balance(db, order)
            if available < order.dose_quantity:
                raise InsufficientStockError(requested=order.dose_quantity, available=available)
            values = {"pending_actor": actor}
            if notes:
                values["notes"] = notes
            dose_state.apply(db, schedule, ScheduleStatus.AWAITING_CONFIRMATION, actor, **values)
            event = None
        else:
            dose_state.check_transition(schedule.status, ScheduleStatus.ADMINISTERED)
            _check_order_administrable(order, schedule)
            _check_timing(schedule, now, early)
            event = _give_dose(db, order, schedule, actor, actual_dosage, now, early, notes, side_effects)

    if event is None:
        logger.info(f"Schedule {schedule_id} awaiting confirmation (requested by {actor})")
    else:
        logger.info(f"Recorded administration {event.id} for schedule {schedule_id} by {actor}")
    return event


def _confirm_locked(
    db: Session,
    order: MedicationOrder,
    schedule: DoseSchedule,
    confirming_actor: str,
    actual_dosage: str,
    now: datetime,
    notes: str = None,
) -> AdministrationEvent:
    if schedule.status != ScheduleStatus.AWAITING_CONFIRMATION:
        if schedule.status.is_terminal:
            raise InvalidStatusTransitionError(schedule.status, ScheduleStatus.ADMINISTERED)
        raise ValidationError("status", f"schedule {schedule.id} is not awaiting confirmation")
    if confirming_actor == schedule.pending_actor:
        raise ValidationError("confirming_actor", "confirmation must come from a different nurse")
    _check_order_administrable(order, schedule)
    return _give_dose(
        db, order, schedule,
        administered_by=schedule.pending_actor,
        actual_dosage=actual_dosage or schedule.scheduled_dosage,
        now=now,
        early=schedule.scheduled_date > now.date(),
        notes=notes,
        confirmed_by=confirming_actor,
    )


def confirm(
    db: Session,
    schedule_id: int,
    confirming_actor: str,
    actual_dosage: str = None,
    *,
    now: datetime,
    notes: str = None,
    notifier: Notifier = default_notifier,
) -> AdministrationEvent:
    """Second-nurse sign-off for a dose that is AwaitingConfirmation."""
    _check_actor(confirming_actor)
    order_id = _get_schedule(db, schedule_id).order_id
    with order_transaction(db, order_id, notifier):
        order = _lock_order(db, order_id)
        schedule = _reload_schedule(db, schedule_id)
        event = _confirm_locked(db, order, schedule, confirming_actor, actual_dosage, now, notes)
    logger.info(f"Schedule {schedule_id} confirmed by {confirming_actor}")
    return event


def quick_complete(
    db: Session,
    schedule_id: int,
    actor: str,
    *,
    now: datetime,
    notes: str = None,
    notifier: Notifier = default_notifier,
) -> Optional[AdministrationEvent]:
    """Administer exactly the scheduled dosage."""
    schedule = _get_schedule(db, schedule_id)
    return administer(
        db, schedule_id, actor, schedule.scheduled_dosage,
        now=now, notes=notes or "Quick complete", notifier=notifier,
    )


def _bulk_item(
    db_factory: Callable[[], Session],
    schedule_id: int,
    actor: str,
    actual_dosage: str,
    now: datetime,
    early: bool,
    cancel_event: Optional[threading.Event],
    notifier: Notifier,
) -> BulkItemResult:
    if cancel_event is not None and cancel_event.is_set():
        cancelled = OperationCancelled("Bulk administration cancelled before this item was processed.")
        return BulkItemResult(schedule_id=schedule_id, outcome="failed:OperationCancelled", detail=cancelled.message)

    db = db_factory()
    try:
        event = administer(db, schedule_id, actor, actual_dosage, now=now, early=early, notifier=notifier)
        if event is None:
            return BulkItemResult(schedule_id=schedule_id, outcome="succeeded", detail="awaiting confirmation")
        return BulkItemResult(schedule_id=schedule_id, outcome="succeeded", administration_id=event.id)
    except MedicationEngineError as e:
        return BulkItemResult(schedule_id=schedule_id, outcome=f"failed:{e.__class__.__name__}", detail=e.message)
    except Exception as e:
        logger.exception(f"Bulk administration of schedule {schedule_id} failed")
        return BulkItemResult(schedule_id=schedule_id, outcome=f"failed:{e.__class__.__name__}", detail=str(e))
    finally:
        db.close()


def bulk_administer(
    db_factory: Callable[[], Session],
    schedule_ids: List[int],
    actor: str,
    actual_dosage: str,
    *,
    now: datetime,
    early: bool = False,
    cancel_event: Optional[threading.Event] = None,
    notifier: Notifier = default_notifier,
    max_workers: int = BULK_MAX_WORKERS,
) -> List[BulkItemResult]:
    """Administer each schedule in its own session and transaction.

    A failing item never undoes another. Results come back in request order;
    the order in which items are processed is not defined.
    """
    if not schedule_ids:
        return []
    workers = max(1, min(max_workers, len(schedule_ids)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="bulk-administer") as pool:
        futures = [
            pool.submit(_bulk_item, db_factory, schedule_id, actor, actual_dosage, now, early, cancel_event, notifier)
            for schedule_id in schedule_ids
        ]
        results = [future.result() for future in futures]

    succeeded = sum(1 for r in results if r.succeeded)
    logger.info(
        f"Bulk administration by {actor}: {succeeded} of {len(results)} succeeded"
    )
    return results


def mark_missed(
    db: Session,
    schedule_id: int,
    reason: str,
    actor: str,
    *,
    now: datetime,
    notes: str = None,
    notifier: Notifier = default_notifier,
) -> DoseSchedule:
    """Resolve an elapsed dose as Missed. Stock is not touched."""
    _check_actor(actor)
    if not reason or not reason.strip():
        raise ValidationError("reason", "a reason is required to mark a dose missed")
    order_id = _get_schedule(db, schedule_id).order_id

    with order_transaction(db, order_id, notifier):
        order = _lock_order(db, order_id)
        schedule = _reload_schedule(db, schedule_id)
        dose_state.check_transition(schedule.status, ScheduleStatus.MISSED)
        if schedule.scheduled_at > now:
            raise InvalidTimingError(
                f"Schedule {schedule.id} is due at {schedule.scheduled_at}; it cannot be missed yet."
            )

        values = {"missed_at": now, "missed_reason": reason.strip()}
        if notes:
            values["notes"] = notes
        dose_state.apply(db, schedule, ScheduleStatus.MISSED, actor, **values)
        _record_usage(db, order, schedule, UsageStatus.MISSED, now, actor, reason=reason.strip(), note=notes)
        if order.priority in URGENT_PRIORITIES:
            _queue_missed(db, order, schedule, reason.strip())
        _complete_order_if_done(db, order, now, actor)

    db.refresh(schedule)
    return schedule


def mark_absent(
    db: Session,
    schedule_id: int,
    actor: str,
    *,
    now: datetime,
    attendance: AttendanceProvider = None,
    notes: str = None,
    notifier: Notifier = default_notifier,
) -> DoseSchedule:
    """Resolve a dose as StudentAbsent.

    With an attendance provider the absence must be confirmed by it; without
    one the nurse's call is the attendance record.
    """
    _check_actor(actor)
    order_id = _get_schedule(db, schedule_id).order_id

    with order_transaction(db, order_id, notifier):
        order = _lock_order(db, order_id)
        schedule = _reload_schedule(db, schedule_id)
        dose_state.check_transition(schedule.status, ScheduleStatus.STUDENT_ABSENT)
        if attendance is not None and attendance.is_present(order.student_id, schedule.scheduled_date):
            raise ValidationError(
                "student_present",
                f"attendance shows student {order.student_id} present on {schedule.scheduled_date}",
            )

        values = {
            "student_present": False,
            "attendance_checked_at": now,
            "reminders_suppressed": bool(order.skip_on_absence),
        }
        if notes:
            values["notes"] = notes
        dose_state.apply(db, schedule, ScheduleStatus.STUDENT_ABSENT, actor, **values)
        _record_usage(db, order, schedule, UsageStatus.ABSENT, now, actor, reason="Student absent", note=notes)
        queue(db, NotificationRequest(
            kind=NotificationKind.ABSENT,
            order_id=order.id,
            schedule_id=schedule.id,
            payload={
                "student_id": order.student_id,
                "guardian_id": order.guardian_id,
                "medication_name": order.medication_name,
                "scheduled_at": schedule.scheduled_at.isoformat(),
            },
        ))
        _complete_order_if_done(db, order, now, actor)

    db.refresh(schedule)
    return schedule


# --- compensating events ---------------------------------------------------------

def _net_consumed(db: Session, original: AdministrationEvent) -> int:
    """Units the administration still holds: its own quantity plus every
    correction and return that references it."""
    adjustments = db.query(func.coalesce(func.sum(AdministrationEvent.quantity), 0)).filter(
        AdministrationEvent.reverses_id == original.id
    ).scalar()
    return original.quantity + int(adjustments)


def _check_correctable(original: AdministrationEvent):
    if original.kind != AdministrationKind.ADMINISTRATION:
        raise ValidationError("administration_id", f"event {original.id} is itself a {original.kind.value}")
    if original.student_refused:
        raise ValidationError("administration_id", f"event {original.id} records a refusal; no stock was used")


def _compensate(
    db: Session,
    original: AdministrationEvent,
    kind: AdministrationKind,
    quantity: int,
    reason: str,
    actor: str,
    now: datetime,
    notifier: Notifier,
) -> AdministrationEvent:
    """Append a compensating event moving `quantity` units (signed, positive
    consumes) against `original`."""
    usage_status = UsageStatus.CORRECTED if kind == AdministrationKind.CORRECTION else UsageStatus.RETURNED
    order_id = original.order_id

    with order_transaction(db, order_id, notifier):
        order = _lock_order(db, order_id)
        original = db.query(AdministrationEvent).filter(AdministrationEvent.id == original.id).populate_existing().one()
        _check_correctable(original)

        net = _net_consumed(db, original)
        if net + quantity < 0:
            raise ValidationError(
                "quantity", f"administration {original.id} has only {net} unit(s) left to give back"
            )

        event = AdministrationEvent(
            order_id=order.id,
            schedule_id=original.schedule_id,
            kind=kind,
            administered_by=actor,
            administered_at=now,
            actual_dosage=original.actual_dosage,
            quantity=quantity,
            notes=reason,
            reverses_id=original.id,
            created_by=actor,
        )
        db.add(event)
        db.flush()

        note = f"{kind.value} of administration {original.id}: {reason}"
        if quantity > 0:
            stock_ledger.consume(db, order, quantity, administration_id=event.id, changed_by=actor, note=note)
        else:
            stock_ledger.reverse(db, order, -quantity, administration_id=event.id, changed_by=actor, note=note)

        schedule = db.query(DoseSchedule).filter(DoseSchedule.id == original.schedule_id).first() if original.schedule_id else None
        _record_usage(db, order, schedule, usage_status, now, actor, event=event, reason=reason)
        create_audit_log(db, AuditLogCreate(
            table_name='administration_event',
            record_id=original.id,
            changed_by=actor,
            action=kind.value.upper(),
            old_values={"net_quantity": net},
            new_values={"net_quantity": net + quantity, "compensating_event_id": event.id},
        ))

    logger.info(f"{kind.value} {event.id} of {quantity:+d} unit(s) against administration {original.id} by {actor}")
    return event


def correct(
    db: Session,
    administration_id: int,
    reason: str,
    adjustment: int,
    actor: str,
    *,
    now: datetime,
    notifier: Notifier = default_notifier,
) -> AdministrationEvent:
    """Adjust how much stock an administration used.

    `adjustment` is signed, in stock units: negative gives units back,
    positive takes more (and can fail with InsufficientStockError). The
    original event, its usage entry and its schedule are never changed.
    """
    _check_actor(actor)
    if not reason or not reason.strip():
        raise ValidationError("reason", "a reason is required for a correction")
    if isinstance(adjustment, bool) or not isinstance(adjustment, int) or adjustment == 0:
        raise ValidationError("adjustment", f"must be a non-zero whole number, got {adjustment!r}")
    original = _get_administration(db, administration_id)
    _check_correctable(original)
    return _compensate(db, original, AdministrationKind.CORRECTION, adjustment, reason.strip(), actor, now, notifier)


def return_dose(
    db: Session,
    administration_id: int,
    quantity: int,
    reason: str,
    actor: str,
    *,
    now: datetime,
    notifier: Notifier = default_notifier,
) -> AdministrationEvent:
    """Put `quantity` units of an administration back into stock."""
    _check_actor(actor)
    if not reason or not reason.strip():
        raise ValidationError("reason", "a reason is required for a return")
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("quantity", f"must be a positive whole number, got {quantity!r}")
    original = _get_administration(db, administration_id)
    _check_correctable(original)
    return _compensate(db, original, AdministrationKind.RETURN, -quantity, reason.strip(), actor, now, notifier)


def get_administrations(db: Session, order_id: int) -> List[AdministrationEvent]:
    return db.query(AdministrationEvent).filter(
        AdministrationEvent.order_id == order_id
    ).order_by(AdministrationEvent.id).all()
