from sqlalchemy.orm import Session
from datetime import date, datetime
from typing import List, Optional
import logging
import threading

from crud import schedule_generator, stock_ledger
from crud.audit_log import create_audit_log
from exceptions import NotFoundError, ValidationError
from models.dose_schedule import DoseSchedule, ScheduleStatus
from models.medication_order import MedicationOrder, OrderStatus, ADMINISTRABLE_ORDER_STATUSES
from schemas.audit_log import AuditLogCreate
from schemas.dose_schedule import DailySchedule, DoseSchedule as DoseScheduleOut
from schemas.medication_order import ApprovedMedicationOrder, RegenerateResult
from schemas.stock import StockBalance, StockEntryCreate, StockEntry as StockEntryOut
from utils import sqlalchemy_to_dict
from utils.clock import site_now
from utils.locking import order_transaction

logger = logging.getLogger(__name__)

CLOSED_ORDER_STATUSES = (
    OrderStatus.REJECTED,
    OrderStatus.COMPLETED,
    OrderStatus.EXPIRED,
    OrderStatus.DISCONTINUED,
)


def get_order(db: Session, order_id: int, tenant_id: str = None, include_archived: bool = False, for_update: bool = False):
    query = db.query(MedicationOrder).filter(MedicationOrder.id == order_id)
    if tenant_id is not None:
        query = query.filter(MedicationOrder.tenant_id == tenant_id)
    if include_archived:
        query = query.execution_options(include_archived=True)
    if for_update:
        query = query.with_for_update().populate_existing()
    order = query.first()
    if not order:
        raise NotFoundError("MedicationOrder", order_id)
    return order


def list_orders(db: Session, tenant_id: str = None, student_id: str = None, status: OrderStatus = None):
    query = db.query(MedicationOrder)
    if tenant_id is not None:
        query = query.filter(MedicationOrder.tenant_id == tenant_id)
    if student_id:
        query = query.filter(MedicationOrder.student_id == student_id)
    if status:
        query = query.filter(MedicationOrder.status == status)
    return query.order_by(MedicationOrder.id).all()


def get_schedule(db: Session, schedule_id: int, tenant_id: str = None) -> DoseSchedule:
    query = db.query(DoseSchedule).filter(DoseSchedule.id == schedule_id)
    if tenant_id is not None:
        query = query.join(MedicationOrder, DoseSchedule.order_id == MedicationOrder.id).filter(
            MedicationOrder.tenant_id == tenant_id
        )
    schedule = query.first()
    if not schedule:
        raise NotFoundError("DoseSchedule", schedule_id)
    return schedule


def get_schedules(db: Session, order_id: int, status: ScheduleStatus = None) -> List[DoseSchedule]:
    query = db.query(DoseSchedule).filter(DoseSchedule.order_id == order_id)
    if status:
        query = query.filter(DoseSchedule.status == status)
    return query.order_by(DoseSchedule.dose_sequence).all()


def _order_fields(approved: ApprovedMedicationOrder) -> dict:
    fields = approved.model_dump(
        exclude={"order_id", "recurrence", "initial_stock", "approved_at"},
    )
    fields.update(approved.recurrence.to_columns())
    return fields


def ingest_approved_order(
    db: Session,
    approved: ApprovedMedicationOrder,
    tenant_id: str = None,
    changed_by: str = None,
    now: datetime = None,
    cancel_event: Optional[threading.Event] = None,
) -> MedicationOrder:
    """
    Take an order from the approval workflow.

    A new order is created Active, gets its initial stock and, when
    auto_generate_schedule is set, its full schedule. An order id that already
    exists is an edit: the fields are updated and future open schedules are
    regenerated. Either way everything lands in one transaction.
    """
    now = now or site_now()
    changed_by = changed_by or approved.approved_by

    existing = None
    if approved.order_id is not None:
        existing = db.query(MedicationOrder).filter(
            MedicationOrder.id == approved.order_id
        ).execution_options(include_archived=True).first()
        if existing is not None and tenant_id is not None and existing.tenant_id != tenant_id:
            raise NotFoundError("MedicationOrder", approved.order_id)

    if existing is not None:
        return _update_order(db, existing.id, approved, changed_by, now, cancel_event)

    try:
        order = MedicationOrder(
            id=approved.order_id,
            tenant_id=tenant_id,
            status=OrderStatus.ACTIVE,
            approved_at=approved.approved_at or now,
            created_by=changed_by,
            **_order_fields(approved),
        )
        db.add(order)
        db.flush()

        if approved.initial_stock is not None:
            stock_ledger.add_stock(
                db, order,
                quantity=approved.initial_stock.quantity,
                unit=approved.initial_stock.unit,
                batch_expiry=approved.initial_stock.batch_expiry,
                changed_by=changed_by,
                notes="Initial stock",
                initial=True,
                commit=False,
                today=now.date(),
            )
        if order.auto_generate_schedule:
            schedule_generator.materialize(db, order, changed_by=changed_by, cancel_event=cancel_event)

        create_audit_log(db, AuditLogCreate(
            table_name='medication_order',
            record_id=order.id,
            changed_by=changed_by,
            action='CREATE',
            old_values={},
            new_values=sqlalchemy_to_dict(order),
        ))
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(order)
    logger.info(f"Ingested approved order {order.id} for student {order.student_id} ({order.medication_name})")
    return order


def _update_order(
    db: Session,
    order_id: int,
    approved: ApprovedMedicationOrder,
    changed_by: str,
    now: datetime,
    cancel_event: Optional[threading.Event] = None,
) -> MedicationOrder:
    with order_transaction(db, order_id):
        order = get_order(db, order_id, include_archived=True, for_update=True)
        if order.status not in ADMINISTRABLE_ORDER_STATUSES:
            raise ValidationError("order_status", f"order {order.id} is {order.status.value} and cannot be edited")

        old_values = sqlalchemy_to_dict(order)
        for field, value in _order_fields(approved).items():
            setattr(order, field, value)
        order.updated_by = changed_by
        if approved.approved_at:
            order.approved_at = approved.approved_at
        if approved.initial_stock is not None:
            logger.warning(f"Ignoring initial stock on edit of order {order.id}; use the stock endpoint")

        stock_ledger.reconcile(db, order)
        if order.auto_generate_schedule:
            has_schedules = db.query(DoseSchedule.id).filter(DoseSchedule.order_id == order.id).first() is not None
            if has_schedules:
                schedule_generator.regenerate(db, order, now, changed_by=changed_by, cancel_event=cancel_event)
            else:
                schedule_generator.materialize(db, order, changed_by=changed_by, cancel_event=cancel_event)

        create_audit_log(db, AuditLogCreate(
            table_name='medication_order',
            record_id=order.id,
            changed_by=changed_by,
            action='UPDATE',
            old_values=old_values,
            new_values=sqlalchemy_to_dict(order),
        ))

    db.refresh(order)
    logger.info(f"Updated order {order.id} from approval workflow")
    return order


def generate_schedules(db: Session, order_id: int, tenant_id: str = None, changed_by: str = None) -> List[DoseSchedule]:
    """Materialize schedules for an order ingested with auto_generate_schedule off."""
    with order_transaction(db, order_id):
        order = get_order(db, order_id, tenant_id, for_update=True)
        schedules = schedule_generator.materialize(db, order, changed_by=changed_by)
    return get_schedules(db, order_id) if schedules else []


def regenerate_schedules(
    db: Session,
    order_id: int,
    tenant_id: str = None,
    changed_by: str = None,
    now: datetime = None,
) -> RegenerateResult:
    now = now or site_now()
    with order_transaction(db, order_id):
        order = get_order(db, order_id, tenant_id, for_update=True)
        if order.status not in ADMINISTRABLE_ORDER_STATUSES:
            raise ValidationError("order_status", f"order {order.id} is {order.status.value}")
        result = schedule_generator.regenerate(db, order, now, changed_by=changed_by)
    return result


def add_stock_for_order(
    db: Session,
    order_id: int,
    entry: StockEntryCreate,
    tenant_id: str = None,
    changed_by: str = None,
    today: date = None,
):
    with order_transaction(db, order_id):
        order = get_order(db, order_id, tenant_id, for_update=True)
        if order.status in CLOSED_ORDER_STATUSES:
            raise ValidationError("order_status", f"order {order.id} is {order.status.value}")
        stock_entry = stock_ledger.add_stock(
            db, order,
            quantity=entry.quantity,
            unit=entry.unit,
            batch_expiry=entry.batch_expiry,
            changed_by=changed_by,
            notes=entry.notes,
            commit=False,
            today=today,
        )
        create_audit_log(db, AuditLogCreate(
            table_name='stock_entry',
            record_id=stock_entry.id,
            changed_by=changed_by or "SYSTEM",
            action='CREATE',
            old_values={},
            new_values=sqlalchemy_to_dict(stock_entry),
        ))
    db.refresh(stock_entry)
    return stock_entry


def get_stock_balance(db: Session, order_id: int, tenant_id: str = None) -> StockBalance:
    order = get_order(db, order_id, tenant_id)
    return StockBalance(
        order_id=order.id,
        balance=stock_ledger.balance(db, order),
        remaining_doses=order.remaining_doses,
        min_stock_threshold=order.min_stock_threshold,
        low_stock_alert_sent=order.low_stock_alert_sent,
        entries=[StockEntryOut.model_validate(e) for e in stock_ledger.entries(db, order)],
    )


def close_order(db: Session, order: MedicationOrder, status: OrderStatus, changed_by: str, reason: str = None):
    """Set a closing status. Runs inside the caller's transaction."""
    old_status = order.status
    order.status = status
    order.updated_by = changed_by
    create_audit_log(db, AuditLogCreate(
        table_name='medication_order',
        record_id=order.id,
        changed_by=changed_by or "SYSTEM",
        action='UPDATE',
        old_values={"status": old_status.value},
        new_values={"status": status.value, "reason": reason},
    ))
    logger.info(f"Order {order.id} moved from {old_status.value} to {status.value}")


def discontinue_order(db: Session, order_id: int, reason: str, tenant_id: str = None, changed_by: str = None):
    """Stop an order early. Open schedules stay for the record but no longer
    accept administrations or get reminders."""
    if not reason or not reason.strip():
        raise ValidationError("reason", "a reason is required to discontinue an order")
    with order_transaction(db, order_id):
        order = get_order(db, order_id, tenant_id, for_update=True)
        if order.status not in ADMINISTRABLE_ORDER_STATUSES:
            raise ValidationError("order_status", f"order {order.id} is already {order.status.value}")
        close_order(db, order, OrderStatus.DISCONTINUED, changed_by, reason.strip())
    db.refresh(order)
    return order


def archive_order(db: Session, order_id: int, tenant_id: str = None, changed_by: str = None):
    with order_transaction(db, order_id):
        order = get_order(db, order_id, tenant_id, for_update=True)
        if order.status not in CLOSED_ORDER_STATUSES:
            raise ValidationError("order_status", f"order {order.id} is {order.status.value}; only closed orders can be archived")
        order.archive(changed_by)
        create_audit_log(db, AuditLogCreate(
            table_name='medication_order',
            record_id=order.id,
            changed_by=changed_by or "SYSTEM",
            action='ARCHIVE',
            old_values={},
            new_values={"lifecycle": order.lifecycle.value},
        ))
    logger.info(f"Archived order {order_id}")
    return order


def get_daily_schedule(db: Session, day: date, tenant_id: str = None) -> DailySchedule:
    """Every dose due on `day` across the school's orders, most urgent first."""
    query = db.query(DoseSchedule).join(MedicationOrder, DoseSchedule.order_id == MedicationOrder.id).filter(
        DoseSchedule.scheduled_date == day,
        MedicationOrder.active_criteria(),
    )
    if tenant_id is not None:
        query = query.filter(MedicationOrder.tenant_id == tenant_id)
    schedules = query.order_by(DoseSchedule.scheduled_time, DoseSchedule.id).all()
    schedules.sort(key=lambda s: (s.scheduled_time, -s.priority.rank))

    def count(*statuses):
        return sum(1 for s in schedules if s.status in statuses)

    return DailySchedule(
        date=day,
        total=len(schedules),
        administered=count(ScheduleStatus.ADMINISTERED),
        pending=count(ScheduleStatus.PENDING, ScheduleStatus.AWAITING_CONFIRMATION),
        missed=count(ScheduleStatus.MISSED),
        absent=count(ScheduleStatus.STUDENT_ABSENT),
        schedules=[DoseScheduleOut.model_validate(s) for s in schedules],
    )
