import logging
from datetime import date, timedelta
from sqlalchemy import func
from sqlalchemy.orm import Session

import config
from database import SessionLocal
from crud.audit_log import create_audit_log
from crud.medication_order import CLOSED_ORDER_STATUSES, close_order, get_order
from models.dose_schedule import DoseSchedule, OPEN_STATUSES
from models.medication_order import MedicationOrder, OrderStatus, ADMINISTRABLE_ORDER_STATUSES
from schemas.audit_log import AuditLogCreate
from utils.clock import site_now
from utils.locking import order_transaction

logger = logging.getLogger(__name__)

SYSTEM_USER = "SYSTEM"


def _open_schedule_count(db: Session, order_id: int) -> int:
    return db.query(func.count(DoseSchedule.id)).filter(
        DoseSchedule.order_id == order_id,
        DoseSchedule.status.in_(OPEN_STATUSES),
    ).scalar()


def close_finished_orders(db: Session, today: date) -> dict:
    """
    Moves administrable orders past their last day to Completed (nothing left
    open) or Expired (expiry date passed with doses still open). Each order is
    its own transaction.
    """
    completed = expired = 0
    candidates = db.query(MedicationOrder.id).filter(
        MedicationOrder.status.in_(ADMINISTRABLE_ORDER_STATUSES),
        MedicationOrder.active_criteria(),
    ).all()
    for (order_id,) in candidates:
        with order_transaction(db, order_id):
            order = get_order(db, order_id, for_update=True)
            if order.status not in ADMINISTRABLE_ORDER_STATUSES or order.last_day >= today:
                continue
            if _open_schedule_count(db, order.id) == 0:
                close_order(db, order, OrderStatus.COMPLETED, SYSTEM_USER, "all doses resolved")
                completed += 1
            elif order.expiry_date < today:
                close_order(db, order, OrderStatus.EXPIRED, SYSTEM_USER, "expiry date passed")
                expired += 1
    return {"completed": completed, "expired": expired}


def archive_closed_orders(db: Session, today: date, retention_days: int = None) -> int:
    """Archives closed orders whose last day is at least `retention_days` old
    and which have no open doses left."""
    retention_days = config.ARCHIVE_RETENTION_DAYS if retention_days is None else retention_days
    cutoff = today - timedelta(days=retention_days)
    archived = 0
    candidates = db.query(MedicationOrder.id).filter(
        MedicationOrder.status.in_(CLOSED_ORDER_STATUSES),
        MedicationOrder.active_criteria(),
    ).all()
    for (order_id,) in candidates:
        with order_transaction(db, order_id):
            order = get_order(db, order_id, for_update=True)
            if order.last_day > cutoff or _open_schedule_count(db, order.id):
                continue
            order.archive(SYSTEM_USER)
            create_audit_log(db, AuditLogCreate(
                table_name='medication_order',
                record_id=order.id,
                changed_by=SYSTEM_USER,
                action='ARCHIVE',
                old_values={},
                new_values={"lifecycle": order.lifecycle.value, "status": order.status.value},
            ))
            archived += 1
    return archived


def run_cleanup(today: date = None, session_factory=SessionLocal):
    """
    Daily housekeeping for medication orders: close finished orders, then
    archive old closed ones.
    """
    today = today or site_now().date()
    logger.info(f"Starting medication order cleanup for {today}.")
    db: Session = session_factory()
    try:
        summary = close_finished_orders(db, today)
        summary["archived"] = archive_closed_orders(db, today)
        logger.info(
            f"Cleanup for {today} finished: {summary['completed']} completed, "
            f"{summary['expired']} expired, {summary['archived']} archived."
        )
        return summary
    except Exception as e:
        logger.error(f"Error during medication order cleanup: {e}", exc_info=True)
        db.rollback()
        return None
    finally:
        db.close()
