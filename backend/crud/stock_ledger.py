"""
Stock ledger for medicine held at school.

The balance of an order is always derived from the append-only tables:

    balance = sum(stock_entry.quantity_added)
              - sum(stock_movement CONSUME)
              + sum(stock_movement REVERSE)

`MedicationOrder.remaining_doses` is only a cache of `balance // dose_quantity`
and is rewritten by reconcile() after every change. Functions here do not
commit unless they are an entry point (add_stock); consume() and reverse() run
inside the caller's transaction.
"""

from datetime import date
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from exceptions import InsufficientStockError, ValidationError
from models.medication_order import MedicationOrder
from models.stock_entry import StockEntry
from models.stock_movement import StockMovement, MovementKind
from schemas.notification import NotificationRequest, NotificationKind
from utils.clock import site_now
from utils.notifier import queue

logger = logging.getLogger(__name__)


def _check_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("quantity", f"must be a positive whole number, got {quantity!r}")
    return quantity


def balance(db: Session, order: MedicationOrder) -> int:
    db.flush()
    added = db.query(func.coalesce(func.sum(StockEntry.quantity_added), 0)).filter(
        StockEntry.order_id == order.id
    ).scalar()
    movements = dict(
        db.query(StockMovement.kind, func.coalesce(func.sum(StockMovement.quantity), 0))
        .filter(StockMovement.order_id == order.id)
        .group_by(StockMovement.kind)
        .all()
    )
    consumed = movements.get(MovementKind.CONSUME, 0)
    reversed_ = movements.get(MovementKind.REVERSE, 0)
    return int(added) - int(consumed) + int(reversed_)


def reconcile(db: Session, order: MedicationOrder) -> int:
    """Rewrite the order's cached counters from the ledger. Returns the balance."""
    db.flush()
    current = balance(db, order)
    order.remaining_doses = current // order.dose_quantity
    return current


def entries(db: Session, order: MedicationOrder):
    return db.query(StockEntry).filter(StockEntry.order_id == order.id).order_by(StockEntry.id).all()


def add_stock(
    db: Session,
    order: MedicationOrder,
    quantity: int,
    unit: str,
    batch_expiry: date,
    changed_by: str = None,
    notes: str = None,
    initial: bool = False,
    commit: bool = True,
    today: date = None,
) -> StockEntry:
    """Record a batch handed in by a guardian as a new, separate ledger line."""
    _check_quantity(quantity)
    today = today or site_now().date()
    if batch_expiry < today:
        raise ValidationError("batch_expiry", f"batch already expired on {batch_expiry}")

    entry = StockEntry(
        order_id=order.id,
        quantity_added=quantity,
        unit=unit,
        batch_expiry=batch_expiry,
        is_initial_stock=initial,
        notes=notes,
        created_by=changed_by,
    )
    db.add(entry)
    db.flush()

    total_added = db.query(func.coalesce(func.sum(StockEntry.quantity_added), 0)).filter(
        StockEntry.order_id == order.id
    ).scalar()
    order.total_doses = int(total_added) // order.dose_quantity
    # A fresh batch starts a new stock cycle.
    order.low_stock_alert_sent = False
    new_balance = reconcile(db, order)

    logger.info(
        f"Added {quantity} {unit} to order {order.id} (batch expiry {batch_expiry}); balance now {new_balance}"
    )
    if commit:
        db.commit()
        db.refresh(entry)
    return entry


def consume(
    db: Session,
    order: MedicationOrder,
    quantity: int,
    administration_id: int = None,
    changed_by: str = None,
    note: str = None,
) -> int:
    """Take `quantity` units out of stock. Raises before writing anything if
    that would leave a negative balance. Returns the new balance."""
    _check_quantity(quantity)
    available = balance(db, order)
    if quantity > available:
        raise InsufficientStockError(requested=quantity, available=available)

    db.add(StockMovement(
        order_id=order.id,
        kind=MovementKind.CONSUME,
        quantity=quantity,
        administration_id=administration_id,
        note=note,
        created_by=changed_by,
    ))
    new_balance = reconcile(db, order)
    _check_low_stock(db, order)
    return new_balance


def reverse(
    db: Session,
    order: MedicationOrder,
    quantity: int,
    administration_id: int = None,
    changed_by: str = None,
    note: str = None,
) -> int:
    """Give `quantity` units back to stock as a reversal movement."""
    _check_quantity(quantity)
    db.add(StockMovement(
        order_id=order.id,
        kind=MovementKind.REVERSE,
        quantity=quantity,
        administration_id=administration_id,
        note=note,
        created_by=changed_by,
    ))
    return reconcile(db, order)


def _estimate_days_left(order: MedicationOrder) -> int:
    per_day = max(1, order.frequency_count or 1)
    return order.remaining_doses // per_day


def _check_low_stock(db: Session, order: MedicationOrder) -> bool:
    if order.low_stock_alert_sent or order.remaining_doses > order.min_stock_threshold:
        return False
    order.low_stock_alert_sent = True
    queue(db, NotificationRequest(
        kind=NotificationKind.LOW_STOCK,
        order_id=order.id,
        payload={
            "student_id": order.student_id,
            "guardian_id": order.guardian_id,
            "medication_name": order.medication_name,
            "remaining_doses": order.remaining_doses,
            "total_doses": order.total_doses,
            "min_stock_threshold": order.min_stock_threshold,
            "estimated_days_left": _estimate_days_left(order),
        },
    ))
    logger.warning(
        f"Low stock for order {order.id}: {order.remaining_doses} dose(s) left "
        f"(threshold {order.min_stock_threshold})"
    )
    return True
