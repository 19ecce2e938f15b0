from sqlalchemy.orm import Session
from datetime import date
from typing import List
from models.medication_order import MedicationOrder
from models.usage_history import UsageHistoryEntry, UsageStatus


def get_usage_history(
    db: Session,
    tenant_id: str = None,
    order_id: int = None,
    student_id: str = None,
    status: UsageStatus = None,
    start_date: date = None,
    end_date: date = None,
) -> List[UsageHistoryEntry]:
    """
    Retrieves usage history, newest first, optionally filtered by order,
    student, status and an inclusive date range.
    """
    query = db.query(UsageHistoryEntry)
    if tenant_id is not None:
        query = query.join(MedicationOrder, UsageHistoryEntry.order_id == MedicationOrder.id).filter(
            MedicationOrder.tenant_id == tenant_id
        )
    if order_id:
        query = query.filter(UsageHistoryEntry.order_id == order_id)
    if student_id:
        query = query.filter(UsageHistoryEntry.student_id == student_id)
    if status:
        query = query.filter(UsageHistoryEntry.status == status)
    if start_date:
        query = query.filter(UsageHistoryEntry.usage_date >= start_date)
    if end_date:
        query = query.filter(UsageHistoryEntry.usage_date <= end_date)
    return query.order_by(UsageHistoryEntry.administered_time.desc(), UsageHistoryEntry.id.desc()).all()


def get_usage_for_schedule(db: Session, schedule_id: int) -> List[UsageHistoryEntry]:
    return db.query(UsageHistoryEntry).filter(
        UsageHistoryEntry.schedule_id == schedule_id
    ).order_by(UsageHistoryEntry.id).all()
