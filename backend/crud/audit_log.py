from sqlalchemy.orm import Session
from models.audit_log import AuditLog
from schemas.audit_log import AuditLogCreate


def create_audit_log(db: Session, log_entry: AuditLogCreate, commit: bool = False):
    """Add an audit row. Engine callers pass commit=False so the row lands in
    the same transaction as the change it describes."""
    db_log_entry = AuditLog(**log_entry.model_dump())
    db.add(db_log_entry)
    if commit:
        db.commit()
        db.refresh(db_log_entry)
    return db_log_entry


def log_transition(db: Session, schedule, old_status, new_status, changed_by: str, **extra):
    new_values = {"status": new_status.value}
    new_values.update(extra)
    return create_audit_log(db, AuditLogCreate(
        table_name='dose_schedule',
        record_id=schedule.id,
        changed_by=changed_by or "SYSTEM",
        action='TRANSITION',
        old_values={"status": old_status.value},
        new_values=new_values,
    ))


def get_audit_logs(db: Session, table_name: str, record_id: int):
    return db.query(AuditLog).filter(
        AuditLog.table_name == table_name,
        AuditLog.record_id == record_id,
    ).order_by(AuditLog.id).all()
