from sqlalchemy import Column, Integer, String, DateTime, JSON
from database import Base
from models.audit_mixin import site_timestamp


class AuditLog(Base):
    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True, index=True)
    table_name = Column(String, nullable=False)
    record_id = Column(Integer, nullable=False, index=True)
    changed_at = Column(DateTime(timezone=True), default=site_timestamp)
    changed_by = Column(String, nullable=False)
    action = Column(String, nullable=False)  # e.g., 'CREATE', 'TRANSITION', 'REGENERATE', 'ARCHIVE'
    old_values = Column(JSON)
    new_values = Column(JSON)
