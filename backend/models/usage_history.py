from sqlalchemy import Column, Integer, String, Date, DateTime, Enum, ForeignKey
from database import Base
import enum
from models.audit_mixin import TimestampMixin


class UsageStatus(enum.Enum):
    GIVEN = "Given"
    MISSED = "Missed"
    REFUSED = "Refused"
    ABSENT = "Absent"
    CORRECTED = "Corrected"
    RETURNED = "Returned"


class UsageHistoryEntry(Base, TimestampMixin):
    __tablename__ = "usage_history"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("medication_order.id"), nullable=False, index=True)
    student_id = Column(String, nullable=False, index=True)
    schedule_id = Column(Integer, ForeignKey("dose_schedule.id"), nullable=True)
    administration_id = Column(Integer, ForeignKey("administration_event.id"), nullable=True)
    medication_name = Column(String, nullable=True)
    usage_date = Column(Date, nullable=False)
    dosage_used = Column(String, nullable=True)
    status = Column(Enum(UsageStatus), nullable=False)
    reason = Column(String, nullable=True)
    note = Column(String, nullable=True)
    administered_by = Column(String, nullable=True)
    administered_time = Column(DateTime, nullable=True)
