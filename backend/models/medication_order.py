from sqlalchemy import Column, Integer, String, Text, Date, DateTime, Boolean, Enum, JSON
from sqlalchemy.orm import relationship
from database import Base
import enum
from models.audit_mixin import TimestampMixin, LifecycleMixin


class OrderStatus(enum.Enum):
    PENDING_APPROVAL = "PendingApproval"
    APPROVED = "Approved"
    ACTIVE = "Active"
    REJECTED = "Rejected"
    COMPLETED = "Completed"
    EXPIRED = "Expired"
    DISCONTINUED = "Discontinued"


# Orders in these states can still have doses administered.
ADMINISTRABLE_ORDER_STATUSES = (OrderStatus.APPROVED, OrderStatus.ACTIVE)


class MedicationPriority(enum.Enum):
    LOW = "Low"
    NORMAL = "Normal"
    HIGH = "High"
    CRITICAL = "Critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    MedicationPriority.LOW: 0,
    MedicationPriority.NORMAL: 1,
    MedicationPriority.HIGH: 2,
    MedicationPriority.CRITICAL: 3,
}


class MedicationOrder(Base, TimestampMixin, LifecycleMixin):
    """One approved medication for one student.

    The recurrence columns are only written from a validated
    schemas.recurrence.RecurrenceConfig. `remaining_doses` and
    `low_stock_alert_sent` are caches of the stock ledger and are rewritten by
    crud.stock_ledger on every stock movement.
    """
    __tablename__ = "medication_order"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String, index=True)
    student_id = Column(String, nullable=False, index=True)
    guardian_id = Column(String, nullable=True)
    medication_name = Column(String, nullable=False)
    dosage = Column(String, nullable=False)
    dose_quantity = Column(Integer, nullable=False, default=1)
    instructions = Column(Text, nullable=True)

    # Recurrence configuration
    frequency_count = Column(Integer, nullable=False)
    day_parts = Column(JSON, nullable=False, default=list)
    specific_times = Column(JSON, nullable=False, default=list)
    skip_weekends = Column(Boolean, nullable=False, default=False)
    skip_dates = Column(JSON, nullable=False, default=list)

    # Validity window
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    expiry_date = Column(Date, nullable=False)

    # Stock counters (cache of the ledger)
    total_doses = Column(Integer, nullable=False, default=0)
    remaining_doses = Column(Integer, nullable=False, default=0)
    min_stock_threshold = Column(Integer, nullable=False, default=3)  # whole doses, compared with remaining_doses
    low_stock_alert_sent = Column(Boolean, nullable=False, default=False)

    # Behaviour flags
    auto_generate_schedule = Column(Boolean, nullable=False, default=True)
    require_nurse_confirmation = Column(Boolean, nullable=False, default=False)
    skip_on_absence = Column(Boolean, nullable=False, default=True)
    priority = Column(Enum(MedicationPriority), nullable=False, default=MedicationPriority.NORMAL)

    status = Column(Enum(OrderStatus), nullable=False, default=OrderStatus.APPROVED)
    approved_by = Column(String, nullable=True)
    approved_at = Column(DateTime, nullable=True)

    version_id = Column(Integer, nullable=False)

    schedules = relationship("DoseSchedule", back_populates="order", order_by="DoseSchedule.dose_sequence")
    stock_entries = relationship("StockEntry", back_populates="order", order_by="StockEntry.id")
    administrations = relationship("AdministrationEvent", back_populates="order", order_by="AdministrationEvent.id")

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def approval(self):
        if self.approved_by is None:
            return None
        return {"approved_by": self.approved_by, "approved_at": self.approved_at}

    @property
    def last_day(self):
        """Last calendar day doses may be scheduled on."""
        if self.end_date and self.end_date < self.expiry_date:
            return self.end_date
        return self.expiry_date
