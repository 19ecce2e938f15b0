from sqlalchemy import Column, Integer, String, Text, Date, Time, DateTime, Boolean, Enum, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from database import Base
from datetime import datetime
import enum
from models.audit_mixin import TimestampMixin
from models.medication_order import MedicationPriority


class ScheduleStatus(enum.Enum):
    PENDING = "Pending"
    AWAITING_CONFIRMATION = "AwaitingConfirmation"
    ADMINISTERED = "Administered"
    MISSED = "Missed"
    STUDENT_ABSENT = "StudentAbsent"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    ScheduleStatus.ADMINISTERED,
    ScheduleStatus.MISSED,
    ScheduleStatus.STUDENT_ABSENT,
})

OPEN_STATUSES = (ScheduleStatus.PENDING, ScheduleStatus.AWAITING_CONFIRMATION)


class DoseSchedule(Base, TimestampMixin):
    __tablename__ = "dose_schedule"
    __table_args__ = (UniqueConstraint('order_id', 'dose_sequence', name='_dose_schedule_order_sequence_uc'),)

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("medication_order.id"), nullable=False, index=True)
    scheduled_date = Column(Date, nullable=False, index=True)
    scheduled_time = Column(Time, nullable=False)
    scheduled_dosage = Column(String, nullable=False)
    dose_sequence = Column(Integer, nullable=False)
    priority = Column(Enum(MedicationPriority), nullable=False, default=MedicationPriority.NORMAL)

    status = Column(Enum(ScheduleStatus), nullable=False, default=ScheduleStatus.PENDING, index=True)
    administration_id = Column(
        Integer,
        ForeignKey("administration_event.id", use_alter=True, name="fk_dose_schedule_administration_id"),
        nullable=True,
    )
    completed_at = Column(DateTime, nullable=True)
    missed_at = Column(DateTime, nullable=True)
    missed_reason = Column(String, nullable=True)

    # Attendance
    student_present = Column(Boolean, nullable=False, default=True)
    attendance_checked_at = Column(DateTime, nullable=True)

    # Reminders
    reminder_sent = Column(Boolean, nullable=False, default=False)
    reminder_sent_at = Column(DateTime, nullable=True)
    reminder_count = Column(Integer, nullable=False, default=0)
    reminders_suppressed = Column(Boolean, nullable=False, default=False)
    escalated = Column(Boolean, nullable=False, default=False)

    # Second-nurse confirmation for high-risk medicines
    requires_nurse_confirmation = Column(Boolean, nullable=False, default=False)
    pending_actor = Column(String, nullable=True)
    confirmed_by = Column(String, nullable=True)
    confirmed_at = Column(DateTime, nullable=True)

    notes = Column(Text, nullable=True)

    order = relationship("MedicationOrder", back_populates="schedules")
    administration = relationship("AdministrationEvent", foreign_keys=[administration_id])

    @property
    def scheduled_at(self) -> datetime:
        return datetime.combine(self.scheduled_date, self.scheduled_time)
