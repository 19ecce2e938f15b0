from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean, Enum, ForeignKey
from sqlalchemy.orm import relationship
from database import Base
import enum
from models.audit_mixin import TimestampMixin


class AdministrationKind(enum.Enum):
    ADMINISTRATION = "Administration"
    CORRECTION = "Correction"
    RETURN = "Return"


class AdministrationEvent(Base, TimestampMixin):
    """Immutable record of giving (or refusing) a dose, or of a compensating
    adjustment to an earlier one.

    `quantity` is the signed stock effect in units: positive when stock was
    consumed, negative when it was given back.
    """
    __tablename__ = "administration_event"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("medication_order.id"), nullable=False, index=True)
    schedule_id = Column(Integer, ForeignKey("dose_schedule.id"), nullable=True, index=True)
    kind = Column(Enum(AdministrationKind), nullable=False, default=AdministrationKind.ADMINISTRATION)
    administered_by = Column(String, nullable=False)
    administered_at = Column(DateTime, nullable=False)
    actual_dosage = Column(String, nullable=True)
    quantity = Column(Integer, nullable=False, default=0)
    student_refused = Column(Boolean, nullable=False, default=False)
    refusal_reason = Column(String, nullable=True)
    side_effects = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    early_override = Column(Boolean, nullable=False, default=False)
    # Compensating events point at the administration they adjust.
    reverses_id = Column(Integer, ForeignKey("administration_event.id"), nullable=True, index=True)

    order = relationship("MedicationOrder", back_populates="administrations")
    reverses = relationship("AdministrationEvent", remote_side=[id])
