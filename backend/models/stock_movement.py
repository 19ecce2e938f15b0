from sqlalchemy import Column, Integer, String, Enum, ForeignKey
from database import Base
import enum
from models.audit_mixin import TimestampMixin


class MovementKind(enum.Enum):
    CONSUME = "Consume"
    REVERSE = "Reverse"


class StockMovement(Base, TimestampMixin):
    """Consumption of stock by a dose, or its reversal.

    Reversals are recorded here rather than as a StockEntry so genuine
    drop-offs stay distinguishable from corrections.
    """
    __tablename__ = "stock_movement"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("medication_order.id"), nullable=False, index=True)
    kind = Column(Enum(MovementKind), nullable=False)
    quantity = Column(Integer, nullable=False)  # always positive
    administration_id = Column(Integer, ForeignKey("administration_event.id"), nullable=True)
    note = Column(String, nullable=True)
