from sqlalchemy import Column, Integer, String, Text, Date, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from database import Base
from models.audit_mixin import TimestampMixin, site_timestamp


class StockEntry(Base, TimestampMixin):
    """One batch of medicine handed in by a guardian. Never updated or merged."""
    __tablename__ = "stock_entry"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("medication_order.id"), nullable=False, index=True)
    quantity_added = Column(Integer, nullable=False)
    unit = Column(String, nullable=False)  # e.g., "tablet", "ml"
    batch_expiry = Column(Date, nullable=False)
    date_added = Column(DateTime(timezone=True), default=site_timestamp)
    is_initial_stock = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)

    order = relationship("MedicationOrder", back_populates="stock_entries")
