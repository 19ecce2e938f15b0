from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import date, datetime


class StockEntryCreate(BaseModel):
    quantity: int = Field(..., gt=0)
    unit: str = "tablet"
    batch_expiry: date
    notes: Optional[str] = None


class StockEntry(BaseModel):
    id: int
    order_id: int
    quantity_added: int
    unit: str
    batch_expiry: date
    date_added: Optional[datetime] = None
    is_initial_stock: bool
    notes: Optional[str] = None
    created_by: Optional[str] = None

    class Config:
        from_attributes = True


class StockBalance(BaseModel):
    order_id: int
    balance: int
    remaining_doses: int
    min_stock_threshold: int
    low_stock_alert_sent: bool
    entries: List[StockEntry] = []
