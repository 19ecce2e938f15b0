# backend/schemas/usage_history.py

from typing import Optional
from pydantic import BaseModel
from datetime import date, datetime
from models.usage_history import UsageStatus


class UsageHistoryEntry(BaseModel):
    id: int
    order_id: int
    student_id: str
    schedule_id: Optional[int] = None
    administration_id: Optional[int] = None
    medication_name: Optional[str] = None
    usage_date: date
    dosage_used: Optional[str] = None
    status: UsageStatus
    reason: Optional[str] = None
    note: Optional[str] = None
    administered_by: Optional[str] = None
    administered_time: Optional[datetime] = None

    class Config:
        from_attributes = True
