from pydantic import BaseModel, Field, model_validator
from typing import Optional, List
from datetime import date, datetime
from models.medication_order import OrderStatus, MedicationPriority
from models.audit_mixin import Lifecycle
from schemas.recurrence import RecurrenceConfig


class InitialStock(BaseModel):
    quantity: int = Field(..., gt=0)
    unit: str = "tablet"
    batch_expiry: date


class ApprovedMedicationOrder(BaseModel):
    """What the approval workflow hands over once a nurse approves a request.

    Delivered again, with the same order_id, whenever an active order is edited.
    """
    order_id: Optional[int] = None
    student_id: str
    guardian_id: Optional[str] = None
    medication_name: str
    dosage: str
    dose_quantity: int = Field(1, gt=0)
    instructions: Optional[str] = None
    recurrence: RecurrenceConfig
    start_date: date
    end_date: Optional[date] = None
    expiry_date: date
    min_stock_threshold: int = Field(3, ge=0)
    auto_generate_schedule: bool = True
    require_nurse_confirmation: bool = False
    skip_on_absence: bool = True
    priority: MedicationPriority = MedicationPriority.NORMAL
    approved_by: str
    approved_at: Optional[datetime] = None
    initial_stock: Optional[InitialStock] = None

    @model_validator(mode='after')
    def window_is_ordered(self):
        if self.start_date > self.expiry_date:
            raise ValueError("start_date must be on or before expiry_date")
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


class MedicationOrder(BaseModel):
    id: int
    tenant_id: Optional[str] = None
    student_id: str
    guardian_id: Optional[str] = None
    medication_name: str
    dosage: str
    dose_quantity: int
    frequency_count: int
    specific_times: List[str]
    day_parts: List[str]
    skip_weekends: bool
    skip_dates: List[str]
    start_date: date
    end_date: Optional[date] = None
    expiry_date: date
    total_doses: int
    remaining_doses: int
    min_stock_threshold: int
    low_stock_alert_sent: bool
    auto_generate_schedule: bool
    require_nurse_confirmation: bool
    skip_on_absence: bool
    priority: MedicationPriority
    status: OrderStatus
    lifecycle: Lifecycle
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RegenerateResult(BaseModel):
    order_id: int
    kept: int
    removed: int
    created: int


class DiscontinueRequest(BaseModel):
    reason: str = Field(..., min_length=1)
