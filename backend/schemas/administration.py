# backend/schemas/administration.py

from typing import Optional, List
from pydantic import BaseModel, Field
from datetime import datetime
from models.administration_event import AdministrationKind
from schemas.dose_schedule import DoseSchedule


class AdministerRequest(BaseModel):
    actual_dosage: str
    early: bool = False
    notes: Optional[str] = None
    side_effects: Optional[str] = None
    student_refused: bool = False
    refusal_reason: Optional[str] = None


class ConfirmRequest(BaseModel):
    actual_dosage: Optional[str] = None
    notes: Optional[str] = None


class QuickCompleteRequest(BaseModel):
    notes: Optional[str] = None


class BulkAdministerRequest(BaseModel):
    schedule_ids: List[int] = Field(..., min_length=1)
    actual_dosage: str
    early: bool = False


class MarkMissedRequest(BaseModel):
    reason: str = Field(..., min_length=1)
    notes: Optional[str] = None


class MarkAbsentRequest(BaseModel):
    notes: Optional[str] = None


class CorrectionRequest(BaseModel):
    reason: str = Field(..., min_length=1)
    # Signed stock adjustment in units: negative gives stock back.
    adjustment: int


class ReturnRequest(BaseModel):
    quantity: int = Field(..., gt=0)
    reason: str = Field(..., min_length=1)


class AdministrationEvent(BaseModel):
    id: int
    order_id: int
    schedule_id: Optional[int] = None
    kind: AdministrationKind
    administered_by: str
    administered_at: datetime
    actual_dosage: Optional[str] = None
    quantity: int
    student_refused: bool
    refusal_reason: Optional[str] = None
    side_effects: Optional[str] = None
    notes: Optional[str] = None
    early_override: bool
    reverses_id: Optional[int] = None

    class Config:
        from_attributes = True


class BulkItemResult(BaseModel):
    schedule_id: int
    outcome: str  # "succeeded" or "failed:<ErrorName>"
    administration_id: Optional[int] = None
    detail: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == "succeeded"


class BulkAdministerResponse(BaseModel):
    total_requested: int
    success_count: int
    failure_count: int
    results: List[BulkItemResult]


class AdministerResult(BaseModel):
    schedule: DoseSchedule
    # None while the dose waits for a second nurse
    administration: Optional[AdministrationEvent] = None
