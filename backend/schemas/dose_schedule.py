from pydantic import BaseModel
from typing import Optional, List
from datetime import date, time, datetime
from models.dose_schedule import ScheduleStatus
from models.medication_order import MedicationPriority


class DoseSchedule(BaseModel):
    id: int
    order_id: int
    scheduled_date: date
    scheduled_time: time
    scheduled_dosage: str
    dose_sequence: int
    priority: MedicationPriority
    status: ScheduleStatus
    administration_id: Optional[int] = None
    completed_at: Optional[datetime] = None
    missed_at: Optional[datetime] = None
    missed_reason: Optional[str] = None
    student_present: bool
    reminder_sent: bool
    reminder_count: int
    requires_nurse_confirmation: bool
    pending_actor: Optional[str] = None
    confirmed_by: Optional[str] = None
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class DailySchedule(BaseModel):
    date: date
    total: int
    administered: int
    pending: int
    missed: int
    absent: int
    schedules: List[DoseSchedule]
