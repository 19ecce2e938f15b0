from pydantic import BaseModel
from typing import Optional, Dict, Any
import enum


class NotificationKind(str, enum.Enum):
    REMINDER = "Reminder"
    OVERDUE = "Overdue"
    LOW_STOCK = "LowStock"
    ESCALATION = "Escalation"
    MISSED = "Missed"
    ABSENT = "Absent"


class NotificationRequest(BaseModel):
    """Fire-and-forget request handed to the notification collaborator."""
    kind: NotificationKind
    order_id: int
    schedule_id: Optional[int] = None
    payload: Dict[str, Any] = {}


class ReminderPassResult(BaseModel):
    scanned: int = 0
    reminders: int = 0
    overdue: int = 0
    escalations: int = 0
    delivery_failures: int = 0
