from pydantic import BaseModel
from typing import Optional


class AppConfigBase(BaseModel):
    name: str
    value: str
    description: Optional[str] = None


class AppConfigCreate(AppConfigBase):
    pass


class AppConfigUpdate(BaseModel):
    value: Optional[str] = None
    description: Optional[str] = None


class AppConfigOut(AppConfigBase):
    id: int
    tenant_id: Optional[str] = None

    class Config:
        from_attributes = True


class ReminderSettings(BaseModel):
    lead_minutes: int
    overdue_minutes: int
    max_reminders: int
