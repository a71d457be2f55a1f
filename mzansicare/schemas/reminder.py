import datetime as dt
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models.reminder import ReminderStatus, ReminderType


class ReminderCreate(BaseModel):
    # Appointment reminders are created by booking, not by hand
    type: Literal["medication", "health_tip"] = "medication"
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=2000)
    scheduled_for: dt.datetime


class ReminderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    appointment_id: Optional[str] = None
    type: ReminderType
    title: str
    message: str
    scheduled_for: dt.datetime
    status: ReminderStatus
    read: bool


class MarkedRead(BaseModel):
    updated: int
