import datetime as dt
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models.appointment import AppointmentStatus


class AppointmentCreate(BaseModel):
    facility_id: str = Field(..., min_length=1, max_length=64)
    date: dt.date
    time: str = Field(..., pattern=r"^\d{2}:\d{2}$", examples=["10:30"])
    reason: Optional[str] = Field(default=None, max_length=500)


class AppointmentCancel(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=255)


class AppointmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    facility_id: str
    appointment_date: dt.datetime
    end_time: dt.datetime
    status: AppointmentStatus
    reason: Optional[str] = None
    created_at: dt.datetime
    confirmed_at: Optional[dt.datetime] = None
    cancelled_at: Optional[dt.datetime] = None
    cancelled_reason: Optional[str] = None


class SlotAvailability(BaseModel):
    time: str
    available: bool
