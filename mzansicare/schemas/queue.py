from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..models.ticket import TicketPriority, TicketStatus
from .facility import Coordinates


class JoinRequest(BaseModel):
    # Blank ids are rejected by the queue service as InvalidArgument
    facility_id: Optional[str] = None
    reason: Optional[str] = Field(default=None, max_length=500)
    priority: TicketPriority = TicketPriority.NORMAL
    coords: Optional[Coordinates] = None

    @field_validator("priority", mode="before")
    @classmethod
    def coerce_priority(cls, value: Any) -> Any:
        if value in {p.value for p in TicketPriority}:
            return value
        return TicketPriority.NORMAL


class TicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    number: str
    facility_id: str
    user_id: str
    reason: Optional[str] = None
    priority: TicketPriority
    status: TicketStatus
    position: Optional[int] = None
    eta_minutes: Optional[int] = None
    created_at: datetime
    called_at: Optional[datetime] = None
    served_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None


class JoinResponse(BaseModel):
    created: bool
    ticket: TicketResponse


class QueueEstimate(BaseModel):
    facility_id: str
    active_count: int
    next_position: int
    eta_minutes: int
    avg_service_minutes: float
