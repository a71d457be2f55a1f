from sqlalchemy import Column, String, ForeignKey, DateTime, Text, Enum as SQLEnum
from sqlalchemy.orm import relationship
import enum
import uuid

from ..core.clock import utcnow
from ..core.database import Base

class AppointmentStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

BOOKED_STATUSES = (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED)

class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Relationships
    user_id = Column(String(36), nullable=False, index=True)
    facility_id = Column(String(64), ForeignKey("facilities.id"), nullable=False, index=True)

    # Appointment details, in facility-local wall-clock time
    appointment_date = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False)
    status = Column(SQLEnum(AppointmentStatus), nullable=False, default=AppointmentStatus.PENDING)
    reason = Column(Text, nullable=True)

    # "<facility_id>@<start>" while the appointment holds its slot, else NULL;
    # unique, so one slot is booked at most once
    slot_key = Column(String(100), unique=True, nullable=True)

    # Tracking
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
    confirmed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancelled_by = Column(String(36), nullable=True)
    cancelled_reason = Column(String(255), nullable=True)

    facility = relationship("Facility")

    def __repr__(self):
        return f"<Appointment(id={self.id}, user_id={self.user_id}, facility_id='{self.facility_id}', date='{self.appointment_date}')>"
