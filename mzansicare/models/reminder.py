from sqlalchemy import Column, String, ForeignKey, DateTime, Boolean, Text, Enum as SQLEnum
import enum
import uuid

from ..core.clock import utcnow
from ..core.database import Base

class ReminderType(str, enum.Enum):
    APPOINTMENT = "appointment"
    MEDICATION = "medication"
    HEALTH_TIP = "health_tip"

class ReminderStatus(str, enum.Enum):
    PENDING = "pending"
    CANCELLED = "cancelled"

class Reminder(Base):
    __tablename__ = "reminders"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), nullable=False, index=True)
    appointment_id = Column(String(36), ForeignKey("appointments.id"), nullable=True, index=True)

    type = Column(SQLEnum(ReminderType), nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    scheduled_for = Column(DateTime, nullable=False, index=True)  # facility-local time
    status = Column(SQLEnum(ReminderStatus), nullable=False, default=ReminderStatus.PENDING)
    read = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<Reminder(id={self.id}, user_id={self.user_id}, type='{self.type}', read={self.read})>"
