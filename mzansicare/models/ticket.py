from sqlalchemy import (
    Column, Integer, String, DateTime, Text, ForeignKey, Index, UniqueConstraint,
    Enum as SQLEnum,
)
from sqlalchemy.orm import relationship
import enum
import uuid

from ..core.clock import utcnow
from ..core.database import Base

class TicketStatus(str, enum.Enum):
    WAITING = "waiting"
    CALLED = "called"
    SERVED = "served"
    CANCELLED = "cancelled"

ACTIVE_STATUSES = (TicketStatus.WAITING, TicketStatus.CALLED)
TERMINAL_STATUSES = (TicketStatus.SERVED, TicketStatus.CANCELLED)

class TicketPriority(str, enum.Enum):
    NORMAL = "normal"
    VIP = "vip"
    ELDERLY = "elderly"
    EMERGENCY = "emergency"

class TicketEventType(str, enum.Enum):
    JOINED = "joined"
    CALLED = "called"
    SERVED = "served"
    CANCELLED = "cancelled"

class Ticket(Base):
    __tablename__ = "tickets"
    __table_args__ = (
        # Two admissions racing on the same facility cannot take the same slot
        UniqueConstraint("facility_id", "sequence", name="uq_ticket_facility_sequence"),
        Index("ix_ticket_facility_status", "facility_id", "status"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    facility_id = Column(String(64), ForeignKey("facilities.id"), nullable=False, index=True)
    user_id = Column(String(36), nullable=False, index=True)

    # Non-null only while the ticket is active; unique, so a user can hold a
    # single active ticket across all facilities.
    active_user_id = Column(String(36), unique=True, nullable=True)

    reason = Column(Text, nullable=True)
    priority = Column(SQLEnum(TicketPriority), nullable=False, default=TicketPriority.NORMAL)
    status = Column(SQLEnum(TicketStatus), nullable=False, default=TicketStatus.WAITING)

    sequence = Column(Integer, nullable=False)
    position = Column(Integer, nullable=True)
    eta_minutes = Column(Integer, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
    called_at = Column(DateTime, nullable=True)
    served_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancelled_by = Column(String(36), nullable=True)

    facility = relationship("Facility")
    events = relationship("TicketEvent", back_populates="ticket", order_by="TicketEvent.id")

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def number(self) -> str:
        """Short ticket number shown to patients, e.g. ``JHB-007``."""
        prefix = (self.facility_id or "").split("-")[0][:3].upper()
        return f"{prefix}-{self.sequence:03d}"

    def __repr__(self):
        return f"<Ticket(id={self.id}, facility_id='{self.facility_id}', status='{self.status}', position={self.position})>"

class TicketEvent(Base):
    __tablename__ = "ticket_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ticket_id = Column(String(36), ForeignKey("tickets.id"), nullable=False, index=True)
    event_type = Column(SQLEnum(TicketEventType), nullable=False)
    actor_id = Column(String(36), nullable=True)
    at = Column(DateTime, nullable=False, default=utcnow)

    ticket = relationship("Ticket", back_populates="events")

    def __repr__(self):
        return f"<TicketEvent(ticket_id={self.ticket_id}, event_type='{self.event_type}')>"
