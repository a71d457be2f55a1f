"""Facility appointment booking on a fixed half-hour slot grid.

Slots are facility-local wall-clock times. An appointment holds its slot
through the unique ``slot_key`` column until it is cancelled, so two
concurrent bookings for the same slot cannot both commit.
"""
import logging
import uuid
from datetime import date, datetime, time, timedelta
from typing import Callable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.clock import to_facility_time, utcnow
from ..core.errors import FailedPrecondition, InvalidArgument, NotFound, PermissionDenied
from ..models.appointment import BOOKED_STATUSES, Appointment, AppointmentStatus
from ..models.facility import Facility
from ..schemas.appointment import AppointmentCreate, SlotAvailability
from .reminder_service import ReminderService

logger = logging.getLogger(__name__)

SLOT_TIMES = [
    "08:00", "08:30", "09:00", "09:30", "10:00", "10:30", "11:00", "11:30",
    "13:00", "13:30", "14:00", "14:30", "15:00", "15:30",
]
SLOT_MINUTES = 30

SLOT_TAKEN_MESSAGE = "That time was just booked. Please choose another time."


def slot_key(facility_id: str, start: datetime) -> str:
    return f"{facility_id}@{start:%Y-%m-%dT%H:%M}"


class AppointmentService:
    def __init__(
        self,
        db: Session,
        reminders: Optional[ReminderService] = None,
        clock: Callable[[], datetime] = utcnow,
        booking_days: int = 92,
        reminder_hours: int = 24,
    ):
        self.db = db
        self.clock = clock
        self.reminders = reminders or ReminderService(db, clock=clock)
        self.booking_days = booking_days
        self.reminder_hours = reminder_hours

    def available_slots(self, facility_id: str, day: date) -> List[SlotAvailability]:
        self._facility(facility_id)
        taken = {
            start.strftime("%H:%M")
            for (start,) in self.db.query(Appointment.appointment_date).filter(
                Appointment.facility_id == facility_id,
                Appointment.status.in_(BOOKED_STATUSES),
                Appointment.appointment_date >= datetime.combine(day, time.min),
                Appointment.appointment_date < datetime.combine(day + timedelta(days=1), time.min),
            )
        }
        return [SlotAvailability(time=t, available=t not in taken) for t in SLOT_TIMES]

    def book(self, user_id: str, data: AppointmentCreate) -> Appointment:
        """Book a slot and stage its reminder in the same transaction."""
        facility = self._facility(data.facility_id)
        if data.time not in SLOT_TIMES:
            raise InvalidArgument(
                f"{data.time} is not a bookable time",
                details={"slots": SLOT_TIMES},
            )

        start = datetime.combine(data.date, time.fromisoformat(data.time))
        now = to_facility_time(self.clock())
        if start <= now:
            raise InvalidArgument("Appointments must be booked for a future time")
        if data.date > now.date() + timedelta(days=self.booking_days):
            raise InvalidArgument(f"Appointments can be booked at most {self.booking_days} days ahead")

        key = slot_key(facility.id, start)
        if self.db.query(Appointment.id).filter(Appointment.slot_key == key).first():
            raise FailedPrecondition(SLOT_TAKEN_MESSAGE)

        appointment = Appointment(
            id=str(uuid.uuid4()),
            user_id=user_id,
            facility_id=facility.id,
            appointment_date=start,
            end_time=start + timedelta(minutes=SLOT_MINUTES),
            status=AppointmentStatus.PENDING,
            reason=(data.reason or "").strip() or None,
            slot_key=key,
        )
        try:
            self.db.add(appointment)
            self.db.flush()
            self.reminders.add_for_appointment(appointment, facility.name, self.reminder_hours)
            self.db.commit()
        except IntegrityError:
            # Lost the race for the slot to a concurrent booking
            self.db.rollback()
            raise FailedPrecondition(SLOT_TAKEN_MESSAGE)

        self.db.refresh(appointment)
        logger.info(f"Appointment {appointment.id} booked at {facility.id} for {start:%Y-%m-%d %H:%M}")
        return appointment

    def list_for(self, user_id: str, include_cancelled: bool = False) -> List[Appointment]:
        query = self.db.query(Appointment).filter(Appointment.user_id == user_id)
        if not include_cancelled:
            query = query.filter(Appointment.status != AppointmentStatus.CANCELLED)
        return query.order_by(Appointment.appointment_date).all()

    def cancel(
        self,
        appointment_id: str,
        actor_id: str,
        is_staff: bool = False,
        reason: Optional[str] = None,
    ) -> Appointment:
        """Cancel a booked appointment, freeing its slot and withdrawing its reminders."""
        appointment = self._get(appointment_id)
        if appointment.user_id != actor_id and not is_staff:
            raise PermissionDenied("This appointment belongs to another patient")
        if appointment.status not in BOOKED_STATUSES:
            raise FailedPrecondition(
                f"Appointment is already {appointment.status.value}",
                details={"status": appointment.status.value},
            )

        now = self.clock()
        appointment.status = AppointmentStatus.CANCELLED
        appointment.slot_key = None
        appointment.cancelled_at = now
        appointment.cancelled_by = actor_id
        appointment.cancelled_reason = (reason or "").strip() or None
        appointment.updated_at = now
        self.reminders.cancel_for_appointment(appointment.id)
        self.db.commit()
        self.db.refresh(appointment)
        logger.info(f"Appointment {appointment.id} cancelled by {actor_id}")
        return appointment

    def confirm(self, appointment_id: str) -> Appointment:
        appointment = self._get(appointment_id)
        if appointment.status != AppointmentStatus.PENDING:
            raise FailedPrecondition(
                f"Only pending appointments can be confirmed; this one is {appointment.status.value}",
                details={"status": appointment.status.value},
            )

        now = self.clock()
        appointment.status = AppointmentStatus.CONFIRMED
        appointment.confirmed_at = now
        appointment.updated_at = now
        self.db.commit()
        self.db.refresh(appointment)
        return appointment

    def _facility(self, facility_id: str) -> Facility:
        facility = self.db.get(Facility, facility_id)
        if facility is None:
            raise NotFound(f"Unknown facility: {facility_id}")
        return facility

    def _get(self, appointment_id: str) -> Appointment:
        appointment = self.db.get(Appointment, appointment_id)
        if appointment is None:
            raise NotFound(f"Unknown appointment: {appointment_id}")
        return appointment
