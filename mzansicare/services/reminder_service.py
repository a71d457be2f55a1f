import logging
from datetime import datetime, timedelta
from typing import Callable, List
from zoneinfo import ZoneInfo

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..core.clock import to_facility_time, utcnow
from ..core.config import settings
from ..core.errors import NotFound, PermissionDenied
from ..models.appointment import Appointment
from ..models.reminder import Reminder, ReminderStatus, ReminderType
from ..schemas.reminder import ReminderCreate

logger = logging.getLogger(__name__)


class ReminderService:
    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    def create(self, user_id: str, data: ReminderCreate) -> Reminder:
        """Add a medication or health-tip reminder for the user."""
        scheduled_for = data.scheduled_for
        if scheduled_for.tzinfo is not None:
            scheduled_for = scheduled_for.astimezone(ZoneInfo(settings.FACILITY_TIMEZONE)).replace(tzinfo=None)

        reminder = Reminder(
            user_id=user_id,
            type=ReminderType(data.type),
            title=data.title.strip(),
            message=data.message.strip(),
            scheduled_for=scheduled_for,
        )
        self.db.add(reminder)
        self.db.commit()
        self.db.refresh(reminder)
        return reminder

    def add_for_appointment(self, appointment: Appointment, facility_name: str, hours_before: int = 24) -> Reminder:
        """Stage the reminder for a new booking; committed by the caller."""
        reminder = Reminder(
            user_id=appointment.user_id,
            appointment_id=appointment.id,
            type=ReminderType.APPOINTMENT,
            title="Upcoming Appointment",
            message=(
                f"Remember your appointment at {facility_name} "
                f"tomorrow at {appointment.appointment_date:%H:%M}"
            ),
            scheduled_for=appointment.appointment_date - timedelta(hours=hours_before),
        )
        self.db.add(reminder)
        return reminder

    def cancel_for_appointment(self, appointment_id: str) -> None:
        """Withdraw the pending reminders of a cancelled booking; committed by the caller."""
        self.db.execute(
            update(Reminder)
            .where(Reminder.appointment_id == appointment_id, Reminder.status == ReminderStatus.PENDING)
            .values(status=ReminderStatus.CANCELLED)
            .execution_options(synchronize_session=False)
        )

    def list_for(self, user_id: str, due_only: bool = False) -> List[Reminder]:
        """Pending reminders, soonest first; ``due_only`` keeps those already due."""
        query = self.db.query(Reminder).filter(
            Reminder.user_id == user_id,
            Reminder.status == ReminderStatus.PENDING,
        )
        if due_only:
            query = query.filter(Reminder.scheduled_for <= to_facility_time(self.clock()))
        return query.order_by(Reminder.scheduled_for).all()

    def mark_read(self, reminder_id: str, user_id: str) -> Reminder:
        reminder = self._get(reminder_id)
        if reminder.user_id != user_id:
            raise PermissionDenied("This reminder belongs to another user")
        if not reminder.read:
            reminder.read = True
            self.db.commit()
            self.db.refresh(reminder)
        return reminder

    def mark_all_read(self, user_id: str) -> int:
        result = self.db.execute(
            update(Reminder)
            .where(
                Reminder.user_id == user_id,
                Reminder.status == ReminderStatus.PENDING,
                Reminder.read.is_(False),
            )
            .values(read=True)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        logger.info(f"Marked {result.rowcount} reminder(s) read for {user_id}")
        return result.rowcount

    def _get(self, reminder_id: str) -> Reminder:
        reminder = self.db.query(Reminder).filter(Reminder.id == reminder_id).first()
        if not reminder:
            raise NotFound(f"Unknown reminder: {reminder_id}")
        return reminder
