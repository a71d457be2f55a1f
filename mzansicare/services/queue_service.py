"""Virtual queue: admission, ranking and status propagation.

All coordination goes through the database. Within one process, writes to a
facility's queue are serialised by a per-facility lock; across processes the
unique ``(facility_id, sequence)`` and ``active_user_id`` constraints and the
status-conditional UPDATEs turn races into ``Conflict`` errors, which get a
single retry against fresh state before surfacing to the caller.

Ticket lifecycle::

    waiting --call--> called --serve--> served
       |                 |
       +-----cancel------+--> cancelled
"""
import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import AsyncIterator, Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from ..core.clock import utcnow
from ..core.errors import (
    Conflict, FailedPrecondition, InvalidArgument, NotFound, PermissionDenied,
    QueueError, Unauthenticated, Unavailable,
)
from ..models.facility import Facility
from ..models.ticket import (
    ACTIVE_STATUSES, TERMINAL_STATUSES, Ticket, TicketEvent, TicketEventType,
    TicketPriority, TicketStatus,
)
from ..models.user import User
from ..schemas.facility import Coordinates, FacilityInfo
from ..schemas.queue import QueueEstimate, TicketResponse
from .facility_directory import FacilityDirectory
from .geofence import LocationResolver, check_geofence
from .notifications import NotificationDispatcher, called_notification
from .positions import OrderingPolicy, compute_eta, fifo_order, recompute_positions
from .updates import TicketUpdateBroker

logger = logging.getLogger(__name__)

_EVENT_FOR_STATUS = {
    TicketStatus.CALLED: TicketEventType.CALLED,
    TicketStatus.SERVED: TicketEventType.SERVED,
    TicketStatus.CANCELLED: TicketEventType.CANCELLED,
}


class FacilityLocks:
    """One re-entrant lock per facility queue."""

    def __init__(self):
        self._locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    @contextmanager
    def hold(self, facility_id: str):
        with self._guard:
            lock = self._locks.setdefault(facility_id, threading.RLock())
        with lock:
            yield


def ticket_snapshot(ticket: Ticket) -> dict:
    return TicketResponse.model_validate(ticket).model_dump(mode="json")


class QueueService:
    def __init__(
        self,
        db: Session,
        directory: FacilityDirectory,
        notifier: Optional[NotificationDispatcher] = None,
        broker: Optional[TicketUpdateBroker] = None,
        locks: Optional[FacilityLocks] = None,
        clock: Callable[[], datetime] = utcnow,
        order: OrderingPolicy = fifo_order,
        avg_service_minutes: float = 6.0,
        geofence_radius_km: float = 25.0,
        location_resolver: Optional[LocationResolver] = None,
        session_factory: Optional[Callable[[], Session]] = None,
    ):
        self.db = db
        self.directory = directory
        self.notifier = notifier
        self.broker = broker
        self.locks = locks or FacilityLocks()
        self.clock = clock
        self.order = order
        self.avg_service_minutes = avg_service_minutes
        self.geofence_radius_km = geofence_radius_km
        self.location_resolver = location_resolver
        self.session_factory = session_factory

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def join(
        self,
        user_id: Optional[str],
        facility_id: Optional[str],
        reason: Optional[str] = None,
        priority: TicketPriority = TicketPriority.NORMAL,
        coords: Optional[Coordinates] = None,
        client_ip: Optional[str] = None,
    ) -> Tuple[Ticket, bool]:
        """Join ``facility_id``'s queue, or return the user's active ticket.

        Returns ``(ticket, created)``. Joining is idempotent: a user who
        already holds a waiting or called ticket anywhere gets that ticket
        back and nothing is written.
        """
        if not user_id:
            raise Unauthenticated()
        facility_id = (facility_id or "").strip()
        if not facility_id:
            raise InvalidArgument("facility_id is required")

        existing = self._read(lambda: self._active_ticket_for(user_id))
        if existing is not None:
            logger.info(f"User {user_id} already holds ticket {existing.id}; returning it")
            return existing, False

        facility = self.directory.get(self.db, facility_id)
        if facility.coordinates is not None:
            caller = coords
            if caller is None and self.location_resolver is not None:
                caller = self.location_resolver.resolve(client_ip)
            check_geofence(facility.coordinates, caller, self.geofence_radius_km, facility.name)

        with self.locks.hold(facility_id):
            ticket, created, changed = self._with_retry(
                lambda: self._admit(user_id, facility, reason, priority)
            )

        if created:
            logger.info(f"Ticket {ticket.id} joined {facility_id} at position {ticket.position}")
            self._publish(changed)
        return ticket, created

    def _admit(
        self,
        user_id: str,
        facility: FacilityInfo,
        reason: Optional[str],
        priority: TicketPriority,
    ) -> Tuple[Ticket, bool, List[Ticket]]:
        with self._store_errors():
            # A racing join for the same user may have landed since the first check
            existing = self._active_ticket_for(user_id)
            if existing is not None:
                return existing, False, []

            # Row lock on the facility serialises admissions across processes
            # where the database supports it
            self.db.query(Facility).filter(Facility.id == facility.id).with_for_update().first()

            last_sequence = self.db.query(func.max(Ticket.sequence)).filter(
                Ticket.facility_id == facility.id
            ).scalar() or 0

            now = self.clock()
            ticket = Ticket(
                facility_id=facility.id,
                user_id=user_id,
                active_user_id=user_id,
                reason=reason or None,
                priority=priority,
                status=TicketStatus.WAITING,
                sequence=last_sequence + 1,
                created_at=now,
                updated_at=now,
            )
            self.db.add(ticket)
            self.db.flush()

            changed = recompute_positions(self.db, facility.id, self._avg_minutes(facility), self.order)
            self.db.add(TicketEvent(ticket_id=ticket.id, event_type=TicketEventType.JOINED,
                                    actor_id=user_id, at=now))
            self.db.commit()

        self.db.refresh(ticket)
        if ticket not in changed:
            changed.append(ticket)
        return ticket, True, changed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_status(self, user_id: Optional[str]) -> Optional[Ticket]:
        """The user's active ticket at any facility, or None."""
        if not user_id:
            raise Unauthenticated()
        return self._read(lambda: self._active_ticket_for(user_id))

    def get_ticket(self, ticket_id: str) -> Ticket:
        return self._read(lambda: self._get(ticket_id))

    def list_queue(self, facility_id: str, include_closed: bool = False) -> List[Ticket]:
        """Operator board: the facility's tickets in admission order."""
        self.directory.get(self.db, facility_id)

        def load():
            query = self.db.query(Ticket).filter(Ticket.facility_id == facility_id)
            if not include_closed:
                query = query.filter(Ticket.status.in_(ACTIVE_STATUSES))
            return query.order_by(Ticket.created_at, Ticket.sequence).all()

        return self._read(load)

    def estimate(self, facility_id: str) -> QueueEstimate:
        """Position and wait a newcomer would get if they joined now."""
        facility = self.directory.get(self.db, facility_id)
        active_count = self._read(lambda: self.db.query(func.count(Ticket.id)).filter(
            Ticket.facility_id == facility_id,
            Ticket.status.in_(ACTIVE_STATUSES),
        ).scalar() or 0)
        avg = self._avg_minutes(facility)
        return QueueEstimate(
            facility_id=facility_id,
            active_count=active_count,
            next_position=active_count + 1,
            eta_minutes=compute_eta(active_count + 1, avg),
            avg_service_minutes=avg,
        )

    # ------------------------------------------------------------------
    # Status propagation
    # ------------------------------------------------------------------

    def call_next(self, facility_id: str, actor_id: Optional[str] = None) -> Optional[Ticket]:
        """Call the first waiting ticket of the facility; None if nobody waits."""
        facility = self.directory.get(self.db, facility_id)

        def attempt():
            self.db.expire_all()
            waiting = self.db.query(Ticket).filter(
                Ticket.facility_id == facility_id,
                Ticket.status == TicketStatus.WAITING,
            ).all()
            if not waiting:
                return None, []
            candidate = min(waiting, key=self.order)
            return self._apply(candidate, TicketStatus.CALLED, actor_id, facility)

        with self.locks.hold(facility_id):
            ticket, changed = self._with_retry(attempt)

        if ticket is None:
            logger.info(f"call_next on {facility_id}: nobody waiting")
            return None
        self._after_transition(ticket, changed, facility)
        return ticket

    def call_by_id(self, ticket_id: str, actor_id: Optional[str] = None) -> Ticket:
        return self._transition(ticket_id, TicketStatus.CALLED, actor_id)

    def mark_served(self, ticket_id: str, actor_id: Optional[str] = None) -> Ticket:
        return self._transition(ticket_id, TicketStatus.SERVED, actor_id)

    def cancel(self, ticket_id: str, actor_id: Optional[str], is_staff: bool = False) -> Ticket:
        """Cancel a ticket as its owner, or as an operator when ``is_staff``."""
        if not actor_id:
            raise Unauthenticated()

        def owner_only(ticket: Ticket) -> None:
            if not is_staff and ticket.user_id != actor_id:
                raise PermissionDenied("You can only cancel your own ticket")

        return self._transition(ticket_id, TicketStatus.CANCELLED, actor_id, check=owner_only)

    def _transition(
        self,
        ticket_id: str,
        target: TicketStatus,
        actor_id: Optional[str],
        check: Optional[Callable[[Ticket], None]] = None,
    ) -> Ticket:
        facility_id = self.get_ticket(ticket_id).facility_id
        facility = self.directory.get(self.db, facility_id)

        def attempt():
            self.db.expire_all()
            ticket = self._get(ticket_id)
            if check is not None:
                check(ticket)
            return self._apply(ticket, target, actor_id, facility)

        with self.locks.hold(facility_id):
            ticket, changed = self._with_retry(attempt)

        self._after_transition(ticket, changed, facility)
        return ticket

    def _apply(
        self,
        ticket: Ticket,
        target: TicketStatus,
        actor_id: Optional[str],
        facility: FacilityInfo,
    ) -> Tuple[Ticket, List[Ticket]]:
        current = TicketStatus(ticket.status)
        allowed_from = {
            TicketStatus.CALLED: (TicketStatus.WAITING,),
            TicketStatus.SERVED: (TicketStatus.CALLED,),
            TicketStatus.CANCELLED: ACTIVE_STATUSES,
        }[target]

        if current in TERMINAL_STATUSES:
            raise FailedPrecondition(
                f"Ticket {ticket.number} is already {current.value}",
                details={"status": current.value},
            )
        if current not in allowed_from:
            raise FailedPrecondition(
                f"Cannot move ticket {ticket.number} from {current.value} to {target.value}",
                details={"status": current.value},
            )

        now = self.clock()
        values = {"status": target, "updated_at": now}
        if target == TicketStatus.CALLED:
            values["called_at"] = now
        elif target == TicketStatus.SERVED:
            values["served_at"] = now
            values["active_user_id"] = None
        else:
            values["cancelled_at"] = now
            values["cancelled_by"] = actor_id
            values["active_user_id"] = None

        with self._store_errors():
            result = self.db.execute(
                update(Ticket)
                .where(Ticket.id == ticket.id, Ticket.status == current)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.db.rollback()
                raise Conflict(f"Ticket {ticket.number} was changed concurrently")

            self.db.add(TicketEvent(ticket_id=ticket.id, event_type=_EVENT_FOR_STATUS[target],
                                    actor_id=actor_id, at=now))
            self.db.expire(ticket)
            changed = []
            if target in TERMINAL_STATUSES:
                changed = recompute_positions(self.db, ticket.facility_id, self._avg_minutes(facility), self.order)
            self.db.commit()

        self.db.refresh(ticket)
        logger.info(f"Ticket {ticket.id} at {ticket.facility_id}: {current.value} -> {target.value}")
        return ticket, changed

    def _after_transition(self, ticket: Ticket, changed: Iterable[Ticket], facility: FacilityInfo) -> None:
        self._publish([ticket, *changed])
        if ticket.status == TicketStatus.CALLED:
            self._notify_called(ticket, facility)

    def _notify_called(self, ticket: Ticket, facility: FacilityInfo) -> None:
        if self.notifier is None:
            return
        try:
            user = self.db.query(User).filter(User.id == ticket.user_id).first()
            push_token = user.push_token if user else None
            self.notifier.dispatch(called_notification(ticket, facility.name, push_token))
        except Exception as e:
            logger.warning(f"Notification for ticket {ticket.id} dropped: {e}")

    # ------------------------------------------------------------------
    # Watching
    # ------------------------------------------------------------------

    def watch(self, ticket_id: str, heartbeat: Optional[float] = None) -> AsyncIterator[Optional[dict]]:
        """Async iterator of the ticket's snapshots; see ``TicketUpdateBroker.watch``."""
        if self.broker is None:
            raise Unavailable("Live updates are not enabled")
        self.get_ticket(ticket_id)

        def load_snapshot() -> dict:
            if self.session_factory is None:
                self.db.expire_all()
                return ticket_snapshot(self._get(ticket_id))
            db = self.session_factory()
            try:
                ticket = db.query(Ticket).filter(Ticket.id == ticket_id).first()
                if ticket is None:
                    raise NotFound(f"Unknown ticket: {ticket_id}")
                return ticket_snapshot(ticket)
            finally:
                db.close()

        return self.broker.watch(ticket_id, load_snapshot, heartbeat)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _avg_minutes(self, facility: FacilityInfo) -> float:
        return facility.avg_service_minutes or self.avg_service_minutes

    def _get(self, ticket_id: str) -> Ticket:
        ticket = self.db.query(Ticket).filter(Ticket.id == ticket_id).first()
        if not ticket:
            raise NotFound(f"Unknown ticket: {ticket_id}")
        return ticket

    def _active_ticket_for(self, user_id: str) -> Optional[Ticket]:
        return self.db.query(Ticket).filter(
            Ticket.user_id == user_id,
            Ticket.status.in_(ACTIVE_STATUSES),
        ).order_by(Ticket.created_at.desc()).first()

    def _publish(self, tickets: Iterable[Ticket]) -> None:
        if self.broker is None:
            return
        for ticket in tickets:
            try:
                self.broker.publish(ticket_snapshot(ticket))
            except Exception as e:
                logger.warning(f"Failed to publish update for ticket {ticket.id}: {e}")

    @contextmanager
    def _store_errors(self):
        try:
            yield
        except IntegrityError as e:
            self.db.rollback()
            raise Conflict("The queue changed while your request was processed") from e
        except OperationalError as e:
            self.db.rollback()
            raise Unavailable("The queue store is unavailable") from e

    def _read(self, load):
        with self._store_errors():
            return self._with_retry(load)

    def _with_retry(self, operation):
        """Run ``operation``, retrying once on a transient store error."""
        try:
            return operation()
        except (Conflict, Unavailable, OperationalError) as e:
            logger.warning(f"Transient queue error ({e}); retrying once")
            self.db.rollback()
        try:
            return operation()
        except OperationalError as e:
            self.db.rollback()
            raise Unavailable("The queue store is unavailable") from e
        except QueueError:
            self.db.rollback()
            raise
