from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import List, Optional

from ..core.config import settings
from ..core.database import SessionLocal, get_db, get_redis
from ..core.errors import PermissionDenied, Unauthenticated
from ..core.security import STAFF_ROLES, TokenPayload, UserRole, security, verify_token
from ..models.user import User
from ..services.appointment_service import AppointmentService
from ..services.facility_directory import FacilityCache, FacilityDirectory
from ..services.geofence import LocationResolver
from ..services.notifications import NotificationDispatcher
from ..services.positions import get_ordering_policy
from ..services.queue_service import FacilityLocks, QueueService
from ..services.reminder_service import ReminderService
from ..services.updates import TicketUpdateBroker

# Process-wide coordination objects shared by every request
facility_locks = FacilityLocks()
update_broker = TicketUpdateBroker(get_redis())

async def get_current_user_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> TokenPayload:
    """Extract and verify JWT token from Authorization header."""
    if credentials is None:
        raise Unauthenticated()

    token_payload = verify_token(credentials.credentials)
    if not token_payload:
        raise Unauthenticated("Invalid or expired token")

    if token_payload.token_type != "access":
        raise Unauthenticated("Invalid token type")

    return token_payload

async def get_current_user(
    token_payload: TokenPayload = Depends(get_current_user_token),
    db: Session = Depends(get_db)
) -> User:
    """Get current authenticated user from database."""
    if not token_payload.sub:
        raise Unauthenticated("Invalid token payload")

    user = db.query(User).filter(User.id == token_payload.sub).first()
    if not user:
        raise Unauthenticated("User not found")

    if not user.is_active:
        raise Unauthenticated("User account is deactivated")

    return user

# Role-based access control dependencies
def require_role(allowed_roles: List[UserRole]):
    """Create a dependency that requires specific user roles."""
    async def role_checker(
        current_user: User = Depends(get_current_user)
    ) -> User:
        if current_user.role not in allowed_roles:
            raise PermissionDenied(
                f"Access denied. Required roles: {[role.value for role in allowed_roles]}"
            )
        return current_user

    return role_checker

async def get_admin_user(
    current_user: User = Depends(require_role([UserRole.ADMIN]))
) -> User:
    """Require admin role."""
    return current_user

async def get_operator_user(
    current_user: User = Depends(require_role(list(STAFF_ROLES)))
) -> User:
    """Require operator or admin role."""
    return current_user

def is_staff(user: User) -> bool:
    return user.role in STAFF_ROLES

# Queue collaborators
def get_facility_directory(redis_client=Depends(get_redis)) -> FacilityDirectory:
    return FacilityDirectory(FacilityCache(redis_client, settings.FACILITY_CACHE_TTL_SECONDS))

def get_notifier(redis_client=Depends(get_redis)) -> NotificationDispatcher:
    return NotificationDispatcher(
        redis_client,
        webhook_url=settings.NOTIFICATION_WEBHOOK_URL,
        timeout=settings.NOTIFICATION_TIMEOUT_SECONDS,
    )

def get_queue_service(
    db: Session = Depends(get_db),
    directory: FacilityDirectory = Depends(get_facility_directory),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> QueueService:
    return QueueService(
        db,
        directory,
        notifier=notifier,
        broker=update_broker,
        locks=facility_locks,
        order=get_ordering_policy(settings.QUEUE_ORDERING),
        avg_service_minutes=settings.AVG_SERVICE_MINUTES,
        geofence_radius_km=settings.GEOFENCE_RADIUS_KM,
        location_resolver=LocationResolver(
            settings.LOCATION_LOOKUP_URL,
            timeout=settings.LOCATION_TIMEOUT_SECONDS,
        ),
        session_factory=SessionLocal,
    )

# Appointments and reminders
def get_reminder_service(db: Session = Depends(get_db)) -> ReminderService:
    return ReminderService(db)

def get_appointment_service(
    db: Session = Depends(get_db),
    reminders: ReminderService = Depends(get_reminder_service),
) -> AppointmentService:
    return AppointmentService(
        db,
        reminders=reminders,
        booking_days=settings.APPOINTMENT_BOOKING_DAYS,
        reminder_hours=settings.APPOINTMENT_REMINDER_HOURS,
    )
