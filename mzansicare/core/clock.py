from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from .config import settings


def utcnow() -> datetime:
    """Authoritative server time as naive UTC, the form stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_facility_time(at: datetime) -> datetime:
    """Convert naive UTC to the naive wall-clock time facilities keep.

    Opening hours, appointment slots and reminder times are all expressed
    in ``FACILITY_TIMEZONE`` (South African Standard Time by default).
    """
    local = at.replace(tzinfo=timezone.utc).astimezone(ZoneInfo(settings.FACILITY_TIMEZONE))
    return local.replace(tzinfo=None)
