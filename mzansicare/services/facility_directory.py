"""Read-only facility reference data with a read-through Redis cache."""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.errors import InvalidArgument, NotFound
from ..models.facility import Facility, FacilityKind
from ..schemas.facility import Coordinates, FacilityInfo, FacilityResponse, FacilityUpsert
from .geofence import haversine_km

logger = logging.getLogger(__name__)

DAY_KEYS = ["mon", "tue", "wed", "thu", "fri", "sat", "sun"]

_CLINIC_HOURS = {
    "mon": [["08:00", "17:00"]], "tue": [["08:00", "17:00"]], "wed": [["08:00", "17:00"]],
    "thu": [["08:00", "17:00"]], "fri": [["08:00", "17:00"]], "sat": [["08:00", "12:00"]], "sun": [],
}
_ALWAYS_OPEN = {day: [["00:00", "23:59"]] for day in DAY_KEYS}

DEFAULT_FACILITIES = [
    {"id": "jhb-central", "name": "Johannesburg Central Clinic", "address": "Downtown Johannesburg",
     "phone": "+27 11 123 4567", "lat": -26.2041, "lng": 28.0473,
     "services": ["Primary Care", "Pharmacy", "Immunization"], "hours": _CLINIC_HOURS},
    {"id": "cpt-health", "name": "Cape Town Health Center", "address": "Cape Town CBD",
     "phone": "+27 21 456 7890", "lat": -33.9249, "lng": 18.4241,
     "services": ["Primary Care", "HIV Clinic", "Maternity"],
     "hours": dict(_CLINIC_HOURS, fri=[["08:00", "16:00"]])},
    {"id": "dbn-medical", "name": "Durban Medical Clinic", "address": "Durban Central",
     "phone": "+27 31 321 6543", "lat": -29.8587, "lng": 31.0218,
     "services": ["Primary Care", "Dental", "Immunization"], "hours": dict(_CLINIC_HOURS, sat=[])},
    {"id": "pretoria-general", "kind": "hospital", "name": "Pretoria General Hospital", "address": "Pretoria",
     "phone": "+27 12 555 0000", "lat": -25.7479, "lng": 28.2293,
     "services": ["Emergency", "Primary Care", "Pharmacy"],
     "hours": dict({day: [["07:00", "19:00"]] for day in DAY_KEYS[:5]},
                   sat=[["08:00", "14:00"]], sun=[["09:00", "13:00"]])},
    {"id": "soweto-clinic", "name": "Soweto Community Clinic", "address": "Soweto",
     "phone": "+27 10 987 1234", "lat": -26.2678, "lng": 27.8585,
     "services": ["Primary Care", "Child Health", "Family Planning"], "hours": _CLINIC_HOURS},
    {"id": "charlotte-maxeke", "kind": "hospital", "name": "Charlotte Maxeke Johannesburg Academic Hospital",
     "address": "Parktown, Johannesburg", "phone": "+27 11 488 4911", "lat": -26.1887, "lng": 28.0473,
     "services": ["Emergency", "Cardiology", "Oncology"], "hours": _ALWAYS_OPEN},
    {"id": "baragwanath", "kind": "hospital", "name": "Chris Hani Baragwanath Hospital", "address": "Soweto",
     "phone": "+27 11 933 8000", "lat": -26.2637, "lng": 27.9361,
     "services": ["Emergency", "Surgery", "Maternity"], "hours": _ALWAYS_OPEN},
    {"id": "groote-schuur", "kind": "hospital", "name": "Groote Schuur Hospital", "address": "Observatory, Cape Town",
     "phone": "+27 21 404 9111", "lat": -33.9495, "lng": 18.4655,
     "services": ["Emergency", "Trauma", "Surgery"], "hours": _ALWAYS_OPEN},
    {"id": "steve-biko", "kind": "hospital", "name": "Steve Biko Academic Hospital", "address": "Pretoria",
     "phone": "+27 12 354 1000", "lat": -25.7390, "lng": 28.2053,
     "services": ["Emergency", "ICU", "Surgery"], "hours": _ALWAYS_OPEN},
    {"id": "king-edward", "kind": "hospital", "name": "King Edward VIII Hospital", "address": "Durban",
     "phone": "+27 31 360 3111", "lat": -29.8717, "lng": 31.0006,
     "services": ["Emergency", "Maternity", "Surgery"], "hours": _ALWAYS_OPEN},
]


def _to_minutes(hhmm: str) -> int:
    hours, _, minutes = str(hhmm or "").partition(":")
    return int(hours or 0) * 60 + int(minutes or 0)


def _is_open_fallback(at: datetime) -> bool:
    weekday = at.weekday()
    if weekday == 6:
        return False
    if weekday == 5:
        return 8 <= at.hour < 12
    return 8 <= at.hour < 17


def is_open_at(hours: Optional[dict], at: datetime) -> bool:
    """Whether any opening span of ``at``'s weekday contains ``at``.

    ``at`` is facility-local wall-clock time (see ``to_facility_time``);
    hours are never compared against UTC. Facilities without hours follow the default schedule: weekdays
    08:00-17:00, Saturday 08:00-12:00, closed on Sunday.
    """
    if not hours:
        return _is_open_fallback(at)
    spans = hours.get(DAY_KEYS[at.weekday()]) or []
    now = at.hour * 60 + at.minute
    try:
        return any(_to_minutes(start) <= now < _to_minutes(end) for start, end in spans)
    except ValueError:
        logger.warning(f"Malformed opening hours {spans!r}; using default schedule")
        return _is_open_fallback(at)


class FacilityCache:
    """Redis-backed cache of normalised facility records."""

    KEY_PREFIX = "mzansicare:facility:"

    def __init__(self, redis_client, ttl_seconds: int = 300):
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds

    def _key(self, facility_id: str) -> str:
        return f"{self.KEY_PREFIX}{facility_id}"

    def get(self, facility_id: str) -> Optional[FacilityInfo]:
        try:
            cached = self.redis.get(self._key(facility_id))
        except Exception as e:
            logger.warning(f"Facility cache read failed: {e}")
            return None
        if not cached:
            return None
        try:
            return FacilityInfo.model_validate_json(cached)
        except ValueError:
            self.invalidate(facility_id)
            return None

    def set(self, info: FacilityInfo) -> None:
        if self.ttl_seconds <= 0:
            return
        try:
            self.redis.setex(self._key(info.id), self.ttl_seconds, info.model_dump_json())
        except Exception as e:
            logger.warning(f"Facility cache write failed: {e}")

    def invalidate(self, facility_id: str) -> None:
        try:
            self.redis.delete(self._key(facility_id))
        except Exception as e:
            logger.warning(f"Facility cache invalidation failed: {e}")


class FacilityDirectory:
    def __init__(self, cache: Optional[FacilityCache] = None):
        self.cache = cache

    def get(self, db: Session, facility_id: str) -> FacilityInfo:
        """Look up one facility, raising NotFound for unknown ids."""
        if self.cache is not None:
            cached = self.cache.get(facility_id)
            if cached is not None:
                return cached

        facility = db.query(Facility).filter(Facility.id == facility_id).first()
        if not facility:
            raise NotFound(f"Unknown facility: {facility_id}")

        info = FacilityInfo.from_model(facility)
        if self.cache is not None:
            self.cache.set(info)
        return info

    def list_facilities(
        self,
        db: Session,
        at: datetime,
        kind: Optional[FacilityKind] = None,
        near: Optional[Coordinates] = None,
        open_only: bool = False,
    ) -> List[FacilityResponse]:
        query = db.query(Facility)
        if kind is not None:
            query = query.filter(Facility.kind == kind)

        results = []
        for facility in query.order_by(Facility.name).all():
            info = FacilityInfo.from_model(facility)
            distance = None
            if near is not None and info.coordinates is not None:
                distance = round(haversine_km(near, info.coordinates), 2)
            results.append(FacilityResponse(
                **info.model_dump(),
                open_now=is_open_at(info.hours, at),
                distance_km=distance,
            ))

        if open_only:
            results = [r for r in results if r.open_now]
        if near is not None:
            # Nearest first; facilities without coordinates go last
            results.sort(key=lambda r: (r.distance_km is None, r.distance_km or 0.0))
        return results

    def upsert(self, db: Session, facility_id: str, data: FacilityUpsert) -> FacilityInfo:
        facility_id = (facility_id or "").strip()
        if not facility_id:
            raise InvalidArgument("facility id is required")

        facility = db.query(Facility).filter(Facility.id == facility_id).first()
        if facility is None:
            facility = Facility(id=facility_id)
            db.add(facility)

        facility.name = data.name or facility_id
        facility.kind = data.kind
        facility.address = data.address
        facility.phone = data.phone
        facility.latitude = data.coordinates.lat if data.coordinates else None
        facility.longitude = data.coordinates.lng if data.coordinates else None
        facility.services = list(data.services)
        facility.hours = data.hours
        facility.avg_service_minutes = data.avg_service_minutes
        db.commit()
        db.refresh(facility)

        if self.cache is not None:
            self.cache.invalidate(facility_id)
        logger.info(f"Facility {facility_id} saved")
        return FacilityInfo.from_model(facility)


def seed_facilities(db: Session) -> int:
    """Insert the default South African facilities into an empty table."""
    if db.query(Facility).first() is not None:
        return 0

    for record in DEFAULT_FACILITIES:
        info = FacilityInfo.model_validate(record)
        db.add(Facility(
            id=info.id,
            name=info.name,
            kind=info.kind,
            address=info.address,
            phone=info.phone,
            latitude=info.coordinates.lat if info.coordinates else None,
            longitude=info.coordinates.lng if info.coordinates else None,
            services=info.services,
            hours=info.hours,
        ))
    db.commit()
    return len(DEFAULT_FACILITIES)
