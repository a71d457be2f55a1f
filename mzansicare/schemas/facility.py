"""Facility records.

Facility data arrives in several shapes (seed lists, admin edits, cached
JSON): coordinates may be nested under ``location`` or given flat as
``lat``/``lng``, and hours or services may be missing altogether.
``FacilityInfo`` is the single normalised form with explicit defaults.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..models.facility import FacilityKind

Hours = Dict[str, List[List[str]]]


class Coordinates(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


def _normalise_location(data: Any) -> Any:
    if not isinstance(data, dict):
        return data
    data = dict(data)
    if data.get("coordinates") is None:
        location = data.pop("location", None) or {}
        lat = location.get("lat", data.pop("lat", data.pop("latitude", None)))
        lng = location.get("lng", data.pop("lng", data.pop("longitude", None)))
        if isinstance(lat, (int, float)) and isinstance(lng, (int, float)):
            data["coordinates"] = {"lat": lat, "lng": lng}
    return data


class FacilityInfo(BaseModel):
    id: str
    name: str = ""
    kind: FacilityKind = FacilityKind.CLINIC
    address: str = ""
    phone: str = ""
    coordinates: Optional[Coordinates] = None
    services: List[str] = Field(default_factory=list)
    hours: Optional[Hours] = None
    avg_service_minutes: Optional[float] = Field(default=None, gt=0)

    @model_validator(mode="before")
    @classmethod
    def normalise(cls, data: Any) -> Any:
        data = _normalise_location(data)
        if isinstance(data, dict) and not data.get("name"):
            data["name"] = data.get("id", "")
        return data

    @classmethod
    def from_model(cls, facility) -> "FacilityInfo":
        return cls(
            id=facility.id,
            name=facility.name,
            kind=facility.kind,
            address=facility.address or "",
            phone=facility.phone or "",
            lat=facility.latitude,
            lng=facility.longitude,
            services=list(facility.services or []),
            hours=facility.hours,
            avg_service_minutes=facility.avg_service_minutes,
        )


class FacilityUpsert(BaseModel):
    name: Optional[str] = None
    kind: FacilityKind = FacilityKind.CLINIC
    address: str = ""
    phone: str = ""
    coordinates: Optional[Coordinates] = None
    services: List[str] = Field(default_factory=list)
    hours: Optional[Hours] = None
    avg_service_minutes: Optional[float] = Field(default=None, gt=0)

    @model_validator(mode="before")
    @classmethod
    def normalise(cls, data: Any) -> Any:
        return _normalise_location(data)


class FacilityResponse(FacilityInfo):
    model_config = ConfigDict(from_attributes=True)

    open_now: bool = False
    distance_km: Optional[float] = None
