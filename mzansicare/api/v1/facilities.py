from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...api.deps import get_admin_user, get_facility_directory
from ...core.clock import to_facility_time, utcnow
from ...core.database import get_db
from ...core.errors import InvalidArgument
from ...models.facility import FacilityKind
from ...models.user import User
from ...schemas.facility import Coordinates, FacilityInfo, FacilityResponse, FacilityUpsert
from ...services.facility_directory import FacilityDirectory, is_open_at

router = APIRouter(prefix="/facilities", tags=["Facilities"])

@router.get("", response_model=List[FacilityResponse])
async def list_facilities(
    kind: Optional[FacilityKind] = None,
    lat: Optional[float] = Query(default=None, ge=-90, le=90),
    lng: Optional[float] = Query(default=None, ge=-180, le=180),
    open_only: bool = False,
    db: Session = Depends(get_db),
    directory: FacilityDirectory = Depends(get_facility_directory)
):
    """Clinics and hospitals, nearest first when a location is given."""
    if (lat is None) != (lng is None):
        raise InvalidArgument("lat and lng must be given together")
    near = Coordinates(lat=lat, lng=lng) if lat is not None else None
    return directory.list_facilities(db, to_facility_time(utcnow()), kind=kind, near=near, open_only=open_only)

@router.get("/{facility_id}", response_model=FacilityResponse)
async def get_facility(
    facility_id: str,
    db: Session = Depends(get_db),
    directory: FacilityDirectory = Depends(get_facility_directory)
):
    info = directory.get(db, facility_id)
    return FacilityResponse(**info.model_dump(), open_now=is_open_at(info.hours, to_facility_time(utcnow())))

@router.put("/{facility_id}", response_model=FacilityInfo)
async def upsert_facility(
    facility_id: str,
    data: FacilityUpsert,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
    directory: FacilityDirectory = Depends(get_facility_directory)
):
    """Create or update a facility record (admin only)."""
    return directory.upsert(db, facility_id, data)
