"""Proximity gating for queue admission.

The geofence is an availability-first check: it only rejects when both the
facility's and the caller's coordinates are known and the caller is too far
away. Any missing coordinate, lookup timeout or lookup failure skips it.
"""
import logging
import math
from typing import Optional

import httpx

from ..core.errors import FailedPrecondition
from ..schemas.facility import Coordinates

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0


def haversine_km(a: Coordinates, b: Coordinates) -> float:
    """Great-circle distance between two points in kilometres."""
    d_lat = math.radians(b.lat - a.lat)
    d_lng = math.radians(b.lng - a.lng)
    lat1 = math.radians(a.lat)
    lat2 = math.radians(b.lat)
    x = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lng / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(x))


def check_geofence(
    facility_coords: Optional[Coordinates],
    caller_coords: Optional[Coordinates],
    radius_km: float,
    facility_name: str = "the facility",
) -> Optional[float]:
    """Raise FailedPrecondition when the caller is outside ``radius_km``.

    Returns the measured distance, or None when the check was skipped.
    """
    if facility_coords is None or caller_coords is None:
        return None

    distance = haversine_km(caller_coords, facility_coords)
    if distance > radius_km:
        raise FailedPrecondition(
            f"You need to be within {radius_km:g} km of {facility_name} to join this queue",
            details={"distance_km": round(distance, 1), "radius_km": radius_km},
        )
    return distance


class LocationResolver:
    """Resolves a caller's approximate coordinates from their IP address.

    ``lookup_url`` is a template such as ``https://ipapi.co/{ip}/json/``; the
    response must carry ``latitude``/``longitude`` (or ``lat``/``lon``).
    """

    def __init__(self, lookup_url: Optional[str], timeout: float = 5.0,
                 client: Optional[httpx.Client] = None):
        self.lookup_url = lookup_url
        self.timeout = timeout
        self._client = client

    def resolve(self, client_ip: Optional[str]) -> Optional[Coordinates]:
        if not self.lookup_url or not client_ip:
            return None

        url = self.lookup_url.format(ip=client_ip)
        try:
            if self._client is not None:
                response = self._client.get(url, timeout=self.timeout)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.get(url)
            response.raise_for_status()
            data = response.json()
            if not isinstance(data, dict):
                logger.warning(f"Location lookup returned {type(data).__name__}, not an object; skipping geofence")
                return None
            lat = data.get("latitude", data.get("lat"))
            lng = data.get("longitude", data.get("lon", data.get("lng")))
            if lat is None or lng is None:
                return None
            return Coordinates(lat=float(lat), lng=float(lng))
        except httpx.TimeoutException:
            logger.warning(f"Location lookup timed out after {self.timeout}s; skipping geofence")
        except (httpx.HTTPError, ValueError, TypeError) as e:
            logger.warning(f"Location lookup failed ({e}); skipping geofence")
        return None
