"""Nominatim-backed distance collaborator.

The default distance lookup used by invoice generation. Given the stops of
a route in visiting order it geocodes each address, measures the chain leg
by leg along the geodesic and scales it by a road factor. Address
coordinates and measured chains are kept in the lookup cache
(``database.py``) so repeated routes cost nothing.
"""

import hashlib
import json
import logging
import math
import re
import threading
import time
from typing import Optional

from geopy.distance import geodesic
from geopy.exc import GeocoderServiceError, GeocoderTimedOut
from geopy.geocoders import Nominatim
from sqlalchemy.orm import Session

from .config import NOMINATIM_USER_AGENT
from .database import (
    DatabaseManager,
    GeocodedAddressModel,
    RouteDistanceModel,
    get_database_manager,
)
from .schemas import GeocodingConfidence, GeocodingResult

logger = logging.getLogger(__name__)

# Nominatim usage policy: at most one request per second
NOMINATIM_MIN_INTERVAL = 1.0

_WHITESPACE = re.compile(r"\s+")


def normalize_address(address: str) -> str:
    """Collapse runs of whitespace and drop empty comma-separated parts.

    Args:
        address: Address as typed by the dispatcher.

    Returns:
        Normalized address, e.g. "22 Elm St, Springfield".
    """
    if not address:
        return address
    parts = (_WHITESPACE.sub(" ", part).strip() for part in address.split(","))
    return ", ".join(part for part in parts if part)


def _digest(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:32]


def address_key(address: str) -> str:
    """Cache key of an address, insensitive to case and spacing."""
    return _digest(normalize_address(address).lower())


def route_key(addresses: list[str], road_factor: float = 1.0) -> str:
    """Cache key of a chain of stops measured at a road factor."""
    stops = [normalize_address(address).lower() for address in addresses]
    return _digest(json.dumps({"stops": stops, "road_factor": road_factor}))


class RateLimiter:
    """Keeps successive calls at least ``min_interval`` seconds apart."""

    def __init__(self, min_interval: float = NOMINATIM_MIN_INTERVAL):
        self.min_interval = min_interval
        self._last_call = float("-inf")

    def wait(self) -> None:
        remaining = self.min_interval - (time.monotonic() - self._last_call)
        if remaining > 0:
            time.sleep(remaining)
        self._last_call = time.monotonic()


# ============================================================================
# Cache Access
# ============================================================================


def load_cached_location(session: Session, key: str) -> Optional[GeocodingResult]:
    """Coordinates cached under an address key, if any."""
    row = session.query(GeocodedAddressModel).filter(
        GeocodedAddressModel.address_key == key
    ).first()
    if row is None:
        return None
    return GeocodingResult(
        address_key=row.address_key,
        address=row.address,
        latitude=row.latitude,
        longitude=row.longitude,
        confidence=GeocodingConfidence(row.confidence),
        success=True,
    )


def save_location(session: Session, result: GeocodingResult) -> None:
    """Store a successful geocoding result. Failures are never cached."""
    if not result.success or result.latitude is None or result.longitude is None:
        return
    session.merge(
        GeocodedAddressModel(
            address_key=result.address_key,
            address=result.address,
            latitude=result.latitude,
            longitude=result.longitude,
            confidence=result.confidence.value,
        )
    )
    session.commit()


def load_cached_route(session: Session, key: str) -> Optional[float]:
    row = session.get(RouteDistanceModel, key)
    return row.miles if row is not None else None


def save_route(
    session: Session, key: str, addresses: list[str], miles: float, road_factor: float
) -> None:
    session.merge(
        RouteDistanceModel(
            route_key=key,
            waypoints=json.dumps(addresses),
            stop_count=len(addresses),
            miles=miles,
            road_factor=road_factor,
        )
    )
    session.commit()


# ============================================================================
# Geocoding and Measurement
# ============================================================================


def geocode_with_nominatim(
    address: str,
    geolocator: Nominatim,
    rate_limiter: Optional[RateLimiter] = None,
    region_hint: Optional[str] = None,
) -> GeocodingResult:
    """Look an address up on Nominatim.

    The normalized address is tried first (high confidence); when a region
    hint is given and the first query finds nothing, the address is retried
    with the hint appended (medium confidence). Timeouts and service errors
    produce an unsuccessful result.

    Args:
        address: Address to geocode.
        geolocator: geopy Nominatim geocoder.
        rate_limiter: Spacing between requests.
        region_hint: Region appended on the fallback query, e.g. "Illinois, USA".

    Returns:
        GeocodingResult; ``success`` is False when nothing was found.
    """
    normalized = normalize_address(address)
    queries = [(normalized, GeocodingConfidence.HIGH)]
    if region_hint:
        queries.append((f"{normalized}, {region_hint}", GeocodingConfidence.MEDIUM))

    for query, confidence in queries:
        if rate_limiter is not None:
            rate_limiter.wait()
        try:
            location = geolocator.geocode(query)
        except (GeocoderTimedOut, GeocoderServiceError) as e:
            logger.warning("Geocoding failed for %r: %s", query, e)
            break
        if location is not None:
            return GeocodingResult(
                address_key=address_key(address),
                address=normalized,
                latitude=location.latitude,
                longitude=location.longitude,
                confidence=confidence,
                success=True,
            )

    return GeocodingResult(address_key=address_key(address), address=normalized, success=False)


def leg_miles(
    origin: tuple[float, float], destination: tuple[float, float], road_factor: float = 1.0
) -> float:
    """Geodesic miles between two (lat, lon) points, scaled by a road factor."""
    return geodesic(origin, destination).miles * road_factor


def chain_miles(coordinates: list[tuple[float, float]], road_factor: float = 1.0) -> float:
    """Total miles along a sequence of (lat, lon) points."""
    return math.fsum(
        leg_miles(origin, destination, road_factor)
        for origin, destination in zip(coordinates, coordinates[1:])
    )


class GeocodingDistanceCalculator:
    """Distance-lookup collaborator: addresses in visiting order -> miles.

    Raises ValueError when an address cannot be geocoded; the resolver
    turns that into an unresolved route. Calls are serialized because
    Nominatim allows one request per second and the cache session is
    shared.

    Args:
        db: Lookup cache. Defaults to a fresh in-memory cache.
        road_factor: Multiplier from straight-line to driving distance.
        region_hint: Region appended to addresses that fail to geocode.
        geolocator: Geocoder to use. Defaults to Nominatim.
        rate_limiter: Spacing between geocoder requests.
    """

    def __init__(
        self,
        db: Optional[DatabaseManager] = None,
        road_factor: float = 1.0,
        region_hint: Optional[str] = None,
        geolocator: Optional[Nominatim] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.db = db or get_database_manager()
        self.road_factor = road_factor
        self.region_hint = region_hint
        self.geolocator = geolocator or Nominatim(user_agent=NOMINATIM_USER_AGENT, timeout=10)
        self.rate_limiter = rate_limiter or RateLimiter()
        self._lock = threading.Lock()

    def locate(self, address: str, session: Session) -> GeocodingResult:
        """Coordinates of an address, from the cache or from Nominatim."""
        cached = load_cached_location(session, address_key(address))
        if cached is not None:
            return cached
        result = geocode_with_nominatim(
            address, self.geolocator, self.rate_limiter, self.region_hint
        )
        save_location(session, result)
        return result

    def __call__(self, addresses: list[str]) -> float:
        if len(addresses) < 2:
            raise ValueError("At least two addresses are needed to measure a route")

        key = route_key(addresses, self.road_factor)
        with self._lock, self.db.get_session() as session:
            miles = load_cached_route(session, key)
            if miles is not None:
                return miles

            coordinates = []
            for address in addresses:
                result = self.locate(address, session)
                if not result.success:
                    raise ValueError(f"Could not geocode address: {address}")
                coordinates.append((result.latitude, result.longitude))

            miles = round(chain_miles(coordinates, self.road_factor), 1)
            save_route(session, key, addresses, miles, self.road_factor)
        return miles
