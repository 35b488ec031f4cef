"""Tests for the geocoding distance collaborator and its lookup cache."""

from unittest.mock import MagicMock

import pytest
from geopy.exc import GeocoderTimedOut

from dispatch_invoicing.database import get_database_manager
from dispatch_invoicing.geo import (
    GeocodingDistanceCalculator,
    RateLimiter,
    address_key,
    chain_miles,
    geocode_with_nominatim,
    load_cached_location,
    normalize_address,
    route_key,
    save_location,
)
from dispatch_invoicing.schemas import GeocodingConfidence, GeocodingResult

DEPOT = "100 Main St, Springfield"
STOP = "22 Elm St, Springfield"

COORDINATES = {
    DEPOT: MagicMock(latitude=0.0, longitude=0.0),
    STOP: MagicMock(latitude=0.0, longitude=1.0),
}


@pytest.fixture
def db():
    """In-memory lookup cache."""
    return get_database_manager()


@pytest.fixture
def geolocator():
    """Geocoder that knows DEPOT and STOP only."""
    mock = MagicMock()
    mock.geocode.side_effect = lambda query: COORDINATES.get(query)
    return mock


@pytest.fixture
def calculator(db, geolocator):
    return GeocodingDistanceCalculator(
        db=db, geolocator=geolocator, rate_limiter=RateLimiter(min_interval=0)
    )


def test_normalize_address():
    assert normalize_address("  22  Elm St ,  Springfield, ") == "22 Elm St, Springfield"
    assert normalize_address("A,, B") == "A, B"
    assert normalize_address("") == ""


def test_address_key_ignores_case_and_spacing():
    assert address_key("22 Elm St, Springfield") == address_key("22  ELM st ,Springfield")
    assert address_key("22 Elm St") != address_key("24 Elm St")


def test_route_key_depends_on_order_and_road_factor():
    assert route_key([DEPOT, STOP]) == route_key([DEPOT.upper(), STOP])
    assert route_key([DEPOT, STOP]) != route_key([STOP, DEPOT])
    assert route_key([DEPOT, STOP], 1.0) != route_key([DEPOT, STOP], 1.3)


def test_chain_miles_sums_legs():
    """One degree of longitude at the equator is about 69.2 miles."""
    one_leg = chain_miles([(0.0, 0.0), (0.0, 1.0)])
    there_and_back = chain_miles([(0.0, 0.0), (0.0, 1.0), (0.0, 0.0)])

    assert one_leg == pytest.approx(69.17, rel=1e-2)
    assert there_and_back == pytest.approx(2 * one_leg)
    assert chain_miles([(0.0, 0.0), (0.0, 1.0)], road_factor=1.3) == pytest.approx(one_leg * 1.3)


def test_location_cache_round_trip(db):
    result = GeocodingResult(
        address_key=address_key(DEPOT),
        address=DEPOT,
        latitude=39.78,
        longitude=-89.65,
        confidence=GeocodingConfidence.HIGH,
        success=True,
    )
    with db.get_session() as session:
        save_location(session, result)
        cached = load_cached_location(session, address_key(DEPOT))

    assert cached.latitude == 39.78
    assert db.cache_stats() == {"addresses": 1, "routes": 0}
    assert db.clear_cache() == {"addresses": 1, "routes": 0}
    assert db.cache_stats()["addresses"] == 0


def test_failed_results_not_cached(db):
    with db.get_session() as session:
        save_location(session, GeocodingResult(address_key="abc", address="Nowhere"))
    assert db.cache_stats()["addresses"] == 0


def test_calculator_measures_route(calculator, db):
    """Two stops one degree apart on the equator."""
    miles = calculator([DEPOT, STOP])

    assert miles == pytest.approx(69.2, abs=0.1)
    assert db.cache_stats() == {"addresses": 2, "routes": 1}


def test_calculator_reuses_cached_route(calculator, geolocator):
    """A chain measured once is not geocoded again."""
    first = calculator([DEPOT, STOP])
    calls = geolocator.geocode.call_count

    second = calculator([DEPOT, STOP])

    assert second == first
    assert geolocator.geocode.call_count == calls


def test_calculator_reuses_cached_addresses(calculator, geolocator):
    calculator([DEPOT, STOP])
    calculator([STOP, DEPOT])
    assert geolocator.geocode.call_count == 2


def test_calculator_raises_for_unknown_address(calculator):
    with pytest.raises(ValueError):
        calculator([DEPOT, "1 Nowhere Rd"])


def test_calculator_needs_two_addresses(calculator):
    with pytest.raises(ValueError):
        calculator([DEPOT])


def test_region_hint_fallback():
    """The region hint is tried when the plain address is not found."""
    geolocator = MagicMock()
    geolocator.geocode.side_effect = [None, MagicMock(latitude=39.8, longitude=-89.6)]

    result = geocode_with_nominatim(DEPOT, geolocator, region_hint="Illinois, USA")

    assert result.success is True
    assert result.confidence == GeocodingConfidence.MEDIUM
    geolocator.geocode.assert_called_with(f"{DEPOT}, Illinois, USA")


def test_geocoder_timeout_is_unsuccessful():
    geolocator = MagicMock()
    geolocator.geocode.side_effect = GeocoderTimedOut("timed out")

    result = geocode_with_nominatim(DEPOT, geolocator, region_hint="Illinois, USA")

    assert result.success is False
    assert geolocator.geocode.call_count == 1


def test_rate_limiter_spaces_calls(monkeypatch):
    sleeps = []
    monkeypatch.setattr("dispatch_invoicing.geo.time.sleep", sleeps.append)
    limiter = RateLimiter(min_interval=1.0)

    limiter.wait()
    limiter.wait()

    assert len(sleeps) == 1
    assert 0 < sleeps[0] <= 1.0
