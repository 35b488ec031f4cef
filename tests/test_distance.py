"""Tests for per-route distance resolution."""

from datetime import datetime

import pytest

from dispatch_invoicing.distance import (
    DistanceCache,
    DistanceSource,
    resolve_distance,
    resolve_route_distances,
    route_waypoints,
)
from dispatch_invoicing.exceptions import ValidationError
from dispatch_invoicing.orders import update_order
from dispatch_invoicing.route_organizer import organize_routes, visit_sequence


def test_waypoints_pickup_before_dropoff(make_order):
    """Each order contributes its pickup then its dropoff."""
    route = organize_routes(
        [
            make_order("1", trip_number="TR-100", pickup="Depot", dropoff="Stop 1"),
            make_order("2", trip_number="TR-100", pickup="Warehouse", dropoff="Stop 2"),
        ]
    )[0]
    assert route_waypoints(route) == ["Depot", "Stop 1", "Warehouse", "Stop 2"]


def test_waypoints_collapse_repeated_addresses(make_order):
    """Consecutive repeats of an address are one waypoint."""
    route = organize_routes(
        [
            make_order("1", trip_number="TR-100", pickup="Depot", dropoff="Stop 1"),
            make_order("2", trip_number="TR-100", pickup="stop 1 ", dropoff="Stop 2"),
        ]
    )[0]
    assert route_waypoints(route) == ["Depot", "Stop 1", "Stop 2"]


def test_visit_sequence_follows_timestamps(make_order):
    """Orders are visited in time order when every order has a timestamp."""
    route = organize_routes(
        [
            make_order("late", trip_number="TR-100", ex_ready_time=datetime(2024, 3, 4, 11, 0)),
            make_order("early", trip_number="TR-100", ex_ready_time=datetime(2024, 3, 4, 8, 0)),
        ]
    )[0]
    assert [o.id for o in visit_sequence(route)] == ["early", "late"]


def test_visit_sequence_keeps_input_order_without_timestamps(make_order):
    """Without a timestamp on every order, input order is kept."""
    route = organize_routes(
        [
            make_order("first", trip_number="TR-100", ex_ready_time=datetime(2024, 3, 4, 11, 0)),
            make_order(
                "second", trip_number="TR-100", ex_ready_time=None, ex_delivery_time=None
            ),
        ]
    )[0]
    assert [o.id for o in visit_sequence(route)] == ["first", "second"]


@pytest.mark.asyncio
async def test_known_order_distance_used_for_single_route(make_order, fake_calculator):
    """A single-stop route with a distance on the order needs no lookup."""
    route = organize_routes([make_order("1", estimated_distance=7.5)])[0]

    resolution = await resolve_distance(route, fake_calculator)

    assert resolution.distance == 7.5
    assert resolution.source == DistanceSource.ORDER
    assert fake_calculator.calls == []


@pytest.mark.asyncio
async def test_multi_stop_ignores_order_distances(make_order, fake_calculator):
    """Multi-stop routes are always measured along the whole chain."""
    route = organize_routes(
        [
            make_order("1", trip_number="TR-100", distance=5.0),
            make_order("2", trip_number="TR-100", distance=5.0),
        ]
    )[0]

    resolution = await resolve_distance(route, fake_calculator)

    assert resolution.distance == 12.0
    assert resolution.source == DistanceSource.LOOKUP
    assert len(fake_calculator.calls) == 1


@pytest.mark.asyncio
async def test_sync_calculator_supported(make_order):
    """Plain functions work as distance collaborators."""
    route = organize_routes([make_order("1")])[0]

    resolution = await resolve_distance(route, lambda addresses: 3.25)

    assert resolution.resolved is True
    assert resolution.distance == 3.25


@pytest.mark.asyncio
async def test_invalid_lookup_result_is_unresolved(make_order):
    """Negative or non-numeric results count as a failed lookup."""
    route = organize_routes([make_order("1")])[0]

    negative = await resolve_distance(route, lambda addresses: -4.0)
    garbage = await resolve_distance(route, lambda addresses: "far")

    assert negative.resolved is False
    assert negative.distance == 0.0
    assert garbage.resolved is False
    assert garbage.source == DistanceSource.UNRESOLVED


@pytest.mark.asyncio
async def test_route_without_addresses_is_unresolved(make_order, fake_calculator):
    """A route with fewer than two addresses cannot be measured."""
    route = organize_routes([make_order("1", dropoff="  ")])[0]

    resolution = await resolve_distance(route, fake_calculator)

    assert resolution.resolved is False
    assert "pickup and a dropoff" in resolution.error
    assert fake_calculator.calls == []


@pytest.mark.asyncio
async def test_cache_reused_across_runs(make_order, fake_calculator):
    """Cached route distances are not looked up again."""
    routes = organize_routes(
        [make_order("1", trip_number="TR-100"), make_order("2", trip_number="TR-100")]
    )
    cache = DistanceCache()

    first = await resolve_route_distances(routes, fake_calculator, cache=cache)
    second = await resolve_route_distances(routes, fake_calculator, cache=cache)

    assert len(fake_calculator.calls) == 1
    assert first[0].source == DistanceSource.LOOKUP
    assert second[0].source == DistanceSource.CACHE
    assert second[0].distance == first[0].distance
    assert cache.hits == 1
    assert len(cache) == 1


@pytest.mark.asyncio
async def test_cache_entry_invalidated_by_address_edit(make_order, calculator_factory):
    """Correcting an address on the same orders triggers a fresh lookup."""
    calculator = calculator_factory(distances={"Stop 2": 10.0, "Far Away": 80.0})
    orders = [
        make_order("1", trip_number="TR-100", pickup="Depot", dropoff="Stop 1"),
        make_order("2", trip_number="TR-100", pickup="Depot", dropoff="Stop 2"),
    ]
    cache = DistanceCache()

    first = await resolve_route_distances(organize_routes(orders), calculator, cache=cache)
    orders[1] = update_order(orders[1], dropoff="Far Away")
    second = await resolve_route_distances(organize_routes(orders), calculator, cache=cache)

    assert first[0].distance == 10.0
    assert second[0].distance == 80.0
    assert second[0].source == DistanceSource.LOOKUP
    assert len(calculator.calls) == 2
    assert len(cache) == 2


@pytest.mark.asyncio
async def test_failed_lookup_not_cached(make_order, calculator_factory):
    """Failures are retried on the next run."""
    routes = organize_routes([make_order("1", dropoff="Nowhere")])
    calculator = calculator_factory(fail_for={"Nowhere"})
    cache = DistanceCache()

    await resolve_route_distances(routes, calculator, cache=cache)
    await resolve_route_distances(routes, calculator, cache=cache)

    assert len(calculator.calls) == 2
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_results_match_route_order(make_order, fake_calculator):
    """One resolution per route, in route order."""
    routes = organize_routes([make_order(str(i), trip_number=f"TR-{600 + i}") for i in range(6)])

    results = await resolve_route_distances(routes, fake_calculator, concurrency=4)

    assert [r.route_key for r in results] == [r.route_key for r in routes]


@pytest.mark.asyncio
async def test_wave_callback_called_per_wave(make_order, fake_calculator):
    """on_wave_complete fires after each wave with the running count."""
    routes = organize_routes([make_order(str(i), trip_number=f"TR-{600 + i}") for i in range(5)])
    waves = []

    await resolve_route_distances(
        routes, fake_calculator, concurrency=2, on_wave_complete=lambda c, t: waves.append(c)
    )

    assert waves == [2, 4, 5]


@pytest.mark.asyncio
async def test_invalid_concurrency_rejected(fake_calculator):
    """Concurrency below one is a validation error."""
    with pytest.raises(ValidationError):
        await resolve_route_distances([], fake_calculator, concurrency=0)
