"""Tests for trip grouping and trip-number noise handling."""

import pytest

from dispatch_invoicing.config import NoiseTripConfig
from dispatch_invoicing.route_organizer import (
    TripNumberStatus,
    classify_trip_number,
    flatten_routes,
    group_by_trip,
    is_noise_trip_number,
    multi_stop_route_count,
    organize_routes,
    remove_orders_with_missing_trip_numbers,
    remove_orders_with_noise_trips,
)
from dispatch_invoicing.schemas import RouteType


def test_orders_grouped_by_trip_number(scenario_orders):
    """Orders sharing a trip number form one multi-stop route."""
    routes = organize_routes(scenario_orders)

    assert [r.route_key for r in routes] == ["TR-100", "TR-201", "TR-202", "TR-203"]
    assert routes[0].route_type == RouteType.MULTI_STOP
    assert routes[0].stops == 2
    assert routes[0].order_ids == ["A1", "A2"]
    assert all(r.route_type == RouteType.SINGLE for r in routes[1:])


def test_groups_keep_input_order(make_order):
    """Groups appear in first-seen order and keep relative order inside."""
    orders = [
        make_order("1", trip_number="TR-200"),
        make_order("2", trip_number="TR-100"),
        make_order("3", trip_number="TR-200"),
        make_order("4"),
        make_order("5", trip_number="TR-100"),
    ]
    groups = group_by_trip(orders)

    assert list(groups) == ["TR-200", "TR-100", "order-4"]
    assert [o.id for o in groups["TR-200"]] == ["1", "3"]
    assert [o.id for o in groups["TR-100"]] == ["2", "5"]


def test_grouping_is_idempotent(make_order):
    """Grouping the flattened grouping yields the same grouping."""
    orders = [
        make_order("1", trip_number="TR-200"),
        make_order("2"),
        make_order("3", trip_number="TR-200"),
        make_order("4", trip_number="TEST"),
        make_order("5", trip_number="TR-300"),
    ]
    once = group_by_trip(orders)
    twice = group_by_trip(flatten_routes(once))

    assert list(once) == list(twice)
    assert {k: [o.id for o in v] for k, v in once.items()} == {
        k: [o.id for o in v] for k, v in twice.items()
    }


def test_trip_number_whitespace_ignored(make_order):
    """Surrounding whitespace does not split a trip."""
    routes = organize_routes(
        [make_order("1", trip_number="TR-100"), make_order("2", trip_number=" TR-100 ")]
    )
    assert len(routes) == 1
    assert routes[0].stops == 2


def test_orders_without_trip_number_are_single_routes(make_order):
    """Missing trip numbers give each order its own synthetic route."""
    routes = organize_routes([make_order("1"), make_order("2", trip_number="  ")])

    assert [r.route_key for r in routes] == ["order-1", "order-2"]
    assert all(r.trip_number is None for r in routes)
    assert all(r.stops == 1 for r in routes)


def test_trip_number_spelled_like_synthetic_key_stays_separate(make_order):
    """A trip literally named order-2 does not absorb untracked order 2."""
    orders = [
        make_order("1", trip_number="order-2"),
        make_order("2"),
        make_order("3", trip_number="order-2"),
    ]
    routes = organize_routes(orders)

    assert [r.order_ids for r in routes] == [["1", "3"], ["2"]]
    assert routes[0].trip_number == "order-2"
    assert routes[1].trip_number is None
    assert len(group_by_trip(orders)) == 2


def test_route_driver_is_first_assigned(make_order):
    """The route driver is the first order with a driver."""
    routes = organize_routes(
        [make_order("1", trip_number="TR-100", driver=""), make_order("2", trip_number="TR-100")]
    )
    assert routes[0].driver == "Alice"


def test_multi_stop_route_count(scenario_orders):
    assert multi_stop_route_count(scenario_orders) == 1


@pytest.mark.parametrize(
    "value",
    ["test", "TEST", "Test-123", "N/A", "tbd", "-", "0", "0000", "111", "999999", "123", "123456"],
)
def test_noise_trip_numbers(value):
    """Placeholder and test values are noise."""
    assert is_noise_trip_number(value) is True


@pytest.mark.parametrize("value", [None, "", "   ", "TR-1", "TR-100", "AB 12345", "48213", "ZX-9081"])
def test_not_noise_trip_numbers(value):
    """Missing values and real-looking trip numbers are not noise."""
    assert is_noise_trip_number(value) is False


def test_expected_format_makes_other_values_noise():
    """With an expected format configured, anything else is noise."""
    config = NoiseTripConfig(expected_format=r"TR-\d+")
    assert is_noise_trip_number("TR-100", config) is False
    assert is_noise_trip_number("ZX-100", config) is True


def test_classify_trip_number():
    assert classify_trip_number(None) == TripNumberStatus.MISSING
    assert classify_trip_number("N/A") == TripNumberStatus.NOISE
    assert classify_trip_number("TR-1") == TripNumberStatus.NEEDS_VERIFICATION
    assert classify_trip_number("TR-100") == TripNumberStatus.VALID


def test_remove_noise_trips_counts_removed(make_order):
    """Two of four orders carry noise trip numbers."""
    orders = [
        make_order("1", trip_number="TEST"),
        make_order("2", trip_number="TR-100"),
        make_order("3", trip_number="0000"),
        make_order("4", trip_number="TR-200"),
    ]
    result = remove_orders_with_noise_trips(orders)

    assert result.removed_count == 2
    assert result.removed_ids == ["1", "3"]
    assert [o.id for o in result.orders] == ["2", "4"]


def test_remove_placeholder_trips_from_mixed_list(make_order):
    """TR-1, TR-1, test, n/a keeps the two TR-1 orders."""
    orders = [
        make_order(str(i), trip_number=trip)
        for i, trip in enumerate(["TR-1", "TR-1", "test", "n/a"], start=1)
    ]
    result = remove_orders_with_noise_trips(orders)

    assert len(result.orders) == 2
    assert result.removed_count == 2
    assert [o.trip_number for o in result.orders] == ["TR-1", "TR-1"]


def test_remove_noise_trips_keeps_missing(make_order):
    """Orders without a trip number are not noise."""
    result = remove_orders_with_noise_trips([make_order("1"), make_order("2", trip_number="TR-1")])
    assert result.removed_count == 0


def test_remove_missing_trip_numbers(make_order):
    """Only empty or whitespace trip numbers are removed."""
    orders = [
        make_order("1"),
        make_order("2", trip_number="TR-100"),
        make_order("3", trip_number=" "),
    ]
    result = remove_orders_with_missing_trip_numbers(orders)

    assert result.removed_count == 2
    assert [o.id for o in result.orders] == ["2"]


def test_noise_trip_orders_routed_individually(make_order):
    """Orders sharing a noise trip number are not grouped."""
    routes = organize_routes(
        [make_order("1", trip_number="N/A"), make_order("2", trip_number="N/A")]
    )
    assert [r.route_key for r in routes] == ["order-1", "order-2"]
    assert all(r.route_type == RouteType.SINGLE for r in routes)
