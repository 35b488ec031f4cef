"""Route organization for the invoicing engine.

This module groups flat delivery orders into routes (trips) and cleans up
trip-number noise. A route is every order sharing one non-empty trip
number; orders without a usable trip number are each their own
single-stop route keyed by order id.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from .config import NoiseTripConfig, get_default_noise_config
from .schemas import DeliveryOrder, RemovalResult, RouteType, is_empty_value

logger = logging.getLogger(__name__)

SINGLE_ORDER_KEY_PREFIX = "order-"
# Prepended to real trip numbers that could be mistaken for a synthetic key
TRIP_KEY_ESCAPE_PREFIX = "trip-"


class TripNumberStatus(str, Enum):
    """Classification of a raw trip-number value."""

    MISSING = "missing"
    NOISE = "noise"
    NEEDS_VERIFICATION = "needs_verification"
    VALID = "valid"


@dataclass
class Route:
    """A group of orders billed as one line item.

    Attributes:
        route_key: Trip number, or a synthetic per-order key.
        trip_number: The shared trip number, None for synthetic routes.
        orders: Orders in first-seen input order.
        route_type: Computed once from the number of orders.
        stops: Number of orders on the route.
    """

    route_key: str
    trip_number: Optional[str]
    orders: list[DeliveryOrder] = field(default_factory=list)
    route_type: RouteType = RouteType.SINGLE
    stops: int = 1

    @property
    def order_ids(self) -> list[str]:
        return [order.id for order in self.orders]

    @property
    def is_multi_stop(self) -> bool:
        return self.route_type == RouteType.MULTI_STOP

    @property
    def driver(self) -> str:
        """Driver of the first order with an assigned driver."""
        for order in self.orders:
            if order.driver.strip():
                return order.driver_name
        return self.orders[0].driver_name


# ============================================================================
# Trip Number Classification
# ============================================================================


def _full_match(pattern: str, value: str) -> bool:
    return re.fullmatch(pattern, value, flags=re.IGNORECASE) is not None


def is_noise_trip_number(value: Optional[str], config: Optional[NoiseTripConfig] = None) -> bool:
    """Check whether a trip number is a placeholder or test value.

    Empty values are not noise; they are missing.

    Args:
        value: Raw trip number.
        config: Noise rules. Defaults to get_default_noise_config().

    Returns:
        True if the value should be treated as noise.
    """
    if is_empty_value(value):
        return False
    config = config or get_default_noise_config()
    normalized = value.strip()

    if normalized.lower() in {p.lower() for p in config.placeholders}:
        return True
    if any(_full_match(pattern, normalized) for pattern in config.patterns):
        return True
    if config.expected_format and not _full_match(config.expected_format, normalized):
        return True
    return False


def classify_trip_number(
    value: Optional[str], config: Optional[NoiseTripConfig] = None
) -> TripNumberStatus:
    """Classify a trip number as missing, noise, needing verification or valid."""
    if is_empty_value(value):
        return TripNumberStatus.MISSING
    config = config or get_default_noise_config()
    if is_noise_trip_number(value, config):
        return TripNumberStatus.NOISE
    if not _full_match(config.verification_format, value.strip()):
        return TripNumberStatus.NEEDS_VERIFICATION
    return TripNumberStatus.VALID


def trip_key(order: DeliveryOrder, config: Optional[NoiseTripConfig] = None) -> str:
    """Grouping key of an order: its trip number, or a synthetic per-order key.

    Trip numbers starting with either key prefix are escaped, so a trip
    number spelled like a synthetic key never merges with an untracked order.
    """
    if order.has_trip_number and not is_noise_trip_number(order.trip_number, config):
        value = order.trip_number.strip()
        if value.startswith((SINGLE_ORDER_KEY_PREFIX, TRIP_KEY_ESCAPE_PREFIX)):
            return f"{TRIP_KEY_ESCAPE_PREFIX}{value}"
        return value
    return f"{SINGLE_ORDER_KEY_PREFIX}{order.id}"


# ============================================================================
# Grouping
# ============================================================================


def group_by_trip(
    orders: list[DeliveryOrder], noise_config: Optional[NoiseTripConfig] = None
) -> dict[str, list[DeliveryOrder]]:
    """Group orders by trip key.

    Keys appear in first-seen order and orders keep their relative input
    order inside each group, so grouping the flattened result again yields
    the same grouping.

    Args:
        orders: Orders to group.
        noise_config: Noise rules used to ignore placeholder trip numbers.

    Returns:
        Ordered mapping of trip key to orders.
    """
    config = noise_config or get_default_noise_config()
    groups: dict[str, list[DeliveryOrder]] = {}
    for order in orders:
        groups.setdefault(trip_key(order, config), []).append(order)
    return groups


def flatten_routes(groups: dict[str, list[DeliveryOrder]]) -> list[DeliveryOrder]:
    """Flatten a grouping back into a single order list, group by group."""
    return [order for group in groups.values() for order in group]


def organize_routes(
    orders: list[DeliveryOrder], noise_config: Optional[NoiseTripConfig] = None
) -> list[Route]:
    """Organize orders into routes in discovery order.

    Args:
        orders: Orders to organize.
        noise_config: Noise rules used to ignore placeholder trip numbers.

    Returns:
        List of Route objects with route type computed once here.
    """
    config = noise_config or get_default_noise_config()
    routes = []
    untracked = 0
    for key, group in group_by_trip(orders, config).items():
        first = group[0]
        is_synthetic = not first.has_trip_number or is_noise_trip_number(first.trip_number, config)
        if is_synthetic:
            untracked += 1
        stops = len(group)
        routes.append(
            Route(
                route_key=key,
                trip_number=None if is_synthetic else first.trip_number.strip(),
                orders=list(group),
                route_type=RouteType.MULTI_STOP if stops > 1 else RouteType.SINGLE,
                stops=stops,
            )
        )

    if untracked:
        logger.info("%d orders have no usable trip number and are billed individually", untracked)
    return routes


def multi_stop_route_count(
    orders: list[DeliveryOrder], noise_config: Optional[NoiseTripConfig] = None
) -> int:
    """Count trip keys with two or more orders."""
    return sum(1 for group in group_by_trip(orders, noise_config).values() if len(group) > 1)


def _order_timestamp(order: DeliveryOrder) -> Optional[datetime]:
    return order.actual_pickup_time or order.ex_ready_time or order.ex_delivery_time


def visit_sequence(route: Route) -> list[DeliveryOrder]:
    """Orders of a route in visiting order.

    Orders are sorted by their earliest known timestamp when every order has
    one; otherwise input order is kept.
    """
    timestamps = [_order_timestamp(order) for order in route.orders]
    if any(ts is None for ts in timestamps):
        return list(route.orders)
    try:
        indexed = sorted(range(len(route.orders)), key=lambda i: (timestamps[i], i))
    except TypeError:
        # Naive and aware timestamps cannot be compared
        return list(route.orders)
    return [route.orders[i] for i in indexed]


# ============================================================================
# Bulk Removal
# ============================================================================


def remove_orders_with_noise_trips(
    orders: list[DeliveryOrder], noise_config: Optional[NoiseTripConfig] = None
) -> RemovalResult:
    """Exclude orders whose trip number is placeholder/test noise.

    Args:
        orders: Current order list.
        noise_config: Noise rules.

    Returns:
        RemovalResult with the kept orders and the count to report to the user.
    """
    config = noise_config or get_default_noise_config()
    kept = []
    removed_ids = []
    for order in orders:
        if is_noise_trip_number(order.trip_number, config):
            removed_ids.append(order.id)
        else:
            kept.append(order)

    if removed_ids:
        logger.info("Removed %d orders with noise trip numbers", len(removed_ids))
    return RemovalResult(orders=kept, removed_count=len(removed_ids), removed_ids=removed_ids)


def remove_orders_with_missing_trip_numbers(orders: list[DeliveryOrder]) -> RemovalResult:
    """Remove every order whose trip number is empty or whitespace.

    This is an explicit, user-confirmed action; it is never applied during
    generation.
    """
    kept = [order for order in orders if order.has_trip_number]
    removed_ids = [order.id for order in orders if not order.has_trip_number]

    if removed_ids:
        logger.info("Removed %d orders with missing trip numbers", len(removed_ids))
    return RemovalResult(orders=kept, removed_count=len(removed_ids), removed_ids=removed_ids)
