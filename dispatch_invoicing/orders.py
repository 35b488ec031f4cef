"""Order model operations for the invoicing engine.

Correction workflows (driver assignment, trip-number assignment, distance
override) and bulk removal of incomplete orders. Every function takes the
current order list and returns a new one; the caller owns the state.
"""

import logging
from collections import Counter
from typing import Any, Iterable, Optional

from .exceptions import ValidationError
from .schemas import (
    CRITICAL_FIELDS,
    DeliveryOrder,
    MissingField,
    OrderDataSummary,
    RemovalResult,
    UNASSIGNED_DRIVER,
    is_empty_value,
)

logger = logging.getLogger(__name__)

UNASSIGNED_DRIVER_VALUES = {
    "unassigned",
    "not assigned",
    "no driver",
    "n/a",
    "na",
    "none",
    "tbd",
}


def is_unassigned_driver(value: Optional[str]) -> bool:
    """Check whether a driver value is empty or an explicit placeholder.

    Args:
        value: Raw driver value.

    Returns:
        True if the value does not name a real driver.
    """
    if is_empty_value(value):
        return True
    return value.strip().lower() in UNASSIGNED_DRIVER_VALUES


def compute_missing_fields(order: DeliveryOrder) -> list[MissingField]:
    """Recompute the missing fields of an order from its current values."""
    return list(DeliveryOrder.model_validate(order.model_dump()).missing_fields)


def update_order(order: DeliveryOrder, **changes: Any) -> DeliveryOrder:
    """Return a copy of an order with fields changed and missing_fields recomputed.

    Args:
        order: The order to edit.
        **changes: Field names (snake_case) and their new values.

    Returns:
        A new, re-validated DeliveryOrder.

    Raises:
        ValidationError: If a field is unknown or the new value is invalid.
    """
    unknown = set(changes) - set(DeliveryOrder.model_fields)
    if unknown:
        raise ValidationError(f"Unknown order field(s): {', '.join(sorted(unknown))}")
    if "id" in changes and changes["id"] != order.id:
        raise ValidationError("Order id cannot be changed", field="id")

    data = order.model_dump()
    data.update(changes)
    try:
        return DeliveryOrder.model_validate(data)
    except ValueError as e:
        raise ValidationError(f"Invalid value for order {order.id}: {e}") from e


def _replace_order(
    orders: list[DeliveryOrder], order_id: str, **changes: Any
) -> list[DeliveryOrder]:
    for index, order in enumerate(orders):
        if order.id == order_id:
            updated = list(orders)
            updated[index] = update_order(order, **changes)
            return updated
    raise ValidationError(f"Order {order_id} not found", field="id")


def assign_driver(
    orders: list[DeliveryOrder], order_id: str, driver: str
) -> list[DeliveryOrder]:
    """Assign a driver to one order.

    Placeholder values ("N/A", "Unassigned", ...) clear the assignment so the
    order is reported as missing a driver.
    """
    value = "" if is_unassigned_driver(driver) else driver.strip()
    logger.info("Assigning driver %r to order %s", value or UNASSIGNED_DRIVER, order_id)
    return _replace_order(orders, order_id, driver=value)


def assign_trip_number(
    orders: list[DeliveryOrder], order_id: str, trip_number: Optional[str]
) -> list[DeliveryOrder]:
    """Assign (or clear, with an empty value) the trip number of one order."""
    value = None if is_empty_value(trip_number) else trip_number.strip()
    logger.info("Assigning trip number %r to order %s", value, order_id)
    return _replace_order(orders, order_id, trip_number=value)


def set_order_distance(
    orders: list[DeliveryOrder], order_id: str, miles: float
) -> list[DeliveryOrder]:
    """Override the distance of one order, in miles."""
    if miles is None or miles < 0:
        raise ValidationError(f"Distance must be a non-negative number, got {miles}", field="distance")
    return _replace_order(orders, order_id, distance=float(miles))


def remove_incomplete_orders(
    orders: list[DeliveryOrder],
    fields: Optional[Iterable[MissingField]] = None,
) -> RemovalResult:
    """Remove every order missing any of the given fields.

    This is an explicit bulk action; callers should confirm it with the user
    and surface the removed count.

    Args:
        orders: Current order list.
        fields: Fields that make an order incomplete. Defaults to the
            critical fields (delivery address, pickup location, trip number).

    Returns:
        RemovalResult with the kept orders and the removed ids.
    """
    required = set(fields) if fields is not None else set(CRITICAL_FIELDS)
    kept = []
    removed_ids = []
    for order in orders:
        if required.intersection(order.missing_fields):
            removed_ids.append(order.id)
        else:
            kept.append(order)

    if removed_ids:
        logger.info("Removed %d incomplete orders", len(removed_ids))
    return RemovalResult(orders=kept, removed_count=len(removed_ids), removed_ids=removed_ids)


def summarize_orders(orders: list[DeliveryOrder]) -> OrderDataSummary:
    """Build a data-quality overview of an order set.

    Args:
        orders: Orders to summarize.

    Returns:
        OrderDataSummary with counts per missing field, drivers, trip
        numbers and address quality.
    """
    missing_counts: Counter = Counter()
    trip_counts: Counter = Counter()
    drivers: list[str] = []

    for order in orders:
        missing_counts.update(field.value for field in order.missing_fields)
        if order.has_trip_number:
            trip_counts[order.trip_number.strip()] += 1
        if not is_unassigned_driver(order.driver) and order.driver_name not in drivers:
            drivers.append(order.driver_name)

    with_trip = sum(trip_counts.values())
    return OrderDataSummary(
        total_orders=len(orders),
        missing_field_counts=dict(missing_counts),
        orders_with_missing_fields=sum(1 for o in orders if o.missing_fields),
        driver_count=len(drivers),
        driver_names=drivers,
        trip_number_count=len(trip_counts),
        multi_stop_routes=sum(1 for count in trip_counts.values() if count > 1),
        orders_with_trip_numbers=with_trip,
        orders_without_trip_numbers=len(orders) - with_trip,
        valid_pickup_addresses=sum(1 for o in orders if not is_empty_value(o.pickup)),
        valid_dropoff_addresses=sum(1 for o in orders if not is_empty_value(o.dropoff)),
        missing_addresses=sum(
            1 for o in orders if is_empty_value(o.pickup) or is_empty_value(o.dropoff)
        ),
    )
