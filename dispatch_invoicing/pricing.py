"""Pricing engine for the invoicing engine.

Converts routes and their distances into billable line items and assembles
the draft invoice.

Tiered cost formula:
- Single-stop route, distance <= threshold: flat rate.
- Single-stop route, distance > threshold: distance x mileage rate.
- Multi-stop route: distance x mileage rate, plus a fee for every stop
  beyond the first.
- total = base + add-ons, for every route type.

Amounts are accumulated in full precision; rounding happens only when
values are displayed or exported.
"""

import logging
import math
import random
import time
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Optional

from .config import NoiseTripConfig, get_default_settings
from .distance import (
    DistanceCache,
    DistanceCalculator,
    DistanceResolution,
    ProgressCallback,
    resolve_route_distances,
)
from .exceptions import GenerationError, ValidationError
from .geo import GeocodingDistanceCalculator
from .route_organizer import Route, organize_routes, visit_sequence
from .schemas import (
    DeliveryOrder,
    Invoice,
    InvoiceGenerationSettings,
    InvoiceItem,
    InvoiceMetadata,
    InvoiceStatus,
    Issue,
    IssueRule,
    IssueSeverity,
    RouteType,
    UNKNOWN_LOCATION,
    is_empty_value,
)
from .summary import generate_driver_summaries

logger = logging.getLogger(__name__)


@dataclass
class RouteCosts:
    """Cost breakdown of one route."""

    base_cost: float
    add_ons: float

    @property
    def total_cost(self) -> float:
        return self.base_cost + self.add_ons


# ============================================================================
# Cost Calculation
# ============================================================================


def is_valid_distance(value) -> bool:
    """True for a finite, non-negative number of miles."""
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
        and value >= 0
    )


def calculate_route_costs(
    route_type: RouteType,
    distance: float,
    stops: int,
    settings: Optional[InvoiceGenerationSettings] = None,
) -> RouteCosts:
    """Apply the tiered pricing model to one route.

    Args:
        route_type: Single or multi-stop.
        distance: Route distance in miles.
        stops: Number of orders on the route.
        settings: Rates and thresholds. Defaults to get_default_settings().

    Returns:
        RouteCosts with base cost and add-ons.

    Raises:
        ValidationError: If distance is negative or stops don't match the route type.
    """
    settings = settings or get_default_settings()
    if not is_valid_distance(distance):
        raise ValidationError(
            f"Distance must be a finite, non-negative number, got {distance}", field="distance"
        )
    if stops < 1:
        raise ValidationError(f"A route needs at least one stop, got {stops}", field="stops")
    if route_type == RouteType.MULTI_STOP and stops < 2:
        raise ValidationError("A multi-stop route needs at least two stops", field="stops")

    if route_type == RouteType.SINGLE:
        if distance <= settings.distance_threshold:
            base_cost = settings.flat_rate
        else:
            base_cost = distance * settings.mileage_rate
        add_ons = 0.0
    else:
        base_cost = distance * settings.mileage_rate
        add_ons = (stops - 1) * settings.additional_stop_fee

    if settings.apply_urban_fee:
        add_ons += settings.urban_fee_amount
    if settings.apply_rush_fee:
        add_ons += base_cost * settings.rush_fee_percentage / 100

    return RouteCosts(base_cost=base_cost, add_ons=add_ons)


def build_invoice_item(
    route: Route,
    resolution: DistanceResolution,
    settings: Optional[InvoiceGenerationSettings] = None,
) -> InvoiceItem:
    """Create the line item of one route.

    The item starts at the first pickup and ends at the last dropoff of the
    route's visiting sequence. Multi-stop items are identified by trip number,
    single-stop items by their order id.
    """
    costs = calculate_route_costs(route.route_type, resolution.distance, route.stops, settings)
    sequence = visit_sequence(route)
    first, last = sequence[0], sequence[-1]

    if route.is_multi_stop and route.trip_number:
        item_id = route.trip_number
    else:
        item_id = first.id

    return InvoiceItem(
        route_key=route.route_key,
        trip_number=route.trip_number,
        order_id=item_id,
        order_ids=route.order_ids,
        driver=route.driver,
        pickup=first.pickup if not is_empty_value(first.pickup) else UNKNOWN_LOCATION,
        dropoff=last.dropoff if not is_empty_value(last.dropoff) else UNKNOWN_LOCATION,
        service_date=first.service_date,
        distance=resolution.distance,
        route_type=route.route_type,
        stops=route.stops,
        base_cost=costs.base_cost,
        add_ons=costs.add_ons,
        total_cost=costs.total_cost,
        distance_resolved=resolution.resolved,
    )


# ============================================================================
# Invoice Assembly
# ============================================================================


def generate_invoice_number(issue_date: Optional[date] = None) -> str:
    """Generate a human-readable invoice number such as INV-2024-03-042."""
    issue_date = issue_date or date.today()
    return f"INV-{issue_date.year}-{issue_date.month:02d}-{random.randint(0, 999):03d}"


def week_ending_for(orders: list[DeliveryOrder]) -> Optional[date]:
    """Sunday closing the week of the latest service date, if any date is known."""
    dates = [order.service_date for order in orders if order.service_date is not None]
    if not dates:
        return None
    latest = max(dates)
    return latest + timedelta(days=6 - latest.weekday())


def unresolved_distance_issue(route: Route, resolution: DistanceResolution) -> Issue:
    """Error issue for a route whose distance could not be resolved."""
    return Issue(
        order_id=", ".join(route.order_ids),
        driver=route.driver,
        severity=IssueSeverity.ERROR,
        rule=IssueRule.UNRESOLVED_DISTANCE,
        message="Route distance could not be calculated",
        details=(
            f"Route {route.route_key} was billed with 0 miles because the distance "
            f"lookup failed ({resolution.error}). Enter the distance manually or retry."
        ),
    )


async def generate_invoice(
    orders: list[DeliveryOrder],
    settings: Optional[InvoiceGenerationSettings] = None,
    on_progress: Optional[ProgressCallback] = None,
    calculator: Optional[DistanceCalculator] = None,
    metadata: Optional[InvoiceMetadata] = None,
    should_cancel: Optional[Callable[[], bool]] = None,
    on_still_working: Optional[Callable[[float], None]] = None,
    noise_config: Optional[NoiseTripConfig] = None,
    cache: Optional[DistanceCache] = None,
    now: Optional[datetime] = None,
) -> Invoice:
    """Generate a draft invoice from delivery orders.

    Orders are grouped into routes, each route's distance is resolved in
    bounded waves, and every route becomes one line item priced with the
    settings passed in. A route whose lookup fails stays on the invoice with
    0 miles and an error issue.

    Args:
        orders: Validated delivery orders.
        settings: Pricing and resolver settings, read fresh for this call.
        on_progress: Called with (current, total) after each route resolves.
        calculator: Distance-lookup collaborator. Defaults to the geocoding
            calculator from ``geo``.
        metadata: Business details to print on the invoice.
        should_cancel: Polled between lookup waves; True cancels generation.
        on_still_working: Called once with the elapsed seconds when
            generation runs past ``settings.slow_generation_notice_seconds``.
        noise_config: Rules for ignoring placeholder trip numbers.
        cache: Optional route distance cache shared across generations.
        now: Timestamp to stamp the invoice with.

    Returns:
        Invoice in draft status.

    Raises:
        ValidationError: If there are no orders or order ids repeat.
        GenerationError: If no route distance could be resolved at all.
        GenerationCancelled: If should_cancel() returned True.
    """
    if not orders:
        raise ValidationError("Cannot generate an invoice from an empty order list")
    seen_ids = set()
    for order in orders:
        if order.id in seen_ids:
            raise ValidationError(f"Duplicate order id {order.id}", field="id")
        seen_ids.add(order.id)

    settings = settings or get_default_settings()
    metadata = metadata or InvoiceMetadata()
    if calculator is None:
        calculator = GeocodingDistanceCalculator()

    routes = organize_routes(orders, noise_config)
    logger.info("Generating invoice for %d orders in %d routes", len(orders), len(routes))

    started = time.monotonic()
    notice_sent = False

    def check_slow(current: int, total: int) -> None:
        nonlocal notice_sent
        elapsed = time.monotonic() - started
        if (
            on_still_working is not None
            and not notice_sent
            and current < total
            and elapsed >= settings.slow_generation_notice_seconds
        ):
            notice_sent = True
            on_still_working(elapsed)

    resolutions = await resolve_route_distances(
        routes,
        calculator,
        on_progress=on_progress,
        concurrency=settings.lookup_concurrency,
        should_cancel=should_cancel,
        on_wave_complete=check_slow,
        cache=cache,
    )

    if not any(resolution.resolved for resolution in resolutions):
        raise GenerationError(
            f"No route distances could be resolved for {len(routes)} routes. "
            "Check the distance service and the order addresses, then try again."
        )

    items = [
        build_invoice_item(route, resolution, settings)
        for route, resolution in zip(routes, resolutions)
    ]
    issues = [
        unresolved_distance_issue(route, resolution)
        for route, resolution in zip(routes, resolutions)
        if not resolution.resolved
    ]
    if issues:
        logger.warning("%d of %d routes have unresolved distances", len(issues), len(routes))

    now = now or datetime.now()
    invoice = Invoice(
        id=f"INV-{uuid.uuid4().hex[:8].upper()}",
        invoice_date=now.date(),
        week_ending=metadata.week_ending or week_ending_for(orders),
        business_name=metadata.business_name,
        business_type=metadata.business_type,
        contact_person=metadata.contact_person,
        business_address=metadata.business_address,
        business_contact=metadata.business_contact,
        invoice_number=metadata.invoice_number or generate_invoice_number(now.date()),
        date_issued=metadata.date_issued,
        date_due=metadata.date_due,
        notes=metadata.notes,
        items=items,
        status=InvoiceStatus.DRAFT,
        last_modified=now,
        settings=settings,
        issues=issues,
        driver_summaries=generate_driver_summaries(items),
    )
    logger.info(
        "Generated invoice %s: %d items, %.1f miles, $%.2f",
        invoice.id, len(items), invoice.total_distance, invoice.total_cost,
    )
    return invoice
