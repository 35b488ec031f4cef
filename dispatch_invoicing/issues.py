"""Issue detection for the invoicing engine.

A rule-based scan over orders (and, optionally, a generated invoice) that
flags data-quality and policy anomalies for the dispatcher to review.
Detection is pure: nothing is changed, and the same input always yields
the same issues. Output order is not significant; use ``sort_issues`` or
the grouping helpers for display.
"""

import logging
from collections import Counter
from datetime import datetime
from typing import Optional

import pandas as pd

from .config import NoiseTripConfig, get_default_noise_config, get_default_settings
from .orders import is_unassigned_driver
from .route_organizer import TripNumberStatus, classify_trip_number, organize_routes
from .schemas import (
    CRITICAL_FIELDS,
    DeliveryOrder,
    Invoice,
    InvoiceGenerationSettings,
    Issue,
    IssueRule,
    IssueSeverity,
)

logger = logging.getLogger(__name__)

SEVERITY_RANK = {IssueSeverity.ERROR: 0, IssueSeverity.WARNING: 1}

FIELD_LABELS = {
    "address": "delivery address",
    "pickup_location": "pickup location",
    "trip_number": "trip number",
    "driver": "driver",
    "ex_ready_time": "expected ready time",
    "ex_delivery_time": "expected delivery time",
}


# ============================================================================
# Individual Rules
# ============================================================================


def detect_driver_overload(
    orders: list[DeliveryOrder], settings: InvoiceGenerationSettings
) -> list[Issue]:
    """One warning per driver-day whose order count exceeds the load threshold.

    Orders without an assigned driver are not counted.
    """
    loads: Counter = Counter()
    for order in orders:
        if is_unassigned_driver(order.driver):
            continue
        loads[(order.driver_name, order.service_date)] += 1

    issues = []
    for (driver, service_date), count in loads.items():
        if count > settings.flag_driver_load_threshold:
            day = service_date.isoformat() if service_date else "an unknown date"
            issues.append(
                Issue(
                    order_id="multiple",
                    driver=driver,
                    severity=IssueSeverity.WARNING,
                    rule=IssueRule.DRIVER_OVERLOAD,
                    message=f"{driver} has {count} orders on {day}",
                    details=(
                        f"The daily limit is {settings.flag_driver_load_threshold} orders. "
                        "Consider reassigning some of them."
                    ),
                )
            )
    return issues


def detect_distance_outliers(
    orders: list[DeliveryOrder],
    settings: InvoiceGenerationSettings,
    invoice: Optional[Invoice] = None,
    noise_config: Optional[NoiseTripConfig] = None,
) -> list[Issue]:
    """One warning per route longer than the distance threshold.

    Route distances come from the invoice when one is supplied. Without an
    invoice only single-stop routes are checked, using the distance known on
    the order; a multi-stop route is measured along its chain of stops, which
    the per-order distances do not describe. A threshold of 0 disables the
    rule.
    """
    threshold = settings.flag_distance_threshold
    if threshold <= 0:
        return []

    if invoice is not None:
        measured = [(item.order_id, item.driver, item.distance) for item in invoice.items]
    else:
        measured = []
        for route in organize_routes(orders, noise_config):
            order = route.orders[0]
            if route.is_multi_stop or order.known_distance is None:
                continue
            measured.append((order.id, route.driver, order.known_distance))

    return [
        Issue(
            order_id=route_id,
            driver=driver,
            severity=IssueSeverity.WARNING,
            rule=IssueRule.DISTANCE_OUTLIER,
            message=f"Route distance {distance:.1f} mi exceeds {threshold:.1f} mi",
            details="Check the addresses or confirm the distance before billing.",
        )
        for route_id, driver, distance in measured
        if distance > threshold
    ]


def _gap_minutes(expected: Optional[datetime], actual: Optional[datetime]) -> Optional[float]:
    if expected is None or actual is None:
        return None
    try:
        return abs((actual - expected).total_seconds()) / 60
    except TypeError:
        # Naive and aware timestamps
        return None


def detect_time_window_violations(
    orders: list[DeliveryOrder], settings: InvoiceGenerationSettings
) -> list[Issue]:
    """One warning per order whose pickup or delivery missed its window."""
    threshold = settings.flag_time_window_threshold
    issues = []
    for order in orders:
        missed = []
        pickup_gap = _gap_minutes(order.ex_ready_time, order.actual_pickup_time)
        if pickup_gap is not None and pickup_gap > threshold:
            missed.append(f"pickup off by {pickup_gap:.0f} min")
        delivery_gap = _gap_minutes(order.ex_delivery_time, order.actual_delivery_time)
        if delivery_gap is not None and delivery_gap > threshold:
            missed.append(f"delivery off by {delivery_gap:.0f} min")

        if missed:
            issues.append(
                Issue(
                    order_id=order.id,
                    driver=order.driver_name,
                    severity=IssueSeverity.WARNING,
                    rule=IssueRule.TIME_WINDOW,
                    message="Time window exceeded: " + ", ".join(missed),
                    details=f"Allowed deviation is {threshold:.0f} minutes.",
                )
            )
    return issues


def detect_missing_fields(orders: list[DeliveryOrder]) -> list[Issue]:
    """Errors for missing critical fields, warnings for other missing data."""
    issues = []
    for order in orders:
        critical = [f for f in order.missing_fields if f in CRITICAL_FIELDS]
        other = [f for f in order.missing_fields if f not in CRITICAL_FIELDS]

        if critical:
            labels = ", ".join(FIELD_LABELS[f.value] for f in critical)
            issues.append(
                Issue(
                    order_id=order.id,
                    driver=order.driver_name,
                    severity=IssueSeverity.ERROR,
                    rule=IssueRule.MISSING_CRITICAL_FIELD,
                    message=f"Missing {labels}",
                    details="Fill in the missing data or remove the order before billing.",
                )
            )
        if other:
            labels = ", ".join(FIELD_LABELS[f.value] for f in other)
            issues.append(
                Issue(
                    order_id=order.id,
                    driver=order.driver_name,
                    severity=IssueSeverity.WARNING,
                    rule=IssueRule.INCOMPLETE_DATA,
                    message="Incomplete order data",
                    details=f"Missing {labels}.",
                )
            )
    return issues


def detect_suspicious_trip_numbers(
    orders: list[DeliveryOrder], noise_config: Optional[NoiseTripConfig] = None
) -> list[Issue]:
    """Warnings for placeholder trip numbers and ones in an unexpected format."""
    config = noise_config or get_default_noise_config()
    issues = []
    for order in orders:
        status = classify_trip_number(order.trip_number, config)
        if status == TripNumberStatus.NOISE:
            message = f"Trip number '{order.trip_number}' looks like a placeholder or test value"
        elif status == TripNumberStatus.NEEDS_VERIFICATION:
            message = f"Trip number '{order.trip_number}' has an unexpected format"
        else:
            continue
        issues.append(
            Issue(
                order_id=order.id,
                driver=order.driver_name,
                severity=IssueSeverity.WARNING,
                rule=IssueRule.SUSPICIOUS_TRIP_NUMBER,
                message=message,
                details="The order is billed on its own until the trip number is corrected.",
            )
        )
    return issues


def detect_many_stops(
    orders: list[DeliveryOrder],
    settings: InvoiceGenerationSettings,
    noise_config: Optional[NoiseTripConfig] = None,
) -> list[Issue]:
    """Warnings for trips with more stops than the configured maximum."""
    return [
        Issue(
            order_id=route.trip_number or route.route_key,
            driver=route.driver,
            severity=IssueSeverity.WARNING,
            rule=IssueRule.MANY_STOPS,
            message=f"Trip {route.trip_number or route.route_key} has {route.stops} stops",
            details=f"Routes with more than {settings.flag_max_route_stops} stops are unusual.",
        )
        for route in organize_routes(orders, noise_config)
        if route.stops > settings.flag_max_route_stops
    ]


def detect_unresolved_distances(invoice: Invoice) -> list[Issue]:
    """Errors for invoice items billed without a resolved distance."""
    return [
        Issue(
            order_id=item.order_id,
            driver=item.driver,
            severity=IssueSeverity.ERROR,
            rule=IssueRule.UNRESOLVED_DISTANCE,
            message="Route distance could not be calculated",
            details=f"Route {item.route_key} is billed with 0 miles. Enter the distance manually.",
        )
        for item in invoice.items
        if not item.distance_resolved and not item.recalculated
    ]


# ============================================================================
# Detection Entry Point
# ============================================================================


def detect_issues(
    orders: list[DeliveryOrder],
    settings: Optional[InvoiceGenerationSettings] = None,
    invoice: Optional[Invoice] = None,
    noise_config: Optional[NoiseTripConfig] = None,
) -> list[Issue]:
    """Run every detection rule over the orders.

    Args:
        orders: Orders to scan.
        settings: Flag thresholds. Defaults to get_default_settings().
        invoice: Optional generated invoice; enables rules on resolved
            route distances.
        noise_config: Rules for placeholder trip numbers.

    Returns:
        All detected issues, in no particular order.
    """
    settings = settings or get_default_settings()
    config = noise_config or get_default_noise_config()

    issues: list[Issue] = []
    issues.extend(detect_driver_overload(orders, settings))
    issues.extend(detect_distance_outliers(orders, settings, invoice, config))
    issues.extend(detect_time_window_violations(orders, settings))
    issues.extend(detect_missing_fields(orders))
    issues.extend(detect_suspicious_trip_numbers(orders, config))
    issues.extend(detect_many_stops(orders, settings, config))
    if invoice is not None:
        issues.extend(detect_unresolved_distances(invoice))

    logger.info(
        "Detected %d issues (%d errors) in %d orders",
        len(issues),
        sum(1 for i in issues if i.severity == IssueSeverity.ERROR),
        len(orders),
    )
    return issues


# ============================================================================
# Display Helpers
# ============================================================================


def sort_issues(issues: list[Issue]) -> list[Issue]:
    """Errors first, then by rule and driver."""
    return sorted(issues, key=lambda i: (SEVERITY_RANK[i.severity], i.rule.value, i.driver))


def group_issues_by_driver(issues: list[Issue]) -> dict[str, list[Issue]]:
    groups: dict[str, list[Issue]] = {}
    for issue in issues:
        groups.setdefault(issue.driver, []).append(issue)
    return groups


def group_issues_by_severity(issues: list[Issue]) -> dict[IssueSeverity, list[Issue]]:
    groups: dict[IssueSeverity, list[Issue]] = {severity: [] for severity in SEVERITY_RANK}
    for issue in issues:
        groups[issue.severity].append(issue)
    return groups


def issues_dataframe(issues: list[Issue]) -> pd.DataFrame:
    """Convert issues to a DataFrame for display, errors first.

    Args:
        issues: Detected issues.

    Returns:
        DataFrame with severity, rule, driver, order, message and details columns.
    """
    columns = ["severity", "rule", "driver", "order_id", "message", "details"]
    data = [
        {
            "severity": issue.severity.value,
            "rule": issue.rule.value,
            "driver": issue.driver,
            "order_id": issue.order_id,
            "message": issue.message,
            "details": issue.details,
        }
        for issue in sort_issues(issues)
    ]
    return pd.DataFrame(data, columns=columns)
