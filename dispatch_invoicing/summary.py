"""Tabular summaries of invoices for the presentation layer.

Money is kept in full precision on the models and only rounded here, at the
display boundary.
"""

import math
from decimal import ROUND_HALF_UP, Decimal

import pandas as pd

from .schemas import DriverSummary, Invoice, InvoiceItem


def round_currency(value: float) -> float:
    """Round a money amount to cents, half up."""
    return float(Decimal(str(float(value))).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def generate_driver_summaries(items: list[InvoiceItem]) -> list[DriverSummary]:
    """Roll invoice items up per driver, in first-seen driver order.

    Args:
        items: Invoice line items.

    Returns:
        One DriverSummary per driver.
    """
    grouped: dict[str, list[InvoiceItem]] = {}
    for item in items:
        grouped.setdefault(item.driver, []).append(item)

    return [
        DriverSummary(
            driver=driver,
            trips=len(driver_items),
            total_distance=math.fsum(i.distance for i in driver_items),
            total_earnings=math.fsum(i.total_cost for i in driver_items),
        )
        for driver, driver_items in grouped.items()
    ]


def invoice_items_dataframe(invoice: Invoice) -> pd.DataFrame:
    """Convert invoice items to a display DataFrame.

    Args:
        invoice: The invoice to tabulate.

    Returns:
        DataFrame with one row per line item and rounded money columns.
    """
    data = []
    for i, item in enumerate(invoice.items):
        data.append({
            "line": i + 1,
            "route_key": item.route_key,
            "trip_number": item.trip_number or "",
            "order_id": item.order_id,
            "order_ids": ", ".join(item.order_ids),
            "driver": item.driver,
            "date": item.service_date,
            "pickup": item.pickup,
            "dropoff": item.dropoff,
            "route_type": item.route_type.value,
            "stops": item.stops,
            "distance_mi": round(item.distance, 1),
            "original_distance_mi": (
                round(item.original_distance, 1) if item.original_distance is not None else None
            ),
            "base_cost": round_currency(item.base_cost),
            "add_ons": round_currency(item.add_ons),
            "total_cost": round_currency(item.total_cost),
            "recalculated": item.recalculated,
            "distance_resolved": item.distance_resolved,
        })
    return pd.DataFrame(data)


def driver_summary_dataframe(invoice: Invoice) -> pd.DataFrame:
    """Per-driver totals for an invoice, sorted by earnings (highest first).

    Args:
        invoice: The invoice to summarize.

    Returns:
        DataFrame with driver, trips, distance and earnings columns.
    """
    if not invoice.items:
        return pd.DataFrame(columns=["driver", "trips", "total_distance_mi", "total_earnings"])

    raw = pd.DataFrame(
        {
            "driver": [item.driver for item in invoice.items],
            "distance": [item.distance for item in invoice.items],
            "total_cost": [item.total_cost for item in invoice.items],
        }
    )
    summary = (
        raw.groupby("driver", sort=False)
        .agg(
            trips=("distance", "size"),
            total_distance_mi=("distance", "sum"),
            total_earnings=("total_cost", "sum"),
        )
        .reset_index()
    )
    summary["total_distance_mi"] = summary["total_distance_mi"].round(1)
    summary["total_earnings"] = summary["total_earnings"].map(round_currency)
    return summary.sort_values("total_earnings", ascending=False).reset_index(drop=True)
