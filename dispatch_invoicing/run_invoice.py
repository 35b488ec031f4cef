"""Generate a draft invoice from a JSON file of delivery orders.

Usage:
    python -m dispatch_invoicing.run_invoice data/orders.json --output invoice.json

The input is a JSON list of already-validated delivery order records.
Distances are resolved with the Nominatim geocoding collaborator; coordinates
are cached in DISTANCE_CACHE_DB when that variable is set.
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click

from . import __version__
from .config import DISTANCE_CACHE_DB, load_invoice_settings, load_noise_config
from .database import get_database_manager
from .exceptions import InvoicingError
from .geo import GeocodingDistanceCalculator
from .issues import detect_issues, sort_issues
from .pricing import generate_invoice
from .route_organizer import remove_orders_with_noise_trips
from .schemas import DeliveryOrder, IssueSeverity
from .summary import driver_summary_dataframe, round_currency


def setup_logging(verbose: bool = False) -> None:
    """Set up logging configuration.

    Args:
        verbose: Enable debug logging
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def load_orders(orders_path: Path) -> list[DeliveryOrder]:
    """Read delivery orders from a JSON list."""
    with open(orders_path, "r", encoding="utf-8") as f:
        records = json.load(f)
    if not isinstance(records, list):
        raise click.BadParameter("expected a JSON list of orders", param_hint="ORDERS")
    return [DeliveryOrder.model_validate(record) for record in records]


def print_progress(current: int, total: int) -> None:
    click.echo(f"  [{current}/{total}] routes resolved")


@click.command()
@click.version_option(version=__version__)
@click.argument("orders_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--settings",
    "settings_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Invoice settings JSON (defaults to config/invoice_settings.json)",
)
@click.option(
    "--output",
    "output_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Where to write the invoice JSON",
)
@click.option(
    "--keep-noise",
    is_flag=True,
    help="Keep orders whose trip number looks like a placeholder",
)
@click.option("--region-hint", help="Region appended to addresses that fail to geocode")
@click.option("--road-factor", type=float, default=1.0, show_default=True,
              help="Multiplier from straight-line to driving distance")
@click.option("--verbose", is_flag=True, help="Enable verbose logging")
def main(
    orders_path: Path,
    settings_path: Optional[Path],
    output_path: Optional[Path],
    keep_noise: bool,
    region_hint: Optional[str],
    road_factor: float,
    verbose: bool,
):
    """Generate a draft invoice for ORDERS_PATH."""
    setup_logging(verbose)

    try:
        settings = load_invoice_settings(settings_path)
        noise_config = load_noise_config(settings_path)
    except FileNotFoundError:
        click.echo("⚠️ No settings file found, using default pricing")
        settings, noise_config = None, None

    orders = load_orders(orders_path)
    click.echo(f"📋 Loaded {len(orders)} orders from {orders_path.name}")

    if not keep_noise:
        removal = remove_orders_with_noise_trips(orders, noise_config)
        orders = removal.orders
        if removal.removed_count:
            click.echo(f"🧹 Removed {removal.removed_count} orders with placeholder trip numbers")

    calculator = GeocodingDistanceCalculator(
        db=get_database_manager(DISTANCE_CACHE_DB),
        road_factor=road_factor,
        region_hint=region_hint,
    )

    click.echo("🗺️ Resolving route distances...")
    try:
        invoice = asyncio.run(
            generate_invoice(
                orders,
                settings=settings,
                on_progress=print_progress,
                calculator=calculator,
                on_still_working=lambda elapsed: click.echo(
                    f"⏳ Still working ({elapsed:.0f}s elapsed)..."
                ),
                noise_config=noise_config,
            )
        )
    except InvoicingError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)

    click.echo()
    click.echo(f"✅ Invoice {invoice.invoice_number} ({invoice.status.value})")
    click.echo(f"   Items: {len(invoice.items)} | Distance: {invoice.total_distance:.1f} mi")
    click.echo(f"   Total: ${round_currency(invoice.total_cost):,.2f}")

    summary = driver_summary_dataframe(invoice)
    if not summary.empty:
        click.echo()
        click.echo(summary.to_string(index=False))

    issues = sort_issues(invoice.issues + detect_issues(orders, settings, noise_config=noise_config))
    if issues:
        errors = sum(1 for issue in issues if issue.severity == IssueSeverity.ERROR)
        click.echo()
        click.echo(f"🔍 {len(issues)} issues found ({errors} errors)")
        for issue in issues:
            icon = "❌" if issue.severity == IssueSeverity.ERROR else "⚠️"
            click.echo(f"  {icon} [{issue.driver}] {issue.order_id}: {issue.message}")

    if output_path:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w", encoding="utf-8") as f:
            f.write(invoice.model_dump_json(indent=2, by_alias=True))
        click.echo()
        click.echo(f"💾 Invoice saved to: {output_path}")


if __name__ == "__main__":
    main()
