"""Delivery Dispatch Invoicing - invoice generation engine.

This package turns validated delivery orders into a billable invoice:
- schemas: Pydantic models for orders, invoices, issues and settings
- orders: Order correction workflows and bulk removal
- route_organizer: Trip grouping and trip-number noise handling
- distance: Per-route distance resolution in bounded waves
- pricing: Tiered pricing and invoice generation
- issues: Rule-based issue detection
- invoice: Invoice lifecycle (draft -> reviewed -> finalized)
- summary: Driver summaries and display tables
- geo / database: Nominatim geocoding collaborator and its cache
"""

from .config import (
    NoiseTripConfig,
    get_default_noise_config,
    get_default_settings,
    load_invoice_settings,
    load_noise_config,
)
from .distance import DistanceCache, DistanceResolution, resolve_route_distances
from .exceptions import (
    DistanceResolutionError,
    GenerationCancelled,
    GenerationError,
    InvalidStateTransition,
    InvoiceLocked,
    InvoicingError,
    ValidationError,
)
from .invoice import (
    can_transition,
    finalize_invoice,
    is_locked,
    recalculate_invoice_item,
    recompute_totals,
    review_invoice,
    update_invoice_metadata,
)
from .issues import (
    detect_issues,
    group_issues_by_driver,
    group_issues_by_severity,
    sort_issues,
)
from .orders import (
    assign_driver,
    assign_trip_number,
    remove_incomplete_orders,
    set_order_distance,
    summarize_orders,
    update_order,
)
from .pricing import calculate_route_costs, generate_invoice, generate_invoice_number
from .route_organizer import (
    Route,
    group_by_trip,
    is_noise_trip_number,
    organize_routes,
    remove_orders_with_missing_trip_numbers,
    remove_orders_with_noise_trips,
)
from .schemas import (
    DeliveryOrder,
    DriverSummary,
    Invoice,
    InvoiceGenerationSettings,
    InvoiceItem,
    InvoiceMetadata,
    InvoiceStatus,
    Issue,
    IssueRule,
    IssueSeverity,
    MissingField,
    RemovalResult,
    RouteType,
)
from .summary import generate_driver_summaries

__version__ = "0.1.0"

__all__ = [
    # Config
    "NoiseTripConfig",
    "get_default_noise_config",
    "get_default_settings",
    "load_invoice_settings",
    "load_noise_config",
    # Exceptions
    "DistanceResolutionError",
    "GenerationCancelled",
    "GenerationError",
    "InvalidStateTransition",
    "InvoiceLocked",
    "InvoicingError",
    "ValidationError",
    # Schemas - Enums
    "InvoiceStatus",
    "IssueRule",
    "IssueSeverity",
    "MissingField",
    "RouteType",
    # Schemas - Models
    "DeliveryOrder",
    "DriverSummary",
    "Invoice",
    "InvoiceGenerationSettings",
    "InvoiceItem",
    "InvoiceMetadata",
    "Issue",
    "RemovalResult",
    # Orders
    "assign_driver",
    "assign_trip_number",
    "remove_incomplete_orders",
    "set_order_distance",
    "summarize_orders",
    "update_order",
    # Routes and distances
    "DistanceCache",
    "DistanceResolution",
    "Route",
    "group_by_trip",
    "is_noise_trip_number",
    "organize_routes",
    "remove_orders_with_missing_trip_numbers",
    "remove_orders_with_noise_trips",
    "resolve_route_distances",
    # Pricing
    "calculate_route_costs",
    "generate_invoice",
    "generate_invoice_number",
    # Issues
    "detect_issues",
    "group_issues_by_driver",
    "group_issues_by_severity",
    "sort_issues",
    # Lifecycle
    "can_transition",
    "finalize_invoice",
    "is_locked",
    "recalculate_invoice_item",
    "recompute_totals",
    "review_invoice",
    "update_invoice_metadata",
    # Summaries
    "generate_driver_summaries",
]
