"""Pydantic schemas for the Delivery Dispatch Invoicing engine.

This module defines all records exchanged with the presentation layer:
delivery orders, invoice line items, invoices, detected issues, generation
settings and the summaries derived from them.

Records are treated as values. Operations elsewhere in the package return
new instances instead of mutating the ones they receive.
"""

import math
from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


UNASSIGNED_DRIVER = "Unassigned"
UNKNOWN_LOCATION = "Unknown location"


class RouteType(str, Enum):
    """Billing shape of a route."""

    SINGLE = "single"
    MULTI_STOP = "multi-stop"


class InvoiceStatus(str, Enum):
    """Invoice lifecycle status."""

    DRAFT = "draft"
    REVIEWED = "reviewed"
    FINALIZED = "finalized"


class IssueSeverity(str, Enum):
    """Severity of a detected issue. Errors outrank warnings."""

    ERROR = "error"
    WARNING = "warning"


class IssueRule(str, Enum):
    """Detection rule that produced an issue."""

    DRIVER_OVERLOAD = "driver_overload"
    DISTANCE_OUTLIER = "distance_outlier"
    TIME_WINDOW = "time_window"
    MISSING_CRITICAL_FIELD = "missing_critical_field"
    INCOMPLETE_DATA = "incomplete_data"
    SUSPICIOUS_TRIP_NUMBER = "suspicious_trip_number"
    MANY_STOPS = "many_stops"
    UNRESOLVED_DISTANCE = "unresolved_distance"


class MissingField(str, Enum):
    """Order fields tracked in ``DeliveryOrder.missing_fields``."""

    ADDRESS = "address"
    PICKUP_LOCATION = "pickup_location"
    TRIP_NUMBER = "trip_number"
    DRIVER = "driver"
    EX_READY_TIME = "ex_ready_time"
    EX_DELIVERY_TIME = "ex_delivery_time"


# Fields whose absence makes an order unbillable.
CRITICAL_FIELDS = (
    MissingField.ADDRESS,
    MissingField.PICKUP_LOCATION,
    MissingField.TRIP_NUMBER,
)

# Tracked field -> attribute on DeliveryOrder, in reporting order.
TRACKED_FIELD_ATTRIBUTES = {
    MissingField.ADDRESS: "dropoff",
    MissingField.PICKUP_LOCATION: "pickup",
    MissingField.TRIP_NUMBER: "trip_number",
    MissingField.DRIVER: "driver",
    MissingField.EX_READY_TIME: "ex_ready_time",
    MissingField.EX_DELIVERY_TIME: "ex_delivery_time",
}


def is_empty_value(value) -> bool:
    """Check whether a raw field value counts as missing."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    return False


# ============================================================================
# Order Schemas
# ============================================================================


class DeliveryOrder(BaseModel):
    """One delivery leg as produced by the ingestion step.

    ``missing_fields`` is derived: it is recomputed from the current field
    values every time the model is validated, so it can never drift from
    the data. Use ``orders.update_order`` to edit an order.
    """

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: str = Field(..., min_length=1)
    driver: str = ""
    pickup: Optional[str] = None
    dropoff: Optional[str] = None
    trip_number: Optional[str] = Field(default=None, alias="tripNumber")
    ex_ready_time: Optional[datetime] = Field(default=None, alias="exReadyTime")
    ex_delivery_time: Optional[datetime] = Field(default=None, alias="exDeliveryTime")
    actual_pickup_time: Optional[datetime] = Field(default=None, alias="actualPickupTime")
    actual_delivery_time: Optional[datetime] = Field(default=None, alias="actualDeliveryTime")
    estimated_distance: Optional[float] = Field(default=None, ge=0, alias="estimatedDistance")
    distance: Optional[float] = Field(default=None, ge=0)
    order_date: Optional[date] = Field(default=None, alias="date")
    missing_fields: list[MissingField] = Field(default_factory=list, alias="missingFields")

    @field_validator("driver", mode="before")
    @classmethod
    def driver_none_to_empty(cls, v):
        """Treat a null driver as unassigned."""
        return "" if v is None else v

    @model_validator(mode="after")
    def recompute_missing_fields(self) -> "DeliveryOrder":
        """Derive missing_fields from the current values."""
        self.missing_fields = [
            field
            for field, attribute in TRACKED_FIELD_ATTRIBUTES.items()
            if is_empty_value(getattr(self, attribute))
        ]
        return self

    @property
    def driver_name(self) -> str:
        """Driver name for display and grouping."""
        return self.driver.strip() or UNASSIGNED_DRIVER

    @property
    def service_date(self) -> Optional[date]:
        """Explicit date, else the date of the expected ready/delivery time."""
        if self.order_date is not None:
            return self.order_date
        if self.ex_ready_time is not None:
            return self.ex_ready_time.date()
        if self.ex_delivery_time is not None:
            return self.ex_delivery_time.date()
        return None

    @property
    def known_distance(self) -> Optional[float]:
        """Distance already attached to the order, if any."""
        if self.distance is not None:
            return self.distance
        return self.estimated_distance

    @property
    def has_trip_number(self) -> bool:
        return not is_empty_value(self.trip_number)


class RemovalResult(BaseModel):
    """Outcome of a bulk order-removal operation."""

    orders: list[DeliveryOrder] = Field(default_factory=list)
    removed_count: int = Field(default=0, ge=0)
    removed_ids: list[str] = Field(default_factory=list)


# ============================================================================
# Settings Schemas
# ============================================================================


class InvoiceGenerationSettings(BaseModel):
    """Runtime configuration for pricing and issue detection.

    Read fresh by each generation call. An invoice keeps a copy of the
    settings it was priced with, so later changes never apply retroactively.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    # Pricing tiers
    flat_rate: float = Field(default=25.0, ge=0, alias="flatRate")
    mileage_rate: float = Field(default=1.10, ge=0, alias="mileageRate")
    additional_stop_fee: float = Field(default=12.0, ge=0, alias="additionalStopFee")
    distance_threshold: float = Field(default=25.0, ge=0, alias="distanceThreshold")

    # Optional surcharges, off by default
    apply_urban_fee: bool = Field(default=False, alias="applyUrbanFee")
    urban_fee_amount: float = Field(default=5.0, ge=0, alias="urbanFeeAmount")
    apply_rush_fee: bool = Field(default=False, alias="applyRushFee")
    rush_fee_percentage: float = Field(default=15.0, ge=0, le=100, alias="rushFeePercentage")

    allow_manual_distance_adjustment: bool = Field(
        default=True, alias="allowManualDistanceAdjustment"
    )

    # Issue flagging
    flag_driver_load_threshold: int = Field(default=10, ge=0, alias="flagDriverLoadThreshold")
    flag_distance_threshold: float = Field(default=0.0, ge=0, alias="flagDistanceThreshold")
    flag_time_window_threshold: float = Field(default=30.0, ge=0, alias="flagTimeWindowThreshold")
    flag_max_route_stops: int = Field(default=5, ge=1, alias="flagMaxRouteStops")

    # Distance resolution
    lookup_concurrency: int = Field(default=5, ge=1, le=50, alias="lookupConcurrency")
    slow_generation_notice_seconds: float = Field(
        default=10.0, ge=0, alias="slowGenerationNoticeSeconds"
    )


class InvoiceMetadata(BaseModel):
    """Editable business details printed on an invoice."""

    model_config = ConfigDict(populate_by_name=True)

    business_name: str = Field(default="", alias="businessName")
    business_type: str = Field(default="", alias="businessType")
    contact_person: str = Field(default="", alias="contactPerson")
    week_ending: Optional[date] = Field(default=None, alias="weekEnding")
    business_address: str = Field(default="", alias="businessAddress")
    business_contact: str = Field(default="", alias="businessContact")
    invoice_number: str = Field(default="", alias="invoiceNumber")
    date_issued: Optional[date] = Field(default=None, alias="dateIssued")
    date_due: Optional[date] = Field(default=None, alias="dateDue")
    notes: str = ""


# ============================================================================
# Issue Schemas
# ============================================================================


class Issue(BaseModel):
    """A detected data-quality or policy anomaly."""

    model_config = ConfigDict(frozen=True)

    order_id: str
    driver: str = UNASSIGNED_DRIVER
    severity: IssueSeverity
    rule: IssueRule
    message: str
    details: str = ""


# ============================================================================
# Invoice Schemas
# ============================================================================


class InvoiceItem(BaseModel):
    """One billable line: one per route, not per order."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    route_key: str
    trip_number: Optional[str] = None
    order_id: str
    order_ids: list[str] = Field(default_factory=list)
    driver: str = UNASSIGNED_DRIVER
    pickup: str = UNKNOWN_LOCATION
    dropoff: str = UNKNOWN_LOCATION
    service_date: Optional[date] = None
    distance: float = Field(..., ge=0)
    route_type: RouteType
    stops: int = Field(..., ge=1)
    base_cost: float = Field(..., ge=0)
    add_ons: float = Field(default=0.0, ge=0)
    total_cost: float = Field(..., ge=0)
    original_distance: Optional[float] = Field(default=None, ge=0)
    recalculated: bool = False
    distance_resolved: bool = True

    @model_validator(mode="after")
    def total_is_base_plus_add_ons(self) -> "InvoiceItem":
        """Validate that total_cost equals base_cost + add_ons."""
        if not math.isclose(self.total_cost, self.base_cost + self.add_ons, abs_tol=1e-9):
            raise ValueError(
                f"total_cost {self.total_cost} must equal base_cost + add_ons "
                f"({self.base_cost} + {self.add_ons})"
            )
        return self


class DriverSummary(BaseModel):
    """Per-driver roll-up of invoice items."""

    driver: str
    trips: int = Field(default=0, ge=0)
    total_distance: float = Field(default=0.0, ge=0)
    total_earnings: float = Field(default=0.0, ge=0)


def item_totals(items: list[InvoiceItem]) -> tuple[float, float, int]:
    """Sum distance, cost and recalculated count over items in full precision."""
    total_distance = math.fsum(item.distance for item in items)
    total_cost = math.fsum(item.total_cost for item in items)
    recalculated_count = sum(1 for item in items if item.recalculated)
    return total_distance, total_cost, recalculated_count


class Invoice(BaseModel):
    """Aggregate produced by one generation run.

    Totals are always derived from ``items``; the validator recomputes them
    whenever the invoice is constructed or re-validated.
    """

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: str
    invoice_date: date = Field(..., alias="date")
    week_ending: Optional[date] = Field(default=None, alias="weekEnding")
    business_name: str = Field(default="", alias="businessName")
    business_type: str = Field(default="", alias="businessType")
    contact_person: str = Field(default="", alias="contactPerson")
    business_address: str = Field(default="", alias="businessAddress")
    business_contact: str = Field(default="", alias="businessContact")
    invoice_number: str = Field(default="", alias="invoiceNumber")
    date_issued: Optional[date] = Field(default=None, alias="dateIssued")
    date_due: Optional[date] = Field(default=None, alias="dateDue")
    notes: str = ""
    items: list[InvoiceItem] = Field(default_factory=list)
    total_distance: float = Field(default=0.0, ge=0, alias="totalDistance")
    total_cost: float = Field(default=0.0, ge=0, alias="totalCost")
    status: InvoiceStatus = InvoiceStatus.DRAFT
    recalculated_count: int = Field(default=0, ge=0, alias="recalculatedCount")
    last_modified: datetime = Field(..., alias="lastModified")
    settings: InvoiceGenerationSettings = Field(default_factory=InvoiceGenerationSettings)
    issues: list[Issue] = Field(default_factory=list)
    driver_summaries: list[DriverSummary] = Field(default_factory=list, alias="driverSummaries")

    @model_validator(mode="after")
    def derive_totals(self) -> "Invoice":
        """Keep invoice totals equal to the sum over current items."""
        total_distance, total_cost, recalculated_count = item_totals(self.items)
        self.total_distance = total_distance
        self.total_cost = total_cost
        self.recalculated_count = recalculated_count
        return self

    @property
    def is_locked(self) -> bool:
        return self.status == InvoiceStatus.FINALIZED


# ============================================================================
# Order Summary Schema
# ============================================================================


class OrderDataSummary(BaseModel):
    """Data-quality overview of an order set."""

    total_orders: int = 0
    missing_field_counts: dict[str, int] = Field(default_factory=dict)
    orders_with_missing_fields: int = 0
    driver_count: int = 0
    driver_names: list[str] = Field(default_factory=list)
    trip_number_count: int = 0
    multi_stop_routes: int = 0
    orders_with_trip_numbers: int = 0
    orders_without_trip_numbers: int = 0
    valid_pickup_addresses: int = 0
    valid_dropoff_addresses: int = 0
    missing_addresses: int = 0


# ============================================================================
# Geocoding Schemas
# ============================================================================


class GeocodingConfidence(str, Enum):
    """Confidence level for geocoded addresses."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class GeocodingResult(BaseModel):
    """Coordinates found for one address, or a failed lookup."""

    model_config = ConfigDict(from_attributes=True)

    address_key: str
    address: str
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    confidence: GeocodingConfidence = GeocodingConfidence.LOW
    success: bool = False
