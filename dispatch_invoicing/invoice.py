"""Invoice lifecycle management.

Status moves strictly forward: draft -> reviewed -> finalized. Draft and
reviewed invoices can be edited (distance recalculation, metadata);
finalized invoices are locked. Every operation returns a new Invoice and
leaves the one it was given untouched.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from .exceptions import InvalidStateTransition, InvoiceLocked, ValidationError
from .pricing import calculate_route_costs, is_valid_distance
from .schemas import (
    Invoice,
    InvoiceGenerationSettings,
    InvoiceMetadata,
    InvoiceStatus,
    IssueRule,
    item_totals,
)
from .summary import generate_driver_summaries

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    InvoiceStatus.DRAFT: InvoiceStatus.REVIEWED,
    InvoiceStatus.REVIEWED: InvoiceStatus.FINALIZED,
}


def is_locked(invoice: Invoice) -> bool:
    return invoice.status == InvoiceStatus.FINALIZED


def can_transition(invoice: Invoice, target: InvoiceStatus) -> bool:
    """Check whether the invoice may move to ``target`` from its current status."""
    return ALLOWED_TRANSITIONS.get(invoice.status) == target


def recompute_totals(invoice: Invoice) -> Invoice:
    """Return a copy with totals and recalculated count derived from the items."""
    total_distance, total_cost, recalculated_count = item_totals(invoice.items)
    return invoice.model_copy(
        update={
            "total_distance": total_distance,
            "total_cost": total_cost,
            "recalculated_count": recalculated_count,
        }
    )


def _transition(invoice: Invoice, target: InvoiceStatus) -> Invoice:
    if not can_transition(invoice, target):
        raise InvalidStateTransition(invoice.status.value, target.value)
    logger.info("Invoice %s: %s -> %s", invoice.id, invoice.status.value, target.value)
    return invoice.model_copy(update={"status": target, "last_modified": datetime.now()})


def review_invoice(invoice: Invoice) -> Invoice:
    """Mark a draft invoice as reviewed.

    Raises:
        InvalidStateTransition: If the invoice is not a draft.
    """
    return _transition(invoice, InvoiceStatus.REVIEWED)


def finalize_invoice(invoice: Invoice) -> Invoice:
    """Finalize a reviewed invoice. Finalized invoices are locked.

    Raises:
        InvalidStateTransition: If the invoice has not been reviewed, or is
            already finalized.
    """
    return _transition(invoice, InvoiceStatus.FINALIZED)


# ============================================================================
# Editing
# ============================================================================


def recalculate_invoice_item(
    invoice: Invoice,
    index: int,
    new_distance: float,
    settings: Optional[InvoiceGenerationSettings] = None,
) -> Invoice:
    """Override the distance of one line item and reprice it.

    The first override records the generated distance in
    ``original_distance``; later overrides keep that first value so the
    audit trail always points back to what generation produced.

    Args:
        invoice: Draft or reviewed invoice.
        index: Position of the item in ``invoice.items``.
        new_distance: Corrected distance in miles.
        settings: Pricing to apply. Defaults to the settings the invoice
            was generated with.

    Returns:
        A new Invoice with the item repriced and all totals recomputed.

    Raises:
        InvoiceLocked: If the invoice is finalized.
        ValidationError: If the index or distance is invalid, or manual
            distance adjustment is turned off.
    """
    if invoice.is_locked:
        raise InvoiceLocked(invoice.id, "recalculate items")
    if not 0 <= index < len(invoice.items):
        raise ValidationError(
            f"Item index {index} is out of range for {len(invoice.items)} items", field="index"
        )
    if not is_valid_distance(new_distance):
        raise ValidationError(
            f"Distance must be a finite, non-negative number, got {new_distance}", field="distance"
        )

    settings = settings or invoice.settings
    if not settings.allow_manual_distance_adjustment:
        raise ValidationError("Manual distance adjustment is disabled in the invoice settings")

    item = invoice.items[index]
    costs = calculate_route_costs(item.route_type, float(new_distance), item.stops, settings)
    original = item.original_distance if item.original_distance is not None else item.distance
    updated_item = item.model_copy(
        update={
            "distance": float(new_distance),
            "base_cost": costs.base_cost,
            "add_ons": costs.add_ons,
            "total_cost": costs.total_cost,
            "original_distance": original,
            "recalculated": True,
            "distance_resolved": True,
        }
    )

    items = list(invoice.items)
    items[index] = updated_item
    # A manual distance settles the unresolved-distance error of this route
    issues = [
        issue
        for issue in invoice.issues
        if not (
            issue.rule == IssueRule.UNRESOLVED_DISTANCE
            and issue.order_id == ", ".join(item.order_ids)
        )
    ]

    logger.info(
        "Invoice %s item %d: %.1f mi -> %.1f mi", invoice.id, index, item.distance, new_distance
    )
    updated = invoice.model_copy(
        update={
            "items": items,
            "issues": issues,
            "driver_summaries": generate_driver_summaries(items),
            "last_modified": datetime.now(),
        }
    )
    return recompute_totals(updated)


def update_invoice_metadata(invoice: Invoice, **fields: Any) -> Invoice:
    """Edit the business details of a draft or reviewed invoice.

    Args:
        invoice: The invoice to edit.
        **fields: InvoiceMetadata field names and their new values.

    Returns:
        A new Invoice with the metadata changed; totals are untouched.

    Raises:
        InvoiceLocked: If the invoice is finalized.
        ValidationError: If a field is unknown or a value is invalid.
    """
    if invoice.is_locked:
        raise InvoiceLocked(invoice.id, "edit metadata")
    unknown = set(fields) - set(InvoiceMetadata.model_fields)
    if unknown:
        raise ValidationError(f"Unknown invoice metadata field(s): {', '.join(sorted(unknown))}")

    current = {name: getattr(invoice, name) for name in InvoiceMetadata.model_fields}
    current.update(fields)
    try:
        metadata = InvoiceMetadata.model_validate(current)
    except ValueError as e:
        raise ValidationError(f"Invalid invoice metadata: {e}") from e

    return invoice.model_copy(
        update={**metadata.model_dump(), "last_modified": datetime.now()}
    )
