"""Exception types for the invoicing engine.

Every error carries a message meant for the dispatcher: what failed and
what can be done about it (retry, edit manually, proceed with flagged data).
"""

from typing import Optional


class InvoicingError(Exception):
    """Base class for all invoicing engine errors."""

    pass


class ValidationError(InvoicingError, ValueError):
    """Invalid input to an engine operation. No partial result is produced."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class DistanceResolutionError(InvoicingError):
    """A distance lookup failed for one route.

    Raised inside the resolver and recovered there: the route is kept with
    an unresolved distance and an error issue is attached to the invoice.
    """

    def __init__(self, route_key: str, reason: str):
        super().__init__(
            f"Could not resolve distance for route {route_key}: {reason}. "
            "Enter the distance manually or retry generation."
        )
        self.route_key = route_key
        self.reason = reason


class InvalidStateTransition(InvoicingError):
    """Illegal invoice lifecycle transition. The invoice is unchanged."""

    def __init__(self, current: str, target: str):
        super().__init__(
            f"Cannot move invoice from '{current}' to '{target}'. "
            "Invoices must be reviewed before they are finalized."
        )
        self.current = current
        self.target = target


class InvoiceLocked(InvoicingError):
    """Mutation attempted on a finalized invoice. The invoice is unchanged."""

    def __init__(self, invoice_id: str, operation: str):
        super().__init__(
            f"Invoice {invoice_id} is finalized and locked; cannot {operation}. "
            "Generate a new invoice to make changes."
        )
        self.invoice_id = invoice_id
        self.operation = operation


class GenerationError(InvoicingError):
    """Invoice generation failed as a whole."""

    pass


class GenerationCancelled(GenerationError):
    """Generation was cancelled by the caller between lookup waves."""

    def __init__(self, completed: int, total: int):
        super().__init__(
            f"Invoice generation cancelled after {completed} of {total} routes."
        )
        self.completed = completed
        self.total = total
