"""
Reconciliation error taxonomy.

Only PendingLoadError aborts a pass; everything else is recorded against
the invoice it happened on and the pass moves on.
"""

from typing import Optional


class ReconciliationError(Exception):
    """Base exception for reconciliation errors"""
    kind = "reconciliation_error"


class SourceUnavailable(ReconciliationError):
    """Transfer data could not be fetched or parsed. Retried next pass."""
    kind = "source_unavailable"

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"{source}: {message}")


class SourceTimeout(SourceUnavailable):
    """Transfer source did not answer within the configured timeout."""
    kind = "source_timeout"


class SourceConfigurationError(ReconciliationError):
    """A transfer source is missing required settings."""
    kind = "source_configuration"


class PersistenceFailure(ReconciliationError):
    """Marking an invoice paid failed after a match was found."""
    kind = "persistence_failure"

    def __init__(self, invoice_id: str, cause: Optional[BaseException] = None):
        self.invoice_id = invoice_id
        self.cause = cause
        super().__init__(f"Failed to mark invoice {invoice_id} paid: {cause}")


class PendingLoadError(ReconciliationError):
    """The pending invoice snapshot could not be loaded; the pass is aborted."""
    kind = "pending_load_failure"
