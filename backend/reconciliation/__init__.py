"""
Payment Reconciliation Engine

Matches on-chain transfers to unpaid crypto invoices:
- Indexer polling or payment contract events as transfer sources
- Per-currency amount tolerances in exact decimal arithmetic
- One transaction settles at most one invoice
- Conditional writes so concurrent passes stay safe
- Manual (HTTP/CLI) and scheduled triggers
"""

from reconciliation.source_registry import (
    Currency,
    CurrencyConfig,
    CurrencyRegistry,
    TransferSourceType,
    MatchOutcome,
    MarkPaidOutcome,
    currency_registry
)
from reconciliation.models import (
    PendingInvoice,
    Transfer,
    TransferBatch,
    ConsumedSet,
    ReconciliationRunResult
)
from reconciliation.exceptions import (
    ReconciliationError,
    SourceUnavailable,
    SourceTimeout,
    SourceConfigurationError,
    PersistenceFailure,
    PendingLoadError
)
from reconciliation.matching_rules.payment_rules import (
    PaymentMatchingRules,
    MatchResult,
    payment_rules
)
from reconciliation.sources import (
    TransferSource,
    AssetTransferSource,
    ContractEventSource,
    build_transfer_source
)
from reconciliation.store import InvoiceStore, SqlAlchemyInvoiceStore
from reconciliation.services.reconciliation_service import (
    ReconciliationService,
    build_reconciliation_service
)
from reconciliation.scheduler import ReconciliationScheduler
from reconciliation.endpoints.reconciliation_api import router as reconciliation_router

__all__ = [
    # Registry
    'Currency',
    'CurrencyConfig',
    'CurrencyRegistry',
    'TransferSourceType',
    'MatchOutcome',
    'MarkPaidOutcome',
    'currency_registry',
    # Models
    'PendingInvoice',
    'Transfer',
    'TransferBatch',
    'ConsumedSet',
    'ReconciliationRunResult',
    # Errors
    'ReconciliationError',
    'SourceUnavailable',
    'SourceTimeout',
    'SourceConfigurationError',
    'PersistenceFailure',
    'PendingLoadError',
    # Matching Rules
    'PaymentMatchingRules',
    'MatchResult',
    'payment_rules',
    # Sources
    'TransferSource',
    'AssetTransferSource',
    'ContractEventSource',
    'build_transfer_source',
    # Store
    'InvoiceStore',
    'SqlAlchemyInvoiceStore',
    # Service
    'ReconciliationService',
    'build_reconciliation_service',
    'ReconciliationScheduler',
    # Router
    'reconciliation_router'
]
