"""
Reconciliation Service

Runs one reconciliation pass:
- Load UNPAID invoices that have a payment address
- Seed the consumed set with every hash already recorded
- Fetch transfers per invoice (bounded timeout, optional bounded parallelism)
- Match invoices in oldest-first order, claiming each hash before the next invoice
- Conditionally mark matched invoices PAID
- Summarise counts and per-invoice errors

Only a failure to load the pending snapshot aborts a pass. Everything else
is recorded against the invoice it happened on.
"""

import asyncio
import uuid
import logging
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional, Callable

from database.connection import get_session_factory
from logging_config import set_run_context, clear_run_context
from sentry_integration import capture_exception
from reconciliation.exceptions import (
    ReconciliationError,
    SourceTimeout,
    PersistenceFailure,
    PendingLoadError,
)
from reconciliation.matching_rules.payment_rules import PaymentMatchingRules, MatchResult
from reconciliation.models import (
    PendingInvoice,
    TransferBatch,
    ConsumedSet,
    InvoiceError,
    ReconciliationRunResult,
)
from reconciliation.source_registry import MarkPaidOutcome, TransferSourceType
from reconciliation.sources import build_transfer_source
from reconciliation.sources.base import TransferSource
from reconciliation.store import InvoiceStore, SqlAlchemyInvoiceStore

logger = logging.getLogger(__name__)


class ReconciliationAuditEvent:
    """Audit event types for reconciliation operations."""
    RUN_STARTED = "reconciliation.run_started"
    RUN_COMPLETED = "reconciliation.run_completed"
    RUN_ABORTED = "reconciliation.run_aborted"
    PAYMENT_DETECTED = "reconciliation.payment_detected"
    INVOICE_PAID = "reconciliation.invoice_paid"
    AMBIGUOUS_MATCH = "reconciliation.ambiguous_match"
    UPDATE_CONFLICT = "reconciliation.update_conflict"


def log_reconciliation_event(
    event_type: str,
    details: Dict[str, Any],
    invoice_id: Optional[str] = None,
    level: int = logging.INFO
):
    """Log reconciliation event for audit trail."""
    log_entry = {
        "event": event_type,
        "invoice_id": invoice_id,
        "details": details,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
    logger.log(level, f"Reconciliation event: {event_type}", extra=log_entry)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ReconciliationService:
    """
    Matches observed transfers to pending invoices.

    The consumed set lives for exactly one pass. Fetches may overlap up to
    max_concurrency, but matching and claiming always happen one invoice
    at a time in the stable order, so two invoices can never claim the
    same transaction.
    """

    def __init__(
        self,
        store: InvoiceStore,
        source: TransferSource,
        rules: Optional[PaymentMatchingRules] = None,
        source_timeout: float = 15.0,
        max_concurrency: int = 1,
        clock: Callable[[], datetime] = _utc_now
    ):
        self.store = store
        self.source = source
        self.rules = rules or PaymentMatchingRules()
        self.source_timeout = source_timeout
        self.max_concurrency = max(1, max_concurrency)
        self.clock = clock

    async def run_pass(self, trigger: str = "manual") -> ReconciliationRunResult:
        """
        Run one reconciliation pass.

        Args:
            trigger: What started the pass (manual, api, scheduler, cli)

        Returns:
            ReconciliationRunResult with counts and per-invoice errors

        Raises:
            PendingLoadError: the pending snapshot or recorded hashes could not be read
        """
        run_id = str(uuid.uuid4())
        result = ReconciliationRunResult(run_id=run_id, trigger=trigger, started_at=self.clock())
        set_run_context(run_id, trigger)

        try:
            log_reconciliation_event(
                ReconciliationAuditEvent.RUN_STARTED,
                {"run_id": run_id, "trigger": trigger, "source": self.source.source_type.value}
            )

            pending, consumed = await self._load_snapshot(run_id)
            result.checked = len(pending)

            logger.info(
                f"Checking {len(pending)} unpaid invoices; "
                f"{len(consumed)} transactions already recorded"
            )

            await self._process(pending, consumed, result)

            result.finished_at = self.clock()
            log_reconciliation_event(
                ReconciliationAuditEvent.RUN_COMPLETED,
                {
                    "run_id": run_id,
                    "checked": result.checked,
                    "detected": result.detected,
                    "updated": result.updated,
                    "conflicts": result.conflicts,
                    "errors": len(result.errors),
                }
            )
            return result
        finally:
            clear_run_context()

    async def _load_snapshot(self, run_id: str):
        try:
            pending = await self.store.find_pending_with_address()
            recorded = await self.store.find_all_paid_tx_hashes()
        except Exception as e:
            log_reconciliation_event(
                ReconciliationAuditEvent.RUN_ABORTED,
                {"run_id": run_id, "error": str(e)},
                level=logging.ERROR
            )
            raise PendingLoadError(f"Failed to load pending invoices: {e}") from e

        ordered = sorted(
            pending,
            key=lambda inv: (
                inv.created_at is None,
                inv.created_at.timestamp() if inv.created_at else 0.0,
                inv.invoice_number,
            )
        )
        return ordered, ConsumedSet(recorded)

    async def _process(
        self,
        pending: List[PendingInvoice],
        consumed: ConsumedSet,
        result: ReconciliationRunResult
    ):
        semaphore = asyncio.Semaphore(self.max_concurrency)
        fetches = [
            asyncio.create_task(self._fetch(invoice, semaphore))
            for invoice in pending
        ]

        try:
            for invoice, fetch in zip(pending, fetches):
                try:
                    batch = await fetch
                except ReconciliationError as e:
                    self._record_error(result, invoice, e.kind, str(e))
                    logger.warning(f"Skipping invoice {invoice.invoice_number}: {e}")
                    continue
                except Exception as e:
                    capture_exception(e, invoice_id=invoice.id, stage="fetch")
                    self._record_error(result, invoice, "unexpected", str(e))
                    logger.error(f"Unexpected error fetching transfers for {invoice.invoice_number}: {e}")
                    continue

                try:
                    await self._reconcile_invoice(invoice, batch, consumed, result)
                except Exception as e:
                    capture_exception(e, invoice_id=invoice.id, stage="match")
                    self._record_error(result, invoice, "unexpected", str(e))
                    logger.error(f"Unexpected error reconciling invoice {invoice.invoice_number}: {e}")
        finally:
            for fetch in fetches:
                if not fetch.done():
                    fetch.cancel()

    async def _fetch(self, invoice: PendingInvoice, semaphore: asyncio.Semaphore) -> TransferBatch:
        async with semaphore:
            try:
                return await asyncio.wait_for(
                    self.source.fetch_incoming_transfers(invoice.payment_address),
                    timeout=self.source_timeout
                )
            except asyncio.TimeoutError:
                raise SourceTimeout(
                    self.source.source_type.value,
                    f"no response within {self.source_timeout}s"
                )

    async def _reconcile_invoice(
        self,
        invoice: PendingInvoice,
        batch: TransferBatch,
        consumed: ConsumedSet,
        result: ReconciliationRunResult
    ):
        if batch.truncated:
            result.truncated.append(invoice.id)
            logger.warning(
                f"Transfer history for {invoice.payment_address} was truncated; "
                f"older payments to invoice {invoice.invoice_number} may be missed"
            )

        match = self.rules.find_match(invoice, batch.transfers, consumed)

        if not match.matched:
            logger.debug(
                f"No payment for invoice {invoice.invoice_number} "
                f"({len(batch.transfers)} transfers): {match.reason}"
            )
            if match.reason and match.reason.startswith("unsupported currency"):
                logger.warning(f"Invoice {invoice.invoice_number}: {match.reason}")
            return

        result.detected += 1
        if match.ambiguous:
            self._record_ambiguous(invoice, match, result)

        tx_hash = match.tx_hash
        consumed.claim(tx_hash)

        log_reconciliation_event(
            ReconciliationAuditEvent.PAYMENT_DETECTED,
            {"tx_hash": tx_hash, "amount": str(match.transfer.amount), "asset": match.transfer.asset},
            invoice_id=invoice.id
        )

        try:
            outcome = await self.store.mark_paid(
                invoice.id,
                tx_hash,
                paid_at=self.clock(),
                via_contract=match.transfer.source == TransferSourceType.CONTRACT_EVENTS
            )
        except Exception as e:
            failure = PersistenceFailure(invoice.id, e)
            capture_exception(e, invoice_id=invoice.id, tx_hash=tx_hash, stage="mark_paid")
            self._record_error(result, invoice, failure.kind, str(failure))
            logger.error(f"Failed to mark invoice {invoice.invoice_number} paid: {e}")
            return

        if outcome == MarkPaidOutcome.UPDATED:
            result.updated += 1
            result.updated_ids.append(invoice.id)
            log_reconciliation_event(
                ReconciliationAuditEvent.INVOICE_PAID,
                {"invoice_number": invoice.invoice_number, "tx_hash": tx_hash},
                invoice_id=invoice.id
            )
        else:
            result.conflicts += 1
            log_reconciliation_event(
                ReconciliationAuditEvent.UPDATE_CONFLICT,
                {"invoice_number": invoice.invoice_number, "tx_hash": tx_hash},
                invoice_id=invoice.id
            )

    def _record_ambiguous(
        self,
        invoice: PendingInvoice,
        match: MatchResult,
        result: ReconciliationRunResult
    ):
        entry = {
            "invoiceId": invoice.id,
            "invoiceNumber": invoice.invoice_number,
            "chosen": match.tx_hash,
            "candidates": [c.tx_hash for c in match.candidates],
        }
        result.ambiguous.append(entry)
        log_reconciliation_event(
            ReconciliationAuditEvent.AMBIGUOUS_MATCH,
            entry,
            invoice_id=invoice.id,
            level=logging.WARNING
        )

    @staticmethod
    def _record_error(
        result: ReconciliationRunResult,
        invoice: PendingInvoice,
        kind: str,
        message: str
    ):
        result.errors.append(InvoiceError(
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            kind=kind,
            error=message
        ))


def build_reconciliation_service(settings) -> ReconciliationService:
    """Wire the service from application settings."""
    return ReconciliationService(
        store=SqlAlchemyInvoiceStore(get_session_factory()),
        source=build_transfer_source(settings),
        rules=PaymentMatchingRules(treat_weth_as_eth=settings.TREAT_WETH_AS_ETH),
        source_timeout=settings.SOURCE_TIMEOUT_SECONDS,
        max_concurrency=settings.RECONCILE_MAX_CONCURRENCY,
    )
