"""
Shared fixtures for reconciliation tests.

In-memory stand-ins for the invoice store and transfer source so the
engine can be exercised without a database or an RPC endpoint.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Set

import pytest

from reconciliation.models import PendingInvoice, Transfer, TransferBatch
from reconciliation.source_registry import MarkPaidOutcome, TransferSourceType

ADDRESS_A = "0xaaaa000000000000000000000000000000000001"
ADDRESS_B = "0xbbbb000000000000000000000000000000000002"
ADDRESS_C = "0xcccc000000000000000000000000000000000003"

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_invoice(
    invoice_id: str,
    amount: str,
    currency: str = "ETH",
    address: str = ADDRESS_A,
    minutes: int = 0,
    invoice_number: Optional[str] = None
) -> PendingInvoice:
    return PendingInvoice(
        id=invoice_id,
        invoice_number=invoice_number or f"INV-{invoice_id}",
        amount=Decimal(amount),
        currency=currency,
        payment_address=address,
        created_at=BASE_TIME + timedelta(minutes=minutes),
    )


def make_transfer(
    tx_hash: str,
    amount: str,
    asset: str = "ETH",
    to_address: str = ADDRESS_A,
    invoice_number: Optional[str] = None,
    source: TransferSourceType = TransferSourceType.ASSET_TRANSFERS
) -> Transfer:
    return Transfer(
        tx_hash=tx_hash,
        asset=asset,
        amount=Decimal(amount),
        to_address=to_address,
        invoice_number=invoice_number,
        source=source,
    )


class FakeInvoiceStore:
    """
    In-memory invoice store with the same conditional write semantics
    as the SQL store.
    """

    def __init__(self, invoices: List[PendingInvoice], paid_hashes: Optional[Set[str]] = None):
        self.invoices: Dict[str, PendingInvoice] = {inv.id: inv for inv in invoices}
        self.status: Dict[str, str] = {inv.id: "UNPAID" for inv in invoices}
        self.tx_hashes: Dict[str, Optional[str]] = {inv.id: None for inv in invoices}
        self.external_hashes: Set[str] = set(paid_hashes or ())
        self.paid_at: Dict[str, datetime] = {}
        self.via_contract: Dict[str, bool] = {}
        self.mark_paid_calls: List[tuple] = []
        self.fail_load = False
        self.fail_mark_paid_for: Set[str] = set()
        self.changed_behind_our_back: Set[str] = set()

    async def find_pending_with_address(self) -> List[PendingInvoice]:
        if self.fail_load:
            raise ConnectionError("database unavailable")
        return [
            inv for inv in self.invoices.values()
            if self.status[inv.id] == "UNPAID" and inv.payment_address
        ]

    async def find_all_paid_tx_hashes(self) -> Set[str]:
        if self.fail_load:
            raise ConnectionError("database unavailable")
        recorded = {h for h in self.tx_hashes.values() if h}
        return recorded | self.external_hashes

    async def mark_paid(self, invoice_id, tx_hash, paid_at, via_contract=False):
        self.mark_paid_calls.append((invoice_id, tx_hash))
        if invoice_id in self.fail_mark_paid_for:
            raise ConnectionError("write failed")
        if invoice_id in self.changed_behind_our_back:
            self.status[invoice_id] = "PAID"
            return MarkPaidOutcome.ALREADY_CHANGED
        if self.status[invoice_id] != "UNPAID" or self.tx_hashes[invoice_id] is not None:
            return MarkPaidOutcome.ALREADY_CHANGED
        recorded = {h.lower() for h in self.tx_hashes.values() if h} | self.external_hashes
        if tx_hash.lower() in recorded:
            return MarkPaidOutcome.ALREADY_CHANGED
        self.status[invoice_id] = "PAID"
        self.tx_hashes[invoice_id] = tx_hash
        self.paid_at[invoice_id] = paid_at
        self.via_contract[invoice_id] = via_contract
        return MarkPaidOutcome.UPDATED


class FakeTransferSource:
    """
    Transfer source serving canned batches per address.

    Addresses listed in failures raise the given exception; addresses
    listed in delays sleep before answering.
    """

    def __init__(
        self,
        transfers: Optional[Dict[str, List[Transfer]]] = None,
        source_type: TransferSourceType = TransferSourceType.ASSET_TRANSFERS
    ):
        self.source_type = source_type
        self.transfers = transfers or {}
        self.truncated: Set[str] = set()
        self.failures: Dict[str, Exception] = {}
        self.delays: Dict[str, float] = {}
        self.calls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch_incoming_transfers(self, address, since_block=None) -> TransferBatch:
        self.calls.append(address)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if address in self.delays:
                await asyncio.sleep(self.delays[address])
            if address in self.failures:
                raise self.failures[address]
            return TransferBatch(
                transfers=list(self.transfers.get(address, [])),
                truncated=address in self.truncated
            )
        finally:
            self.in_flight -= 1

    def describe(self):
        return {"source": self.source_type.value, "fake": True}


@pytest.fixture
def fixed_clock():
    now = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
    return lambda: now
