"""
Reconciliation data types.

Invoices and transfers are carried through the engine as immutable
dataclasses; only the service talks to the database.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, Any, List, Optional, Iterable
from dataclasses import dataclass, field

from reconciliation.source_registry import TransferSourceType


@dataclass(frozen=True)
class PendingInvoice:
    """An UNPAID invoice with a payment address."""
    id: str
    invoice_number: str
    amount: Decimal
    currency: str
    payment_address: str
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class Transfer:
    """
    An observed incoming value transfer.

    amount is in whole units of the asset. invoice_number is only known
    when the payment went through the invoice contract.
    """
    tx_hash: str
    asset: str
    amount: Decimal
    to_address: str
    source: TransferSourceType
    from_address: Optional[str] = None
    block_number: Optional[int] = None
    invoice_number: Optional[str] = None
    timestamp: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tx_hash": self.tx_hash,
            "asset": self.asset,
            "amount": str(self.amount),
            "to_address": self.to_address,
            "from_address": self.from_address,
            "block_number": self.block_number,
            "invoice_number": self.invoice_number,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "source": self.source.value,
        }


@dataclass
class TransferBatch:
    """
    Transfers returned by one source call.

    truncated is set when the source hit its record cap, so older
    payments may be missing from this batch.
    """
    transfers: List[Transfer]
    truncated: bool = False


class ConsumedSet:
    """
    Transaction hashes already attributed to an invoice.

    Scoped to a single reconciliation pass and seeded from the hashes
    already recorded on invoices.
    """

    def __init__(self, tx_hashes: Iterable[str] = ()):
        self._hashes = {self._key(h) for h in tx_hashes if h}

    @staticmethod
    def _key(tx_hash: str) -> str:
        return tx_hash.strip().lower()

    def __contains__(self, tx_hash: str) -> bool:
        return self._key(tx_hash) in self._hashes

    def __len__(self) -> int:
        return len(self._hashes)

    def claim(self, tx_hash: str) -> None:
        key = self._key(tx_hash)
        if key in self._hashes:
            raise ValueError(f"Transaction {tx_hash} already consumed")
        self._hashes.add(key)


@dataclass
class InvoiceError:
    invoice_id: str
    invoice_number: str
    kind: str
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "invoiceId": self.invoice_id,
            "invoiceNumber": self.invoice_number,
            "kind": self.kind,
            "error": self.error,
        }


@dataclass
class ReconciliationRunResult:
    """Result of a reconciliation pass."""
    run_id: str
    trigger: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    checked: int = 0
    detected: int = 0
    updated: int = 0
    conflicts: int = 0
    updated_ids: List[str] = field(default_factory=list)
    errors: List[InvoiceError] = field(default_factory=list)
    ambiguous: List[Dict[str, Any]] = field(default_factory=list)
    truncated: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "runId": self.run_id,
            "trigger": self.trigger,
            "startedAt": self.started_at.isoformat(),
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
            "checked": self.checked,
            "detected": self.detected,
            "updated": self.updated,
            "updatedIds": list(self.updated_ids),
            "conflicts": self.conflicts,
            "errors": [e.to_dict() for e in self.errors],
            "ambiguous": list(self.ambiguous),
            "truncated": list(self.truncated),
        }
