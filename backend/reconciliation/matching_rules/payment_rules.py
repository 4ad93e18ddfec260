"""
Invoice Payment Matching Rules

Decides whether an invoice has been paid by one of the transfers observed
at its payment address, and which transfer is the proof.

A transfer is accepted when:
- its tx hash has not been consumed by another invoice
- it was sent to the invoice's payment address
- its asset matches the invoice currency (ETH/WETH only if configured)
- its amount is within the currency tolerance, compared in Decimal
- it carries no invoice number, or carries this invoice's number

The first accepted transfer in source order wins. More than one accepted
transfer marks the result as ambiguous.

The rules engine performs no I/O and never mutates its inputs.
"""

from decimal import Decimal, InvalidOperation
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field

from reconciliation.models import PendingInvoice, Transfer, ConsumedSet
from reconciliation.source_registry import (
    CurrencyRegistry,
    MatchOutcome,
    currency_registry
)


@dataclass
class MatchResult:
    """
    Result of matching one invoice.
    """
    invoice_id: str
    outcome: MatchOutcome
    transfer: Optional[Transfer] = None
    candidates: List[Transfer] = field(default_factory=list)
    skipped_consumed: int = 0
    reason: Optional[str] = None

    @property
    def matched(self) -> bool:
        return self.outcome == MatchOutcome.MATCHED

    @property
    def tx_hash(self) -> Optional[str]:
        return self.transfer.tx_hash if self.transfer else None

    @property
    def ambiguous(self) -> bool:
        return len(self.candidates) > 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "invoice_id": self.invoice_id,
            "outcome": self.outcome.value,
            "tx_hash": self.tx_hash,
            "candidates_count": len(self.candidates),
            "candidate_tx_hashes": [c.tx_hash for c in self.candidates],
            "skipped_consumed": self.skipped_consumed,
            "ambiguous": self.ambiguous,
            "reason": self.reason,
        }


class PaymentMatchingRules:
    """
    Matching rules engine for crypto invoice payments.
    """

    def __init__(
        self,
        registry: CurrencyRegistry = currency_registry,
        treat_weth_as_eth: bool = False
    ):
        self.registry = registry
        self.treat_weth_as_eth = treat_weth_as_eth

    def find_match(
        self,
        invoice: PendingInvoice,
        transfers: List[Transfer],
        consumed: ConsumedSet
    ) -> MatchResult:
        """
        Find the transfer that pays an invoice.

        Args:
            invoice: The pending invoice
            transfers: Candidate transfers, in source order
            consumed: Hashes already attributed to other invoices

        Returns:
            MatchResult with the chosen transfer and every accepted candidate
        """
        tolerance = self.registry.get_tolerance(invoice.currency)
        if tolerance is None:
            return MatchResult(
                invoice_id=invoice.id,
                outcome=MatchOutcome.NO_MATCH,
                reason=f"unsupported currency {invoice.currency}"
            )

        expected = self._to_decimal(invoice.amount)
        if expected is None:
            return MatchResult(
                invoice_id=invoice.id,
                outcome=MatchOutcome.NO_MATCH,
                reason=f"invalid invoice amount {invoice.amount!r}"
            )

        candidates: List[Transfer] = []
        skipped_consumed = 0

        for transfer in transfers:
            if not self._is_eligible(invoice, transfer, expected, tolerance):
                continue
            if transfer.tx_hash in consumed:
                skipped_consumed += 1
                continue
            candidates.append(transfer)

        if not candidates:
            return MatchResult(
                invoice_id=invoice.id,
                outcome=MatchOutcome.NO_MATCH,
                skipped_consumed=skipped_consumed,
                reason="no unconsumed transfer within tolerance"
            )

        return MatchResult(
            invoice_id=invoice.id,
            outcome=MatchOutcome.MATCHED,
            transfer=candidates[0],
            candidates=candidates,
            skipped_consumed=skipped_consumed
        )

    def amount_matches(self, expected: Decimal, actual: Decimal, currency: str) -> bool:
        """Inclusive tolerance check in exact decimal arithmetic."""
        tolerance = self.registry.get_tolerance(currency)
        if tolerance is None:
            return False
        return abs(actual - expected) <= tolerance

    def _is_eligible(
        self,
        invoice: PendingInvoice,
        transfer: Transfer,
        expected: Decimal,
        tolerance: Decimal
    ) -> bool:
        if not transfer.tx_hash:
            return False

        if (transfer.to_address or "").lower() != invoice.payment_address.lower():
            return False

        if not self.registry.assets_compatible(
            invoice.currency, transfer.asset, self.treat_weth_as_eth
        ):
            return False

        if transfer.invoice_number and transfer.invoice_number != invoice.invoice_number:
            return False

        actual = self._to_decimal(transfer.amount)
        if actual is None or actual <= 0:
            return False

        return abs(actual - expected) <= tolerance

    @staticmethod
    def _to_decimal(value: Any) -> Optional[Decimal]:
        if isinstance(value, float):
            # Binary floats never reach the comparison
            return None
        try:
            amount = Decimal(str(value))
        except (InvalidOperation, TypeError, ValueError):
            return None
        # NaN and Infinity cannot be ordered against a tolerance
        return amount if amount.is_finite() else None


# Default rules engine (ETH/WETH kept distinct)
payment_rules = PaymentMatchingRules()
