"""
Reconciliation Currency & Source Registry

Central registry of the assets an invoice can be denominated in and the
transfer sources the engine can read payments from.

Each currency has:
- Symbol
- Matching tolerance (absolute, in whole units)
- Token decimals (for converting raw on-chain integers)
- Family (ETH-like or stablecoin)

Supported Sources:
- ASSET_TRANSFERS: indexer API polled for transfers to an address
- CONTRACT_EVENTS: InvoicePaid events from the payment contract
"""

from decimal import Decimal
from enum import Enum
from typing import Dict, Any, List, Optional
from dataclasses import dataclass


class Currency(str, Enum):
    """
    Currencies an invoice may be issued in.
    """
    ETH = "ETH"
    WETH = "WETH"
    USDC = "USDC"
    USDT = "USDT"
    DAI = "DAI"


class CurrencyFamily(str, Enum):
    ETH = "ETH"
    STABLE = "STABLE"


class TransferSourceType(str, Enum):
    """
    Strategies for discovering incoming payments.
    """
    ASSET_TRANSFERS = "ASSET_TRANSFERS"
    CONTRACT_EVENTS = "CONTRACT_EVENTS"


class MatchOutcome(str, Enum):
    """
    Result of evaluating one invoice against its candidate transfers.
    """
    MATCHED = "MATCHED"
    NO_MATCH = "NO_MATCH"


class MarkPaidOutcome(str, Enum):
    """
    Result of the conditional UNPAID -> PAID write.
    """
    UPDATED = "UPDATED"                  # This pass performed the transition
    ALREADY_CHANGED = "ALREADY_CHANGED"  # Status or hash changed since the snapshot


@dataclass(frozen=True)
class CurrencyConfig:
    """
    Matching configuration for a currency.
    """
    currency: Currency
    display_name: str
    tolerance: Decimal
    decimals: int
    family: CurrencyFamily

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currency": self.currency.value,
            "display_name": self.display_name,
            "tolerance": str(self.tolerance),
            "decimals": self.decimals,
            "family": self.family.value,
        }


class CurrencyRegistry:
    """
    Lookup of currency configurations for the matcher and the sources.

    Symbols are matched case-insensitively.
    """

    ETH_TOLERANCE = Decimal("0.0001")
    STABLE_TOLERANCE = Decimal("0.01")

    _default_configs: Dict[Currency, CurrencyConfig] = {
        Currency.ETH: CurrencyConfig(
            currency=Currency.ETH,
            display_name="Ether",
            tolerance=ETH_TOLERANCE,
            decimals=18,
            family=CurrencyFamily.ETH,
        ),
        Currency.WETH: CurrencyConfig(
            currency=Currency.WETH,
            display_name="Wrapped Ether",
            tolerance=ETH_TOLERANCE,
            decimals=18,
            family=CurrencyFamily.ETH,
        ),
        Currency.USDC: CurrencyConfig(
            currency=Currency.USDC,
            display_name="USD Coin",
            tolerance=STABLE_TOLERANCE,
            decimals=6,
            family=CurrencyFamily.STABLE,
        ),
        Currency.USDT: CurrencyConfig(
            currency=Currency.USDT,
            display_name="Tether USD",
            tolerance=STABLE_TOLERANCE,
            decimals=6,
            family=CurrencyFamily.STABLE,
        ),
        Currency.DAI: CurrencyConfig(
            currency=Currency.DAI,
            display_name="Dai",
            tolerance=STABLE_TOLERANCE,
            decimals=18,
            family=CurrencyFamily.STABLE,
        ),
    }

    def __init__(self):
        self._configs = dict(self._default_configs)

    def normalize(self, symbol: Optional[str]) -> Optional[Currency]:
        """Map a reported asset symbol onto a known currency, or None."""
        if not symbol:
            return None
        try:
            return Currency(symbol.strip().upper())
        except ValueError:
            return None

    def is_supported(self, symbol: Optional[str]) -> bool:
        return self.normalize(symbol) is not None

    def get_config(self, symbol: Optional[str]) -> Optional[CurrencyConfig]:
        currency = self.normalize(symbol)
        return self._configs.get(currency) if currency else None

    def get_tolerance(self, symbol: str) -> Optional[Decimal]:
        cfg = self.get_config(symbol)
        return cfg.tolerance if cfg else None

    def get_decimals(self, symbol: str) -> Optional[int]:
        cfg = self.get_config(symbol)
        return cfg.decimals if cfg else None

    def get_all_configs(self) -> List[CurrencyConfig]:
        return list(self._configs.values())

    def assets_compatible(
        self,
        invoice_currency: str,
        transfer_asset: str,
        treat_weth_as_eth: bool = False
    ) -> bool:
        """
        Whether a transfer in transfer_asset can settle an invoice in
        invoice_currency. ETH and WETH are interchangeable only when
        treat_weth_as_eth is set; stablecoins never are.
        """
        invoice = self.normalize(invoice_currency)
        asset = self.normalize(transfer_asset)
        if invoice is None or asset is None:
            return False
        if invoice == asset:
            return True
        eth_pair = {Currency.ETH, Currency.WETH}
        return treat_weth_as_eth and invoice in eth_pair and asset in eth_pair

    def to_dict(self) -> Dict[str, Any]:
        return {
            currency.value: cfg.to_dict()
            for currency, cfg in self._configs.items()
        }


# Global registry instance
currency_registry = CurrencyRegistry()
