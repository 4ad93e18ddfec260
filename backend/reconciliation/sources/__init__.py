"""
Transfer Sources

- AssetTransferSource: indexer polling (alchemy_getAssetTransfers)
- ContractEventSource: InvoicePaid events from the payment contract
"""

from typing import Optional

from config import Settings
from reconciliation.exceptions import SourceConfigurationError
from reconciliation.source_registry import TransferSourceType, CurrencyRegistry, currency_registry
from reconciliation.sources.base import TransferSource
from reconciliation.sources.asset_transfers import AssetTransferSource
from reconciliation.sources.contract_events import ContractEventSource, PAYMENT_CONTRACT_ABI


def build_transfer_source(
    settings: Settings,
    registry: Optional[CurrencyRegistry] = None
) -> TransferSource:
    """Construct the transfer source selected by TRANSFER_SOURCE."""
    try:
        source_type = TransferSourceType(settings.TRANSFER_SOURCE.upper())
    except ValueError:
        raise SourceConfigurationError(
            f"Unknown TRANSFER_SOURCE {settings.TRANSFER_SOURCE!r}. "
            f"Valid values: {[s.value for s in TransferSourceType]}"
        )

    if source_type == TransferSourceType.CONTRACT_EVENTS:
        if not settings.CONTRACT_ADDRESS:
            raise SourceConfigurationError("CONTRACT_ADDRESS is required for CONTRACT_EVENTS")
        if not settings.contract_rpc_url:
            raise SourceConfigurationError("CONTRACT_RPC_URL or ALCHEMY_API_KEY is required for CONTRACT_EVENTS")
        return ContractEventSource(
            rpc_url=settings.contract_rpc_url,
            contract_address=settings.CONTRACT_ADDRESS,
            start_block=settings.CONTRACT_START_BLOCK,
            block_window=settings.CONTRACT_BLOCK_WINDOW,
            max_count=settings.TRANSFER_MAX_COUNT,
            timeout=settings.SOURCE_TIMEOUT_SECONDS,
        )

    if not settings.alchemy_url:
        raise SourceConfigurationError("ALCHEMY_API_KEY or ALCHEMY_URL is required for ASSET_TRANSFERS")
    return AssetTransferSource(
        rpc_url=settings.alchemy_url,
        max_count=settings.TRANSFER_MAX_COUNT,
        timeout=settings.SOURCE_TIMEOUT_SECONDS,
        registry=registry or currency_registry,
    )


__all__ = [
    "TransferSource",
    "AssetTransferSource",
    "ContractEventSource",
    "PAYMENT_CONTRACT_ABI",
    "build_transfer_source",
]
