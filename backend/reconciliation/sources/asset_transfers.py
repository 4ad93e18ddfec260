"""
Asset Transfer Index Source

Polls an Alchemy-compatible JSON-RPC endpoint with
alchemy_getAssetTransfers for native and ERC-20 transfers sent to an
address.

Request:
    POST <rpc_url>
    {"method": "alchemy_getAssetTransfers",
     "params": [{"toAddress": ..., "category": ["external", "erc20"],
                 "excludeZeroValue": true, "maxCount": "0x64", ...}]}

Amounts are taken from rawContract (hex integer + decimals) when present,
otherwise from the decimal "value" field. The response body is parsed
with Decimal for every JSON number, so no amount passes through a float.
"""

import json
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import httpx

from reconciliation.exceptions import SourceUnavailable, SourceTimeout
from reconciliation.models import Transfer, TransferBatch
from reconciliation.source_registry import (
    CurrencyRegistry,
    TransferSourceType,
    currency_registry
)

logger = logging.getLogger(__name__)


class AssetTransferSource:
    """
    Transfer index client.

    One JSON-RPC call per address per pass. Hitting max_count, or a
    pageKey in the response, marks the batch as truncated.
    """

    source_type = TransferSourceType.ASSET_TRANSFERS
    CATEGORIES = ["external", "erc20"]
    DEFAULT_MAX_COUNT = 100

    def __init__(
        self,
        rpc_url: str,
        max_count: int = DEFAULT_MAX_COUNT,
        timeout: float = 15.0,
        registry: CurrencyRegistry = currency_registry,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.rpc_url = rpc_url
        self.max_count = max_count
        self.timeout = timeout
        self.registry = registry
        self._client = client
        self._request_id = 0

    def describe(self) -> Dict[str, Any]:
        return {
            "source": self.source_type.value,
            "endpoint": self.rpc_url.split("/v2/")[0],
            "max_count": self.max_count,
            "categories": list(self.CATEGORIES),
        }

    def _build_payload(self, address: str, since_block: Optional[int]) -> Dict[str, Any]:
        self._request_id += 1
        return {
            "id": self._request_id,
            "jsonrpc": "2.0",
            "method": "alchemy_getAssetTransfers",
            "params": [
                {
                    "fromBlock": hex(since_block) if since_block is not None else "0x0",
                    "toBlock": "latest",
                    "toAddress": address,
                    "excludeZeroValue": True,
                    "category": list(self.CATEGORIES),
                    "maxCount": hex(self.max_count),
                    "order": "desc",
                }
            ],
        }

    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self._client is not None:
            return await self._client.post(self.rpc_url, headers=headers, json=payload)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(self.rpc_url, headers=headers, json=payload)

    async def fetch_incoming_transfers(
        self,
        address: str,
        since_block: Optional[int] = None
    ) -> TransferBatch:
        payload = self._build_payload(address, since_block)
        source = self.source_type.value

        try:
            response = await self._post(payload)
        except httpx.TimeoutException:
            raise SourceTimeout(source, f"request timed out after {self.timeout}s")
        except httpx.RequestError as e:
            raise SourceUnavailable(source, f"request error: {e}")

        if response.status_code != 200:
            raise SourceUnavailable(
                source, f"HTTP {response.status_code}: {response.text[:200]}"
            )

        try:
            data = json.loads(response.text, parse_float=Decimal)
        except ValueError:
            raise SourceUnavailable(source, "response is not valid JSON")

        if not isinstance(data, dict):
            raise SourceUnavailable(source, "unexpected response shape")

        if data.get("error"):
            raise SourceUnavailable(source, f"JSON-RPC error: {data['error']}")

        result = data.get("result")
        if not isinstance(result, dict) or not isinstance(result.get("transfers"), list):
            raise SourceUnavailable(source, "response has no transfers list")

        raw_transfers: List[Dict[str, Any]] = result["transfers"]
        transfers = []
        for record in raw_transfers:
            transfer = self._parse_transfer(record)
            if transfer is not None:
                transfers.append(transfer)

        truncated = bool(result.get("pageKey")) or len(raw_transfers) >= self.max_count

        logger.debug(
            f"Fetched {len(raw_transfers)} transfers to {address}, kept {len(transfers)}"
            + (" (truncated)" if truncated else "")
        )

        return TransferBatch(transfers=transfers, truncated=truncated)

    def _parse_transfer(self, record: Dict[str, Any]) -> Optional[Transfer]:
        """Normalize one indexer record; None for records the engine ignores."""
        if not isinstance(record, dict):
            return None

        tx_hash = record.get("hash")
        if not tx_hash:
            return None

        currency = self.registry.normalize(record.get("asset"))
        if currency is None:
            return None

        amount = self._parse_amount(record, currency.value)
        if amount is None or amount <= 0:
            return None

        return Transfer(
            tx_hash=str(tx_hash),
            asset=currency.value,
            amount=amount,
            to_address=str(record.get("to") or "").lower(),
            from_address=(str(record["from"]).lower() if record.get("from") else None),
            block_number=self._parse_hex_int(record.get("blockNum")),
            source=self.source_type,
        )

    def _parse_amount(self, record: Dict[str, Any], symbol: str) -> Optional[Decimal]:
        raw_contract = record.get("rawContract") or {}
        raw_value = self._parse_hex_int(raw_contract.get("value"))
        if raw_value is not None:
            decimals = self._parse_hex_int(raw_contract.get("decimal"))
            if decimals is None:
                decimals = self.registry.get_decimals(symbol)
            if decimals is not None:
                return Decimal(raw_value).scaleb(-decimals)

        value = record.get("value")
        if value is None:
            return None
        try:
            amount = Decimal(str(value))
        except (InvalidOperation, ValueError):
            return None
        return amount if amount.is_finite() else None

    @staticmethod
    def _parse_hex_int(value: Any) -> Optional[int]:
        if value is None:
            return None
        if isinstance(value, int):
            return value
        try:
            return int(str(value), 16)
        except ValueError:
            return None
