"""
Invoice Payment Contract Source

Reads InvoicePaid events emitted by the invoice payment contract:

    event InvoicePaid(string indexed invoiceNumber, address indexed payer,
                      address indexed recipient, uint256 amount, uint256 timestamp)

The invoice number is an indexed string, so the log only carries its
hash. The plain value is recovered by decoding the payInvoice call that
emitted the event.

web3 is synchronous; each fetch runs in a worker thread. Logs are read
in block windows walking back from the chain head, stopping once more
than max_count logs are held or the fetch deadline passes.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from web3 import Web3

from reconciliation.exceptions import SourceUnavailable, SourceTimeout
from reconciliation.models import Transfer, TransferBatch
from reconciliation.source_registry import Currency, TransferSourceType

logger = logging.getLogger(__name__)

WEI_PER_ETH = Decimal(10) ** 18

PAYMENT_CONTRACT_ABI: List[Dict[str, Any]] = [
    {
        "anonymous": False,
        "name": "InvoicePaid",
        "type": "event",
        "inputs": [
            {"indexed": True, "name": "invoiceNumber", "type": "string"},
            {"indexed": True, "name": "payer", "type": "address"},
            {"indexed": True, "name": "recipient", "type": "address"},
            {"indexed": False, "name": "amount", "type": "uint256"},
            {"indexed": False, "name": "timestamp", "type": "uint256"},
        ],
    },
    {
        "name": "payInvoice",
        "type": "function",
        "stateMutability": "payable",
        "inputs": [
            {"name": "invoiceNumber", "type": "string"},
            {"name": "recipient", "type": "address"},
        ],
        "outputs": [],
    },
]


class ContractEventSource:
    """
    Payment contract event log reader.

    Returns ETH transfers tagged with the invoice number they were paid
    against, most recent first, capped at max_count.
    """

    source_type = TransferSourceType.CONTRACT_EVENTS
    DEFAULT_MAX_COUNT = 100
    DEFAULT_BLOCK_WINDOW = 10_000

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        start_block: int = 0,
        max_count: int = DEFAULT_MAX_COUNT,
        timeout: float = 15.0,
        block_window: int = DEFAULT_BLOCK_WINDOW,
        web3: Optional[Web3] = None,
        contract: Any = None
    ):
        self.contract_address = contract_address
        self.start_block = start_block
        self.max_count = max_count
        self.timeout = timeout
        self.block_window = max(1, block_window)
        self.w3 = web3 or Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
        self.contract = contract or self.w3.eth.contract(
            address=Web3.to_checksum_address(contract_address),
            abi=PAYMENT_CONTRACT_ABI
        )

    def describe(self) -> Dict[str, Any]:
        return {
            "source": self.source_type.value,
            "contract": self.contract_address,
            "start_block": self.start_block,
            "max_count": self.max_count,
            "block_window": self.block_window,
        }

    async def fetch_incoming_transfers(
        self,
        address: str,
        since_block: Optional[int] = None
    ) -> TransferBatch:
        try:
            return await asyncio.to_thread(
                self._fetch, address, since_block, time.monotonic() + self.timeout
            )
        except SourceUnavailable:
            raise
        except Exception as e:
            raise SourceUnavailable(self.source_type.value, f"log query failed: {e}") from e

    def _fetch(self, address: str, since_block: Optional[int], deadline: float) -> TransferBatch:
        from_block = since_block if since_block is not None else self.start_block
        recipient = Web3.to_checksum_address(address)
        event = self.contract.events.InvoicePaid()

        logs: List[Any] = []
        to_block = self.w3.eth.block_number
        while to_block >= from_block and len(logs) <= self.max_count:
            if time.monotonic() > deadline:
                raise SourceTimeout(
                    self.source_type.value,
                    f"log scan stopped at block {to_block} after {self.timeout}s"
                )
            window_start = max(from_block, to_block - self.block_window + 1)
            logs.extend(event.get_logs(
                from_block=window_start,
                to_block=to_block,
                argument_filters={"recipient": recipient}
            ))
            to_block = window_start - 1

        ordered = sorted(
            logs,
            key=lambda log: (log["blockNumber"], log["logIndex"]),
            reverse=True
        )
        truncated = len(ordered) > self.max_count
        ordered = ordered[:self.max_count]

        transfers = []
        for log in ordered:
            transfer = self._to_transfer(log)
            if transfer is not None:
                transfers.append(transfer)

        return TransferBatch(transfers=transfers, truncated=truncated)

    def _to_transfer(self, log: Any) -> Optional[Transfer]:
        args = log["args"]
        amount = Decimal(int(args["amount"])) / WEI_PER_ETH
        if amount <= 0:
            return None

        tx_hash = Web3.to_hex(log["transactionHash"])

        return Transfer(
            tx_hash=tx_hash,
            asset=Currency.ETH.value,
            amount=amount,
            to_address=str(args["recipient"]).lower(),
            from_address=str(args["payer"]).lower(),
            block_number=log["blockNumber"],
            invoice_number=self._decode_invoice_number(tx_hash),
            timestamp=datetime.fromtimestamp(int(args["timestamp"]), tz=timezone.utc),
            source=self.source_type,
        )

    def _decode_invoice_number(self, tx_hash: str) -> Optional[str]:
        tx = self.w3.eth.get_transaction(tx_hash)
        try:
            _, params = self.contract.decode_function_input(tx["input"])
        except (ValueError, KeyError) as e:
            # Paid through a forwarding contract; amount matching still applies
            logger.debug(f"Could not decode payInvoice input for {tx_hash}: {e}")
            return None
        return params.get("invoiceNumber")
