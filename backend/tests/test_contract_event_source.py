"""
Unit Tests for the Payment Contract Event Source

The web3 connection and contract are replaced with mocks; only the log
handling is under test.

Run with: pytest tests/test_contract_event_source.py -v
"""

from decimal import Decimal
from unittest.mock import MagicMock, call

import pytest

from reconciliation.exceptions import SourceTimeout, SourceUnavailable
from reconciliation.sources.contract_events import ContractEventSource
from reconciliation.source_registry import TransferSourceType

CONTRACT = "0x1111111111111111111111111111111111111111"
RECIPIENT = "0x2222222222222222222222222222222222222222"
PAYER = "0x3333333333333333333333333333333333333333"


def make_log(block, index, wei, tx_byte):
    return {
        "args": {
            "payer": PAYER,
            "recipient": RECIPIENT,
            "amount": wei,
            "timestamp": 1_700_000_000,
        },
        "blockNumber": block,
        "logIndex": index,
        "transactionHash": bytes([tx_byte]) * 32,
    }


@pytest.fixture
def web3_mock():
    w3 = MagicMock()
    w3.eth.block_number = 50
    w3.eth.get_transaction.return_value = {"input": "0xdeadbeef"}
    return w3


@pytest.fixture
def contract_mock():
    contract = MagicMock()
    contract.decode_function_input.return_value = (MagicMock(), {"invoiceNumber": "INV-7", "recipient": RECIPIENT})
    return contract


def make_source(web3_mock, contract_mock, logs, max_count=100, start_block=42, **kwargs):
    contract_mock.events.InvoicePaid.return_value.get_logs.return_value = logs
    return ContractEventSource(
        rpc_url="http://localhost:8545",
        contract_address=CONTRACT,
        start_block=start_block,
        max_count=max_count,
        web3=web3_mock,
        contract=contract_mock,
        **kwargs,
    )


class TestContractEventSource:

    @pytest.mark.asyncio
    async def test_event_converted_to_transfer(self, web3_mock, contract_mock):
        source = make_source(web3_mock, contract_mock, [make_log(10, 0, 5 * 10**17, 0xAB)])

        batch = await source.fetch_incoming_transfers(RECIPIENT)

        transfer = batch.transfers[0]
        assert transfer.tx_hash == "0x" + "ab" * 32
        assert transfer.amount == Decimal("0.5")
        assert transfer.asset == "ETH"
        assert transfer.to_address == RECIPIENT
        assert transfer.from_address == PAYER
        assert transfer.invoice_number == "INV-7"
        assert transfer.block_number == 10
        assert transfer.source == TransferSourceType.CONTRACT_EVENTS
        assert batch.truncated is False

    @pytest.mark.asyncio
    async def test_logs_filtered_by_recipient_from_start_block(self, web3_mock, contract_mock):
        source = make_source(web3_mock, contract_mock, [])

        await source.fetch_incoming_transfers(RECIPIENT)

        get_logs = contract_mock.events.InvoicePaid.return_value.get_logs
        get_logs.assert_called_once_with(
            from_block=42,
            to_block=50,
            argument_filters={"recipient": RECIPIENT}
        )

    @pytest.mark.asyncio
    async def test_newest_first_and_capped(self, web3_mock, contract_mock):
        logs = [make_log(1, 0, 10**18, 1), make_log(3, 0, 10**18, 3), make_log(2, 5, 10**18, 2)]
        source = make_source(web3_mock, contract_mock, logs, max_count=2)

        batch = await source.fetch_incoming_transfers(RECIPIENT)

        assert [t.block_number for t in batch.transfers] == [3, 2]
        assert batch.truncated is True

    @pytest.mark.asyncio
    async def test_zero_amount_events_dropped(self, web3_mock, contract_mock):
        source = make_source(web3_mock, contract_mock, [make_log(1, 0, 0, 1)])

        batch = await source.fetch_incoming_transfers(RECIPIENT)

        assert batch.transfers == []

    @pytest.mark.asyncio
    async def test_undecodable_input_leaves_invoice_number_empty(self, web3_mock, contract_mock):
        contract_mock.decode_function_input.side_effect = ValueError("no matching function")
        source = make_source(web3_mock, contract_mock, [make_log(1, 0, 10**18, 1)])

        batch = await source.fetch_incoming_transfers(RECIPIENT)

        assert batch.transfers[0].invoice_number is None

    @pytest.mark.asyncio
    async def test_rpc_failure_raises_source_unavailable(self, web3_mock, contract_mock):
        source = make_source(web3_mock, contract_mock, [])
        contract_mock.events.InvoicePaid.return_value.get_logs.side_effect = ConnectionError("rpc down")

        with pytest.raises(SourceUnavailable) as exc_info:
            await source.fetch_incoming_transfers(RECIPIENT)

        assert "rpc down" in str(exc_info.value)

    def test_describe(self, web3_mock, contract_mock):
        source = make_source(web3_mock, contract_mock, [])

        assert source.describe() == {
            "source": "CONTRACT_EVENTS",
            "contract": CONTRACT,
            "start_block": 42,
            "max_count": 100,
            "block_window": 10_000,
        }

    @pytest.mark.asyncio
    async def test_scans_back_from_head_in_block_windows(self, web3_mock, contract_mock):
        web3_mock.eth.block_number = 25_000
        source = make_source(web3_mock, contract_mock, [], start_block=0, block_window=10_000)

        await source.fetch_incoming_transfers(RECIPIENT)

        get_logs = contract_mock.events.InvoicePaid.return_value.get_logs
        filters = {"recipient": RECIPIENT}
        assert get_logs.call_args_list == [
            call(from_block=15_001, to_block=25_000, argument_filters=filters),
            call(from_block=5_001, to_block=15_000, argument_filters=filters),
            call(from_block=0, to_block=5_000, argument_filters=filters),
        ]

    @pytest.mark.asyncio
    async def test_scan_stops_once_cap_exceeded(self, web3_mock, contract_mock):
        web3_mock.eth.block_number = 25_000
        recent = [make_log(24_000, 0, 10**18, 1), make_log(24_500, 0, 10**18, 2)]
        source = make_source(web3_mock, contract_mock, recent, max_count=1, start_block=0, block_window=10_000)

        batch = await source.fetch_incoming_transfers(RECIPIENT)

        get_logs = contract_mock.events.InvoicePaid.return_value.get_logs
        assert get_logs.call_count == 1
        assert batch.truncated is True
        assert [t.block_number for t in batch.transfers] == [24_500]

    @pytest.mark.asyncio
    async def test_scan_past_deadline_raises_timeout(self, web3_mock, contract_mock):
        source = make_source(web3_mock, contract_mock, [], timeout=-1.0)

        with pytest.raises(SourceTimeout):
            await source.fetch_incoming_transfers(RECIPIENT)

        contract_mock.events.InvoicePaid.return_value.get_logs.assert_not_called()
