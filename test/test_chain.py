import pytest
from web3.exceptions import ContractLogicError, TimeExhausted

from bridgekeeper.adapters.chain import Web3ChainGateway
from bridgekeeper.core.chains import ARC_TESTNET
from bridgekeeper.core.config import settings
from bridgekeeper.core.errors import ConfirmationTimeout, TransactionReverted

PRIVATE_KEY = "0x" + "11" * 32
TX_HASH = "0x" + "cd" * 32


class FakeEth:
    def __init__(self, receipt=None, exhausted=False, replay_error=None, blocks=(0,)):
        self.receipt = receipt
        self.exhausted = exhausted
        self.replay_error = replay_error
        self.blocks = list(blocks)
        self.block_reads = 0
        self.replays = []

    async def wait_for_transaction_receipt(self, tx_hash, timeout=None, poll_latency=None):
        if self.exhausted:
            raise TimeExhausted(f"{tx_hash} not in chain after {timeout}s")
        return self.receipt

    async def get_transaction(self, tx_hash):
        return {"from": "0x000000000000000000000000000000000000bEEF", "to": ARC_TESTNET.message_transmitter,
                "input": "0x57ecfd28", "value": 0}

    async def call(self, tx, block_identifier=None):
        self.replays.append((tx, block_identifier))
        if self.replay_error is not None:
            raise self.replay_error
        return b""

    async def _read_block(self):
        self.block_reads += 1
        if len(self.blocks) > 1:
            return self.blocks.pop(0)
        return self.blocks[0]

    @property
    def block_number(self):
        return self._read_block()


class FakeWeb3:
    def __init__(self, eth):
        self.eth = eth


def gateway(eth):
    gw = Web3ChainGateway(ARC_TESTNET, "http://arc.test", PRIVATE_KEY, w3=FakeWeb3(eth))
    gw.BLOCK_POLL_SECONDS = 0
    return gw


@pytest.mark.asyncio
async def test_successful_receipt_is_returned():
    eth = FakeEth(receipt={"status": 1, "blockNumber": 50, "transactionHash": TX_HASH})

    receipt = await gateway(eth).wait_for_confirmation(TX_HASH)

    assert receipt["blockNumber"] == 50
    assert eth.block_reads == 0


@pytest.mark.asyncio
async def test_reverted_receipt_reports_replayed_reason():
    eth = FakeEth(
        receipt={"status": 0, "blockNumber": 77},
        replay_error=ContractLogicError("execution reverted: Nonce already used"),
    )

    with pytest.raises(TransactionReverted) as excinfo:
        await gateway(eth).wait_for_confirmation(TX_HASH)

    assert "Nonce already used" in excinfo.value.reason
    assert excinfo.value.tx_hash == TX_HASH
    replay, block = eth.replays[0]
    assert block == 77
    assert replay["data"] == "0x57ecfd28"


@pytest.mark.asyncio
async def test_revert_without_recoverable_reason_still_raises():
    eth = FakeEth(receipt={"status": 0, "blockNumber": 77}, replay_error=ConnectionError("node gone"))

    with pytest.raises(TransactionReverted) as excinfo:
        await gateway(eth).wait_for_confirmation(TX_HASH)

    assert excinfo.value.reason == ""


@pytest.mark.asyncio
async def test_receipt_timeout_becomes_confirmation_timeout():
    eth = FakeEth(exhausted=True)

    with pytest.raises(ConfirmationTimeout) as excinfo:
        await gateway(eth).wait_for_confirmation(TX_HASH)

    assert excinfo.value.tx_hash == TX_HASH


@pytest.mark.asyncio
async def test_waits_for_extra_confirmations():
    eth = FakeEth(receipt={"status": 1, "blockNumber": 10}, blocks=(10, 11, 12))

    receipt = await gateway(eth).wait_for_confirmation(TX_HASH, confirmations=3)

    assert receipt["blockNumber"] == 10
    assert eth.block_reads == 3


@pytest.mark.asyncio
async def test_stalled_chain_times_out_waiting_for_confirmations(monkeypatch):
    monkeypatch.setattr(settings, "CONFIRMATION_TIMEOUT_SECONDS", 0.05)
    eth = FakeEth(receipt={"status": 1, "blockNumber": 10}, blocks=(10,))
    gw = gateway(eth)
    gw.BLOCK_POLL_SECONDS = 0.01

    with pytest.raises(ConfirmationTimeout):
        await gw.wait_for_confirmation(TX_HASH, confirmations=2)
