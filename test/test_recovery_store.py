import pytest

from bridgekeeper.core.recovery_store import FileRecoveryStore, RedisRecoveryStore, build_store
from bridgekeeper.core.state import PendingBurnRecord

WALLET = "0x000000000000000000000000000000000000bEEF"


def record(**overrides):
    values = dict(
        wallet_address=WALLET.lower(),
        burn_tx_hash="0x" + "cd" * 32,
        source_chain="arc_testnet",
        dest_chain="ethereum_sepolia",
        amount=5_000_000,
        transfer_id="t-9",
        recipient_address=WALLET,
    )
    values.update(overrides)
    return PendingBurnRecord(**values)


class FakeRedis:
    def __init__(self):
        self.data = {}
        self.closed = False

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value):
        self.data[key] = value.encode() if isinstance(value, str) else value

    async def delete(self, key):
        self.data.pop(key, None)

    async def aclose(self):
        self.closed = True


@pytest.mark.asyncio
async def test_file_store_round_trip(tmp_path):
    store = FileRecoveryStore(tmp_path)
    original = record()

    await store.set(WALLET, original)

    assert await store.get(WALLET) == original
    assert await store.get(WALLET.lower()) == original
    assert (tmp_path / f"{WALLET.lower()}.json").exists()
    assert list(tmp_path.glob("*.tmp")) == []


@pytest.mark.asyncio
async def test_file_store_survives_a_new_instance(tmp_path):
    await FileRecoveryStore(tmp_path).set(WALLET, record())

    reloaded = await FileRecoveryStore(tmp_path).get(WALLET)

    assert reloaded.burn_tx_hash == "0x" + "cd" * 32
    assert reloaded.timestamp.tzinfo is not None


@pytest.mark.asyncio
async def test_file_store_overwrite_and_clear(tmp_path):
    store = FileRecoveryStore(tmp_path)
    await store.set(WALLET, record())
    await store.set(WALLET, record(claim_attempts=3))

    assert (await store.get(WALLET)).claim_attempts == 3

    await store.clear(WALLET)
    assert await store.get(WALLET) is None
    await store.clear(WALLET)


@pytest.mark.asyncio
async def test_file_store_isolates_wallets(tmp_path):
    store = FileRecoveryStore(tmp_path)
    other = "0x000000000000000000000000000000000000dEaD"
    await store.set(WALLET, record())

    assert await store.get(other) is None


@pytest.mark.asyncio
async def test_redis_store_round_trip():
    client = FakeRedis()
    store = RedisRecoveryStore(client=client)
    original = record(burn_confirmed=False)

    await store.set(WALLET, original)

    assert list(client.data) == [f"pending_burn:{WALLET.lower()}"]
    assert await store.get(WALLET) == original

    await store.clear(WALLET)
    assert await store.get(WALLET) is None

    await store.close()
    assert client.closed


def test_build_store_rejects_unknown_backend():
    with pytest.raises(ValueError):
        build_store("sqlite")
