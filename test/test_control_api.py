import os
import pytest
from fastapi.testclient import TestClient

from bridgekeeper.adapters.mock import MockAttestationClient, MockChainGateway, MockRecoveryStore, complete_attestation
from bridgekeeper.core.chains import ARC_TESTNET, ETHEREUM_SEPOLIA
from bridgekeeper.core.config import settings
from bridgekeeper.core.control_api import app
from bridgekeeper.core.controller import TransferController
from bridgekeeper.core.kill import KILL_SWITCH_FILE
from bridgekeeper.core.state import PendingBurnRecord

WALLET = "0x000000000000000000000000000000000000bEEF"
AUTH = {"Authorization": "Bearer tok"}


@pytest.fixture(autouse=True)
def cleanup():
    if os.path.exists(KILL_SWITCH_FILE):
        os.remove(KILL_SWITCH_FILE)
    yield
    if os.path.exists(KILL_SWITCH_FILE):
        os.remove(KILL_SWITCH_FILE)


@pytest.fixture
def wired(monkeypatch):
    monkeypatch.setattr(settings, "CONTROL_API_TOKEN", "tok")
    src = MockChainGateway(ETHEREUM_SEPOLIA, WALLET)
    dst = MockChainGateway(ARC_TESTNET, WALLET)
    attestation = MockAttestationClient()
    store = MockRecoveryStore()
    controller = TransferController({src.chain.key: src, dst.chain.key: dst}, attestation, store,
                                    confirmation_retries=1)
    store.records[WALLET.lower()] = PendingBurnRecord(
        wallet_address=WALLET.lower(), burn_tx_hash="0x" + "ab" * 32, source_chain="ethereum_sepolia",
        dest_chain="arc_testnet", amount=750_000, transfer_id="t-api", recipient_address=WALLET,
    )
    app.state.controller = controller
    yield TestClient(app), attestation, store
    del app.state.controller


def test_healthz_is_open():
    r = TestClient(app).get("/healthz")
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "halt_active": False}


def test_requests_need_the_token(wired):
    client, attestation, store = wired
    assert client.get(f"/pending/{WALLET}").status_code == 401
    assert client.get(f"/pending/{WALLET}", headers={"Authorization": "Bearer nope"}).status_code == 401


def test_pending_status(wired):
    client, attestation, store = wired
    r = client.get(f"/pending/{WALLET}", headers=AUTH)
    assert r.status_code == 200
    body = r.json()
    assert body["kind"] == "claim_available"
    assert body["amount"] == 750_000
    assert body["tx_hash"] == "0x" + "ab" * 32

    r = client.get("/pending/0x000000000000000000000000000000000000dEaD", headers=AUTH)
    assert r.status_code == 404


def test_claim_pending(wired):
    client, attestation, store = wired
    r = client.post(f"/pending/{WALLET}/claim", headers=AUTH)
    assert r.status_code == 200
    assert r.json()["kind"] == "attestation_pending"
    assert r.json()["retry_later"] is True

    attestation.script(complete_attestation(ETHEREUM_SEPOLIA.cctp_domain, ARC_TESTNET.cctp_domain, b"\x01" * 32))
    r = client.post(f"/pending/{WALLET}/claim", headers=AUTH)
    assert r.json()["kind"] == "mint_confirmed"
    assert store.records == {}

    r = client.post(f"/pending/{WALLET}/claim", headers=AUTH)
    assert r.status_code == 404


def test_dismiss_needs_acknowledgement(wired):
    client, attestation, store = wired
    r = client.delete(f"/pending/{WALLET}", headers=AUTH)
    assert r.status_code == 400
    assert WALLET.lower() in store.records

    r = client.delete(f"/pending/{WALLET}", headers=AUTH, params={"acknowledge": "true"})
    assert r.status_code == 200
    assert r.json()["dismissed"]["burn_tx_hash"] == "0x" + "ab" * 32
    assert store.records == {}


def test_missing_controller_is_reported(monkeypatch):
    monkeypatch.setattr(settings, "CONTROL_API_TOKEN", "tok")
    r = TestClient(app).get(f"/pending/{WALLET}", headers=AUTH)
    assert r.status_code == 503


def test_missing_token_configuration(monkeypatch):
    monkeypatch.setattr(settings, "CONTROL_API_TOKEN", None)
    r = TestClient(app).post("/kill/toggle", headers=AUTH)
    assert r.status_code == 500
