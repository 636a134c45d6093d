import hmac
import hashlib
import json

from bridgekeeper.core.logger import get_logger, SIGNING_KEY, RECOVERABLE_FAILURES, ERRORS_LOGGED
from bridgekeeper.core.state import BridgeTransfer, TransferParams, TransferState


def _lines(path):
    with open(path) as f:
        return [line.strip() for line in f if line.strip()]


def test_audit_log_and_prometheus(tmp_path, monkeypatch):
    monkeypatch.setattr("bridgekeeper.core.logger.AUDIT_FILE", tmp_path / "audit.log")
    log = get_logger("test")
    log.info("UNIT_TEST_EVENT", data=1)
    payload, sig = _lines(tmp_path / "audit.log")[0].split("|")
    expected = hmac.new(SIGNING_KEY, payload.encode(), hashlib.sha256).hexdigest()
    assert sig == expected
    assert json.loads(payload)["event"] == "UNIT_TEST_EVENT"

    c = RECOVERABLE_FAILURES.labels("unit")
    initial = c._value.get()
    c.inc()
    assert c._value.get() == initial + 1


def test_state_transitions_are_audited(tmp_path, monkeypatch):
    monkeypatch.setattr("bridgekeeper.core.logger.AUDIT_FILE", tmp_path / "audit.log")
    transfer = BridgeTransfer.from_params(TransferParams(
        source_chain="ethereum_sepolia", dest_chain="arc_testnet", amount=1,
        sender_address="0x000000000000000000000000000000000000bEEF",
    ))

    transfer.advance(TransferState.BURN_PENDING, burn_tx_hash="0xburn")

    events = [json.loads(line.split("|")[0]) for line in _lines(tmp_path / "audit.log")]
    changed = [e for e in events if e["event"] == "TRANSFER_STATE_CHANGED"]
    assert changed[-1]["state"] == "burn_pending"
    assert changed[-1]["burn_tx_hash"] == "0xburn"
    assert changed[-1]["transfer_id"] == transfer.id


def test_errors_are_counted(tmp_path, monkeypatch):
    monkeypatch.setattr("bridgekeeper.core.logger.AUDIT_FILE", tmp_path / "audit.log")
    counter = ERRORS_LOGGED.labels("error")
    initial = counter._value.get()

    get_logger("test").error("UNIT_TEST_FAILURE")

    assert counter._value.get() == initial + 1
