import pytest

from bridgekeeper.adapters.chain import build_gateway
from bridgekeeper.core import config_validator
from bridgekeeper.core.config import settings
from bridgekeeper.main import build_parser, to_base_units


def test_amounts_are_converted_to_base_units():
    assert to_base_units("2.5", 6) == 2_500_000
    assert to_base_units("1", 6) == 1_000_000
    with pytest.raises(ValueError):
        to_base_units("0.0000001", 6)


def test_bridge_command_arguments():
    args = build_parser().parse_args(
        ["bridge", "--from", "ethereum_sepolia", "--to", "arc_testnet", "--amount", "3", "--route", "wrapper_bridge"]
    )
    assert (args.source, args.dest, args.amount, args.route) == ("ethereum_sepolia", "arc_testnet", "3", "wrapper_bridge")


def test_dismiss_defaults_to_unacknowledged():
    assert build_parser().parse_args(["dismiss"]).yes is False
    assert build_parser().parse_args(["dismiss", "--yes"]).yes is True


def test_unknown_chain_is_rejected_by_parser():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["bridge", "--from", "mars", "--to", "arc_testnet", "--amount", "1"])


def test_validation_reports_missing_settings(monkeypatch):
    monkeypatch.setattr(settings, "EXECUTOR_PRIVATE_KEY", None)
    monkeypatch.setattr(settings, "RPC_URLS", {})
    with pytest.raises(ValueError):
        config_validator.validate(["arc_testnet"])


def test_validation_passes_with_complete_settings(monkeypatch):
    monkeypatch.setattr(settings, "EXECUTOR_PRIVATE_KEY", "0x" + "11" * 32)
    monkeypatch.setattr(settings, "RPC_URLS", {"arc_testnet": "http://arc", "ethereum_sepolia": "http://sepolia"})
    config_validator.validate()


def test_gateway_needs_an_rpc_url(monkeypatch):
    monkeypatch.setattr(settings, "RPC_URLS", {})
    with pytest.raises(ValueError):
        build_gateway("arc_testnet")
