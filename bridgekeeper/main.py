# /bridgekeeper/main.py
# Command line entry point: python -m bridgekeeper.main <command>
import argparse
import asyncio
import signal
import sys
from decimal import Decimal

import uvicorn

from bridgekeeper.adapters.attestation import AttestationClient
from bridgekeeper.adapters.chain import build_gateway
from bridgekeeper.core.chains import CHAINS, get_chain
from bridgekeeper.core.config import settings
from bridgekeeper.core.config_validator import validate as validate_config
from bridgekeeper.core.control_api import app
from bridgekeeper.core.controller import TransferController
from bridgekeeper.core.errors import BridgeError
from bridgekeeper.core.events import ClaimAvailable, MintConfirmed, RecoverableFailure, describe_event
from bridgekeeper.core.logger import get_logger
from bridgekeeper.core.recovery_store import build_store
from bridgekeeper.core.state import TransferParams
from bridgekeeper.routes import ROUTES

log = get_logger("bridgekeeper.cli")

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CLAIM_NEEDED = 2


def to_base_units(amount: str, decimals: int) -> int:
    value = Decimal(amount) * (Decimal(10) ** decimals)
    if value != value.to_integral_value():
        raise ValueError(f"{amount} has more than {decimals} decimals")
    return int(value)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="bridgekeeper", description="CCTP burn/mint bridge with burn recovery")
    sub = parser.add_subparsers(dest="command", required=True)

    bridge = sub.add_parser("bridge", help="burn on the source chain and mint on the destination")
    bridge.add_argument("--from", dest="source", required=True, choices=sorted(CHAINS))
    bridge.add_argument("--to", dest="dest", required=True, choices=sorted(CHAINS))
    bridge.add_argument("--amount", required=True, help="USDC amount, e.g. 2.5")
    bridge.add_argument("--recipient", help="mint recipient (defaults to the signer)")
    bridge.add_argument("--route", default="token_messenger", choices=sorted(ROUTES))

    for name, help_text in (
        ("status", "show the pending burn for a wallet"),
        ("resume", "poll for the attestation of the pending burn and mint it"),
        ("claim", "try once to mint the pending burn"),
        ("dismiss", "forget the pending burn (funds stay burned)"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("--wallet", help="wallet address (defaults to the signer)")
        if name == "dismiss":
            cmd.add_argument("--yes", action="store_true", help="acknowledge that the record is discarded")

    serve = sub.add_parser("serve", help="run the operator HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8080)
    return parser


class Session:
    """Gateways, attestation client and store for one CLI invocation."""

    def __init__(self):
        self.gateways = {key: build_gateway(key) for key in CHAINS}
        self.attestation = AttestationClient()
        self.store = build_store()
        self.controller = TransferController(self.gateways, self.attestation, self.store)

    @property
    def signer(self) -> str:
        return next(iter(self.gateways.values())).address

    async def close(self):
        await self.controller.aclose()
        await self.attestation.close()
        close = getattr(self.store, "close", None)
        if close is not None:
            await close()


def _outcome(event) -> int:
    if isinstance(event, MintConfirmed):
        return EXIT_OK
    if isinstance(event, (RecoverableFailure, ClaimAvailable)):
        return EXIT_CLAIM_NEEDED
    return EXIT_OK


async def _stream(events) -> int:
    code = EXIT_OK
    async for event in events:
        print(describe_event(event), flush=True)
        code = _outcome(event)
    return code


async def run(args) -> int:
    session = Session()
    try:
        wallet = getattr(args, "wallet", None) or session.signer
        if args.command == "bridge":
            source = get_chain(args.source)
            params = TransferParams(
                source_chain=args.source,
                dest_chain=args.dest,
                amount=to_base_units(args.amount, source.usdc_decimals),
                sender_address=session.signer,
                recipient_address=args.recipient,
                route=args.route,
            )
            cancel = asyncio.Event()
            asyncio.get_running_loop().add_signal_handler(signal.SIGINT, cancel.set)
            return await _stream(session.controller.start_transfer(params, cancel=cancel))
        if args.command == "status":
            status = await session.controller.pending_status(wallet)
            print(describe_event(status) if status else f"No pending burn for {wallet}")
            return EXIT_CLAIM_NEEDED if status else EXIT_OK
        if args.command == "resume":
            return await _stream(session.controller.resume_pending(wallet))
        if args.command == "claim":
            event = await session.controller.claim_pending(wallet)
            print(describe_event(event))
            return EXIT_OK if isinstance(event, MintConfirmed) else EXIT_CLAIM_NEEDED
        if args.command == "dismiss":
            record = await session.controller.dismiss_pending(wallet, acknowledged=args.yes)
            print(f"Dismissed pending burn {record.burn_tx_hash} ({record.amount} base units)")
            return EXIT_OK
        raise ValueError(f"Unknown command {args.command}")
    finally:
        await session.close()


async def serve(host: str, port: int):
    session = Session()
    app.state.controller = session.controller
    try:
        await uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_config=None)).serve()
    finally:
        await session.close()


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    chain_keys = [args.source, args.dest] if args.command == "bridge" else None
    validate_config(chain_keys)
    log.info("BRIDGEKEEPER_COMMAND", command=args.command, backend=settings.RECOVERY_BACKEND)
    try:
        if args.command == "serve":
            asyncio.run(serve(args.host, args.port))
            return EXIT_OK
        return asyncio.run(run(args))
    except BridgeError as e:
        log.error("COMMAND_FAILED", command=args.command, error=type(e).__name__, detail=str(e))
        print(f"{type(e).__name__}: {e}", file=sys.stderr)
        return EXIT_ERROR
    except KeyboardInterrupt:
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
