# /bridgekeeper/routes/wrapper_bridge.py
from typing import Tuple

from bridgekeeper.adapters.cctp import address_to_bytes32, encode_wrapper_bridge
from bridgekeeper.core.chains import ChainConfig
from bridgekeeper.core.config import settings
from bridgekeeper.core.errors import UnsupportedRoute
from bridgekeeper.core.state import BridgeTransfer
from bridgekeeper.routes.base import AbstractBurnRoute


class WrapperBridgeRoute(AbstractBurnRoute):
    """Burn through a CCTP wrapper contract called with pre-encoded calldata.

    The wrapper pulls the tokens itself, so it is also the spender. Its
    relayer usually mints on the destination before we do.
    """

    name = "wrapper_bridge"
    relayer_mints = True

    def __init__(self, max_fee: int | None = None, finality_threshold: int | None = None):
        self.max_fee = settings.MAX_FEE if max_fee is None else max_fee
        self.finality_threshold = (
            settings.MIN_FINALITY_THRESHOLD if finality_threshold is None else finality_threshold
        )

    def spender(self, source: ChainConfig) -> str:
        if not source.wrapper_bridge:
            raise UnsupportedRoute(f"{source.name} has no wrapper bridge contract")
        return source.wrapper_bridge

    def build_burn(self, transfer: BridgeTransfer, source: ChainConfig, dest: ChainConfig) -> Tuple[str, str]:
        bridge = self.spender(source)
        data = encode_wrapper_bridge(
            amount=transfer.amount,
            max_fee=self.max_fee,
            mint_recipient=address_to_bytes32(transfer.recipient_address),
            burn_token=source.usdc_address,
            bridge_address=bridge,
            destination_domain=dest.cctp_domain,
            finality_threshold=self.finality_threshold,
        )
        return bridge, data
