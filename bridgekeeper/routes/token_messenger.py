# /bridgekeeper/routes/token_messenger.py
from typing import Tuple

from bridgekeeper.adapters.cctp import address_to_bytes32, encode_deposit_for_burn
from bridgekeeper.core.chains import ChainConfig
from bridgekeeper.core.config import settings
from bridgekeeper.core.state import BridgeTransfer
from bridgekeeper.routes.base import AbstractBurnRoute


class TokenMessengerRoute(AbstractBurnRoute):
    """Standard CCTP V2 path: TokenMessengerV2.depositForBurn."""

    name = "token_messenger"

    def __init__(self, max_fee: int | None = None, min_finality_threshold: int | None = None):
        self.max_fee = settings.MAX_FEE if max_fee is None else max_fee
        self.min_finality_threshold = (
            settings.MIN_FINALITY_THRESHOLD if min_finality_threshold is None else min_finality_threshold
        )

    def spender(self, source: ChainConfig) -> str:
        return source.token_messenger

    def build_burn(self, transfer: BridgeTransfer, source: ChainConfig, dest: ChainConfig) -> Tuple[str, str]:
        data = encode_deposit_for_burn(
            amount=transfer.amount,
            destination_domain=dest.cctp_domain,
            mint_recipient=address_to_bytes32(transfer.recipient_address),
            burn_token=source.usdc_address,
            max_fee=self.max_fee,
            min_finality_threshold=self.min_finality_threshold,
        )
        return source.token_messenger, data
