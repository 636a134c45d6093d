# /bridgekeeper/routes/base.py
# A burn route knows which contract on the source chain performs the burn,
# who must be approved to pull the tokens, and how the call is encoded.
# Every route feeds the same controller state machine.
from typing import Tuple

from bridgekeeper.core.chains import ChainConfig
from bridgekeeper.core.state import BridgeTransfer


class AbstractBurnRoute:
    name = "abstract"
    # True when an off-chain relayer may submit the mint on the user's
    # behalf. The controller then always checks usedNonces before minting.
    relayer_mints = False

    def spender(self, source: ChainConfig) -> str:
        """Address that needs an allowance on the source token."""
        raise NotImplementedError

    def build_burn(self, transfer: BridgeTransfer, source: ChainConfig, dest: ChainConfig) -> Tuple[str, str]:
        """Return ``(to, calldata)`` of the burn transaction."""
        raise NotImplementedError
