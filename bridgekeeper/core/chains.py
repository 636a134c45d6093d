# /bridgekeeper/core/chains.py
# Static registry of the networks the bridge knows how to talk to. CCTP
# domains are protocol identifiers and differ from EVM chain ids.
from typing import Dict

from pydantic import BaseModel, ConfigDict


class ChainConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    name: str
    chain_id: int
    cctp_domain: int
    usdc_address: str
    usdc_decimals: int = 6
    token_messenger: str
    message_transmitter: str
    wrapper_bridge: str | None = None
    explorer_tx_template: str

    def explorer_url(self, tx_hash: str) -> str:
        return self.explorer_tx_template.format(tx_hash=tx_hash)


ETHEREUM_SEPOLIA = ChainConfig(
    key="ethereum_sepolia",
    name="Ethereum Sepolia",
    chain_id=11155111,
    cctp_domain=0,
    usdc_address="0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238",
    token_messenger="0x8FE6B999Dc680CcFDD5Bf7EB0974218be2542DAA",
    message_transmitter="0xE737e5cEBEEBa77EFE34D4aa090756590b1CE275",
    # Arc's CCTP wrapper; a relayer completes the mint on Arc for this path.
    wrapper_bridge="0xC5567a5E3370d4DBfB0540025078e283e36A363d",
    explorer_tx_template="https://sepolia.etherscan.io/tx/{tx_hash}",
)

ARC_TESTNET = ChainConfig(
    key="arc_testnet",
    name="Arc Testnet",
    chain_id=5042002,
    cctp_domain=26,
    usdc_address="0x3600000000000000000000000000000000000000",
    token_messenger="0x8FE6B999Dc680CcFDD5Bf7EB0974218be2542DAA",
    message_transmitter="0xE737e5cEBEEBa77EFE34D4aa090756590b1CE275",
    explorer_tx_template="https://testnet.arcscan.app/tx/{tx_hash}",
)

CHAINS: Dict[str, ChainConfig] = {c.key: c for c in (ETHEREUM_SEPOLIA, ARC_TESTNET)}


def get_chain(key: str) -> ChainConfig:
    try:
        return CHAINS[key]
    except KeyError:
        raise ValueError(f"Unknown chain '{key}'. Known chains: {sorted(CHAINS)}") from None

