from bridgekeeper.abis.erc20 import ERC20_ABI

__all__ = ["ERC20_ABI"]
