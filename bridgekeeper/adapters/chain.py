# /bridgekeeper/adapters/chain.py
# Per-chain gateway: reads, signed submissions and receipt waits.
# No retry of submissions lives here; the controller decides what to retry.
import asyncio
from decimal import Decimal
from typing import Any, Dict, Optional, Protocol

import aiohttp
from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, TimeExhausted

from bridgekeeper.abis import ERC20_ABI
from bridgekeeper.adapters.cctp import encode_approve
from bridgekeeper.core.chains import ChainConfig, get_chain
from bridgekeeper.core.config import settings
from bridgekeeper.core.decorators import retriable_network_call
from bridgekeeper.core.errors import ConfirmationTimeout, TransactionReverted, classify_exception
from bridgekeeper.core.logger import get_logger

log = get_logger(__name__)


class ChainGateway(Protocol):
    chain: ChainConfig
    address: str

    async def get_allowance(self, token: str, owner: str, spender: str) -> int: ...

    async def get_balance(self, token: str, owner: str) -> int: ...

    async def approve(self, token: str, spender: str, amount: int) -> str: ...

    async def submit_transaction(self, to: str, data: str, value: int = 0) -> str: ...

    async def call(self, to: str, data: str) -> bytes: ...

    async def wait_for_confirmation(self, tx_hash: str, confirmations: int = 1) -> Dict[str, Any]: ...


class Web3ChainGateway:
    """Gateway backed by an AsyncWeb3 HTTP provider and a local signer."""

    BLOCK_POLL_SECONDS = 2

    def __init__(self, chain: ChainConfig, rpc_url: str, private_key: str, w3: Optional[AsyncWeb3] = None):
        self.chain = chain
        self.w3 = w3 or AsyncWeb3(AsyncHTTPProvider(
            rpc_url, request_kwargs={"timeout": aiohttp.ClientTimeout(total=settings.RPC_TIMEOUT_SECONDS)}
        ))
        self.account = Account.from_key(private_key)
        self.address = self.account.address
        # One in-flight submission per gateway so nonces are never reused.
        self._send_lock = asyncio.Lock()
        log.info("CHAIN_GATEWAY_INITIALIZED", chain=chain.key, address=self.address)

    def _erc20(self, token: str):
        return self.w3.eth.contract(address=Web3.to_checksum_address(token), abi=ERC20_ABI)

    @retriable_network_call
    async def get_allowance(self, token: str, owner: str, spender: str) -> int:
        return await self._erc20(token).functions.allowance(
            Web3.to_checksum_address(owner), Web3.to_checksum_address(spender)
        ).call()

    @retriable_network_call
    async def get_balance(self, token: str, owner: str) -> int:
        return await self._erc20(token).functions.balanceOf(Web3.to_checksum_address(owner)).call()

    async def approve(self, token: str, spender: str, amount: int) -> str:
        return await self.submit_transaction(token, encode_approve(spender, amount))

    @retriable_network_call
    async def call(self, to: str, data: str) -> bytes:
        return bytes(await self.w3.eth.call({"to": Web3.to_checksum_address(to), "data": data}))

    async def _fee_params(self) -> Dict[str, int]:
        latest = await self.w3.eth.get_block("latest")
        base_fee = latest.get("baseFeePerGas")
        if base_fee is None:
            return {"gasPrice": await self.w3.eth.gas_price}
        try:
            priority_fee = await self.w3.eth.max_priority_fee
        except Exception:
            log.warning("MAX_PRIORITY_FEE_RPC_UNSUPPORTED_FALLING_BACK", chain=self.chain.key)
            priority_fee = int(Decimal("1.5") * 10**9)
        return {"maxPriorityFeePerGas": priority_fee, "maxFeePerGas": base_fee * 2 + priority_fee}

    async def submit_transaction(self, to: str, data: str, value: int = 0) -> str:
        async with self._send_lock:
            tx: Dict[str, Any] = {
                "from": self.address,
                "to": Web3.to_checksum_address(to),
                "data": data,
                "value": value,
                "chainId": self.chain.chain_id,
            }
            try:
                tx["nonce"] = await self.w3.eth.get_transaction_count(self.address, "pending")
                # Estimation executes the call, so a revert surfaces here
                # before anything is broadcast.
                tx["gas"] = int(await self.w3.eth.estimate_gas(tx) * 1.2)
                tx.update(await self._fee_params())
                signed = self.account.sign_transaction(tx)
                raw_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
            except Exception as e:
                classified = classify_exception(e, "submit")
                log.error("TRANSACTION_SUBMIT_FAILED", chain=self.chain.key, to=tx["to"],
                          nonce=tx.get("nonce"), error=str(e), classified=type(classified).__name__)
                if classified is e:
                    raise
                raise classified from e
        tx_hash = Web3.to_hex(raw_hash)
        log.info("TRANSACTION_BROADCASTED", chain=self.chain.key, tx_hash=tx_hash, nonce=tx["nonce"])
        return tx_hash

    async def _revert_reason(self, tx_hash: str, block_number: int) -> str:
        """Replay a failed transaction as eth_call to recover its revert string."""
        tx = await self.w3.eth.get_transaction(tx_hash)
        replay = {"from": tx["from"], "to": tx["to"], "data": tx["input"], "value": tx["value"]}
        try:
            await self.w3.eth.call(replay, block_identifier=block_number)
        except ContractLogicError as e:
            return e.message or str(e)
        except Exception as e:
            log.warning("REVERT_REASON_REPLAY_FAILED", chain=self.chain.key, tx_hash=tx_hash, error=str(e))
        return ""

    async def _wait_for_block(self, target: int):
        while await self.w3.eth.block_number < target:
            await asyncio.sleep(self.BLOCK_POLL_SECONDS)

    async def wait_for_confirmation(self, tx_hash: str, confirmations: int = 1) -> Dict[str, Any]:
        timeout = settings.CONFIRMATION_TIMEOUT_SECONDS
        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout, poll_latency=self.BLOCK_POLL_SECONDS)
        except TimeExhausted:
            raise ConfirmationTimeout(tx_hash, timeout) from None
        if receipt["status"] != 1:
            reason = await self._revert_reason(tx_hash, receipt["blockNumber"])
            log.error("TRANSACTION_REVERTED", chain=self.chain.key, tx_hash=tx_hash, reason=reason)
            raise TransactionReverted("receipt", tx_hash=tx_hash, reason=reason)
        if confirmations > 1:
            try:
                await asyncio.wait_for(self._wait_for_block(receipt["blockNumber"] + confirmations - 1), timeout)
            except asyncio.TimeoutError:
                raise ConfirmationTimeout(tx_hash, timeout) from None
        log.info("TRANSACTION_CONFIRMED", chain=self.chain.key, tx_hash=tx_hash,
                 block=receipt["blockNumber"], confirmations=confirmations)
        return dict(receipt)


def build_gateway(chain_key: str) -> Web3ChainGateway:
    chain = get_chain(chain_key)
    rpc_url = settings.rpc_url(chain_key)
    if not rpc_url:
        raise ValueError(f"No RPC URL configured for chain '{chain_key}' (set RPC_URLS)")
    if not settings.EXECUTOR_PRIVATE_KEY:
        raise ValueError("EXECUTOR_PRIVATE_KEY is not configured")
    return Web3ChainGateway(chain, rpc_url, settings.EXECUTOR_PRIVATE_KEY.get_secret_value())
