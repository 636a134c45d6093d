# /bridgekeeper/adapters/mock.py
# In-memory stand-ins for the chain gateways, the attestation service and the
# recovery store. They keep enough on-chain semantics (allowances, consumed
# message nonces, scripted reverts and timeouts) to drive the controller
# through every scenario without a node.
from collections import defaultdict, deque
from typing import Any, Deque, Dict, List, Optional, Tuple

from eth_abi import decode

from bridgekeeper.adapters.cctp import APPROVE, RECEIVE_MESSAGE, USED_NONCES, decode_message_header
from bridgekeeper.core.chains import ChainConfig
from bridgekeeper.core.errors import ConfirmationTimeout, TransactionReverted
from bridgekeeper.core.logger import get_logger
from bridgekeeper.core.state import AttestationResult, AttestationStatus, PendingBurnRecord, normalize_wallet

log = get_logger(__name__)

MESSAGE_VERSION = 1


def build_message(source_domain: int, destination_domain: int, nonce: bytes, body: bytes = b"") -> bytes:
    """Minimal V2 message: header fields in their real positions, then a body."""
    return (
        MESSAGE_VERSION.to_bytes(4, "big")
        + source_domain.to_bytes(4, "big")
        + destination_domain.to_bytes(4, "big")
        + nonce.rjust(32, b"\x00")
        + body
    )


def complete_attestation(source_domain: int, destination_domain: int, nonce: bytes) -> AttestationResult:
    message = build_message(source_domain, destination_domain, nonce, body=b"\x00" * 32)
    return AttestationResult(
        status=AttestationStatus.COMPLETE,
        message=message,
        signature=b"\x11" * 65,
        nonce=decode_message_header(message).nonce,
    )


def _kind(data: str) -> str:
    selector = bytes.fromhex(data[2:10])
    if selector == APPROVE:
        return "approve"
    if selector == RECEIVE_MESSAGE:
        return "mint"
    return "burn"


class MockChainGateway:
    """
    Simulated chain. Transactions get sequential fake hashes and are
    recorded in ``sent_transactions``. Failures are scripted per kind of
    transaction ("approve", "burn", "mint"):

    - ``fail_submit(kind, exc)``: the next submission of that kind raises.
    - ``fail_confirmation(kind, exc)``: the next receipt wait for that kind raises.
    """

    def __init__(self, chain: ChainConfig, address: str = "0x000000000000000000000000000000000000bEEF"):
        self.chain = chain
        self.address = address
        self.balances: Dict[str, int] = defaultdict(int)
        self.allowances: Dict[Tuple[str, str], int] = defaultdict(int)
        self.sent_transactions: List[Dict[str, Any]] = []
        self.confirmations_requested: List[Tuple[str, int]] = []
        self.consumed_nonces: set = set()
        self.calls: List[Tuple[str, str]] = []
        self.block_number = 100
        self._submit_failures: Dict[str, Deque[Exception]] = defaultdict(deque)
        self._confirm_failures: Dict[str, Deque[Exception]] = defaultdict(deque)
        self._kinds: Dict[str, str] = {}
        log.info("MOCK_CHAIN_GATEWAY_INITIALIZED", chain=chain.key, address=address)

    # scripting
    def set_balance(self, owner: str, amount: int):
        self.balances[normalize_wallet(owner)] = amount

    def set_allowance(self, owner: str, spender: str, amount: int):
        self.allowances[(normalize_wallet(owner), normalize_wallet(spender))] = amount

    def fail_submit(self, kind: str, exc: Exception):
        self._submit_failures[kind].append(exc)

    def fail_confirmation(self, kind: str, exc: Exception):
        self._confirm_failures[kind].append(exc)

    def consume_nonce(self, nonce: bytes):
        """Mark a message as received, as a relayer's mint would."""
        self.consumed_nonces.add(bytes(nonce).rjust(32, b"\x00"))

    def transactions(self, kind: str) -> List[Dict[str, Any]]:
        return [tx for tx in self.sent_transactions if tx["kind"] == kind]

    # ChainGateway
    async def get_allowance(self, token: str, owner: str, spender: str) -> int:
        return self.allowances[(normalize_wallet(owner), normalize_wallet(spender))]

    async def get_balance(self, token: str, owner: str) -> int:
        return self.balances[normalize_wallet(owner)]

    async def approve(self, token: str, spender: str, amount: int) -> str:
        tx_hash = await self._submit(token, "0x" + APPROVE.hex(), "approve")
        self.set_allowance(self.address, spender, amount)
        return tx_hash

    async def submit_transaction(self, to: str, data: str, value: int = 0) -> str:
        kind = _kind(data)
        if kind == "mint":
            message, _ = decode(["bytes", "bytes"], bytes.fromhex(data[10:]))
            nonce = decode_message_header(message).nonce
            if nonce in self.consumed_nonces:
                # Estimation replays receiveMessage and hits the contract's check.
                raise TransactionReverted("submit", reason="Nonce already used")
            tx_hash = await self._submit(to, data, kind)
            self.consumed_nonces.add(nonce)
            return tx_hash
        return await self._submit(to, data, kind)

    async def _submit(self, to: str, data: str, kind: str) -> str:
        if self._submit_failures[kind]:
            exc = self._submit_failures[kind].popleft()
            log.error("MOCK_TX_FORCED_FAILURE", chain=self.chain.key, kind=kind, error=str(exc))
            raise exc
        tx_hash = "0x" + f"{len(self.sent_transactions) + 1:064x}"
        self.sent_transactions.append({"hash": tx_hash, "to": to, "data": data, "kind": kind})
        self._kinds[tx_hash] = kind
        log.info("MOCK_TRANSACTION_SENT", chain=self.chain.key, kind=kind, tx_hash=tx_hash)
        return tx_hash

    async def call(self, to: str, data: str) -> bytes:
        self.calls.append((to, data))
        if bytes.fromhex(data[2:10]) == USED_NONCES:
            nonce = bytes.fromhex(data[10:74])
            return (1 if nonce in self.consumed_nonces else 0).to_bytes(32, "big")
        return b""

    async def wait_for_confirmation(self, tx_hash: str, confirmations: int = 1) -> Dict[str, Any]:
        self.confirmations_requested.append((tx_hash, confirmations))
        kind = self._kinds.get(tx_hash)
        if kind is None:
            raise ConfirmationTimeout(tx_hash, 0)
        if self._confirm_failures[kind]:
            exc = self._confirm_failures[kind].popleft()
            if isinstance(exc, TransactionReverted) and exc.tx_hash is None:
                exc = TransactionReverted(exc.stage, tx_hash=tx_hash, reason=exc.reason)
            raise exc
        self.block_number += 1
        return {"status": 1, "blockNumber": self.block_number, "transactionHash": tx_hash}


class MockAttestationClient:
    """Returns scripted results in order, then ``default`` forever."""

    def __init__(self, *results, default: Optional[AttestationResult] = None):
        self.results: Deque = deque(results)
        self.default = default or AttestationResult(status=AttestationStatus.PENDING)
        self.calls: List[Tuple[str, int]] = []

    def script(self, *results):
        self.results.extend(results)

    async def fetch_attestation(self, burn_tx_hash: str, source_domain: int) -> AttestationResult:
        self.calls.append((burn_tx_hash, source_domain))
        item = self.results.popleft() if self.results else self.default
        if isinstance(item, Exception):
            raise item
        return item


class MockRecoveryStore:
    """In-memory store that keeps a history of every write and clear."""

    def __init__(self):
        self.records: Dict[str, PendingBurnRecord] = {}
        self.history: List[Tuple[str, str, Optional[PendingBurnRecord]]] = []

    async def get(self, wallet_address: str) -> Optional[PendingBurnRecord]:
        return self.records.get(normalize_wallet(wallet_address))

    async def set(self, wallet_address: str, record: PendingBurnRecord) -> None:
        wallet = normalize_wallet(wallet_address)
        self.records[wallet] = record
        self.history.append(("set", wallet, record))

    async def clear(self, wallet_address: str) -> None:
        wallet = normalize_wallet(wallet_address)
        self.records.pop(wallet, None)
        self.history.append(("clear", wallet, None))
