# /bridgekeeper/core/state.py
# Transfer model and the forward-only transition graph of the controller.
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field

from bridgekeeper.core.errors import InvalidTransition
from bridgekeeper.core.logger import get_logger

log = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_wallet(address: str) -> str:
    return address.strip().lower()


class TransferState(str, Enum):
    IDLE = "idle"
    APPROVAL_PENDING = "approval_pending"
    APPROVAL_CONFIRMED = "approval_confirmed"
    BURN_PENDING = "burn_pending"
    BURN_CONFIRMED = "burn_confirmed"
    ATTESTATION_PENDING = "attestation_pending"
    ATTESTATION_COMPLETE = "attestation_complete"
    MINT_PENDING = "mint_pending"
    COMPLETED = "completed"
    RECOVERABLE_FAILURE = "recoverable_failure"
    CANCELLED = "cancelled"
    FAILED = "failed"


S = TransferState

TRANSITIONS: Dict[TransferState, FrozenSet[TransferState]] = {
    S.IDLE: frozenset({S.APPROVAL_PENDING, S.BURN_PENDING, S.CANCELLED, S.FAILED}),
    S.APPROVAL_PENDING: frozenset({S.APPROVAL_CONFIRMED, S.CANCELLED, S.FAILED}),
    S.APPROVAL_CONFIRMED: frozenset({S.BURN_PENDING, S.CANCELLED, S.FAILED}),
    # RECOVERABLE_FAILURE here covers a burn whose confirmation could not be
    # observed; the record is written so the burn is never forgotten.
    S.BURN_PENDING: frozenset({S.BURN_CONFIRMED, S.FAILED, S.RECOVERABLE_FAILURE}),
    S.BURN_CONFIRMED: frozenset({S.ATTESTATION_PENDING, S.RECOVERABLE_FAILURE}),
    S.ATTESTATION_PENDING: frozenset({S.ATTESTATION_COMPLETE, S.RECOVERABLE_FAILURE}),
    S.ATTESTATION_COMPLETE: frozenset({S.MINT_PENDING, S.COMPLETED, S.RECOVERABLE_FAILURE}),
    S.MINT_PENDING: frozenset({S.COMPLETED, S.RECOVERABLE_FAILURE}),
    S.RECOVERABLE_FAILURE: frozenset({S.COMPLETED}),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
    S.FAILED: frozenset(),
}


class AttestationStatus(str, Enum):
    PENDING = "pending"
    COMPLETE = "complete"


class AttestationResult(BaseModel):
    """Transient result of one attestation fetch. Never persisted."""
    model_config = ConfigDict(frozen=True)

    status: AttestationStatus
    message: Optional[bytes] = None
    signature: Optional[bytes] = None
    nonce: Optional[bytes] = None

    @property
    def is_complete(self) -> bool:
        return self.status == AttestationStatus.COMPLETE and bool(self.message) and bool(self.signature)


class TransferParams(BaseModel):
    model_config = ConfigDict(frozen=True)

    source_chain: str
    dest_chain: str
    amount: int = Field(gt=0)
    sender_address: str
    recipient_address: Optional[str] = None
    asset: str = "USDC"
    route: str = "token_messenger"


class PendingBurnRecord(BaseModel):
    """Durable marker for a burn that is confirmed but not yet minted."""
    model_config = ConfigDict(frozen=True)

    wallet_address: str
    burn_tx_hash: str
    source_chain: str
    dest_chain: str
    amount: int
    timestamp: datetime = Field(default_factory=utcnow)
    transfer_id: str
    recipient_address: str
    route: str = "token_messenger"
    claim_attempts: int = 0
    burn_confirmed: bool = True

    def age_days(self, now: Optional[datetime] = None) -> float:
        now = now or utcnow()
        return (now - self.timestamp).total_seconds() / 86400


class BridgeTransfer(BaseModel):
    """The unit of work. Immutable: every change returns a new copy."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    source_chain: str
    dest_chain: str
    asset: str = "USDC"
    amount: int
    sender_address: str
    recipient_address: str
    route: str = "token_messenger"
    state: TransferState = TransferState.IDLE
    approval_tx_hash: Optional[str] = None
    burn_tx_hash: Optional[str] = None
    attestation: Optional[AttestationResult] = None
    mint_tx_hash: Optional[str] = None
    failure: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_params(cls, params: TransferParams) -> "BridgeTransfer":
        return cls(
            source_chain=params.source_chain,
            dest_chain=params.dest_chain,
            asset=params.asset,
            amount=params.amount,
            sender_address=params.sender_address,
            recipient_address=params.recipient_address or params.sender_address,
            route=params.route,
        )

    @classmethod
    def from_record(cls, record: PendingBurnRecord) -> "BridgeTransfer":
        """Rehydrate a transfer at the point where the record was written."""
        return cls(
            id=record.transfer_id,
            source_chain=record.source_chain,
            dest_chain=record.dest_chain,
            amount=record.amount,
            sender_address=record.wallet_address,
            recipient_address=record.recipient_address,
            route=record.route,
            state=TransferState.BURN_CONFIRMED,
            burn_tx_hash=record.burn_tx_hash,
            created_at=record.timestamp,
        )

    def to_record(self, burn_confirmed: bool = True) -> PendingBurnRecord:
        if not self.burn_tx_hash:
            raise InvalidTransition("cannot build a pending record before the burn is submitted")
        return PendingBurnRecord(
            wallet_address=normalize_wallet(self.sender_address),
            burn_tx_hash=self.burn_tx_hash,
            source_chain=self.source_chain,
            dest_chain=self.dest_chain,
            amount=self.amount,
            transfer_id=self.id,
            recipient_address=self.recipient_address,
            route=self.route,
            burn_confirmed=burn_confirmed,
        )

    def advance(self, new_state: TransferState, **fields) -> "BridgeTransfer":
        if new_state not in TRANSITIONS[self.state]:
            log.error("INVALID_TRANSITION", transfer_id=self.id, current=self.state.value, requested=new_state.value)
            raise InvalidTransition(f"{self.state.value} -> {new_state.value} is not allowed")
        updated = self.model_copy(update={"state": new_state, "updated_at": utcnow(), **fields})
        log.info(
            "TRANSFER_STATE_CHANGED",
            transfer_id=self.id,
            previous=self.state.value,
            state=new_state.value,
            **{k: v for k, v in fields.items() if k != "attestation"},
        )
        return updated
