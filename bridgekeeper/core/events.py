# /bridgekeeper/core/events.py
"""Progress events emitted by the transfer controller.

The set of kinds is closed. ``ProgressEvent`` is a discriminated union on
``kind`` so callers can validate payloads coming back over the wire, and
``describe_event`` matches every kind explicitly; adding a kind without
handling it there fails loudly instead of being ignored.
"""
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class _Event(BaseModel):
    model_config = ConfigDict(frozen=True)

    transfer_id: str
    tx_hash: Optional[str] = None


class ApprovalStarted(_Event):
    kind: Literal["approval_started"] = "approval_started"
    amount: int


class ApprovalConfirmed(_Event):
    kind: Literal["approval_confirmed"] = "approval_confirmed"


class BurnStarted(_Event):
    kind: Literal["burn_started"] = "burn_started"
    explorer_url: Optional[str] = None


class BurnConfirmed(_Event):
    kind: Literal["burn_confirmed"] = "burn_confirmed"
    block_number: Optional[int] = None


class AttestationPending(_Event):
    kind: Literal["attestation_pending"] = "attestation_pending"
    attempt: int
    max_attempts: int
    retry_later: bool = False


class AttestationComplete(_Event):
    kind: Literal["attestation_complete"] = "attestation_complete"


class MintStarted(_Event):
    kind: Literal["mint_started"] = "mint_started"
    explorer_url: Optional[str] = None


class MintConfirmed(_Event):
    kind: Literal["mint_confirmed"] = "mint_confirmed"
    already_claimed: bool = False


class RecoverableFailure(_Event):
    kind: Literal["recoverable_failure"] = "recoverable_failure"
    error: str
    reason: str = ""
    support_required: bool = False


class ClaimAvailable(_Event):
    kind: Literal["claim_available"] = "claim_available"
    wallet_address: str
    amount: int
    source_chain: str
    dest_chain: str
    claim_attempts: int = 0
    support_required: bool = False


ProgressEvent = Annotated[
    Union[
        ApprovalStarted,
        ApprovalConfirmed,
        BurnStarted,
        BurnConfirmed,
        AttestationPending,
        AttestationComplete,
        MintStarted,
        MintConfirmed,
        RecoverableFailure,
        ClaimAvailable,
    ],
    Field(discriminator="kind"),
]

progress_event_adapter = TypeAdapter(ProgressEvent)


def parse_event(data: dict):
    return progress_event_adapter.validate_python(data)


def describe_event(event) -> str:
    match event:
        case ApprovalStarted(amount=amount):
            return f"Approving {amount} base units for the burn"
        case ApprovalConfirmed():
            return "Approval confirmed"
        case BurnStarted(tx_hash=tx_hash):
            return f"Burn submitted: {tx_hash}"
        case BurnConfirmed(tx_hash=tx_hash):
            return f"Burn confirmed: {tx_hash}"
        case AttestationPending(attempt=attempt, max_attempts=max_attempts, retry_later=True):
            return f"Attestation not ready yet ({attempt}/{max_attempts}); try the claim again later"
        case AttestationPending(attempt=attempt, max_attempts=max_attempts):
            return f"Waiting for attestation ({attempt}/{max_attempts})"
        case AttestationComplete():
            return "Attestation received"
        case MintStarted(tx_hash=tx_hash):
            return f"Mint submitted: {tx_hash}"
        case MintConfirmed(already_claimed=True):
            return "Transfer complete (the message had already been minted)"
        case MintConfirmed(tx_hash=tx_hash):
            return f"Transfer complete: {tx_hash}"
        case RecoverableFailure(error=error, reason=reason, support_required=support):
            suffix = " Contact support." if support else ""
            return f"Your funds are safe but need a follow-up claim ({error}: {reason}).{suffix}"
        case ClaimAvailable(amount=amount, tx_hash=tx_hash, support_required=support):
            suffix = " Contact support if claiming keeps failing." if support else ""
            return f"{amount} base units from burn {tx_hash} are claimable.{suffix}"
    raise TypeError(f"Unhandled progress event: {event!r}")
