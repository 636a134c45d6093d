# /bridgekeeper/core/errors.py
# Failure taxonomy for the burn/mint flow and the helpers that map library
# and wallet exceptions onto it.
from typing import Optional

from web3.exceptions import ContractLogicError


class BridgeError(Exception):
    """Base class for every failure the controller reports."""

    kind = "BridgeError"


class UserRejectedSignature(BridgeError):
    """The signer declined the request. Nothing was submitted."""

    kind = "UserRejectedSignature"


class InsufficientAllowance(BridgeError):
    kind = "InsufficientAllowance"


class InsufficientBalance(BridgeError):
    kind = "InsufficientBalance"


class TransactionReverted(BridgeError):
    """A stage-specific transaction failed on-chain (or at estimation)."""

    kind = "TransactionReverted"

    def __init__(self, stage: str, tx_hash: Optional[str] = None, reason: Optional[str] = None):
        self.stage = stage
        self.tx_hash = tx_hash
        self.reason = reason or ""
        super().__init__(f"{stage} transaction reverted: {self.reason or 'no reason'}")

    def with_stage(self, stage: str) -> "TransactionReverted":
        return TransactionReverted(stage, self.tx_hash, self.reason)


class AttestationTimeout(BridgeError):
    kind = "AttestationTimeout"

    def __init__(self, burn_tx_hash: str, attempts: int):
        self.burn_tx_hash = burn_tx_hash
        self.attempts = attempts
        super().__init__(f"no attestation for {burn_tx_hash} after {attempts} attempts")


class AlreadyClaimed(BridgeError):
    """The destination reports the message nonce as consumed.

    Never surfaced to users as a failure: the controller turns it into a
    completed transfer.
    """

    kind = "AlreadyClaimed"


class NoPendingTransfer(BridgeError):
    kind = "NoPendingTransfer"

    def __init__(self, wallet: str):
        self.wallet = wallet
        super().__init__(f"no pending burn for wallet {wallet}")


class PendingTransferExists(BridgeError):
    kind = "PendingTransferExists"

    def __init__(self, wallet: str, burn_tx_hash: str):
        self.wallet = wallet
        self.burn_tx_hash = burn_tx_hash
        super().__init__(f"wallet {wallet} already has a pending burn {burn_tx_hash}; claim or dismiss it first")


class TransferCancelled(BridgeError):
    kind = "TransferCancelled"


class ConfirmationTimeout(BridgeError):
    """The gateway gave up waiting for a receipt. Retry the wait, not the send."""

    kind = "ConfirmationTimeout"

    def __init__(self, tx_hash: str, timeout: float):
        self.tx_hash = tx_hash
        self.timeout = timeout
        super().__init__(f"no confirmation for {tx_hash} within {timeout}s")


class AttestationServiceError(BridgeError):
    kind = "AttestationServiceError"


class InvalidTransition(BridgeError):
    kind = "InvalidTransition"


class HaltActive(BridgeError):
    kind = "HaltActive"


class DismissNotAcknowledged(BridgeError):
    kind = "DismissNotAcknowledged"


class UnsupportedRoute(BridgeError):
    kind = "UnsupportedRoute"


class SignerMismatch(BridgeError):
    """The sender is not the wallet that would sign the burn."""

    kind = "SignerMismatch"


# Revert strings seen from MessageTransmitter V1/V2 and wrapper relayers when
# the message was already received.
ALREADY_CONSUMED_MARKERS = (
    "nonce already used",
    "already used",
    "already received",
    "message already",
    "already processed",
    "usednonce",
)

USER_REJECTED_MARKERS = ("user rejected", "user denied", "rejected by user")


def is_already_consumed(reason: Optional[str]) -> bool:
    if not reason:
        return False
    lowered = reason.lower()
    return any(marker in lowered for marker in ALREADY_CONSUMED_MARKERS)


def _error_code(exc: Exception) -> Optional[int]:
    code = getattr(exc, "code", None)
    if code is None and exc.args and isinstance(exc.args[0], dict):
        code = exc.args[0].get("code")
    return code if isinstance(code, int) else None


def classify_exception(exc: Exception, stage: str) -> Exception:
    """Map a raw exception raised while handling ``stage`` to the taxonomy.

    Exceptions that do not match any known shape are returned unchanged so
    the caller re-raises the original.
    """
    if isinstance(exc, BridgeError):
        return exc
    message = str(exc)
    lowered = message.lower()
    if _error_code(exc) == 4001 or any(m in lowered for m in USER_REJECTED_MARKERS):
        return UserRejectedSignature(f"{stage}: {message}")
    if "insufficient funds" in lowered:
        return InsufficientBalance(f"{stage}: {message}")
    if isinstance(exc, ContractLogicError):
        return TransactionReverted(stage, reason=getattr(exc, "message", None) or message)
    return exc
