# /bridgekeeper/core/controller.py
"""Burn -> attestation -> mint orchestration.

``TransferController`` drives one ``BridgeTransfer`` through the transition
graph in ``state.py`` and reports progress as an async stream of events.

The one rule everything else bends around: once a burn is confirmed on the
source chain the funds exist nowhere until the mint lands. The controller
therefore writes a ``PendingBurnRecord`` before it does anything else with a
confirmed burn, and removes it only after a mint is confirmed or the
destination says the message was already consumed. Every failure after that
point is reported as a recoverable failure, never raised.
"""
import asyncio
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Set

import aiohttp
from web3.exceptions import Web3Exception

from bridgekeeper.adapters.attestation import AttestationSource
from bridgekeeper.adapters.cctp import decode_message_header, decode_uint256, encode_receive_message, encode_used_nonces
from bridgekeeper.adapters.chain import ChainGateway
from bridgekeeper.core import kill
from bridgekeeper.core.config import settings
from bridgekeeper.core.decorators import confirmation_retrying
from bridgekeeper.core.errors import (
    AlreadyClaimed,
    AttestationServiceError,
    AttestationTimeout,
    BridgeError,
    DismissNotAcknowledged,
    InsufficientAllowance,
    InsufficientBalance,
    NoPendingTransfer,
    PendingTransferExists,
    SignerMismatch,
    TransactionReverted,
    TransferCancelled,
    classify_exception,
    is_already_consumed,
)
from bridgekeeper.core.events import (
    ApprovalConfirmed,
    ApprovalStarted,
    AttestationComplete,
    AttestationPending,
    BurnConfirmed,
    BurnStarted,
    ClaimAvailable,
    MintConfirmed,
    MintStarted,
    ProgressEvent,
    RecoverableFailure,
)
from bridgekeeper.core.logger import (
    ALREADY_CLAIMED,
    ATTESTATION_POLLS,
    CLAIMS_ATTEMPTED,
    RECOVERABLE_FAILURES,
    TRANSFERS_COMPLETED,
    TRANSFERS_STARTED,
    get_logger,
)
from bridgekeeper.core.recovery_store import RecoveryStore
from bridgekeeper.core.state import (
    AttestationResult,
    BridgeTransfer,
    PendingBurnRecord,
    TransferParams,
    TransferState,
    normalize_wallet,
)
from bridgekeeper.routes import AbstractBurnRoute, get_route

log = get_logger(__name__)

S = TransferState

# Failures of a single attestation fetch. They count as an unsuccessful
# attempt and polling continues.
TRANSIENT_FETCH_ERRORS = (
    aiohttp.ClientError,
    asyncio.TimeoutError,
    ConnectionError,
    OSError,
    ValueError,
    AttestationServiceError,
)

# Failures of the read-only usedNonces pre-check. The mint is attempted anyway.
NONCE_CHECK_ERRORS = (Web3Exception, ConnectionError, TimeoutError, OSError, ValueError, BridgeError)


class TransferController:
    """Owns every piece of session state for one executor wallet.

    ``gateways`` maps chain keys to gateways; a transfer needs one for its
    source and one for its destination chain.
    """

    def __init__(
        self,
        gateways: Dict[str, ChainGateway],
        attestation: AttestationSource,
        store: RecoveryStore,
        poll_interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
        confirmation_retries: Optional[int] = None,
        auto_approve: Optional[bool] = None,
        check_used_nonce: Optional[bool] = None,
        max_claim_attempts: Optional[int] = None,
        max_record_age_days: Optional[float] = None,
        route_factory: Callable[[str], AbstractBurnRoute] = get_route,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.gateways = gateways
        self.attestation = attestation
        self.store = store
        self.poll_interval = settings.ATTESTATION_POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        self.max_attempts = settings.ATTESTATION_MAX_ATTEMPTS if max_attempts is None else max_attempts
        self.confirmation_retries = (
            settings.CONFIRMATION_WAIT_RETRIES if confirmation_retries is None else confirmation_retries
        )
        self.auto_approve = settings.AUTO_APPROVE if auto_approve is None else auto_approve
        self.check_used_nonce = settings.CHECK_USED_NONCE if check_used_nonce is None else check_used_nonce
        self.max_claim_attempts = settings.MAX_CLAIM_ATTEMPTS if max_claim_attempts is None else max_claim_attempts
        self.max_record_age_days = (
            settings.MAX_RECORD_AGE_DAYS if max_record_age_days is None else max_record_age_days
        )
        self.route_factory = route_factory
        self._sleep = sleep
        # Latest snapshot of every transfer this controller touched.
        self.transfers: Dict[str, BridgeTransfer] = {}
        self._burn_tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _gateway(self, chain_key: str) -> ChainGateway:
        try:
            return self.gateways[chain_key]
        except KeyError:
            raise ValueError(f"No gateway configured for chain '{chain_key}'") from None

    def _track(self, transfer: BridgeTransfer) -> BridgeTransfer:
        self.transfers[transfer.id] = transfer
        return transfer

    def _advance(self, transfer: BridgeTransfer, new_state: TransferState, **fields) -> BridgeTransfer:
        return self._track(transfer.advance(new_state, **fields))

    async def _wait(self, gateway: ChainGateway, tx_hash: str, confirmations: int) -> dict:
        async for attempt in confirmation_retrying(self.confirmation_retries):
            with attempt:
                return await gateway.wait_for_confirmation(tx_hash, confirmations)

    def _support_required(self, record: Optional[PendingBurnRecord]) -> bool:
        if record is None:
            return False
        return record.claim_attempts >= self.max_claim_attempts or record.age_days() > self.max_record_age_days

    def _claim_available(self, record: PendingBurnRecord) -> ClaimAvailable:
        return ClaimAvailable(
            transfer_id=record.transfer_id,
            tx_hash=record.burn_tx_hash,
            wallet_address=record.wallet_address,
            amount=record.amount,
            source_chain=record.source_chain,
            dest_chain=record.dest_chain,
            claim_attempts=record.claim_attempts,
            support_required=self._support_required(record),
        )

    async def _clear_record(self, transfer: BridgeTransfer):
        wallet = normalize_wallet(transfer.sender_address)
        record = await self.store.get(wallet)
        if record is not None and record.burn_tx_hash != transfer.burn_tx_hash:
            log.error("PENDING_BURN_RECORD_MISMATCH_NOT_CLEARED", transfer_id=transfer.id, wallet=wallet,
                      stored=record.burn_tx_hash, completed=transfer.burn_tx_hash)
            return
        await self.store.clear(wallet)

    async def _recoverable(
        self, transfer: BridgeTransfer, error: Exception, reason: str = "", manual: bool = False
    ) -> List[ProgressEvent]:
        """Park a post-burn transfer for a later claim. The record stays."""
        kind = getattr(error, "kind", type(error).__name__)
        reason = reason or str(error)
        transfer = self._advance(transfer, S.RECOVERABLE_FAILURE, failure=kind)
        RECOVERABLE_FAILURES.labels(kind).inc()
        wallet = normalize_wallet(transfer.sender_address)
        record = await self.store.get(wallet)
        if record is None:
            # Dismissed while this transfer was still running. The burn is
            # still unminted, so the record comes back.
            log.critical("PENDING_BURN_RESTORED_AFTER_DISMISSAL", transfer_id=transfer.id, wallet=wallet,
                         burn_tx_hash=transfer.burn_tx_hash)
            record = transfer.to_record()
            await self.store.set(wallet, record)
        if manual:
            record = record.model_copy(update={"claim_attempts": record.claim_attempts + 1})
            await self.store.set(wallet, record)
        support = self._support_required(record)
        if support:
            log.critical("CLAIM_ESCALATION_REQUIRED", transfer_id=transfer.id, wallet=wallet,
                         burn_tx_hash=record.burn_tx_hash, claim_attempts=record.claim_attempts,
                         age_days=round(record.age_days(), 2))
        log.warning("TRANSFER_RECOVERABLE_FAILURE", transfer_id=transfer.id, wallet=wallet,
                    burn_tx_hash=transfer.burn_tx_hash, error=kind, reason=reason)
        return [
            RecoverableFailure(transfer_id=transfer.id, tx_hash=transfer.burn_tx_hash, error=kind,
                               reason=reason, support_required=support),
            self._claim_available(record),
        ]

    # ------------------------------------------------------------------
    # burn
    # ------------------------------------------------------------------
    async def _confirm_burn(self, transfer: BridgeTransfer, gateway: ChainGateway):
        """Wait for the burn and persist the record as soon as it is known.

        Runs as its own task so that a consumer abandoning the event stream
        cannot stop the record from being written.
        """
        wallet = normalize_wallet(transfer.sender_address)
        try:
            receipt = await self._wait(gateway, transfer.burn_tx_hash, settings.BURN_CONFIRMATIONS)
        except TransactionReverted as e:
            self._advance(transfer, S.FAILED, failure=e.kind)
            log.error("BURN_REVERTED", transfer_id=transfer.id, burn_tx_hash=transfer.burn_tx_hash, reason=e.reason)
            raise TransactionReverted("burn", tx_hash=transfer.burn_tx_hash, reason=e.reason) from e
        except Exception as e:
            # The burn may or may not have landed. Keep it claimable.
            await self.store.set(wallet, transfer.to_record(burn_confirmed=False))
            log.critical("BURN_CONFIRMATION_UNOBSERVED", transfer_id=transfer.id,
                         burn_tx_hash=transfer.burn_tx_hash, error=str(e))
            return transfer, None, e
        try:
            await self.store.set(wallet, transfer.to_record())
        except Exception as e:
            log.critical("PENDING_BURN_RECORD_WRITE_FAILED", transfer_id=transfer.id, wallet=wallet,
                         burn_tx_hash=transfer.burn_tx_hash, amount=transfer.amount, error=str(e))
            raise
        transfer = self._advance(transfer, S.BURN_CONFIRMED)
        return transfer, receipt, None

    def _check_cancel(self, cancel: Optional[asyncio.Event]):
        if cancel is not None and cancel.is_set():
            raise TransferCancelled("cancelled before the burn was submitted")

    async def start_transfer(
        self, params: TransferParams, cancel: Optional[asyncio.Event] = None
    ) -> AsyncIterator[ProgressEvent]:
        """Run a new transfer end to end, yielding progress events.

        Errors before the burn is confirmed are raised from the stream.
        After that point the stream ends with either ``MintConfirmed`` or
        ``RecoverableFailure`` followed by ``ClaimAvailable``.
        """
        if params.source_chain == params.dest_chain:
            raise ValueError("source and destination chain must differ")
        source_gw = self._gateway(params.source_chain)
        dest_gw = self._gateway(params.dest_chain)
        route = self.route_factory(params.route)
        wallet = normalize_wallet(params.sender_address)
        signer = normalize_wallet(source_gw.address)
        if wallet != signer:
            log.error("SENDER_IS_NOT_SIGNER", wallet=wallet, signer=signer, source=params.source_chain)
            raise SignerMismatch(f"sender {wallet} is not the {params.source_chain} signer {signer}")

        existing = await self.store.get(wallet)
        if existing is not None:
            log.warning("PENDING_BURN_BLOCKS_NEW_TRANSFER", wallet=wallet, burn_tx_hash=existing.burn_tx_hash)
            raise PendingTransferExists(wallet, existing.burn_tx_hash)

        transfer = self._track(BridgeTransfer.from_params(params))
        source = source_gw.chain
        dest = dest_gw.chain
        log.info("TRANSFER_STARTING", transfer_id=transfer.id, wallet=wallet, source=source.key,
                 dest=dest.key, amount=transfer.amount, route=route.name)

        stage = "preflight"
        try:
            kill.check()
            token = source.usdc_address
            balance = await source_gw.get_balance(token, transfer.sender_address)
            if balance < transfer.amount:
                raise InsufficientBalance(f"balance {balance} < amount {transfer.amount}")
            spender = route.spender(source)
            allowance = await source_gw.get_allowance(token, transfer.sender_address, spender)
            TRANSFERS_STARTED.labels(route.name).inc()

            if allowance < transfer.amount:
                if not self.auto_approve:
                    raise InsufficientAllowance(f"allowance {allowance} < amount {transfer.amount}")
                self._check_cancel(cancel)
                stage = "approval"
                approval_hash = await source_gw.approve(token, spender, transfer.amount)
                transfer = self._advance(transfer, S.APPROVAL_PENDING, approval_tx_hash=approval_hash)
                yield ApprovalStarted(transfer_id=transfer.id, tx_hash=approval_hash, amount=transfer.amount)
                await self._wait(source_gw, approval_hash, settings.APPROVAL_CONFIRMATIONS)
                transfer = self._advance(transfer, S.APPROVAL_CONFIRMED)
                yield ApprovalConfirmed(transfer_id=transfer.id, tx_hash=approval_hash)
                allowance = await source_gw.get_allowance(token, transfer.sender_address, spender)
                if allowance < transfer.amount:
                    raise InsufficientAllowance(f"allowance {allowance} < amount {transfer.amount} after approval")

            self._check_cancel(cancel)
            kill.check()
            stage = "burn"
            to, data = route.build_burn(transfer, source, dest)
            burn_hash = await source_gw.submit_transaction(to, data)
        except TransferCancelled:
            self._advance(transfer, S.CANCELLED)
            log.warning("TRANSFER_CANCELLED", transfer_id=transfer.id, stage=stage)
            raise
        except Exception as e:
            err = classify_exception(e, stage)
            if isinstance(err, TransactionReverted):
                err = err.with_stage(stage)
            self._advance(transfer, S.FAILED, failure=getattr(err, "kind", type(err).__name__))
            log.error("TRANSFER_FAILED_BEFORE_BURN", transfer_id=transfer.id, stage=stage, error=str(err))
            if err is e:
                raise
            raise err from e

        # Past this line the burn is on its way. Cancellation only stops
        # local polling from here on.
        transfer = self._advance(transfer, S.BURN_PENDING, burn_tx_hash=burn_hash)
        burn_task = asyncio.create_task(self._confirm_burn(transfer, source_gw))
        self._burn_tasks.add(burn_task)
        burn_task.add_done_callback(self._burn_tasks.discard)
        yield BurnStarted(transfer_id=transfer.id, tx_hash=burn_hash, explorer_url=source.explorer_url(burn_hash))

        transfer, receipt, error = await asyncio.shield(burn_task)
        if error is not None:
            for event in await self._recoverable(transfer, error):
                yield event
            return
        yield BurnConfirmed(transfer_id=transfer.id, tx_hash=burn_hash, block_number=receipt.get("blockNumber"))

        async for event in self._attest_and_mint(transfer, dest_gw, cancel):
            yield event

    # ------------------------------------------------------------------
    # attestation + mint
    # ------------------------------------------------------------------
    def _attestation_matches(self, transfer: BridgeTransfer, result: AttestationResult) -> bool:
        source = self._gateway(transfer.source_chain).chain
        dest = self._gateway(transfer.dest_chain).chain
        try:
            header = decode_message_header(result.message)
        except ValueError:
            return True
        if header.source_domain != source.cctp_domain or header.destination_domain != dest.cctp_domain:
            log.error("ATTESTATION_DOMAIN_MISMATCH", transfer_id=transfer.id, burn_tx_hash=transfer.burn_tx_hash,
                      source_domain=header.source_domain, destination_domain=header.destination_domain)
            return False
        return True

    async def _fetch(self, transfer: BridgeTransfer, attempt: int) -> Optional[AttestationResult]:
        domain = self._gateway(transfer.source_chain).chain.cctp_domain
        try:
            result = await self.attestation.fetch_attestation(transfer.burn_tx_hash, domain)
        except TRANSIENT_FETCH_ERRORS as e:
            ATTESTATION_POLLS.labels("error").inc()
            log.warning("ATTESTATION_FETCH_FAILED", transfer_id=transfer.id, attempt=attempt, error=str(e))
            return None
        except Exception as e:
            ATTESTATION_POLLS.labels("error").inc()
            log.error("ATTESTATION_FETCH_UNEXPECTED_ERROR", transfer_id=transfer.id, attempt=attempt,
                      error=type(e).__name__, detail=str(e))
            return None
        if result.is_complete and self._attestation_matches(transfer, result):
            ATTESTATION_POLLS.labels("complete").inc()
            return result
        ATTESTATION_POLLS.labels("pending").inc()
        return None

    async def _attest_and_mint(
        self, transfer: BridgeTransfer, dest_gw: ChainGateway, cancel: Optional[asyncio.Event] = None
    ) -> AsyncIterator[ProgressEvent]:
        transfer = self._advance(transfer, S.ATTESTATION_PENDING)
        result = None
        for attempt in range(1, self.max_attempts + 1):
            if cancel is not None and cancel.is_set():
                for event in await self._recoverable(transfer, TransferCancelled("polling stopped"), reason="cancelled"):
                    yield event
                return
            result = await self._fetch(transfer, attempt)
            if result is not None:
                break
            yield AttestationPending(transfer_id=transfer.id, tx_hash=transfer.burn_tx_hash,
                                     attempt=attempt, max_attempts=self.max_attempts)
            if attempt < self.max_attempts:
                await self._sleep(self.poll_interval)

        if result is None:
            error = AttestationTimeout(transfer.burn_tx_hash, self.max_attempts)
            for event in await self._recoverable(transfer, error):
                yield event
            return

        transfer = self._advance(transfer, S.ATTESTATION_COMPLETE, attestation=result)
        yield AttestationComplete(transfer_id=transfer.id, tx_hash=transfer.burn_tx_hash)
        async for event in self._mint(transfer, dest_gw):
            yield event

    async def _nonce_consumed(self, dest_gw: ChainGateway, nonce: bytes) -> bool:
        raw = await dest_gw.call(dest_gw.chain.message_transmitter, encode_used_nonces(nonce))
        return decode_uint256(raw) != 0

    async def _complete(
        self, transfer: BridgeTransfer, mint_hash: Optional[str], already_claimed: bool
    ) -> MintConfirmed:
        await self._clear_record(transfer)
        fields = {"mint_tx_hash": mint_hash} if mint_hash else {}
        transfer = self._advance(transfer, S.COMPLETED, **fields)
        if already_claimed:
            ALREADY_CLAIMED.inc()
            log.info("MINT_ALREADY_CLAIMED", transfer_id=transfer.id, burn_tx_hash=transfer.burn_tx_hash)
        TRANSFERS_COMPLETED.labels("already_claimed" if already_claimed else "minted").inc()
        log.info("TRANSFER_COMPLETED", transfer_id=transfer.id, burn_tx_hash=transfer.burn_tx_hash,
                 mint_tx_hash=mint_hash, already_claimed=already_claimed)
        return MintConfirmed(transfer_id=transfer.id, tx_hash=mint_hash, already_claimed=already_claimed)

    async def _submit_mint(self, transfer: BridgeTransfer, dest_gw: ChainGateway) -> str:
        """Submit receiveMessage. Raises AlreadyClaimed if the message was consumed."""
        attestation = transfer.attestation
        # Routes with a relayer usually mint first, so always ask.
        check = self.check_used_nonce or self.route_factory(transfer.route).relayer_mints
        if check and attestation.nonce:
            try:
                consumed = await self._nonce_consumed(dest_gw, attestation.nonce)
            except NONCE_CHECK_ERRORS as e:
                log.warning("USED_NONCE_CHECK_FAILED", transfer_id=transfer.id, error=str(e))
                consumed = False
            if consumed:
                raise AlreadyClaimed(f"nonce {attestation.nonce.hex()} already used")

        data = encode_receive_message(attestation.message, attestation.signature)
        try:
            return await dest_gw.submit_transaction(dest_gw.chain.message_transmitter, data)
        except Exception as e:
            err = classify_exception(e, "mint")
            if isinstance(err, TransactionReverted) and is_already_consumed(err.reason):
                raise AlreadyClaimed(err.reason) from e
            if isinstance(err, TransactionReverted):
                raise err.with_stage("mint") from e
            if err is e:
                raise
            raise err from e

    async def _mint(
        self, transfer: BridgeTransfer, dest_gw: ChainGateway, manual: bool = False
    ) -> AsyncIterator[ProgressEvent]:
        try:
            mint_hash = await self._submit_mint(transfer, dest_gw)
        except AlreadyClaimed:
            yield await self._complete(transfer, None, already_claimed=True)
            return
        except Exception as err:
            if not isinstance(err, BridgeError):
                log.error("MINT_SUBMIT_ERROR", transfer_id=transfer.id, error=str(err))
            for event in await self._recoverable(transfer, err, manual=manual):
                yield event
            return

        transfer = self._advance(transfer, S.MINT_PENDING, mint_tx_hash=mint_hash)
        yield MintStarted(transfer_id=transfer.id, tx_hash=mint_hash,
                          explorer_url=dest_gw.chain.explorer_url(mint_hash))
        try:
            await self._wait(dest_gw, mint_hash, settings.MINT_CONFIRMATIONS)
        except TransactionReverted as e:
            if is_already_consumed(e.reason):
                yield await self._complete(transfer, mint_hash, already_claimed=True)
                return
            for event in await self._recoverable(transfer, e.with_stage("mint"), manual=manual):
                yield event
            return
        except Exception as e:
            for event in await self._recoverable(transfer, e, manual=manual):
                yield event
            return
        yield await self._complete(transfer, mint_hash, already_claimed=False)

    # ------------------------------------------------------------------
    # recovery operations
    # ------------------------------------------------------------------
    async def _load(self, wallet_address: str) -> PendingBurnRecord:
        record = await self.store.get(normalize_wallet(wallet_address))
        if record is None:
            raise NoPendingTransfer(normalize_wallet(wallet_address))
        return record

    async def resume_pending(
        self, wallet_address: str, cancel: Optional[asyncio.Event] = None
    ) -> AsyncIterator[ProgressEvent]:
        """Re-enter the stream at attestation polling for a stored burn."""
        record = await self._load(wallet_address)
        transfer = self._track(BridgeTransfer.from_record(record))
        dest_gw = self._gateway(record.dest_chain)
        log.info("TRANSFER_RESUMING", transfer_id=transfer.id, wallet=record.wallet_address,
                 burn_tx_hash=record.burn_tx_hash, burn_confirmed=record.burn_confirmed)
        async for event in self._attest_and_mint(transfer, dest_gw, cancel):
            yield event

    async def claim_pending(self, wallet_address: str) -> ProgressEvent:
        """One attestation fetch and, if ready, one mint. Never loops."""
        CLAIMS_ATTEMPTED.inc()
        record = await self._load(wallet_address)
        transfer = self._track(BridgeTransfer.from_record(record))
        dest_gw = self._gateway(record.dest_chain)
        transfer = self._advance(transfer, S.ATTESTATION_PENDING)
        log.info("CLAIM_ATTEMPT", transfer_id=transfer.id, wallet=record.wallet_address,
                 burn_tx_hash=record.burn_tx_hash, claim_attempts=record.claim_attempts)

        result = await self._fetch(transfer, attempt=1)
        if result is None:
            return AttestationPending(transfer_id=transfer.id, tx_hash=transfer.burn_tx_hash,
                                      attempt=1, max_attempts=1, retry_later=True)
        transfer = self._advance(transfer, S.ATTESTATION_COMPLETE, attestation=result)
        events = [event async for event in self._mint(transfer, dest_gw, manual=True)]
        return next(e for e in events if isinstance(e, (MintConfirmed, RecoverableFailure)))

    async def dismiss_pending(self, wallet_address: str, acknowledged: bool = False) -> PendingBurnRecord:
        """Forget a stored burn. Only with explicit acknowledgement."""
        if not acknowledged:
            raise DismissNotAcknowledged(
                "dismissing a pending burn discards the only local record of burned funds; acknowledge to proceed"
            )
        record = await self._load(wallet_address)
        await self.store.clear(record.wallet_address)
        log.critical("PENDING_BURN_DISMISSED", wallet=record.wallet_address, burn_tx_hash=record.burn_tx_hash,
                     amount=record.amount, source=record.source_chain, dest=record.dest_chain)
        return record

    async def pending_status(self, wallet_address: str) -> Optional[ClaimAvailable]:
        record = await self.store.get(normalize_wallet(wallet_address))
        if record is None:
            return None
        return self._claim_available(record)

    async def aclose(self):
        """Let in-flight burn confirmations finish writing their records."""
        if self._burn_tasks:
            await asyncio.gather(*list(self._burn_tasks), return_exceptions=True)
