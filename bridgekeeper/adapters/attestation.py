# /bridgekeeper/adapters/attestation.py
# Client for the Circle Iris V2 messages endpoint. One call per fetch; the
# polling cadence belongs to the controller.
from typing import Optional, Protocol

import aiohttp

from bridgekeeper.adapters.cctp import decode_message_header, hex_to_bytes
from bridgekeeper.core.config import settings
from bridgekeeper.core.errors import AttestationServiceError
from bridgekeeper.core.logger import get_logger
from bridgekeeper.core.state import AttestationResult, AttestationStatus

log = get_logger(__name__)

PENDING = AttestationResult(status=AttestationStatus.PENDING)


class AttestationSource(Protocol):
    async def fetch_attestation(self, burn_tx_hash: str, source_domain: int) -> AttestationResult: ...


def parse_messages_response(data: dict) -> AttestationResult:
    """Interpret a /v2/messages payload. Anything short of a signed message is pending."""
    if not isinstance(data, dict):
        raise AttestationServiceError(f"unexpected attestation payload: {type(data).__name__}")
    messages = data.get("messages") or []
    if not messages:
        return PENDING
    first = messages[0]
    attestation = first.get("attestation")
    message = first.get("message")
    if first.get("status") != "complete" or not attestation or attestation == "PENDING" or not message:
        return PENDING
    message_bytes = hex_to_bytes(message)
    try:
        nonce = decode_message_header(message_bytes).nonce
    except ValueError:
        nonce = None
    return AttestationResult(
        status=AttestationStatus.COMPLETE,
        message=message_bytes,
        signature=hex_to_bytes(attestation),
        nonce=nonce,
    )


class AttestationClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = (base_url or settings.ATTESTATION_API_URL).rstrip("/")
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=settings.ATTESTATION_HTTP_TIMEOUT_SECONDS)
            )
        return self._session

    async def fetch_attestation(self, burn_tx_hash: str, source_domain: int) -> AttestationResult:
        url = f"{self.base_url}/{source_domain}"
        params = {"transactionHash": burn_tx_hash}
        async with self._get_session().get(url, params=params) as resp:
            # Iris answers 404 until it has indexed the burn.
            if resp.status == 404:
                return PENDING
            if resp.status != 200:
                body = await resp.text()
                raise AttestationServiceError(f"attestation API returned {resp.status}: {body[:200]}")
            data = await resp.json()
        result = parse_messages_response(data)
        log.debug("ATTESTATION_FETCHED", burn_tx_hash=burn_tx_hash, status=result.status.value)
        return result

    async def close(self):
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None
