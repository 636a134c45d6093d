# /bridgekeeper/core/decorators.py
# Reusable retry policies for network-bound calls.
import logging

from aiohttp import ClientError
from tenacity import AsyncRetrying, retry, retry_if_exception_type, stop_after_attempt, wait_exponential, before_sleep_log

from bridgekeeper.core.errors import ConfirmationTimeout
from bridgekeeper.core.logger import get_logger

log = get_logger(__name__)

# Read-only RPC calls (allowance, balance, eth_call). Never wrap a submission
# in this: a retried send can double-spend.
retriable_network_call = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=5),
    retry=retry_if_exception_type((ConnectionError, TimeoutError, ClientError, OSError)),
    before_sleep=before_sleep_log(log, logging.WARNING),
    reraise=True,
)


def confirmation_retrying(attempts: int) -> AsyncRetrying:
    """Retry policy for receipt waits. Only gateway timeouts are retried."""
    return AsyncRetrying(
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(ConfirmationTimeout),
        before_sleep=before_sleep_log(log, logging.WARNING),
        reraise=True,
    )
