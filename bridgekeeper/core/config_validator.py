# /bridgekeeper/core/config_validator.py
# Run before anything touches a chain: a transfer that fails for missing
# configuration after its burn would leave funds waiting on a claim.
from typing import Iterable

from bridgekeeper.core.chains import CHAINS
from bridgekeeper.core.config import settings
from bridgekeeper.core.logger import log


def validate(chain_keys: Iterable[str] | None = None):
    log.info("--- CONFIG VALIDATION START ---")
    errors = []

    if not settings.EXECUTOR_PRIVATE_KEY:
        errors.append("Missing required configuration: EXECUTOR_PRIVATE_KEY")
    if not settings.ATTESTATION_API_URL:
        errors.append("Missing required configuration: ATTESTATION_API_URL")
    for key in chain_keys or CHAINS:
        if key not in CHAINS:
            errors.append(f"Unknown chain: {key}")
        elif not settings.rpc_url(key):
            errors.append(f"Missing RPC URL for chain: {key}")
    if settings.RECOVERY_BACKEND not in ("file", "redis"):
        errors.append(f"Unknown RECOVERY_BACKEND: {settings.RECOVERY_BACKEND}")

    if errors:
        for error in errors:
            log.critical(error)
        raise ValueError("System configuration is incomplete. Halting.")

    log.info("--- CONFIG VALIDATION PASSED ---")


if __name__ == "__main__":
    validate()
