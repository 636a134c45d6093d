# /bridgekeeper/core/config.py
from typing import Dict
from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Settings are read once at import time from the environment and an optional
# .env file. Chain-keyed values (RPC_URLS) are passed as JSON in the env var.
class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Signer
    EXECUTOR_PRIVATE_KEY: SecretStr | None = None

    # RPC endpoints, keyed by chain key from bridgekeeper.core.chains
    RPC_URLS: Dict[str, str] = {}
    RPC_TIMEOUT_SECONDS: int = 10

    # Attestation service (Circle Iris V2)
    ATTESTATION_API_URL: str = "https://iris-api-sandbox.circle.com/v2/messages"
    ATTESTATION_POLL_INTERVAL_SECONDS: float = 15.0
    ATTESTATION_MAX_ATTEMPTS: int = 60  # 60 x 15s = 15 minutes
    ATTESTATION_HTTP_TIMEOUT_SECONDS: int = 10

    # Confirmation policy
    APPROVAL_CONFIRMATIONS: int = 1
    BURN_CONFIRMATIONS: int = 2
    MINT_CONFIRMATIONS: int = 1
    CONFIRMATION_TIMEOUT_SECONDS: int = 180
    CONFIRMATION_WAIT_RETRIES: int = 3

    # Burn parameters
    AUTO_APPROVE: bool = True
    MAX_FEE: int = 100_000  # 0.1 USDC, lets the relayer pick the message up
    MIN_FINALITY_THRESHOLD: int = 1000
    CHECK_USED_NONCE: bool = True

    # Recovery
    RECOVERY_BACKEND: str = "file"  # file | redis
    SESSION_DIR: str = "/tmp/bridgekeeper_session"  # durable state files
    REDIS_URL: str = "redis://localhost:6379/0"
    MAX_CLAIM_ATTEMPTS: int = 5
    MAX_RECORD_AGE_DAYS: int = 7

    # Operational
    LOG_LEVEL: str = "INFO"
    LOG_SIGNING_KEY: SecretStr | None = None
    SENTRY_DSN: SecretStr | None = None
    CONTROL_API_TOKEN: str | None = None

    def rpc_url(self, chain_key: str) -> str | None:
        return self.RPC_URLS.get(chain_key)

try:
    settings = Settings()
except Exception as e:
    # Late import to avoid circular dependency only for logging the failure
    try:
        from bridgekeeper.core.logger import get_logger, configure_logging
        configure_logging()
        log = get_logger("bridgekeeper.config")
        log.critical("FAILED_TO_LOAD_SETTINGS", error=str(e))
    except Exception:
        print("FAILED_TO_LOAD_SETTINGS", e)
    raise SystemExit(1)
