# /bridgekeeper/core/logger.py
import logging
import structlog
import sentry_sdk
from prometheus_client import Counter
from bridgekeeper.core.config import settings
import json
import hmac
import hashlib
import os

# --- Prometheus Metrics ---
TRANSFERS_STARTED = Counter("bridgekeeper_transfers_started_total", "Transfers that passed pre-flight", ["route"])
TRANSFERS_COMPLETED = Counter("bridgekeeper_transfers_completed_total", "Transfers whose mint was confirmed", ["path"])
RECOVERABLE_FAILURES = Counter("bridgekeeper_recoverable_failures_total", "Transfers left claimable after the burn", ["reason"])
CLAIMS_ATTEMPTED = Counter("bridgekeeper_claims_attempted_total", "Manual claim attempts")
ALREADY_CLAIMED = Counter("bridgekeeper_already_claimed_total", "Mints resolved as already consumed")
ATTESTATION_POLLS = Counter("bridgekeeper_attestation_polls_total", "Attestation fetches", ["outcome"])
ERRORS_LOGGED = Counter("bridgekeeper_errors_logged_total", "Total number of errors logged", ["level"])

SIGNING_KEY = (
    settings.LOG_SIGNING_KEY.get_secret_value().encode()
    if settings.LOG_SIGNING_KEY
    else b"insecure"
)

# Tests monkey-patch this to redirect the audit trail.
AUDIT_FILE = os.path.join(settings.SESSION_DIR, "audit.log")

def sign_and_append(logger, method_name: str, event_dict: dict) -> dict:  # type: ignore[override]
    """Structlog processor that signs each event and appends it to the audit log.

    Every state transition and every PendingBurnRecord write/clear goes
    through here, so the audit log is a tamper-evident history of what the
    controller did with burned funds.
    """
    payload = json.dumps(event_dict, sort_keys=True, default=str)
    sig = hmac.new(SIGNING_KEY, payload.encode(), hashlib.sha256).hexdigest()

    default_path = os.path.join(settings.SESSION_DIR, "audit.log")
    if os.path.dirname(str(AUDIT_FILE)) != os.path.dirname(default_path):
        audit_file = AUDIT_FILE
    else:
        audit_file = default_path

    try:
        with open(audit_file, "a", encoding="utf-8") as f:
            f.write(payload + "|" + sig + "\n")
    except FileNotFoundError:
        os.makedirs(os.path.dirname(str(audit_file)), exist_ok=True)
        with open(audit_file, "a", encoding="utf-8") as f:
            f.write(payload + "|" + sig + "\n")

    event_dict["signature"] = sig
    return event_dict

def count_errors(logger, method_name: str, event_dict: dict) -> dict:
    if method_name in ("error", "critical", "exception"):
        ERRORS_LOGGED.labels(method_name).inc()
    return event_dict

def configure_logging():
    if settings.SENTRY_DSN:
        sentry_sdk.init(dsn=settings.SENTRY_DSN.get_secret_value(), traces_sample_rate=1.0)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            count_errors,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            sign_and_append,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(settings.LOG_LEVEL)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

def get_logger(name: str):
    return structlog.get_logger(name)

configure_logging()
log = get_logger("bridgekeeper.system")
