# /bridgekeeper/core/kill.py
# Operator halt. While the marker file exists no new burn is submitted;
# resumes and claims still run because they only finish burns already made.
import os
from datetime import datetime, timezone

from bridgekeeper.core.config import settings
from bridgekeeper.core.errors import HaltActive
from bridgekeeper.core.logger import get_logger

log = get_logger(__name__)

KILL_SWITCH_FILE = os.path.join(settings.SESSION_DIR, "BRIDGE_HALT")


def is_kill_switch_active() -> bool:
    return os.path.exists(KILL_SWITCH_FILE)


def activate_kill_switch(reason: str):
    timestamp = datetime.now(timezone.utc).isoformat()
    content = f"ACTIVATED at {timestamp}\nREASON: {reason}\n"
    os.makedirs(os.path.dirname(KILL_SWITCH_FILE), exist_ok=True)
    with open(KILL_SWITCH_FILE, "w") as f:
        f.write(content)
    log.critical("BRIDGE_HALT_ACTIVATED", reason=reason)


def deactivate_kill_switch():
    if os.path.exists(KILL_SWITCH_FILE):
        os.remove(KILL_SWITCH_FILE)
        log.warning("BRIDGE_HALT_DEACTIVATED")


def check():
    if is_kill_switch_active():
        raise HaltActive("Bridge halt is active. New burns are blocked.")
