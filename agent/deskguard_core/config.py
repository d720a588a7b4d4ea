"""
Paths, logging setup, config load/save, safe_print.
"""

import os
import json
import sys
import logging
from pathlib import Path

from .constants import (
    INPUT_SENSITIVITY_SEC, AGGREGATION_HORIZON_SEC, RECONCILE_INTERVAL_SEC,
    LOCK_POLL_SEC, LOGIN_POLL_SEC, SERVICE_JOIN_TIMEOUT_SEC, EVENT_LOG_MAX_BYTES,
)


# ─── Paths ───────────────────────────────────────────────────────
# One config/log/event store per machine. DESKGUARD_HOME overrides it
# (used by tests and portable installs).
_FOLDER_NAME = "DeskGuard"

if os.environ.get("DESKGUARD_HOME"):
    BASE_DIR = Path(os.environ["DESKGUARD_HOME"])
elif sys.platform == "win32":
    BASE_DIR = Path(os.environ.get("PROGRAMDATA", "C:\\ProgramData")) / _FOLDER_NAME
else:
    BASE_DIR = Path(__file__).parent.parent

BASE_DIR.mkdir(parents=True, exist_ok=True)

CONFIG_FILE = BASE_DIR / "config.json"
LOG_FILE = BASE_DIR / "deskguard.log"
EVENT_LOG_FILE = BASE_DIR / "events.jsonl"


# ─── Safe print (no crash when --noconsole) ──────────────────────

def safe_print(*args, **kwargs):
    try:
        print(*args, **kwargs)
    except Exception:
        pass


# ─── Logging ─────────────────────────────────────────────────────

try:
    if LOG_FILE.exists() and LOG_FILE.stat().st_size > 1_000_000:
        LOG_FILE.write_text("")
except OSError:
    pass

logging.basicConfig(
    filename=str(LOG_FILE),
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    encoding="utf-8",
)
log = logging.getLogger("deskguard")

console_handler = logging.StreamHandler(sys.stdout)
console_handler.setLevel(logging.INFO)
console_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
log.addHandler(console_handler)


# ─── Config Management ──────────────────────────────────────────

DEFAULT_CONFIG = {
    "inputSensitivitySec": INPUT_SENSITIVITY_SEC,
    "aggregationHorizonSec": AGGREGATION_HORIZON_SEC,
    "reconcileIntervalSec": RECONCILE_INTERVAL_SEC,
    "lockPollSec": LOCK_POLL_SEC,
    "loginPollSec": LOGIN_POLL_SEC,
    "serviceJoinTimeoutSec": SERVICE_JOIN_TIMEOUT_SEC,
    "eventLogMaxBytes": EVENT_LOG_MAX_BYTES,
    "alerts": {
        "phoneNumber": "",
        "twilioAccountSid": "",
        "twilioAuthToken": "",
        "twilioFromNumber": "",
        "webhookUrl": "",
        "smtpHost": "",
        "smtpPort": 587,
        "smtpUser": "",
        "smtpPassword": "",
        "emailFrom": "",
        "emailTo": "",
    },
}


def _merge(defaults, overrides):
    merged = {k: _merge(v, {}) if isinstance(v, dict) else v for k, v in defaults.items()}
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path=None):
    """Load config from disk merged over DEFAULT_CONFIG. Never returns None."""
    path = Path(path) if path else CONFIG_FILE
    if path.exists():
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if isinstance(data, dict):
                return _merge(DEFAULT_CONFIG, data)
            log.warning("Config %s is not a JSON object — using defaults", path)
        except (json.JSONDecodeError, IOError) as e:
            log.warning("Config %s unreadable (%s) — using defaults", path, e)
    return _merge(DEFAULT_CONFIG, {})


def save_config(config, path=None):
    """Save config dict to disk."""
    path = Path(path) if path else CONFIG_FILE
    with open(path, "w", encoding="utf-8") as f:
        json.dump(config, f, indent=2)
    log.info("Config saved to %s", path)
