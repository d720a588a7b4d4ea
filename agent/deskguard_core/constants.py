"""
Constants, thresholds, and fixed policy limits.

Policy limits are constants, not config keys.
"""

AGENT_VERSION = "1.0.0"
APP_NAME = "DeskGuard"

# ─── Activity debouncer ──────────────────────────────────────────
INPUT_SENSITIVITY_SEC = 30     # Emit one input summary per 30s of activity
MOVE_THROTTLE_SEC = 0.1        # Only record mouse move every 100ms (saves CPU)
MOVE_MIN_DISTANCE_PX = 5       # Ignore sub-5px jitter
DEBOUNCE_POLL_SEC = 1.0        # Quiet-period flush check
IDLE_HIGH_SEC = 4 * 3600       # Input after >4h idle → HIGH
IDLE_MEDIUM_SEC = 3600         # Input after >1h idle → MEDIUM

# ─── Event aggregator ────────────────────────────────────────────
AGGREGATION_HORIZON_SEC = 300  # Window of related events (5 min)
PRUNE_INTERVAL_SEC = 60        # Prune the window at most once per minute
STATS_SHORT_WINDOW_SEC = 300
STATS_LONG_WINDOW_SEC = 900

DUPLICATE_LIMIT_LOW = 1        # Low/Info: first occurrence only
DUPLICATE_LIMIT_MEDIUM = 3     # Medium: first occurrence + 2 repeats

HIGH_ALERT_CAP = 5             # Max High+ alerts ...
HIGH_ALERT_WINDOW_SEC = 600    # ... per trailing 10 minutes

CORRELATION_WINDOW_SEC = 900   # Correlation sub-window (15 min)
FAILED_LOGIN_THRESHOLD = 3     # Credential-guessing heuristic
SESSION_CHANGE_THRESHOLD = 2   # Session churn ...
INPUT_ACTIVITY_THRESHOLD = 1   # ... with input → physical access heuristic
LOGIN_FAILURE_MARKERS = ("fail",)

# ─── Service coordination ────────────────────────────────────────
SERVICE_JOIN_TIMEOUT_SEC = 30  # Upper bound on a start/stop fan-out
RESTART_SETTLE_SEC = 1.0       # Pause between stop and start on restart
RECONCILE_INTERVAL_SEC = 30    # Controller watchdog period

# ─── Sensors ─────────────────────────────────────────────────────
LOCK_POLL_SEC = 3
LOGIN_POLL_SEC = 15
LOGIN_EVENT_IDS = (4624, 4625, 4634, 4647)   # success, failure, logoff, user logoff

# ─── Persistence / delivery ──────────────────────────────────────
EVENT_LOG_MAX_BYTES = 5_000_000
API_TIMEOUT_ALERT = 20
ALERT_ATTEMPTS = 3
