"""
ActivityDebouncer — turns raw keyboard/mouse ticks into rate-limited summaries.

Low overhead on the capture thread:
  - Mouse move ticks throttled to 1 per 100ms, sub-5px jitter ignored
  - Counters only, no buffers
  - One lock; summaries are built and counters reset atomically

PRIVACY: counts and distances only — NO key content.
"""

import math
import threading
import time

from .config import log
from .constants import (
    INPUT_SENSITIVITY_SEC, MOVE_THROTTLE_SEC, MOVE_MIN_DISTANCE_PX,
    DEBOUNCE_POLL_SEC, IDLE_HIGH_SEC, IDLE_MEDIUM_SEC,
)
from .models import InputActivitySummary, Severity
from .platform_win import get_system_idle_seconds


def classify_idle(idle_seconds):
    """Input appearing after a long idle period is more likely tampering."""
    if idle_seconds > IDLE_HIGH_SEC:
        return Severity.HIGH
    if idle_seconds > IDLE_MEDIUM_SEC:
        return Severity.MEDIUM
    return Severity.LOW


class ActivityDebouncer:
    """
    Accumulates ticks into a burst. The burst's clock starts at its first
    tick; once `sensitivity` seconds have elapsed the next tick (or poll())
    emits one InputActivitySummary and a new burst begins.
    """

    def __init__(self, on_summary=None, sensitivity=INPUT_SENSITIVITY_SEC,
                 clock=time.time, idle_provider=get_system_idle_seconds,
                 source="InputMonitor"):
        self._on_summary = on_summary
        self._sensitivity = float(sensitivity)
        self._clock = clock
        self._idle_provider = idle_provider
        self._source = source
        self._lock = threading.Lock()

        self._keystrokes = 0
        self._clicks = 0
        self._distance = 0.0
        self._burst_start = None
        self._burst_idle = 0.0
        self._last_input = clock()
        self._last_move_time = 0.0
        self._last_position = None

        self._running = False
        self._stop_event = threading.Event()
        self._poll_thread = None

    # ── Lifecycle ────────────────────────────────────────────

    @property
    def is_running(self):
        return self._running

    @property
    def sensitivity(self):
        return self._sensitivity

    def set_sensitivity(self, seconds):
        seconds = float(seconds)
        if seconds <= 0:
            raise ValueError("sensitivity must be positive")
        with self._lock:
            self._sensitivity = seconds
        log.info("Input sensitivity threshold set to %.0fs", seconds)

    def start(self, poll=True):
        """Seed idle time from the OS and (optionally) start the quiet-flush timer."""
        with self._lock:
            if self._running:
                return
            now = self._clock()
            os_idle = -1
            try:
                os_idle = self._idle_provider() if self._idle_provider else -1
            except Exception as e:
                log.warning("System idle query failed: %s", e)
            self._last_input = now - os_idle if os_idle and os_idle > 0 else now
            self._running = True
            self._stop_event.clear()

        if poll:
            self._poll_thread = threading.Thread(
                target=self._poll_loop, name="debounce-poll", daemon=True,
            )
            self._poll_thread.start()
        log.info("Activity debouncer started (sensitivity=%.0fs)", self._sensitivity)

    def stop(self):
        """Flush unsent counters as one final summary, then halt."""
        with self._lock:
            if not self._running:
                return
            self._running = False
            if self._has_counts():
                self._emit(self._clock())
        self._stop_event.set()
        if self._poll_thread is not None:
            self._poll_thread.join(timeout=2 * DEBOUNCE_POLL_SEC)
            self._poll_thread = None
        log.info("Activity debouncer stopped")

    # ── Tick handlers (called from the capture thread) ───────

    def on_key(self):
        with self._lock:
            now = self._begin_tick()
            self._keystrokes += 1
            self._end_tick(now)

    def on_click(self):
        with self._lock:
            now = self._begin_tick()
            self._clicks += 1
            self._end_tick(now)

    def on_move(self, x, y):
        """Throttled: only records 1 move per MOVE_THROTTLE_SEC."""
        with self._lock:
            now = self._clock()
            if (now - self._last_move_time) < MOVE_THROTTLE_SEC:
                return
            self._last_move_time = now
            previous, self._last_position = self._last_position, (x, y)
            if previous is None:
                return
            distance = math.hypot(x - previous[0], y - previous[1])
            if distance <= MOVE_MIN_DISTANCE_PX:
                return
            now = self._begin_tick(now)
            self._distance += distance
            self._end_tick(now)

    def poll(self):
        """Emit the pending burst if its window has elapsed. Returns True if emitted."""
        with self._lock:
            now = self._clock()
            if self._burst_start is None or not self._has_counts():
                return False
            if now - self._burst_start < self._sensitivity:
                return False
            self._emit(now)
            return True

    # ── State ────────────────────────────────────────────────

    @property
    def idle_seconds(self):
        with self._lock:
            return max(0.0, self._clock() - self._last_input)

    @property
    def pending_counts(self):
        with self._lock:
            return self._keystrokes, self._clicks, self._distance

    # ── Private ──────────────────────────────────────────────

    def _has_counts(self):
        return self._keystrokes > 0 or self._clicks > 0 or self._distance > 0

    def _begin_tick(self, now=None):
        now = self._clock() if now is None else now
        if self._burst_start is None:
            self._burst_start = now
            self._burst_idle = max(0.0, now - self._last_input)
        self._last_input = now
        return now

    def _end_tick(self, now):
        if now - self._burst_start >= self._sensitivity:
            self._emit(now)

    def _emit(self, now):
        """Build the summary, reset counters. Caller holds the lock."""
        elapsed = now - self._burst_start if self._burst_start is not None else 0.0
        minutes = elapsed / 60.0
        summary = InputActivitySummary(
            start_time=self._burst_start if self._burst_start is not None else now,
            end_time=now,
            keystroke_count=self._keystrokes,
            mouse_click_count=self._clicks,
            mouse_movement_distance=self._distance,
            typing_speed=(self._keystrokes / minutes) if minutes > 0 else 0.0,
            preceding_idle_seconds=self._burst_idle,
            severity=classify_idle(self._burst_idle),
            source=self._source,
        )
        self._keystrokes = 0
        self._clicks = 0
        self._distance = 0.0
        self._burst_start = None
        self._burst_idle = 0.0

        log.debug("Input summary: %s", summary.description)
        if self._on_summary is None:
            return
        try:
            self._on_summary(summary)
        except Exception as e:
            log.error("Input summary sink failed: %s", e, exc_info=True)

    def _poll_loop(self):
        while not self._stop_event.wait(DEBOUNCE_POLL_SEC):
            try:
                self.poll()
            except Exception as e:
                log.error("Debouncer poll error: %s", e)
