"""
EventAggregator — single funnel for normalized events.

Sensors hand records over with submit() (non-blocking queue put); one
worker thread drains the queue into process_event(), which:

  1. prunes the aggregation window (at most once per PRUNE_INTERVAL_SEC)
  2. inserts the record
  3. filters duplicates by severity (should_process)
  4. persists through the event logger
  5. alerts when severity or a correlation heuristic says so (should_alert)

Persistence and alert failures are logged and never reach the caller;
persistence always happens before alert evaluation.
"""

import queue
import threading
import time
from collections import Counter
from dataclasses import dataclass

from .config import log
from .constants import (
    AGGREGATION_HORIZON_SEC, PRUNE_INTERVAL_SEC,
    STATS_SHORT_WINDOW_SEC, STATS_LONG_WINDOW_SEC,
    DUPLICATE_LIMIT_LOW, DUPLICATE_LIMIT_MEDIUM,
    HIGH_ALERT_CAP, HIGH_ALERT_WINDOW_SEC,
    CORRELATION_WINDOW_SEC, FAILED_LOGIN_THRESHOLD,
    SESSION_CHANGE_THRESHOLD, INPUT_ACTIVITY_THRESHOLD, LOGIN_FAILURE_MARKERS,
)
from .models import (
    AggregationStats, CATEGORY_POLICY, CorrelationRole, EventRecord, Severity,
)

_STOP = object()


@dataclass(frozen=True)
class ProcessResult:
    processed: bool = False
    persisted: bool = False
    alerted: bool = False


REJECTED = ProcessResult()


def is_login_failure(record):
    text = record.description.lower()
    return any(marker in text for marker in LOGIN_FAILURE_MARKERS)


class EventAggregator:
    """Owns the aggregation window; every window access holds self._lock."""

    def __init__(self, persist=None, alert=None, horizon_sec=AGGREGATION_HORIZON_SEC,
                 clock=time.time):
        self._persist = persist
        self._alert = alert
        self._horizon = float(horizon_sec)
        self._clock = clock

        self._window = []
        self._lock = threading.Lock()
        self._last_prune = clock()

        self._queue = queue.Queue()
        self._worker = None
        self._stopping = False

    # ─── Queue hand-off ──────────────────────────────────────

    def submit(self, record):
        """Enqueue a record for the worker. Never blocks. False if rejected."""
        if not isinstance(record, EventRecord):
            log.warning("Rejected non-EventRecord submission: %r", type(record).__name__)
            return False
        self._queue.put_nowait(record)
        return True

    def start(self):
        if self._worker is not None and self._worker.is_alive():
            if self._stopping:
                log.warning("Previous aggregator worker is still draining — start refused")
                return False
            return True
        self._stopping = False
        self._worker = threading.Thread(target=self._drain, name="aggregator", daemon=True)
        self._worker.start()
        log.info("Event aggregator started (horizon=%.0fs)", self._horizon)
        return True

    def stop(self, timeout=10):
        """
        Process everything already submitted, then stop the worker. False if
        it is still draining after `timeout`; the worker is kept until it exits.
        """
        if self._worker is None:
            return True
        if not self._stopping:
            self._stopping = True
            self._queue.put(_STOP)
        self._worker.join(timeout=timeout)
        if self._worker.is_alive():
            log.warning("Aggregator worker did not finish within %ss", timeout)
            return False
        self._worker = None
        self._stopping = False
        log.info("Event aggregator stopped")
        return True

    @property
    def pending(self):
        return self._queue.qsize()

    def _drain(self):
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self.process_event(item)
            except Exception as e:
                log.error("Aggregator worker error: %s", e, exc_info=True)
            finally:
                self._queue.task_done()

    # ─── Processing ──────────────────────────────────────────

    def process_event(self, record):
        if not isinstance(record, EventRecord):
            log.warning("Rejected malformed event: %r", type(record).__name__)
            return REJECTED

        try:
            self.prune()
            now = self._clock()
            with self._lock:
                self._window.append(record)
                process = self._should_process_locked(record, now)

            if not process:
                log.debug("Event filtered by aggregation rules: %s — %s",
                          record.category.value, record.description)
                return ProcessResult()

            persisted = self._persist_record(record)

            alerted = False
            if self.should_alert(record):
                alerted = self._send_alert(record)
            return ProcessResult(processed=True, persisted=persisted, alerted=alerted)
        except Exception as e:
            log.error("Error processing event %s: %s", record.category.value, e, exc_info=True)
            return ProcessResult()

    def should_process(self, record):
        """
        High/Critical always pass. Otherwise the first occurrence (by
        category + description, within the horizon) always passes; Low/Info
        repeats are dropped, Medium repeats after DUPLICATE_LIMIT_MEDIUM.
        """
        now = self._clock()
        with self._lock:
            return self._should_process_locked(record, now)

    def _should_process_locked(self, record, now):
        if record.severity >= Severity.HIGH:
            return True

        duplicates = sum(
            1 for e in self._window
            if e is not record
            and e.category is record.category
            and e.description == record.description
            and now - e.timestamp <= self._horizon
        )
        if duplicates == 0:
            return True
        if record.severity <= Severity.LOW and duplicates >= DUPLICATE_LIMIT_LOW:
            return False
        if record.severity == Severity.MEDIUM and duplicates >= DUPLICATE_LIMIT_MEDIUM:
            return False
        return True

    def should_alert(self, record):
        if record.severity == Severity.CRITICAL:
            return True

        if record.severity == Severity.HIGH:
            now = self._clock()
            with self._lock:
                recent_alerts = sum(
                    1 for e in self._window
                    if e.severity >= Severity.HIGH
                    and e.alert_sent
                    and now - e.timestamp <= HIGH_ALERT_WINDOW_SEC
                )
            if recent_alerts >= HIGH_ALERT_CAP:
                log.info("High-severity alert suppressed (%d sent in last %ds)",
                         recent_alerts, HIGH_ALERT_WINDOW_SEC)
                return False
            return True

        return self.has_correlated_activity()

    def has_correlated_activity(self):
        """
        Credential guessing: ≥3 failed logins in the correlation window.
        Physical access during session churn: ≥2 session changes + input.
        """
        now = self._clock()
        roles = Counter()
        failed_logins = 0
        with self._lock:
            for e in self._window:
                if now - e.timestamp > CORRELATION_WINDOW_SEC:
                    continue
                role = CATEGORY_POLICY[e.category].correlation
                if role is None:
                    continue
                roles[role] += 1
                if role is CorrelationRole.LOGIN_ATTEMPT and is_login_failure(e):
                    failed_logins += 1

        if failed_logins >= FAILED_LOGIN_THRESHOLD:
            log.warning("Multiple failed login attempts detected: %d", failed_logins)
            return True

        if (roles[CorrelationRole.SESSION_CHANGE] >= SESSION_CHANGE_THRESHOLD
                and roles[CorrelationRole.USER_INPUT] >= INPUT_ACTIVITY_THRESHOLD):
            log.warning("Suspicious session and input activity pattern detected "
                        "(%d session changes, %d input events)",
                        roles[CorrelationRole.SESSION_CHANGE],
                        roles[CorrelationRole.USER_INPUT])
            return True
        return False

    # ─── Window maintenance ──────────────────────────────────

    def prune(self, force=False):
        """Drop records older than the horizon. Returns the number removed."""
        now = self._clock()
        with self._lock:
            if not force and now - self._last_prune <= PRUNE_INTERVAL_SEC:
                return 0
            before = len(self._window)
            self._window = [e for e in self._window if now - e.timestamp <= self._horizon]
            self._last_prune = now
            removed = before - len(self._window)
        if removed:
            log.debug("Pruned %d old events from aggregation window", removed)
        return removed

    def window_snapshot(self):
        with self._lock:
            return tuple(self._window)

    # ─── Collaborators ───────────────────────────────────────

    def _persist_record(self, record):
        if self._persist is None:
            return False
        try:
            self._persist(record)
            return True
        except Exception as e:
            log.error("Failed to persist event %s: %s", record.id, e)
            return False

    def _send_alert(self, record):
        if self._alert is None:
            return False
        try:
            ok = self._alert(record)
        except Exception as e:
            log.error("Failed to send alert for %s event: %s", record.category.value, e)
            return False
        if not ok:
            log.warning("Alert delivery failed for %s event: %s",
                        record.category.value, record.description)
            return False
        record.mark_alert_sent()
        log.info("Alert sent for event: %s — %s", record.category.value, record.description)
        return True

    # ─── Diagnostics ─────────────────────────────────────────

    def get_stats(self):
        now = self._clock()
        with self._lock:
            window = list(self._window)
        short = [e for e in window if now - e.timestamp <= STATS_SHORT_WINDOW_SEC]
        long = [e for e in window if now - e.timestamp <= STATS_LONG_WINDOW_SEC]
        return AggregationStats(
            total_recent_events=len(window),
            events_last_5_minutes=len(short),
            events_last_15_minutes=len(long),
            alerts_sent_last_5_minutes=sum(1 for e in short if e.alert_sent),
            alerts_sent_last_15_minutes=sum(1 for e in long if e.alert_sent),
            category_breakdown=dict(Counter(e.category.value for e in window)),
        )
