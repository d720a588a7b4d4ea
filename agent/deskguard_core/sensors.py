"""
Polling sensors — session lock state and Windows logon records.

Both run a daemon thread that polls a platform probe and hand results to a
callback; the probes are injectable so the sensors run anywhere.
"""

import threading
import time

from .config import log
from .constants import LOCK_POLL_SEC, LOGIN_POLL_SEC, LOGIN_EVENT_IDS
from .models import EventCategory, EventRecord, SessionState, SessionTransition, Severity
from .platform_win import is_system_locked, query_security_events
from .services import MonitorService


class _PollingService(MonitorService):
    poll_interval = 5

    def __init__(self, name=None, poll_interval=None):
        super().__init__(name)
        if poll_interval is not None:
            self.poll_interval = poll_interval
        self._stop_event = threading.Event()
        self._thread = None

    def _on_start(self):
        self._stop_event.clear()
        self._prime()
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()

    def _on_stop(self):
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=self.poll_interval + 1)
            self._thread = None

    def _loop(self):
        while not self._stop_event.wait(self.poll_interval):
            try:
                self.poll_once()
            except Exception as e:
                log.error("%s poll error: %s", self.name, e)

    def _prime(self):
        pass

    def poll_once(self):
        raise NotImplementedError


# ─── Session lock monitor ────────────────────────────────────────

class SessionMonitor(_PollingService):
    """
    Polls for workstation lock status.
    Locked → SessionTransition(LOCKED); unlocked → SessionTransition(UNLOCKED).
    """

    category = EventCategory.SESSION

    def __init__(self, on_transition, probe=is_system_locked,
                 poll_interval=LOCK_POLL_SEC, clock=time.time):
        super().__init__("SessionMonitor", poll_interval)
        self._on_transition = on_transition
        self._probe = probe
        self._clock = clock
        self._was_locked = None

    @property
    def is_session_locked(self):
        return bool(self._was_locked)

    def _prime(self):
        self._was_locked = bool(self._probe())

    def poll_once(self):
        locked = bool(self._probe())
        if locked == self._was_locked:
            return None
        self._was_locked = locked
        state = SessionState.LOCKED if locked else SessionState.UNLOCKED
        log.info("System %s", "LOCKED" if locked else "UNLOCKED")
        transition = SessionTransition(state, self._clock(), "lock-poll")
        self._on_transition(transition)
        return transition


# ─── Login monitor ───────────────────────────────────────────────

_LOGIN_KINDS = {
    4624: ("Success", Severity.INFO),
    4625: ("Failure", Severity.HIGH),
    4634: ("Logoff", Severity.LOW),
    4647: ("UserLogoff", Severity.LOW),
}


def login_record(entry, clock=time.time):
    """Security-log entry dict → Login EventRecord."""
    kind, severity = _LOGIN_KINDS.get(entry["eventId"], ("Unknown", Severity.LOW))
    return EventRecord(
        category=EventCategory.LOGIN,
        description=f"{kind} login attempt for user: {entry.get('user', 'unknown')}",
        severity=severity,
        source="LoginMonitor",
        timestamp=clock(),
        metadata={
            "eventId": entry["eventId"],
            "recordId": entry.get("recordId"),
            "timeCreated": entry.get("timeCreated", ""),
        },
    )


class LoginMonitor(_PollingService):
    """
    Polls the Security log for logon/logoff records newer than the last one
    seen. Records present at start-up are not replayed.
    """

    category = EventCategory.LOGIN

    def __init__(self, on_event, query=query_security_events,
                 poll_interval=LOGIN_POLL_SEC, event_ids=LOGIN_EVENT_IDS, clock=time.time):
        super().__init__("LoginMonitor", poll_interval)
        self._on_event = on_event
        self._query = query
        self._event_ids = tuple(event_ids)
        self._clock = clock
        self._last_record_id = None

    def _prime(self):
        entries = self._query(self._event_ids)
        self._last_record_id = max((e["recordId"] for e in entries), default=0)
        log.info("Login monitoring from record %d (event IDs %s)",
                 self._last_record_id, ", ".join(map(str, self._event_ids)))

    def poll_once(self):
        entries = self._query(self._event_ids)
        fresh = sorted(
            (e for e in entries if e["recordId"] > (self._last_record_id or 0)),
            key=lambda e: e["recordId"],
        )
        records = []
        for entry in fresh:
            self._last_record_id = entry["recordId"]
            record = login_record(entry, self._clock)
            records.append(record)
            try:
                self._on_event(record)
            except Exception as e:
                log.error("Login event sink failed: %s", e)
        return records
