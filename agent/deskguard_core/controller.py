"""
SessionController — maps session transitions to sensor activation.

  Unlocked → Locked   : camera stops (no capture on the lock screen),
                        everything else keeps running
  Locked → Unlocked   : camera restarts, critical services re-verified
  Remote* / Logon/off : context for correlation only

Each transition is forwarded to the event sink as a Session record so the
aggregator's session/input heuristic can see it. A watchdog thread re-runs
ensure_continuous_monitoring() periodically to repair drift. Nothing here
raises into the session notifier: a sensor that will not come back is
reported inactive in the status snapshot instead.
"""

import threading
import time

from .config import log
from .constants import RECONCILE_INTERVAL_SEC
from .models import (
    BackgroundMonitoringStatus, CATEGORY_POLICY, CRITICAL_CATEGORIES,
    EventCategory, EventRecord, SessionState, SessionTransition, Severity,
)

_TRANSITION_SEVERITY = {
    SessionState.UNLOCKED: Severity.LOW,
    SessionState.LOCKED: Severity.LOW,
    SessionState.REMOTE_CONNECT: Severity.MEDIUM,
    SessionState.REMOTE_DISCONNECT: Severity.MEDIUM,
    SessionState.LOGON: Severity.LOW,
    SessionState.LOGOFF: Severity.LOW,
}

_STATUS_TEXT = {
    SessionState.LOCKED: "Session locked - background monitoring active",
    SessionState.UNLOCKED: "Session unlocked - full monitoring active",
    SessionState.REMOTE_CONNECT: "Remote session connected",
    SessionState.REMOTE_DISCONNECT: "Remote session disconnected",
    SessionState.LOGON: "User logged on",
    SessionState.LOGOFF: "User logged off",
}


class SessionController:
    def __init__(self, coordinator, event_sink=None,
                 reconcile_interval=RECONCILE_INTERVAL_SEC, clock=time.time):
        self._coordinator = coordinator
        self._event_sink = event_sink
        self._reconcile_interval = reconcile_interval
        self._clock = clock

        self._lock = threading.RLock()
        self._session_state = SessionState.UNLOCKED
        self._locked = False
        self._last_transition_ts = None
        self._active = False
        self._listeners = []

        self._stop_event = threading.Event()
        self._watchdog = None

    # ─── Properties ──────────────────────────────────────────

    @property
    def session_state(self):
        return self._session_state

    @property
    def is_session_locked(self):
        return self._locked

    @property
    def is_background_monitoring_active(self):
        return self._active

    def add_status_listener(self, callback):
        """callback(status: BackgroundMonitoringStatus, context: str)"""
        self._listeners.append(callback)

    # ─── Background monitoring lifecycle ─────────────────────

    def start(self, watchdog=True):
        with self._lock:
            if self._active:
                log.warning("Background monitoring is already active")
                return self.get_monitoring_status()
            log.info("Starting background monitoring coordination")
            self._coordinator.start_all()
            self._active = True
            if self._locked:
                self._apply_lock_policy(SessionState.LOCKED)
            status = self.ensure_continuous_monitoring()

        self._emit(EventCategory.BACKGROUND_MONITORING, "Background monitoring started", Severity.INFO)
        if watchdog and self._reconcile_interval:
            self._stop_event.clear()
            self._watchdog = threading.Thread(target=self._watchdog_loop, name="reconcile", daemon=True)
            self._watchdog.start()
        self._notify(status, "Background monitoring started")
        return status

    def stop(self):
        with self._lock:
            if not self._active:
                return self.get_monitoring_status()
            log.info("Stopping background monitoring coordination")
            self._active = False
        self._stop_event.set()
        if self._watchdog is not None:
            self._watchdog.join(timeout=5)
            self._watchdog = None

        self._emit(EventCategory.BACKGROUND_MONITORING, "Background monitoring stopped", Severity.INFO)
        self._coordinator.stop_all()
        status = self.get_monitoring_status()
        self._notify(status, "Background monitoring stopped")
        return status

    # ─── Session transitions ─────────────────────────────────

    def handle_transition(self, transition):
        """Entry point for the session notifier. Never raises."""
        try:
            return self._handle_transition(transition)
        except Exception as e:
            log.error("Error handling session transition %r: %s", transition, e, exc_info=True)
            return self.get_monitoring_status()

    def handle_session_state_change(self, new_state, context=""):
        return self.handle_transition(SessionTransition(new_state, self._clock(), context))

    def _handle_transition(self, transition):
        if not isinstance(transition, SessionTransition) or not isinstance(transition.new_state, SessionState):
            log.warning("Ignoring malformed session transition: %r", transition)
            return self.get_monitoring_status()

        state = transition.new_state
        with self._lock:
            stale = (self._last_transition_ts is not None
                     and transition.timestamp < self._last_transition_ts)
            if stale:
                log.warning("Stale session transition %s (%.1fs behind) — context only",
                            state.value, self._last_transition_ts - transition.timestamp)
            else:
                log.info("Handling session state change: %s", state.value)
                self._last_transition_ts = transition.timestamp
                self._session_state = state
                if state in (SessionState.LOCKED, SessionState.UNLOCKED):
                    locked = state is SessionState.LOCKED
                    if locked != self._locked:
                        self._locked = locked
                        if self._active:
                            self._apply_lock_policy(state)
                elif state is SessionState.LOGOFF:
                    log.warning("User logoff detected - monitoring services may be affected")
                else:
                    log.info("Session context recorded: %s", state.value)

        self._emit(EventCategory.SESSION, f"Session {state.value}",
                   _TRANSITION_SEVERITY[state], timestamp=transition.timestamp,
                   metadata={"context": transition.context, "stale": stale})

        if self._active and not stale:
            status = self.ensure_continuous_monitoring()
        else:
            status = self.get_monitoring_status()
        self._notify(status, _STATUS_TEXT[state])
        return status

    def _apply_lock_policy(self, state):
        """Suspend/resume the sensors the OS will not run on the lock screen."""
        for category, policy in CATEGORY_POLICY.items():
            if policy.runs_while_locked or not self._coordinator.services_in(category):
                continue
            if state is SessionState.LOCKED:
                if self._coordinator.stop_category(category):
                    log.info("%s monitoring stopped due to session lock", category.value)
                else:
                    log.warning("%s monitoring did not stop cleanly on lock", category.value)
            else:
                if self._coordinator.start_category(category):
                    log.info("%s monitoring restored after session unlock", category.value)
                else:
                    log.warning("Failed to restore %s monitoring after unlock", category.value)

    # ─── Reconciliation ──────────────────────────────────────

    def suspended_categories(self):
        """Categories the lock policy keeps off right now."""
        if not self._locked:
            return set()
        return {c for c, p in CATEGORY_POLICY.items() if not p.runs_while_locked}

    def desired_categories(self):
        return self._coordinator.categories() - self.suspended_categories()

    def ensure_continuous_monitoring(self):
        """
        Idempotent: compare what should run in the current session state with
        what does, restart critical services once, start other desired ones.
        Makes no calls when already consistent.
        """
        with self._lock:
            try:
                for category in sorted(self.desired_categories(), key=lambda c: c.value):
                    down = [h for h in self._coordinator.services_in(category)
                            if not h.is_running and not h.busy]
                    if not down:
                        continue
                    if category in CRITICAL_CATEGORIES:
                        for handle in down:
                            log.warning("%s is not active - attempting restart", handle.name)
                            self._coordinator.restart_service(handle.name)
                    else:
                        log.info("%s monitoring is not active - attempting start", category.value)
                        self._coordinator.start_category(category)
            except Exception as e:
                log.error("Error ensuring continuous monitoring: %s", e, exc_info=True)
            status = self.get_monitoring_status()

        if status.inactive_services:
            log.warning("Monitoring degraded — inactive: %s", ", ".join(status.inactive_services))
        else:
            log.debug("Continuous monitoring check completed (%d active)", status.active_count)
        return status

    def _watchdog_loop(self):
        while not self._stop_event.wait(self._reconcile_interval):
            if self._active:
                self.ensure_continuous_monitoring()

    # ─── Status ──────────────────────────────────────────────

    def get_monitoring_status(self):
        """Recompute the snapshot from live coordinator state."""
        try:
            handles = self._coordinator.handles()
            active = {}
            for h in handles:
                if h.category is None:
                    continue
                active[h.category] = active.get(h.category, True) and h.is_running
            suspended = self.suspended_categories()
            inactive = tuple(h.name for h in handles
                             if not h.is_running and h.category not in suspended)
            critical_ok = all(active.get(c, False) for c in CRITICAL_CATEGORIES)
        except Exception as e:
            log.error("Error updating monitoring status: %s", e)
            active, inactive, critical_ok = {}, (), False

        status = BackgroundMonitoringStatus(
            session_state=self._session_state,
            session_locked=self._locked,
            category_active=active,
            critical_services_active=critical_ok,
            background_monitoring_active=self._active,
            inactive_services=inactive,
            last_updated=self._clock(),
        )
        return status

    # ─── Notifications ───────────────────────────────────────

    def _notify(self, status, context):
        for callback in list(self._listeners):
            try:
                callback(status, context)
            except Exception as e:
                log.error("Error notifying status change subscriber: %s", e)

    def _emit(self, category, description, severity, timestamp=None, metadata=None):
        if self._event_sink is None:
            return
        try:
            record = EventRecord(
                category=category,
                description=description,
                severity=severity,
                source="SessionController",
                timestamp=self._clock() if timestamp is None else timestamp,
                metadata=dict(metadata or {}, sessionState=self._session_state.value,
                              backgroundActive=self._active),
            )
            self._event_sink(record)
        except Exception as e:
            log.error("Failed to forward %s event: %s", category.value, e)
