"""
MonitorService — base class for sensor services.

The coordinator only needs start(), stop() and is_running; subclasses
implement _on_start()/_on_stop(). Status listeners receive (service, running)
after every transition, on the caller's thread.
"""

import threading

from .config import log


class MonitorService:
    """Thread-safe start/stop wrapper around a sensor."""

    category = None

    def __init__(self, name=None, category=None):
        self.name = name or type(self).__name__
        if category is not None:
            self.category = category
        self._running = False
        self._state_lock = threading.RLock()
        self._status_listeners = []

    @property
    def is_running(self):
        return self._running

    def start(self):
        with self._state_lock:
            if self._running:
                log.debug("%s already running", self.name)
                return
            self._on_start()
            self._running = True
        log.info("%s started", self.name)
        self._notify_status(True)

    def stop(self):
        with self._state_lock:
            if not self._running:
                return
            try:
                self._on_stop()
            finally:
                self._running = False
        log.info("%s stopped", self.name)
        self._notify_status(False)

    def add_status_listener(self, callback):
        self._status_listeners.append(callback)

    def _notify_status(self, running):
        for callback in list(self._status_listeners):
            try:
                callback(self, running)
            except Exception as e:
                log.error("%s status listener failed: %s", self.name, e)

    # ── Subclass hooks ───────────────────────────────────────

    def _on_start(self):
        raise NotImplementedError

    def _on_stop(self):
        raise NotImplementedError

    def __repr__(self):
        state = "running" if self._running else "stopped"
        return f"<{type(self).__name__} {self.name} {state}>"
