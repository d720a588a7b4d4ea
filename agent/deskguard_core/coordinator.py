"""
ServiceCoordinator — lifecycle management for registered sensor services.

Services only need start(), stop() and is_running (plus optional name and
category attributes). Start/stop fan out one daemon thread per service and
join them against a shared deadline, so one slow or broken sensor cannot
hold the others back. Failures are logged per service and never raised.
"""

import threading
import time

from .config import log
from .constants import SERVICE_JOIN_TIMEOUT_SEC, RESTART_SETTLE_SEC
from .models import CRITICAL_CATEGORIES, CoordinatorStatus


def _probe(service):
    try:
        return bool(service.is_running)
    except Exception as e:
        log.warning("is_running probe failed for %s: %s", _name_of(service), e)
        return False


def _name_of(service):
    return getattr(service, "name", None) or type(service).__name__


class ServiceHandle:
    """
    Registry entry: the service plus the outcome of our last start/stop call.

    Actions on one service run one at a time in the order they were issued,
    even when the caller stopped waiting for an earlier one: a stop issued
    after a timed-out start runs once that start returns.
    """

    def __init__(self, service):
        self.service = service
        self.name = _name_of(service)
        self.category = getattr(service, "category", None)
        self._started = _probe(service)

        self._turn = threading.Condition()
        self._issued = 0
        self._served = 0

    @property
    def is_running(self):
        """Running iff our last call left it running and it still says so."""
        return self._started and _probe(self.service)

    @property
    def busy(self):
        """An issued action has not finished yet."""
        with self._turn:
            return self._served != self._issued

    def take_ticket(self):
        with self._turn:
            ticket = self._issued
            self._issued += 1
            return ticket

    def perform(self, action, ticket=None):
        """Run "start" or "stop" once every earlier ticket has been served."""
        if ticket is None:
            ticket = self.take_ticket()
        with self._turn:
            while self._served != ticket:
                self._turn.wait()
        try:
            if action == "start":
                self._start()
            else:
                self._stop()
        finally:
            with self._turn:
                self._served += 1
                self._turn.notify_all()

    def start(self):
        self.perform("start")

    def stop(self):
        self.perform("stop")

    def _start(self):
        try:
            self.service.start()
        except Exception:
            self._started = False
            raise
        self._started = _probe(self.service)

    def _stop(self):
        try:
            self.service.stop()
        except Exception:
            self._started = _probe(self.service)
            raise
        self._started = False

    def __repr__(self):
        return f"<ServiceHandle {self.name} running={self.is_running}>"


class ServiceCoordinator:
    def __init__(self, join_timeout=SERVICE_JOIN_TIMEOUT_SEC, settle_delay=RESTART_SETTLE_SEC):
        self._handles = []
        self._lock = threading.Lock()
        self._coordinating = False
        self._join_timeout = join_timeout
        self._settle_delay = settle_delay

    # ─── Registry ────────────────────────────────────────────

    def register_service(self, service):
        """Track a service once. Returns False if already registered."""
        if service is None:
            raise ValueError("service must not be None")
        with self._lock:
            for h in self._handles:
                if h.service is service:
                    return False
                if h.name == _name_of(service):
                    log.warning("A service named %s is already registered — ignoring", h.name)
                    return False
            handle = ServiceHandle(service)
            self._handles.append(handle)
        log.debug("Registered monitoring service: %s", handle.name)
        return True

    def handles(self):
        with self._lock:
            return list(self._handles)

    def services_in(self, category):
        with self._lock:
            return [h for h in self._handles if h.category is category]

    def categories(self):
        with self._lock:
            return {h.category for h in self._handles if h.category is not None}

    def _find(self, name):
        with self._lock:
            for h in self._handles:
                if h.name == name:
                    return h
        return None

    # ─── Coordinated start / stop ────────────────────────────

    def start_all(self, timeout=None):
        """Start every service in parallel. False if another fan-out is in flight."""
        return self._coordinated("start", timeout)

    def stop_all(self, timeout=None):
        """Stop every service in parallel. False if another fan-out is in flight."""
        return self._coordinated("stop", timeout)

    def start_category(self, category, timeout=None):
        handles = self.services_in(category)
        if handles:
            self._fan_out("start", handles, timeout)
        return all(h.is_running for h in handles)

    def stop_category(self, category, timeout=None):
        handles = self.services_in(category)
        if handles:
            self._fan_out("stop", handles, timeout)
        return not any(h.is_running for h in handles)

    def _coordinated(self, action, timeout):
        with self._lock:
            if self._coordinating:
                log.warning("Monitoring services are already being coordinated — %s rejected", action)
                return False
            self._coordinating = True
            handles = list(self._handles)

        try:
            log.info("%s coordinated monitoring of %d services",
                     "Starting" if action == "start" else "Stopping", len(handles))
            self._fan_out(action, handles, timeout)
            log.info("Coordinated %s completed (%d/%d running)", action,
                     sum(1 for h in handles if h.is_running), len(handles))
            return True
        finally:
            with self._lock:
                self._coordinating = False

    def _fan_out(self, action, handles, timeout):
        """One thread per service, joined against a shared deadline."""
        def run(handle, ticket):
            try:
                handle.perform(action, ticket)
                log.debug("%s: %s OK", handle.name, action)
            except Exception as e:
                log.error("Failed to %s service %s: %s", action, handle.name, e)

        threads = []
        for handle in handles:
            t = threading.Thread(target=run, args=(handle, handle.take_ticket()),
                                 name=f"{action}-{handle.name}", daemon=True)
            t.start()
            threads.append((handle, t))

        deadline = time.monotonic() + (self._join_timeout if timeout is None else timeout)
        for handle, t in threads:
            t.join(timeout=max(0.0, deadline - time.monotonic()))
            if t.is_alive():
                log.warning("%s of %s still pending after timeout — later actions queue behind it",
                            action, handle.name)

    # ─── Status ──────────────────────────────────────────────

    def get_status(self):
        with self._lock:
            services = {h.name: h.is_running for h in self._handles}
            coordinating = self._coordinating
        return CoordinatorStatus(
            total_services=len(services),
            running_services=sum(1 for running in services.values() if running),
            services=services,
            coordinating=coordinating,
        )

    get_overall_status = get_status

    def is_category_running(self, category):
        handles = self.services_in(category)
        return bool(handles) and all(h.is_running for h in handles)

    def are_critical_services_running(self):
        """Input, session and login sensors must all be up. Never raises."""
        try:
            for category in CRITICAL_CATEGORIES:
                if not self.is_category_running(category):
                    log.warning("Critical service not running: %s", category.value)
                    return False
            return True
        except Exception as e:
            log.error("Critical service check failed: %s", e)
            return False

    # ─── Recovery ────────────────────────────────────────────

    def restart_service(self, name):
        """Best-effort stop → settle → start. Returns True if it ends up running."""
        handle = self._find(name)
        if handle is None:
            log.warning("Service not found for restart: %s", name)
            return False

        log.info("Restarting service: %s", name)
        try:
            handle.stop()
        except Exception as e:
            log.warning("Stop before restart failed for %s: %s", name, e)
        time.sleep(self._settle_delay)
        try:
            handle.start()
        except Exception as e:
            log.error("Failed to restart service %s: %s", name, e)
            return False

        if handle.is_running:
            log.info("Successfully restarted service: %s", name)
            return True
        log.warning("Service %s did not report running after restart", name)
        return False
