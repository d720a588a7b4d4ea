"""
Shared fixtures. DESKGUARD_HOME is pointed at a temp dir before
deskguard_core is imported so config/log/event files never touch the host.
"""

import os
import tempfile
import threading
import time

import pytest

os.environ.setdefault("DESKGUARD_HOME", tempfile.mkdtemp(prefix="deskguard-test-"))

from deskguard_core.models import EventCategory, EventRecord, Severity  # noqa: E402


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start=1_700_000_000.0):
        self.now = float(start)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds
        return self.now


class FakeService:
    """Minimal start/stop/is_running service for coordinator and controller tests."""

    def __init__(self, name, category=None, fail_start=False, fail_stop=False,
                 start_delay=0.0, gate=None):
        self.name = name
        self.category = category
        self.fail_start = fail_start
        self.fail_stop = fail_stop
        self.start_delay = start_delay
        self.gate = gate
        self.started = threading.Event()
        self.running = False
        self.start_calls = 0
        self.stop_calls = 0

    @property
    def is_running(self):
        return self.running

    def start(self):
        self.start_calls += 1
        self.started.set()
        if self.gate is not None:
            self.gate.wait(5)
        if self.start_delay:
            time.sleep(self.start_delay)
        if self.fail_start:
            raise RuntimeError(f"{self.name} refused to start")
        self.running = True

    def stop(self):
        self.stop_calls += 1
        if self.fail_stop:
            raise RuntimeError(f"{self.name} refused to stop")
        self.running = False


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_record(clock):
    def _make(category=EventCategory.SYSTEM, description="event", severity=Severity.LOW,
              timestamp=None, **kwargs):
        return EventRecord(
            category=category,
            description=description,
            severity=severity,
            timestamp=clock.now if timestamp is None else timestamp,
            **kwargs,
        )
    return _make


@pytest.fixture
def critical_services():
    return [
        FakeService("InputMonitor", EventCategory.INPUT),
        FakeService("SessionMonitor", EventCategory.SESSION),
        FakeService("LoginMonitor", EventCategory.LOGIN),
    ]
