import pytest

from conftest import FakeService
from deskguard_core.controller import SessionController
from deskguard_core.coordinator import ServiceCoordinator
from deskguard_core.models import EventCategory, SessionState, SessionTransition, Severity


@pytest.fixture
def camera():
    return FakeService("CameraMonitor", EventCategory.CAMERA)


@pytest.fixture
def coordinator(critical_services, camera):
    coord = ServiceCoordinator(join_timeout=5, settle_delay=0)
    for svc in critical_services + [camera]:
        coord.register_service(svc)
    return coord


@pytest.fixture
def events():
    return []


@pytest.fixture
def controller(coordinator, events, clock):
    ctl = SessionController(coordinator, event_sink=events.append, clock=clock)
    ctl.start(watchdog=False)
    yield ctl
    ctl.stop()


def transition(state, ts, context=""):
    return SessionTransition(state, ts, context)


def test_start_brings_everything_up(controller):
    status = controller.get_monitoring_status()
    assert status.background_monitoring_active
    assert status.critical_services_active
    assert status.camera_active
    assert status.inactive_services == ()


def test_lock_stops_camera_only(controller, camera, critical_services, clock):
    status = controller.handle_transition(transition(SessionState.LOCKED, clock.now))

    assert status.is_session_locked
    assert camera.running is False
    assert all(svc.running for svc in critical_services)
    assert status.critical_services_active
    assert status.camera_active is False


def test_unlock_restores_camera(controller, camera, clock):
    controller.handle_transition(transition(SessionState.LOCKED, clock.advance(1)))
    status = controller.handle_transition(transition(SessionState.UNLOCKED, clock.advance(1)))

    assert camera.running is True
    assert status.camera_active
    assert not status.is_session_locked


def test_unlock_revives_dead_critical_service(controller, critical_services, clock):
    controller.handle_transition(transition(SessionState.LOCKED, clock.advance(1)))
    critical_services[0].running = False

    status = controller.handle_transition(transition(SessionState.UNLOCKED, clock.advance(1)))

    assert critical_services[0].running is True
    assert status.critical_services_active


def test_unrecoverable_service_is_flagged_not_lost(controller, critical_services, clock):
    login = critical_services[2]
    login.running = False
    login.fail_start = True

    status = controller.handle_transition(transition(SessionState.UNLOCKED, clock.advance(1)))

    assert status.critical_services_active is False
    assert status.login_active is False
    assert "LoginMonitor" in status.inactive_services


def test_ensure_is_idempotent_when_consistent(controller, critical_services, camera):
    before = [svc.start_calls for svc in critical_services + [camera]]
    controller.ensure_continuous_monitoring()
    controller.ensure_continuous_monitoring()
    assert [svc.start_calls for svc in critical_services + [camera]] == before


def test_ensure_does_not_restart_camera_while_locked(controller, camera, clock):
    controller.handle_transition(transition(SessionState.LOCKED, clock.advance(1)))
    controller.ensure_continuous_monitoring()
    assert camera.running is False


def test_stale_transition_does_not_change_state(controller, camera, clock):
    controller.handle_transition(transition(SessionState.LOCKED, clock.now))
    status = controller.handle_transition(transition(SessionState.UNLOCKED, clock.now - 10))

    assert status.is_session_locked
    assert camera.running is False


def test_remote_transitions_are_context_only(controller, camera, events, clock):
    status = controller.handle_transition(transition(SessionState.REMOTE_CONNECT, clock.advance(1), "rdp"))

    assert status.session_state is SessionState.REMOTE_CONNECT
    assert controller.session_state is SessionState.REMOTE_CONNECT
    assert not status.is_session_locked
    assert camera.running
    record = events[-1]
    assert record.category is EventCategory.SESSION
    assert record.severity is Severity.MEDIUM
    assert record.metadata["context"] == "rdp"


def test_every_transition_is_forwarded_as_session_event(controller, events, clock):
    events.clear()
    controller.handle_transition(transition(SessionState.LOCKED, clock.advance(1)))
    controller.handle_transition(transition(SessionState.UNLOCKED, clock.advance(1)))

    assert [e.description for e in events] == ["Session Locked", "Session Unlocked"]
    assert all(e.category is EventCategory.SESSION for e in events)


def test_malformed_transition_never_raises(controller):
    status = controller.handle_transition("locked")
    assert status.session_state is SessionState.UNLOCKED


def test_listener_failures_are_contained(controller, clock):
    seen = []

    def broken(status, context):
        raise RuntimeError("ui gone")

    controller.add_status_listener(broken)
    controller.add_status_listener(lambda status, context: seen.append(context))
    controller.handle_transition(transition(SessionState.LOCKED, clock.advance(1)))

    assert seen == ["Session locked - background monitoring active"]


def test_stop_stops_all_services(coordinator, critical_services, camera, clock):
    ctl = SessionController(coordinator, clock=clock)
    ctl.start(watchdog=False)
    status = ctl.stop()

    assert status.background_monitoring_active is False
    assert not any(svc.running for svc in critical_services + [camera])


def test_start_while_locked_keeps_camera_off(coordinator, camera, clock):
    ctl = SessionController(coordinator, clock=clock)
    ctl.handle_session_state_change(SessionState.LOCKED, "startup")
    ctl.start(watchdog=False)
    try:
        assert camera.running is False
    finally:
        ctl.stop()


def test_lifecycle_events_reach_the_sink(coordinator, clock):
    events = []
    ctl = SessionController(coordinator, event_sink=events.append, clock=clock)
    ctl.start(watchdog=False)
    ctl.stop()
    descriptions = [e.description for e in events if e.category is EventCategory.BACKGROUND_MONITORING]
    assert descriptions == ["Background monitoring started", "Background monitoring stopped"]


def test_context_transition_while_locked_keeps_lock_policy(controller, camera, clock):
    controller.handle_transition(transition(SessionState.LOCKED, clock.advance(1)))
    status = controller.handle_transition(transition(SessionState.REMOTE_DISCONNECT, clock.advance(1)))

    assert status.session_state is SessionState.REMOTE_DISCONNECT
    assert status.is_session_locked
    assert camera.running is False


@pytest.mark.parametrize("state", [SessionState.LOGON, SessionState.LOGOFF])
def test_logon_and_logoff_are_reported(controller, clock, state):
    status = controller.handle_transition(transition(state, clock.advance(1)))
    assert status.session_state is state


def test_camera_paused_by_lock_is_not_degraded(controller, clock, caplog):
    controller.handle_transition(transition(SessionState.LOCKED, clock.advance(1)))
    caplog.clear()
    status = controller.ensure_continuous_monitoring()

    assert status.inactive_services == ()
    assert status.camera_active is False
    assert "degraded" not in caplog.text


def test_category_started_once_per_reconciliation(coordinator, clock):
    usb = [FakeService("UsbA", EventCategory.USB), FakeService("UsbB", EventCategory.USB)]
    for svc in usb:
        coordinator.register_service(svc)
    ctl = SessionController(coordinator, clock=clock)
    ctl.start(watchdog=False)
    try:
        for svc in usb:
            svc.running = False
        ctl.ensure_continuous_monitoring()
        assert [svc.start_calls for svc in usb] == [2, 2]
        assert all(svc.running for svc in usb)
    finally:
        ctl.stop()
