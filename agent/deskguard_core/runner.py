"""
Entry point and auto-restart wrapper.

Wiring (sensor → aggregator is a queue hand-off, never a direct call):

  InputMonitor → ActivityDebouncer ─┐
  LoginMonitor ─────────────────────┼→ EventAggregator.submit → worker
  SessionMonitor → SessionController┘        ├→ JsonlEventLogger
                       └→ ServiceCoordinator └→ AlertDispatcher
"""

import sys
import time

from .constants import AGENT_VERSION, APP_NAME, RECONCILE_INTERVAL_SEC
from .config import log, safe_print, load_config
from . import http_client
from .aggregator import EventAggregator
from .alerts import AlertDispatcher
from .controller import SessionController
from .coordinator import ServiceCoordinator
from .debouncer import ActivityDebouncer
from .eventlog import JsonlEventLogger
from .models import SessionState
from .platform_win import ensure_single_instance
from .sensors import LoginMonitor, SessionMonitor


def build_agent(config):
    """Construct and wire every component. Nothing is started."""
    # pynput binds to the input backend on import.
    from .listeners import InputMonitor

    event_logger = JsonlEventLogger(max_bytes=config["eventLogMaxBytes"])
    dispatcher = AlertDispatcher.from_config(config)
    aggregator = EventAggregator(persist=event_logger, alert=dispatcher,
                                 horizon_sec=config["aggregationHorizonSec"])

    coordinator = ServiceCoordinator(join_timeout=config["serviceJoinTimeoutSec"])
    controller = SessionController(coordinator, event_sink=aggregator.submit,
                                   reconcile_interval=config["reconcileIntervalSec"])

    debouncer = ActivityDebouncer(
        on_summary=lambda summary: aggregator.submit(summary.to_record()),
        sensitivity=config["inputSensitivitySec"],
    )
    input_monitor = InputMonitor(debouncer)
    session_monitor = SessionMonitor(controller.handle_transition,
                                     poll_interval=config["lockPollSec"])
    login_monitor = LoginMonitor(aggregator.submit, poll_interval=config["loginPollSec"])

    for service in (input_monitor, session_monitor, login_monitor):
        coordinator.register_service(service)

    return {
        "event_logger": event_logger,
        "aggregator": aggregator,
        "coordinator": coordinator,
        "controller": controller,
        "input_monitor": input_monitor,
        "session_monitor": session_monitor,
    }


def main():
    """Primary agent entry point. Blocks until Ctrl+C."""
    safe_print(f"{APP_NAME} Security Monitor v{AGENT_VERSION}")
    safe_print()

    if not ensure_single_instance():
        safe_print("Already running. Exiting.")
        sys.exit(0)

    config = load_config()
    agent = build_agent(config)
    aggregator = agent["aggregator"]
    controller = agent["controller"]

    aggregator.start()
    try:
        status = controller.start()
        if agent["session_monitor"].is_session_locked:
            status = controller.handle_session_state_change(SessionState.LOCKED, "startup")
        log.info("Monitoring active: %d categories up, critical=%s",
                 status.active_count, status.critical_services_active)

        while True:
            time.sleep(RECONCILE_INTERVAL_SEC)
            agent["input_monitor"].check_and_restart()
            stats = aggregator.get_stats()
            log.debug("Window: %d events, %d alerts in 15 min",
                      stats.total_recent_events, stats.alerts_sent_last_15_minutes)
    finally:
        log.info("Shutting down...")
        controller.stop()
        aggregator.stop()


def run_with_auto_restart():
    """
    Wrapper that auto-restarts on crash. Never gives up.
    Crash counter resets if the agent ran for 2+ minutes (not a boot-loop).
    """
    crash_count = 0
    crash_window = 120
    max_rapid_crashes = 10

    while True:
        start_time = time.time()
        try:
            main()
            break
        except KeyboardInterrupt:
            safe_print("\nAgent stopped by user.")
            break
        except SystemExit as e:
            if str(e) == "0":
                break
            log.error("Agent SystemExit: %s", e)
        except Exception as e:
            elapsed = time.time() - start_time
            log.error("Agent crashed after %.0fs: %s", elapsed, e, exc_info=True)

            if elapsed > crash_window:
                crash_count = 0
            crash_count += 1

            if crash_count >= max_rapid_crashes:
                wait = 120
                log.warning("Many rapid crashes (%d). Waiting %ds...", crash_count, wait)
            else:
                wait = min(10 * crash_count, 60)

            log.info("Restarting in %ds (crash %d)...", wait, crash_count)
            time.sleep(wait)

            http_client.http = http_client.reset_session(http_client.http)
