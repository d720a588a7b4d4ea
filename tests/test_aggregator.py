import threading

import pytest

from deskguard_core.aggregator import REJECTED, EventAggregator, is_login_failure
from deskguard_core.models import EventCategory, EventRecord, Severity


class Recorder:
    """Persist + alert collaborator that remembers call order."""

    def __init__(self, alert_result=True, persist_error=None, alert_error=None):
        self.calls = []
        self.alert_result = alert_result
        self.persist_error = persist_error
        self.alert_error = alert_error

    def persist(self, record):
        self.calls.append(("persist", record))
        if self.persist_error:
            raise self.persist_error

    def alert(self, record):
        self.calls.append(("alert", record))
        if self.alert_error:
            raise self.alert_error
        return self.alert_result

    def count(self, kind):
        return sum(1 for k, _ in self.calls if k == kind)


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def aggregator(recorder, clock):
    return EventAggregator(persist=recorder.persist, alert=recorder.alert, clock=clock)


# ─── Duplicate filtering ─────────────────────────────────────────

@pytest.mark.parametrize("severity", [Severity.INFO, Severity.LOW])
def test_low_duplicates_processed_once(aggregator, make_record, clock, severity):
    results = []
    for _ in range(25):
        results.append(aggregator.process_event(make_record(description="USB poll", severity=severity)))
        clock.advance(1)

    processed = sum(1 for r in results if r.processed)
    assert processed <= 2
    assert processed == 1


def test_medium_duplicates_capped(aggregator, make_record, clock):
    results = []
    for _ in range(25):
        results.append(aggregator.process_event(make_record(description="Camera frame", severity=Severity.MEDIUM)))
        clock.advance(1)
    processed = sum(1 for r in results if r.processed)
    assert processed <= 4
    assert processed == 3


def test_same_description_different_category_is_not_a_duplicate(aggregator, make_record):
    assert aggregator.process_event(make_record(EventCategory.SYSTEM, "same")).processed
    assert aggregator.process_event(make_record(EventCategory.USB, "same")).processed


def test_duplicates_outside_horizon_do_not_count(aggregator, make_record, clock):
    assert aggregator.process_event(make_record(description="tick")).processed
    clock.advance(301)
    assert aggregator.process_event(make_record(description="tick")).processed


def test_high_events_are_never_deduplicated(aggregator, make_record):
    results = [aggregator.process_event(make_record(description="x", severity=Severity.HIGH))
               for _ in range(10)]
    assert all(r.processed for r in results)


# ─── Alerting ────────────────────────────────────────────────────

def test_critical_always_processed_and_alerted(recorder, aggregator, make_record):
    for _ in range(20):
        result = aggregator.process_event(make_record(description="tamper", severity=Severity.CRITICAL))
        assert result.processed and result.alerted
    assert recorder.count("alert") == 20


def test_high_alerts_capped_per_ten_minutes(recorder, aggregator, make_record, clock):
    results = []
    for i in range(7):
        results.append(aggregator.process_event(make_record(description=f"high {i}", severity=Severity.HIGH)))
        clock.advance(10)

    assert [r.alerted for r in results] == [True] * 5 + [False] * 2
    assert all(r.processed for r in results)


def test_low_events_without_correlation_do_not_alert(recorder, aggregator, make_record):
    result = aggregator.process_event(make_record(description="quiet"))
    assert result.processed and not result.alerted
    assert recorder.count("alert") == 0


def test_three_failed_logins_alert_even_at_medium(aggregator, make_record, clock):
    results = []
    for user in ("alice", "bob", "carol"):
        record = make_record(EventCategory.LOGIN, f"Failure login attempt for user: {user}",
                             Severity.MEDIUM)
        results.append(aggregator.process_event(record))
        clock.advance(60)

    assert [r.alerted for r in results] == [False, False, True]


def test_two_session_changes_plus_input_alert(aggregator, make_record, clock):
    first = aggregator.process_event(make_record(EventCategory.SESSION, "Session Locked"))
    clock.advance(30)
    second = aggregator.process_event(make_record(EventCategory.SESSION, "Session Unlocked"))
    clock.advance(30)
    third = aggregator.process_event(make_record(EventCategory.INPUT, "Input detected: 3 keystrokes"))

    assert not first.alerted and not second.alerted
    assert third.alerted


def test_camera_and_usb_never_feed_correlation(aggregator, make_record):
    aggregator.process_event(make_record(EventCategory.CAMERA, "motion 1"))
    aggregator.process_event(make_record(EventCategory.USB, "drive 1"))
    aggregator.process_event(make_record(EventCategory.USB, "drive 2"))
    assert aggregator.has_correlated_activity() is False


def test_persist_happens_before_alert(recorder, aggregator, make_record):
    record = make_record(severity=Severity.CRITICAL, description="boom")
    aggregator.process_event(record)
    assert [kind for kind, _ in recorder.calls] == ["persist", "alert"]


def test_persistence_failure_does_not_block_alerting(clock, make_record):
    recorder = Recorder(persist_error=OSError("disk full"))
    agg = EventAggregator(persist=recorder.persist, alert=recorder.alert, clock=clock)
    result = agg.process_event(make_record(severity=Severity.CRITICAL, description="boom"))
    assert result.processed and not result.persisted and result.alerted


@pytest.mark.parametrize("recorder_kwargs", [
    {"alert_result": False},
    {"alert_error": RuntimeError("sms down")},
])
def test_failed_alert_leaves_alert_sent_false(clock, make_record, recorder_kwargs):
    recorder = Recorder(**recorder_kwargs)
    agg = EventAggregator(persist=recorder.persist, alert=recorder.alert, clock=clock)
    record = make_record(severity=Severity.CRITICAL, description="boom")
    result = agg.process_event(record)
    assert result.processed and not result.alerted
    assert record.alert_sent is False


def test_successful_alert_marks_record(aggregator, make_record):
    record = make_record(severity=Severity.CRITICAL, description="boom")
    aggregator.process_event(record)
    assert record.alert_sent is True


# ─── Window maintenance ──────────────────────────────────────────

def test_malformed_record_leaves_window_untouched(aggregator):
    assert aggregator.process_event({"category": "Input"}) is REJECTED
    assert aggregator.process_event(None) is REJECTED
    assert aggregator.window_snapshot() == ()


def test_prune_keeps_exactly_records_within_horizon(aggregator, make_record, clock):
    now = clock.now
    ages = [0, 10, 299, 300, 301, 900]
    records = [make_record(description=f"age {a}", timestamp=now - a) for a in ages]
    for record in reversed(records):
        aggregator.process_event(record)

    aggregator.prune(force=True)
    kept = {r.description for r in aggregator.window_snapshot()}
    assert kept == {"age 0", "age 10", "age 299", "age 300"}

    assert aggregator.prune(force=True) == 0
    assert {r.description for r in aggregator.window_snapshot()} == kept


def test_prune_runs_at_most_once_per_interval(aggregator, make_record, clock):
    aggregator.process_event(make_record(description="old"))
    clock.advance(301)
    aggregator._last_prune = clock.now - 30
    assert aggregator.prune() == 0
    clock.advance(31)
    assert aggregator.prune() == 1


def test_stats_reflect_window(aggregator, make_record, clock):
    aggregator.process_event(make_record(EventCategory.LOGIN, "a", Severity.CRITICAL))
    aggregator.process_event(make_record(EventCategory.USB, "b"))
    stats = aggregator.get_stats()
    assert stats.total_recent_events == 2
    assert stats.alerts_sent_last_5_minutes == 1
    assert stats.category_breakdown == {"Login": 1, "USB": 1}


def test_is_login_failure(make_record):
    assert is_login_failure(make_record(EventCategory.LOGIN, "Failure login attempt for user: x"))
    assert not is_login_failure(make_record(EventCategory.LOGIN, "Success login attempt for user: x"))


# ─── Queue hand-off ──────────────────────────────────────────────

def test_submitted_records_are_all_processed(recorder, aggregator, make_record):
    aggregator.start()
    for i in range(20):
        assert aggregator.submit(make_record(description=f"event {i}"))
    aggregator.stop()

    assert recorder.count("persist") == 20
    assert aggregator.pending == 0


def test_submit_rejects_non_records(aggregator):
    assert aggregator.submit("not a record") is False
    assert aggregator.pending == 0


# ─── Concurrency ─────────────────────────────────────────────────

def test_concurrent_first_occurrences_surface_once(recorder, clock):
    barrier = threading.Barrier(2, timeout=5)
    first_call = threading.local()

    def racing_clock():
        # Both callers line up here before either touches the window.
        if threading.current_thread() is not threading.main_thread() and not getattr(first_call, "done", False):
            first_call.done = True
            barrier.wait()
        return clock.now

    agg = EventAggregator(persist=recorder.persist, alert=recorder.alert, clock=racing_clock)
    results = {}

    def worker(i):
        results[i] = agg.process_event(EventRecord(EventCategory.SYSTEM, "same", Severity.LOW,
                                                   timestamp=clock.now))

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(5)

    assert sorted(r.processed for r in results.values()) == [False, True]
    assert len(agg.window_snapshot()) == 2


def test_restart_refused_while_old_worker_drains(clock, make_record):
    release = threading.Event()
    agg = EventAggregator(persist=lambda record: release.wait(5), clock=clock)
    agg.start()
    agg.submit(make_record(description="slow"))

    assert agg.stop(timeout=0.1) is False
    assert agg.start() is False

    release.set()
    assert agg.stop(timeout=5) is True
    assert agg.start() is True
    assert agg.stop(timeout=5) is True
