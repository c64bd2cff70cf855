"""Tests for threshold alert evaluation."""

from dataclasses import replace

import pytest

from proc_sentinel.alerts import AlertEvaluator, AlertEvent, AlertKind
from proc_sentinel.config import Config, ConfigHolder
from tests.conftest import make_record


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSink:
    def __init__(self):
        self.events: list[AlertEvent] = []

    def deliver(self, event: AlertEvent) -> None:
        self.events.append(event)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def holder() -> ConfigHolder:
    return ConfigHolder(Config().with_thresholds(cpu=80.0, mem=80.0))


@pytest.fixture
def evaluator(holder: ConfigHolder, sink: RecordingSink, clock: FakeClock) -> AlertEvaluator:
    return AlertEvaluator(holder.get, sink, cooldown=60.0, clock=clock)


class TestCooldown:
    def test_fires_then_respects_cooldown(
        self, evaluator: AlertEvaluator, sink: RecordingSink, clock: FakeClock
    ):
        """85% fires, again 30s later is suppressed, 61s after the first fires."""
        evaluator.evaluate([make_record(pid=500, cpu=85.0)])
        assert len(sink.events) == 1
        assert sink.events[0].kind == AlertKind.CPU
        assert sink.events[0].value == 85.0

        clock.advance(30)
        evaluator.evaluate([make_record(pid=500, cpu=85.0)])
        assert len(sink.events) == 1

        clock.advance(31)
        evaluator.evaluate([make_record(pid=500, cpu=90.0)])
        assert len(sink.events) == 2
        assert sink.events[1].value == 90.0

    def test_fires_exactly_at_cooldown(
        self, evaluator: AlertEvaluator, sink: RecordingSink, clock: FakeClock
    ):
        evaluator.evaluate([make_record(pid=1, cpu=99.0)])
        clock.advance(60)
        evaluator.evaluate([make_record(pid=1, cpu=99.0)])
        assert len(sink.events) == 2

    def test_cooldown_is_per_pid(self, evaluator: AlertEvaluator, sink: RecordingSink):
        evaluator.evaluate([make_record(pid=1, cpu=90.0)])
        evaluator.evaluate([make_record(pid=2, cpu=90.0)])
        assert [e.pid for e in sink.events] == [1, 2]

    def test_below_threshold_does_not_start_cooldown(
        self, evaluator: AlertEvaluator, sink: RecordingSink
    ):
        evaluator.evaluate([make_record(pid=1, cpu=79.9)])
        assert sink.events == []
        assert 1 not in evaluator.last_alert

        evaluator.evaluate([make_record(pid=1, cpu=80.0)])
        assert len(sink.events) == 1

    def test_cooldown_from_config(self, sink: RecordingSink, clock: FakeClock):
        config = Config()
        config = replace(config, alerts=replace(config.alerts, cooldown_seconds=5.0))
        evaluator = AlertEvaluator(lambda: config, sink, clock=clock)

        evaluator.evaluate([make_record(pid=1, cpu=95.0)])
        clock.advance(5)
        evaluator.evaluate([make_record(pid=1, cpu=95.0)])

        assert len(sink.events) == 2


class TestEvents:
    def test_both_metrics_share_one_refresh(
        self, evaluator: AlertEvaluator, sink: RecordingSink, clock: FakeClock
    ):
        """CPU and memory over threshold yield two events and one cooldown stamp."""
        events = evaluator.evaluate([make_record(pid=7, cpu=95.0, mem=90.0)])

        assert [e.kind for e in events] == [AlertKind.CPU, AlertKind.MEMORY]
        assert sink.events == events
        assert evaluator.last_alert == {7: clock.now}

        clock.advance(10)
        assert evaluator.evaluate([make_record(pid=7, cpu=95.0, mem=90.0)]) == []

    def test_memory_only(self, evaluator: AlertEvaluator):
        events = evaluator.evaluate([make_record(pid=7, cpu=1.0, mem=85.0)])
        assert [e.kind for e in events] == [AlertKind.MEMORY]

    def test_dead_records_skipped(self, evaluator: AlertEvaluator):
        assert evaluator.evaluate([make_record(pid=7, cpu=99.0, alive=False)]) == []

    def test_message(self, evaluator: AlertEvaluator):
        events = evaluator.evaluate([make_record(pid=42, cmd="/usr/bin/yes", cpu=99.04)])
        assert events[0].message == "⚠ High CPU: PID 42 (/usr/bin/yes) 99.0%"

    def test_message_uses_short_name_without_cmdline(self, evaluator: AlertEvaluator):
        events = evaluator.evaluate([make_record(pid=3, comm="kswapd0", cmd="", mem=81.0)])
        assert events[0].message == "⚠ High Memory: PID 3 (kswapd0) 81.0%"


class TestHotReload:
    def test_reads_current_config_each_cycle(
        self, evaluator: AlertEvaluator, holder: ConfigHolder, sink: RecordingSink
    ):
        evaluator.evaluate([make_record(pid=1, cpu=50.0)])
        assert sink.events == []

        holder.swap(holder.get().with_thresholds(cpu=40.0))
        evaluator.evaluate([make_record(pid=1, cpu=50.0)])

        assert len(sink.events) == 1
        assert sink.events[0].threshold == 40.0


class TestForget:
    def test_drops_exited_pids(self, evaluator: AlertEvaluator):
        evaluator.evaluate([make_record(pid=1, cpu=90.0), make_record(pid=2, cpu=90.0)])

        removed = evaluator.forget([1])

        assert removed == 1
        assert set(evaluator.last_alert) == {1}

    def test_nothing_to_forget(self, evaluator: AlertEvaluator):
        assert evaluator.forget([]) == 0
