"""Per-process threshold alerting with a cooldown."""

import time
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Protocol

import structlog

from proc_sentinel.config import Config

log = structlog.get_logger()

DEFAULT_COOLDOWN = 60.0


class AlertKind(Enum):
    """Metric that crossed its threshold."""

    CPU = "cpu"
    MEMORY = "memory"

    @property
    def title(self) -> str:
        return "High CPU" if self is AlertKind.CPU else "High Memory"


@dataclass(frozen=True)
class AlertEvent:
    """One alert for one metric of one process."""

    pid: int
    kind: AlertKind
    value: float
    threshold: float
    command: str
    timestamp: float

    @property
    def message(self) -> str:
        return f"⚠ {self.kind.title}: PID {self.pid} ({self.command}) {self.value:.1f}%"


class AlertSink(Protocol):
    """Delivery collaborator. Must swallow its own failures."""

    def deliver(self, event: AlertEvent) -> None: ...


class AlertEvaluator:
    """Applies threshold rules to each cycle's records.

    Reads the config through config_source on every evaluation so a
    hot-reloaded snapshot takes effect on the next cycle.

    Args:
        config_source: Zero-arg callable returning the current Config
        sink: Where alert events are delivered
        cooldown: Minimum seconds between alerts for one pid (None = from config)
        clock: Monotonic time source, injectable for tests
    """

    def __init__(
        self,
        config_source: Callable[[], Config],
        sink: AlertSink,
        cooldown: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config_source = config_source
        self.sink = sink
        self.cooldown = cooldown
        self.clock = clock
        self.last_alert: dict[int, float] = {}

    def _cooldown(self, config: Config) -> float:
        if self.cooldown is not None:
            return self.cooldown
        return config.alerts.cooldown_seconds

    def evaluate(self, records: Iterable) -> list[AlertEvent]:
        """Evaluate alive records and deliver any alerts.

        Returns:
            Events emitted this cycle, in record order.
        """
        config = self.config_source()
        cpu_threshold = config.alerts.cpu_threshold
        mem_threshold = config.alerts.mem_threshold
        cooldown = self._cooldown(config)
        now = self.clock()

        events: list[AlertEvent] = []
        for r in records:
            if not r.alive:
                continue

            triggered: list[tuple[AlertKind, float, float]] = []
            if r.cpu_percent >= cpu_threshold:
                triggered.append((AlertKind.CPU, r.cpu_percent, cpu_threshold))
            if r.mem_percent >= mem_threshold:
                triggered.append((AlertKind.MEMORY, r.mem_percent, mem_threshold))
            if not triggered:
                continue

            last = self.last_alert.get(r.pid)
            if last is not None and now - last < cooldown:
                continue

            # One refresh covers every metric firing this cycle
            self.last_alert[r.pid] = now
            command = r.cmd or r.comm
            for kind, value, threshold in triggered:
                event = AlertEvent(
                    pid=r.pid,
                    kind=kind,
                    value=value,
                    threshold=threshold,
                    command=command,
                    timestamp=time.time(),
                )
                events.append(event)
                log.info(
                    "alert_triggered",
                    pid=r.pid,
                    kind=kind.value,
                    value=round(value, 1),
                    threshold=threshold,
                )
                self.sink.deliver(event)

        return events

    def forget(self, live_pids: Iterable[int]) -> int:
        """Drop cooldown entries for pids that are gone.

        Returns:
            Number of entries removed.
        """
        live = set(live_pids)
        stale = [pid for pid in self.last_alert if pid not in live]
        for pid in stale:
            del self.last_alert[pid]
        return len(stale)
