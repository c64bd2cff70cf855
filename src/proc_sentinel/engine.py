"""Sampling loop: scan, compute metrics, compact, rank, publish.

Runs on its own thread. Each tick is fully sequential; the next tick never
starts before the previous one has published.
"""

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable

import structlog

from proc_sentinel.collector import ProcessSnapshot, ProcessTable
from proc_sentinel.metrics import compute_metrics, system_delta
from proc_sentinel.procfs import ProcReader
from proc_sentinel.sorter import Sorter

if TYPE_CHECKING:
    from proc_sentinel.export import CsvExporter

log = structlog.get_logger()


class SourceUnavailableError(RuntimeError):
    """The process source can't be enumerated at all."""


class EngineState(Enum):
    IDLE = "idle"
    SAMPLING = "sampling"


@dataclass(frozen=True)
class Sample:
    """One published cycle: ranked immutable records plus header counters."""

    records: tuple[ProcessSnapshot, ...]
    total: int
    running: int
    loads: tuple[float, float, float]
    uptime: float
    timestamp: float
    sequence: int


class SamplingEngine:
    """Periodic sampler feeding a single consumer.

    Args:
        reader: Snapshot reader for the process source
        publish: Non-blocking callable receiving each Sample in order
        interval: Seconds between ticks
        exporter: Optional CSV exporter fed after each publish
        sorter: Ranking applied to published records (default: CPU descending)
    """

    def __init__(
        self,
        reader: ProcReader,
        publish: Callable[[Sample], None],
        interval: float = 1.5,
        exporter: "CsvExporter | None" = None,
        sorter: Sorter | None = None,
    ):
        self.reader = reader
        self.table = ProcessTable(reader)
        self.publish = publish
        self.interval = interval
        self.exporter = exporter
        self.sorter = sorter or Sorter()
        self.state = EngineState.IDLE
        self.sequence = 0

        self._prev_total = 0
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def prime(self) -> None:
        """Take the initial system tick baseline."""
        self._prev_total = self.reader.read_total_cpu_ticks()

    def tick(self) -> Sample:
        """Run one complete cycle and publish the result."""
        self.state = EngineState.SAMPLING
        try:
            total, running = self.table.scan()

            system = self.reader.read_system_snapshot()
            sys_delta = system_delta(self._prev_total, system.total_cpu_ticks)
            compute_metrics(self.table.records, sys_delta, system.mem_total_kb)
            self._prev_total = system.total_cpu_ticks

            self.table.compact()

            self.sequence += 1
            sample = Sample(
                records=tuple(self.sorter.sort(self.table.snapshot())),
                total=total,
                running=running,
                loads=system.loads,
                uptime=system.uptime,
                timestamp=time.time(),
                sequence=self.sequence,
            )
        finally:
            self.state = EngineState.IDLE

        self.publish(sample)
        if self.exporter is not None:
            self.exporter.write(sample)
        return sample

    def _run(self) -> None:
        log.info("engine_started", interval=self.interval)
        while not self._stop_event.wait(self.interval):
            try:
                self.tick()
            except Exception as e:
                log.error("sample_failed", error=str(e))
        log.info("engine_stopped", samples=self.sequence)

    def start(self) -> None:
        """Start sampling in a background thread.

        Raises:
            SourceUnavailableError: If the process source can't be listed.
        """
        if self.running:
            return
        if not self.reader.is_available():
            raise SourceUnavailableError(f"Cannot enumerate processes under {self.reader.root}")
        self.prime()
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="sampling-engine", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """Signal shutdown and wait for the in-flight tick to finish."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
