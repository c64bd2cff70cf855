"""Process table: identity-keyed process records reconciled across samples."""

from dataclasses import asdict, dataclass, field

import structlog

from proc_sentinel.procfs import ProcReader, RawProcess

log = structlog.get_logger()


@dataclass(frozen=True)
class ProcessSnapshot:
    """Immutable copy of a ProcessRecord handed to consumers."""

    pid: int
    uid: int
    user: str
    comm: str
    cmd: str
    state: str
    priority: int
    nice: int
    threads: int
    vsize_kb: int
    rss_kb: int
    cpu_ticks: int
    cpu_percent: float
    mem_percent: float
    alive: bool

    @property
    def display_command(self) -> str:
        """Command line, or the short name for kernel threads and zombies."""
        return self.cmd or self.comm

    def to_dict(self) -> dict:
        """Serialize for JSON output."""
        return asdict(self)


@dataclass
class ProcessRecord:
    """One entry per distinct process identity observed.

    Mutated in place by ProcessTable.scan() and the metrics engine; never
    handed to other threads directly (see snapshot()).
    """

    # Identity
    pid: int
    start_time: int  # Kernel start-time tick, distinguishes pid reuse
    uid: int
    user: str

    # Description
    comm: str
    cmd: str
    state: str
    priority: int
    nice: int
    threads: int

    # Memory footprint
    vsize_kb: int
    rss_kb: int

    # Cumulative CPU ticks for delta computation
    prev_cpu_ticks: int = 0
    cur_cpu_ticks: int = 0

    # Derived
    cpu_percent: float = 0.0
    mem_percent: float = 0.0

    alive: bool = True

    @property
    def cpu_ticks(self) -> int:
        return self.cur_cpu_ticks

    @classmethod
    def from_raw(cls, raw: RawProcess) -> "ProcessRecord":
        """Create a fresh record with a zero tick baseline."""
        return cls(
            pid=raw.pid,
            start_time=raw.start_time,
            uid=raw.uid,
            user=raw.user,
            comm=raw.comm,
            cmd=raw.cmd,
            state=raw.state,
            priority=raw.priority,
            nice=raw.nice,
            threads=raw.threads,
            vsize_kb=raw.vsize_kb,
            rss_kb=raw.rss_kb,
            prev_cpu_ticks=0,
            cur_cpu_ticks=raw.cpu_ticks,
        )

    def update_from(self, raw: RawProcess) -> None:
        """Overwrite mutable fields in place, keeping prev_cpu_ticks."""
        self.uid = raw.uid
        self.user = raw.user
        self.comm = raw.comm
        self.cmd = raw.cmd
        self.state = raw.state
        self.priority = raw.priority
        self.nice = raw.nice
        self.threads = raw.threads
        self.vsize_kb = raw.vsize_kb
        self.rss_kb = raw.rss_kb
        self.cur_cpu_ticks = raw.cpu_ticks
        self.alive = True

    def snapshot(self) -> ProcessSnapshot:
        return ProcessSnapshot(
            pid=self.pid,
            uid=self.uid,
            user=self.user,
            comm=self.comm,
            cmd=self.cmd,
            state=self.state,
            priority=self.priority,
            nice=self.nice,
            threads=self.threads,
            vsize_kb=self.vsize_kb,
            rss_kb=self.rss_kb,
            cpu_ticks=self.cur_cpu_ticks,
            cpu_percent=self.cpu_percent,
            mem_percent=self.mem_percent,
            alive=self.alive,
        )


@dataclass
class ProcessTable:
    """Authoritative collection of process records keyed by pid.

    Owned by the sampling thread. Each cycle is:
    1. scan() - create/update records, mark unseen ones dead
    2. metrics are computed over the alive records
    3. compact() - drop dead records and rebuild the index
    """

    reader: ProcReader
    records: list[ProcessRecord] = field(default_factory=list)
    _index: dict[int, ProcessRecord] = field(default_factory=dict, repr=False)

    def __len__(self) -> int:
        return len(self.records)

    def get(self, pid: int) -> ProcessRecord | None:
        """Look up a record by pid."""
        return self._index.get(pid)

    def scan(self) -> tuple[int, int]:
        """Reconcile the table against a fresh enumeration.

        Returns:
            (total processes observed, processes in running state)
        """
        processes, total = self.reader.enumerate_processes()
        running = 0
        seen: set[int] = set()

        for raw in processes:
            if raw.state == "R":
                running += 1
            seen.add(raw.pid)

            existing = self._index.get(raw.pid)
            if existing is not None and existing.start_time == raw.start_time:
                existing.update_from(raw)
                continue

            if existing is not None:
                # Same pid, different lifetime: never inherit the old baseline
                log.debug(
                    "pid_reused",
                    pid=raw.pid,
                    old_start=existing.start_time,
                    new_start=raw.start_time,
                )
                self.records.remove(existing)

            record = ProcessRecord.from_raw(raw)
            self.records.append(record)
            self._index[raw.pid] = record

        for record in self.records:
            if record.pid not in seen:
                record.alive = False

        return total, running

    def compact(self) -> None:
        """Remove dead records and rebuild the pid index.

        Must only run after metrics for the cycle have been computed.
        """
        self.records = [r for r in self.records if r.alive]
        self._index = {r.pid: r for r in self.records}

    def snapshot(self) -> tuple[ProcessSnapshot, ...]:
        """Immutable copies of every record, in table order."""
        return tuple(r.snapshot() for r in self.records)
