"""Shared test fixtures for proc-sentinel."""

import logging
from pathlib import Path

import pytest
import structlog

from proc_sentinel.collector import ProcessRecord, ProcessSnapshot
from proc_sentinel.procfs import ProcReader

PAGE_SIZE = 4096


class FakeProc:
    """Builds a synthetic /proc tree under a temporary directory."""

    def __init__(self, root: Path):
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)
        self.set_system(total_ticks=1000)

    def set_system(
        self,
        total_ticks: int,
        mem_total_kb: int = 16_000_000,
        loads: tuple[float, float, float] = (0.5, 0.25, 0.1),
        uptime: float = 3725.5,
    ) -> None:
        """Write /proc/stat, meminfo, loadavg and uptime.

        total_ticks is spread over the cpu line's categories.
        """
        user = total_ticks // 2
        system = total_ticks // 4
        idle = total_ticks - user - system
        (self.root / "stat").write_text(
            f"cpu  {user} 0 {system} {idle} 0 0 0 0 0 0\n"
            f"cpu0 {user} 0 {system} {idle} 0 0 0 0 0 0\n"
            "intr 12345\n"
        )
        (self.root / "meminfo").write_text(
            f"MemTotal:       {mem_total_kb} kB\nMemFree:         1000000 kB\n"
        )
        (self.root / "loadavg").write_text(f"{loads[0]} {loads[1]} {loads[2]} 1/123 4567\n")
        (self.root / "uptime").write_text(f"{uptime} 12345.67\n")

    def add_process(
        self,
        pid: int,
        comm: str = "worker",
        state: str = "S",
        utime: int = 0,
        stime: int = 0,
        start_time: int = 100,
        vsize_bytes: int = 10 * 1024 * 1024,
        rss_pages: int = 256,
        uid: int = 0,
        cmdline: str | None = None,
        priority: int = 20,
        nice: int = 0,
        threads: int = 1,
    ) -> None:
        """Create or overwrite /proc/<pid>."""
        proc_dir = self.root / str(pid)
        proc_dir.mkdir(exist_ok=True)
        (proc_dir / "stat").write_text(
            f"{pid} ({comm}) {state} 1 {pid} {pid} 0 -1 4194304 0 0 0 0 "
            f"{utime} {stime} 0 0 {priority} {nice} {threads} 0 {start_time} "
            f"{vsize_bytes} {rss_pages} 18446744073709551615 1 1 0 0 0 0 0 0 0 0 0 0 17 0 0 0\n"
        )
        (proc_dir / "status").write_text(
            f"Name:\t{comm}\nState:\t{state}\nUid:\t{uid}\t{uid}\t{uid}\t{uid}\n"
        )
        if cmdline is None:
            cmdline = f"/usr/bin/{comm}"
        (proc_dir / "cmdline").write_bytes(cmdline.replace(" ", "\x00").encode() + b"\x00")

    def remove_process(self, pid: int) -> None:
        proc_dir = self.root / str(pid)
        for child in proc_dir.iterdir():
            child.unlink()
        proc_dir.rmdir()


@pytest.fixture
def fake_proc(tmp_path: Path) -> FakeProc:
    """Empty synthetic /proc tree."""
    return FakeProc(tmp_path / "proc")


@pytest.fixture
def reader(fake_proc: FakeProc) -> ProcReader:
    """ProcReader over the synthetic tree."""
    return ProcReader(root=fake_proc.root, page_size=PAGE_SIZE)


def make_record(
    pid: int = 123,
    comm: str = "test_cmd",
    cmd: str | None = None,
    user: str = "alice",
    uid: int = 1000,
    state: str = "S",
    cpu: float = 0.0,
    mem: float = 0.0,
    rss_kb: int = 1024,
    vsize_kb: int = 4096,
    prev_ticks: int = 0,
    cur_ticks: int = 0,
    start_time: int = 100,
    nice: int = 0,
    alive: bool = True,
) -> ProcessRecord:
    """Create a ProcessRecord for testing."""
    return ProcessRecord(
        pid=pid,
        start_time=start_time,
        uid=uid,
        user=user,
        comm=comm,
        cmd=cmd if cmd is not None else f"/usr/bin/{comm}",
        state=state,
        priority=20,
        nice=nice,
        threads=1,
        vsize_kb=vsize_kb,
        rss_kb=rss_kb,
        prev_cpu_ticks=prev_ticks,
        cur_cpu_ticks=cur_ticks,
        cpu_percent=cpu,
        mem_percent=mem,
        alive=alive,
    )


def make_snapshot(**kwargs) -> ProcessSnapshot:
    """Create a ProcessSnapshot for testing (same args as make_record)."""
    return make_record(**kwargs).snapshot()


@pytest.fixture
def restore_logging():
    """Undo logging.configure() side effects on the stdlib root logger and structlog."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()
