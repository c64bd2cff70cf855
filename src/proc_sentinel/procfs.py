"""Low-level /proc interface for Linux process and system metrics.

Reads files directly - no subprocess overhead.

This module provides access to:
- /proc/stat: Aggregate CPU tick total since boot
- /proc/meminfo: Total physical memory
- /proc/loadavg and /proc/uptime: Header figures
- /proc/<pid>/stat: Program name, state, scheduling, ticks, sizes
- /proc/<pid>/status: Owning uid
- /proc/<pid>/cmdline: Full invocation

All per-process functions handle process disappearance gracefully by
returning None. System-wide functions return zeros when unreadable.
"""

import os
import pwd
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

import structlog

log = structlog.get_logger()

# ─────────────────────────────────────────────────────────────────────────────
# Constants
# ─────────────────────────────────────────────────────────────────────────────

PROC_ROOT = Path("/proc")
DEFAULT_CLOCK_TICKS = 100  # Used when sysconf can't report CLK_TCK

# Minimum number of whitespace-separated fields after the closing paren of
# /proc/<pid>/stat (fields 3 through 26). Field N of the man page lives
# at index N - 3.
_MIN_STAT_FIELDS = 24

STATE_NAMES = {
    "R": "running",
    "S": "sleeping",
    "D": "disk sleep",
    "T": "stopped",
    "t": "tracing stop",
    "Z": "zombie",
    "X": "dead",
    "I": "idle",
}


# ─────────────────────────────────────────────────────────────────────────────
# Structures
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SystemSnapshot:
    """Instantaneous OS-wide counters."""

    total_cpu_ticks: int = 0
    mem_total_kb: int = 0
    loads: tuple[float, float, float] = (0.0, 0.0, 0.0)
    uptime: float = 0.0


@dataclass(frozen=True)
class ProcStat:
    """Parsed /proc/<pid>/stat fields."""

    comm: str
    state: str
    utime: int
    stime: int
    priority: int
    nice: int
    threads: int
    start_time: int
    vsize_kb: int
    rss_kb: int

    @property
    def cpu_ticks(self) -> int:
        """Cumulative user + system ticks."""
        return self.utime + self.stime


@dataclass(frozen=True)
class RawProcess:
    """Raw per-process attributes from one read, before reconciliation."""

    pid: int
    uid: int
    user: str
    comm: str
    cmd: str
    state: str
    priority: int
    nice: int
    threads: int
    start_time: int
    vsize_kb: int
    rss_kb: int
    cpu_ticks: int


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def detect_clock_ticks() -> int:
    """Return the kernel's clock ticks per second (CLK_TCK).

    Falls back to 100 if sysconf is unavailable or reports nonsense.
    """
    try:
        hz = os.sysconf("SC_CLK_TCK")
    except (ValueError, OSError):
        return DEFAULT_CLOCK_TICKS
    return hz if hz > 0 else DEFAULT_CLOCK_TICKS


@lru_cache(maxsize=1024)
def uid_to_name(uid: int) -> str:
    """Resolve a numeric uid to a user name, falling back to the number."""
    try:
        return pwd.getpwuid(uid).pw_name
    except KeyError:
        return str(uid)


def parse_stat_line(line: str, page_size: int) -> ProcStat | None:
    """Parse a /proc/<pid>/stat line.

    The program name sits between the first '(' and the LAST ')' because it
    may itself contain parentheses or spaces.

    Args:
        line: Raw contents of the stat file
        page_size: System page size in bytes (for rss pages -> KB)

    Returns:
        ProcStat on success, None if the line is truncated or malformed.
    """
    line = line.strip()
    left = line.find("(")
    right = line.rfind(")")
    if left < 0 or right <= left:
        return None

    comm = line[left + 1 : right]
    fields = line[right + 1 :].split()
    if len(fields) < _MIN_STAT_FIELDS:
        return None

    def field(n: int) -> str:
        return fields[n - 3]

    try:
        return ProcStat(
            comm=comm,
            state=field(3)[0],
            utime=int(field(14)),
            stime=int(field(15)),
            priority=int(field(18)),
            nice=int(field(19)),
            threads=int(field(20)),
            start_time=int(field(22)),
            vsize_kb=int(field(23)) // 1024,
            rss_kb=int(field(24)) * (page_size // 1024),
        )
    except (ValueError, IndexError):
        return None


# ─────────────────────────────────────────────────────────────────────────────
# Reader
# ─────────────────────────────────────────────────────────────────────────────


class ProcReader:
    """Stateless reader over a /proc tree.

    The root is injectable so tests can point it at a synthetic tree.
    """

    def __init__(self, root: Path = PROC_ROOT, page_size: int | None = None):
        self.root = Path(root)
        self.page_size = page_size or os.sysconf("SC_PAGE_SIZE")

    def _read_text(self, *parts: str) -> str | None:
        try:
            return self.root.joinpath(*parts).read_text(errors="replace")
        except OSError:
            return None

    # System-wide

    def read_total_cpu_ticks(self) -> int:
        """Sum of every tick category on the aggregate 'cpu' line."""
        text = self._read_text("stat")
        if not text:
            return 0
        fields = text.split("\n", 1)[0].split()
        total = 0
        for tok in fields[1:]:
            if tok.isdigit():
                total += int(tok)
        return total

    def read_mem_total_kb(self) -> int:
        text = self._read_text("meminfo")
        if not text:
            return 0
        for line in text.splitlines():
            if line.startswith("MemTotal:"):
                parts = line.split()
                if len(parts) >= 2 and parts[1].isdigit():
                    return int(parts[1])
                break
        return 0

    def read_loadavg(self) -> tuple[float, float, float]:
        text = self._read_text("loadavg")
        if not text:
            return (0.0, 0.0, 0.0)
        parts = text.split()
        try:
            return (float(parts[0]), float(parts[1]), float(parts[2]))
        except (ValueError, IndexError):
            return (0.0, 0.0, 0.0)

    def read_uptime(self) -> float:
        text = self._read_text("uptime")
        if not text:
            return 0.0
        try:
            return float(text.split()[0])
        except (ValueError, IndexError):
            return 0.0

    def read_system_snapshot(self) -> SystemSnapshot:
        """Read all system-wide counters at once."""
        return SystemSnapshot(
            total_cpu_ticks=self.read_total_cpu_ticks(),
            mem_total_kb=self.read_mem_total_kb(),
            loads=self.read_loadavg(),
            uptime=self.read_uptime(),
        )

    # Per-process

    def is_available(self) -> bool:
        """Return True if the process source can be listed at all."""
        try:
            with os.scandir(self.root) as it:
                next(it, None)
        except OSError:
            return False
        return True

    def list_pids(self) -> list[int]:
        """List numeric entries of the proc root. Empty on failure."""
        try:
            with os.scandir(self.root) as it:
                return [int(entry.name) for entry in it if entry.name.isdigit()]
        except OSError as e:
            log.warning("proc_list_failed", root=str(self.root), error=str(e))
            return []

    def read_stat(self, pid: int) -> ProcStat | None:
        text = self._read_text(str(pid), "stat")
        if text is None:
            return None
        return parse_stat_line(text, self.page_size)

    def read_uid(self, pid: int) -> int | None:
        """Real uid of the process.

        Returns None if the status file can't be read (the process is gone).
        A status file without a usable Uid: line reports uid 0.
        """
        text = self._read_text(str(pid), "status")
        if text is None:
            return None
        for line in text.splitlines():
            if line.startswith("Uid:"):
                parts = line.split()
                if len(parts) >= 2 and parts[1].isdigit():
                    return int(parts[1])
                break
        log.debug("proc_uid_malformed", pid=pid)
        return 0

    def read_cmdline(self, pid: int) -> str:
        try:
            data = self.root.joinpath(str(pid), "cmdline").read_bytes()
        except OSError:
            return ""
        return data.replace(b"\x00", b" ").decode(errors="replace").strip()

    def read_process(self, pid: int) -> RawProcess | None:
        """Read one process, or None if it vanished mid-read."""
        stat = self.read_stat(pid)
        if stat is None:
            return None
        uid = self.read_uid(pid)
        if uid is None:
            return None
        return RawProcess(
            pid=pid,
            uid=uid,
            user=uid_to_name(uid),
            comm=stat.comm,
            cmd=self.read_cmdline(pid),
            state=stat.state,
            priority=stat.priority,
            nice=stat.nice,
            threads=stat.threads,
            start_time=stat.start_time,
            vsize_kb=stat.vsize_kb,
            rss_kb=stat.rss_kb,
            cpu_ticks=stat.cpu_ticks,
        )

    def enumerate_processes(self) -> tuple[list[RawProcess], int]:
        """Read every listed process.

        Returns:
            (processes that could be read, number of pids listed)
        """
        pids = self.list_pids()
        processes = []
        for pid in pids:
            raw = self.read_process(pid)
            if raw is not None:
                processes.append(raw)
        return processes, len(pids)
