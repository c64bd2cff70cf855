"""Append-only CSV export of published samples."""

import csv
import os
from pathlib import Path

import structlog

from proc_sentinel.config import ENV_EXPORT_CSV
from proc_sentinel.engine import Sample
from proc_sentinel.formatting import format_time_ticks

log = structlog.get_logger()

CSV_HEADER = [
    "timestamp_ms",
    "pid",
    "user",
    "comm",
    "cpu_pct",
    "mem_pct",
    "vsize_kb",
    "rss_kb",
    "state",
    "threads",
    "time_plus",
    "cmdline",
]


class CsvExporter:
    """Writes one row per alive process for every sample.

    The header is written only when the file is new or empty. Write errors
    are logged; the sampling loop never sees them.
    """

    def __init__(self, path: Path, hz: int):
        self.path = Path(path)
        self.hz = hz
        self.rows_written = 0

    def _ensure_header(self) -> None:
        if not self.path.exists() or self.path.stat().st_size == 0:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", newline="") as f:
                csv.writer(f).writerow(CSV_HEADER)

    def write(self, sample: Sample) -> None:
        """Append the sample's records."""
        timestamp_ms = int(sample.timestamp * 1000)
        try:
            self._ensure_header()
            with open(self.path, "a", newline="") as f:
                writer = csv.writer(f)
                for r in sample.records:
                    if not r.alive:
                        continue
                    writer.writerow(
                        [
                            timestamp_ms,
                            r.pid,
                            r.user,
                            r.comm,
                            f"{r.cpu_percent:.1f}",
                            f"{r.mem_percent:.1f}",
                            r.vsize_kb,
                            r.rss_kb,
                            r.state,
                            r.threads,
                            format_time_ticks(r.cpu_ticks, self.hz),
                            r.display_command,
                        ]
                    )
                    self.rows_written += 1
        except OSError as e:
            log.warning("csv_export_failed", path=str(self.path), error=str(e))


def exporter_from_env(configured: str, hz: int) -> CsvExporter | None:
    """Build an exporter from the environment variable or config value.

    The environment variable wins over the config file.
    """
    path = os.environ.get(ENV_EXPORT_CSV) or configured
    if not path:
        return None
    log.info("csv_export_enabled", path=path)
    return CsvExporter(Path(path).expanduser(), hz)
