"""Tests for the /proc snapshot reader."""

from pathlib import Path
from unittest.mock import patch

import pytest

from proc_sentinel.procfs import (
    DEFAULT_CLOCK_TICKS,
    ProcReader,
    detect_clock_ticks,
    parse_stat_line,
    uid_to_name,
)
from tests.conftest import PAGE_SIZE, FakeProc


class TestSystemCounters:
    """System-wide reads."""

    def test_total_cpu_ticks_sums_all_categories(self, fake_proc: FakeProc, reader: ProcReader):
        """Only the aggregate 'cpu' line is summed."""
        fake_proc.set_system(total_ticks=5000)
        assert reader.read_total_cpu_ticks() == 5000

    def test_mem_total(self, fake_proc: FakeProc, reader: ProcReader):
        fake_proc.set_system(total_ticks=1, mem_total_kb=8_000_000)
        assert reader.read_mem_total_kb() == 8_000_000

    def test_loadavg_and_uptime(self, fake_proc: FakeProc, reader: ProcReader):
        fake_proc.set_system(total_ticks=1, loads=(1.5, 0.75, 0.25), uptime=99.5)
        assert reader.read_loadavg() == (1.5, 0.75, 0.25)
        assert reader.read_uptime() == 99.5

    def test_snapshot_bundles_everything(self, fake_proc: FakeProc, reader: ProcReader):
        fake_proc.set_system(total_ticks=400, mem_total_kb=1000, loads=(1.0, 2.0, 3.0), uptime=5.0)
        snap = reader.read_system_snapshot()
        assert snap.total_cpu_ticks == 400
        assert snap.mem_total_kb == 1000
        assert snap.loads == (1.0, 2.0, 3.0)
        assert snap.uptime == 5.0

    def test_unreadable_source_returns_zeros(self, tmp_path: Path):
        """Missing files degrade to zeros instead of raising."""
        reader = ProcReader(root=tmp_path / "missing", page_size=PAGE_SIZE)
        snap = reader.read_system_snapshot()
        assert snap.total_cpu_ticks == 0
        assert snap.mem_total_kb == 0
        assert snap.loads == (0.0, 0.0, 0.0)
        assert snap.uptime == 0.0
        assert reader.list_pids() == []
        assert reader.is_available() is False

    def test_garbage_loadavg(self, fake_proc: FakeProc, reader: ProcReader):
        (fake_proc.root / "loadavg").write_text("not numbers\n")
        assert reader.read_loadavg() == (0.0, 0.0, 0.0)


class TestParseStatLine:
    """Parsing of /proc/<pid>/stat."""

    def test_comm_with_spaces_and_parens(self):
        """Program name spans from the first '(' to the LAST ')'."""
        fields = " ".join(["0"] * 10)
        line = f"42 (evil) name (x)) R 1 1 1 0 -1 0 0 0 0 0 7 3 0 0 20 -5 4 0 555 2048 10 {fields}"
        stat = parse_stat_line(line, page_size=4096)

        assert stat is not None
        assert stat.comm == "evil) name (x)"
        assert stat.state == "R"
        assert stat.utime == 7
        assert stat.stime == 3
        assert stat.cpu_ticks == 10
        assert stat.priority == 20
        assert stat.nice == -5
        assert stat.threads == 4
        assert stat.start_time == 555
        assert stat.vsize_kb == 2  # bytes // 1024
        assert stat.rss_kb == 40  # pages * 4

    def test_truncated_line_is_not_present(self):
        assert parse_stat_line("42 (short) S 1 2 3", page_size=4096) is None

    @pytest.mark.parametrize("extra, present", [(1, False), (2, True)])
    def test_minimum_field_count(self, extra: int, present: bool):
        """At least 24 fields must follow the program name."""
        base = "S 1 1 1 0 -1 0 0 0 0 0 7 3 0 0 20 0 1 0 5 4096 2"
        line = f"9 (x) {base} " + " ".join(["0"] * extra)
        assert (parse_stat_line(line, page_size=4096) is not None) is present

    def test_missing_parens(self):
        assert parse_stat_line("42 short S 1 2 3", page_size=4096) is None

    def test_non_numeric_field(self):
        fields = " ".join(["0"] * 10)
        line = f"1 (x) S 1 1 1 0 -1 0 0 0 0 0 abc 3 0 0 20 0 1 0 5 0 0 {fields}"
        assert parse_stat_line(line, page_size=4096) is None


class TestProcesses:
    """Per-process reads."""

    def test_read_process(self, fake_proc: FakeProc, reader: ProcReader):
        fake_proc.add_process(
            100,
            comm="nginx",
            state="R",
            utime=50,
            stime=25,
            start_time=777,
            uid=0,
            cmdline="/usr/sbin/nginx -g daemon off;",
            nice=5,
        )
        raw = reader.read_process(100)

        assert raw is not None
        assert raw.pid == 100
        assert raw.comm == "nginx"
        assert raw.state == "R"
        assert raw.cpu_ticks == 75
        assert raw.start_time == 777
        assert raw.nice == 5
        assert raw.uid == 0
        assert raw.user == uid_to_name(0)
        assert raw.cmd == "/usr/sbin/nginx -g daemon off;"
        assert raw.vsize_kb == 10 * 1024
        assert raw.rss_kb == 256 * (PAGE_SIZE // 1024)

    def test_vanished_process_is_none(self, reader: ProcReader):
        """A pid whose directory is gone reports 'not present'."""
        assert reader.read_process(99999) is None

    def test_empty_cmdline(self, fake_proc: FakeProc, reader: ProcReader):
        """Kernel threads have no command line."""
        fake_proc.add_process(2, comm="kthreadd", cmdline="")
        (fake_proc.root / "2" / "cmdline").write_bytes(b"")
        assert reader.read_cmdline(2) == ""

    def test_cmdline_nul_separators(self, fake_proc: FakeProc, reader: ProcReader):
        fake_proc.add_process(5)
        (fake_proc.root / "5" / "cmdline").write_bytes(b"python3\x00-m\x00http.server\x00")
        assert reader.read_cmdline(5) == "python3 -m http.server"

    def test_list_pids_skips_non_numeric(self, fake_proc: FakeProc, reader: ProcReader):
        fake_proc.add_process(1)
        fake_proc.add_process(20)
        (fake_proc.root / "self").mkdir()
        assert sorted(reader.list_pids()) == [1, 20]

    def test_enumerate_counts_listed_pids(self, fake_proc: FakeProc, reader: ProcReader):
        """A pid that can't be read still counts as observed but yields no record."""
        fake_proc.add_process(1)
        fake_proc.add_process(2)
        (fake_proc.root / "3").mkdir()  # exited between listing and reading

        processes, total = reader.enumerate_processes()

        assert total == 3
        assert sorted(p.pid for p in processes) == [1, 2]

    def test_missing_status_means_vanished(self, fake_proc: FakeProc, reader: ProcReader):
        """status is world-readable, so failing to read it means the process exited."""
        fake_proc.add_process(77)
        (fake_proc.root / "77" / "status").unlink()

        assert reader.read_uid(77) is None
        assert reader.read_process(77) is None

    def test_malformed_uid_line_defaults_uid(self, fake_proc: FakeProc, reader: ProcReader):
        fake_proc.add_process(8)
        (fake_proc.root / "8" / "status").write_text("Name:\tx\nUid:\tgarbage\n")

        raw = reader.read_process(8)

        assert raw is not None
        assert raw.uid == 0


class TestHelpers:
    def test_uid_to_name_falls_back_to_number(self):
        assert uid_to_name(4242999) == "4242999"

    def test_detect_clock_ticks(self):
        assert detect_clock_ticks() > 0

    def test_detect_clock_ticks_fallback(self):
        with patch("proc_sentinel.procfs.os.sysconf", side_effect=ValueError("nope")):
            assert detect_clock_ticks() == DEFAULT_CLOCK_TICKS
