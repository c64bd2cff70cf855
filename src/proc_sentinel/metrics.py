"""Normalized CPU and memory percentages from cumulative counters."""

from collections.abc import Iterable

from proc_sentinel.collector import ProcessRecord


def system_delta(prev_total: int, cur_total: int) -> int:
    """Whole-system tick delta, floored at 1.

    The floor covers samples taken faster than the tick counter advances
    and counters that appear to go backwards.
    """
    return max(1, cur_total - prev_total)


def compute_metrics(records: Iterable[ProcessRecord], sys_delta: int, mem_total_kb: int) -> None:
    """Update cpu_percent and mem_percent for every alive record in place.

    All records share the same sys_delta so their percentages are
    comparable within a cycle.

    Args:
        records: Process table records (dead ones are skipped)
        sys_delta: Output of system_delta() for this cycle
        mem_total_kb: Total physical memory; 0 leaves mem_percent unchanged
    """
    sys_delta = max(1, sys_delta)
    for r in records:
        if not r.alive:
            continue

        if r.prev_cpu_ticks == 0:
            # First observation: no meaningful baseline yet
            r.cpu_percent = 0.0
        else:
            proc_delta = max(0, r.cur_cpu_ticks - r.prev_cpu_ticks)
            r.cpu_percent = proc_delta * 100.0 / sys_delta

        if mem_total_kb > 0:
            r.mem_percent = r.rss_kb * 100.0 / mem_total_kb

        r.prev_cpu_ticks = r.cur_cpu_ticks
