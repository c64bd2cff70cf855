"""Ranking and filtering of process records.

Works on anything shaped like a process record (ProcessRecord or
ProcessSnapshot) and always returns a new list.
"""

from collections.abc import Iterable
from enum import Enum
from typing import Any, Callable, TypeVar

T = TypeVar("T")


class SortColumn(Enum):
    """Selectable sort columns."""

    CPU = "cpu"
    MEM = "mem"
    PID = "pid"
    USER = "user"
    VSIZE = "vsize"
    RSS = "rss"
    TIME = "time"

    @property
    def label(self) -> str:
        """Column header this key sorts."""
        return _COLUMN_LABELS[self]


_COLUMN_LABELS = {
    SortColumn.CPU: "%CPU",
    SortColumn.MEM: "%MEM",
    SortColumn.PID: "PID",
    SortColumn.USER: "USER",
    SortColumn.VSIZE: "VSIZE",
    SortColumn.RSS: "RSS",
    SortColumn.TIME: "TIME+",
}

_SINGLE_KEYS: dict[SortColumn, Callable[[Any], Any]] = {
    SortColumn.MEM: lambda r: r.mem_percent,
    SortColumn.PID: lambda r: r.pid,
    SortColumn.USER: lambda r: r.user.lower(),
    SortColumn.VSIZE: lambda r: r.vsize_kb,
    SortColumn.RSS: lambda r: r.rss_kb,
    SortColumn.TIME: lambda r: r.cpu_ticks,
}


def sort_by_cpu(records: Iterable[T], descending: bool = True) -> list[T]:
    """Order by alive first, then CPU%, then RSS descending, then pid ascending.

    Implemented as successive stable sorts from the least significant key.
    """
    ordered = sorted(records, key=lambda r: r.pid)
    ordered.sort(key=lambda r: r.rss_kb, reverse=True)
    ordered.sort(key=lambda r: r.cpu_percent, reverse=descending)
    ordered.sort(key=lambda r: not r.alive)
    return ordered


class Sorter:
    """Active sort column and direction."""

    def __init__(self, column: SortColumn = SortColumn.CPU, descending: bool = True):
        self.column = column
        self.descending = descending

    def __repr__(self) -> str:
        return f"Sorter(column={self.column.name}, descending={self.descending})"

    def toggle(self, column: SortColumn) -> None:
        """Select a column; selecting the active one flips direction."""
        if column == self.column:
            self.descending = not self.descending
        else:
            self.column = column
            self.descending = True

    def sort(self, records: Iterable[T]) -> list[T]:
        """Return a new list ordered by the active column."""
        if self.column == SortColumn.CPU:
            return sort_by_cpu(records, self.descending)
        # pid pre-sort makes equal keys deterministic
        ordered = sorted(records, key=lambda r: r.pid)
        ordered.sort(key=_SINGLE_KEYS[self.column], reverse=self.descending)
        return ordered

    def indicator(self, column: SortColumn) -> str:
        """Arrow for a column header: '↓', '↑' or '' if inactive."""
        if column != self.column:
            return ""
        return "↓" if self.descending else "↑"


def filter_records(records: Iterable[T], text: str) -> list[T]:
    """Keep alive records whose command, user or name contains text.

    Matching is case-insensitive. Empty text keeps every alive record.
    """
    needle = text.strip().lower()
    result = []
    for r in records:
        if not r.alive:
            continue
        if not needle:
            result.append(r)
            continue
        if needle in r.cmd.lower() or needle in r.user.lower() or needle in r.comm.lower():
            result.append(r)
    return result
