"""One-shot process control actions: signals and niceness.

Every failure is raised as ControlError carrying a message fit to show the
user as-is.
"""

import signal

import psutil
import structlog

log = structlog.get_logger()

NICE_MIN = -20
NICE_MAX = 19


class ControlError(Exception):
    """A control action could not be performed."""


def _process(pid: int) -> psutil.Process:
    if pid <= 0:
        raise ControlError(f"Invalid PID: {pid}")
    try:
        return psutil.Process(pid)
    except psutil.NoSuchProcess as e:
        raise ControlError(f"Process {pid} not found") from e


def send_signal(pid: int, sig: signal.Signals) -> None:
    """Send a signal to a process."""
    proc = _process(pid)
    try:
        proc.send_signal(sig)
    except psutil.NoSuchProcess as e:
        raise ControlError(f"Process {pid} not found") from e
    except psutil.AccessDenied as e:
        raise ControlError(f"Permission denied sending {sig.name} to PID {pid}") from e
    log.info("signal_sent", pid=pid, signal=sig.name)


def terminate(pid: int) -> None:
    """Ask a process to exit (SIGTERM)."""
    send_signal(pid, signal.SIGTERM)


def force_kill(pid: int) -> None:
    """Kill a process unconditionally (SIGKILL)."""
    send_signal(pid, signal.SIGKILL)


def get_niceness(pid: int) -> int:
    """Return a process's current niceness."""
    proc = _process(pid)
    try:
        return proc.nice()
    except psutil.NoSuchProcess as e:
        raise ControlError(f"Process {pid} not found") from e
    except psutil.AccessDenied as e:
        raise ControlError(f"Permission denied reading priority of PID {pid}") from e


def set_niceness(pid: int, value: int) -> None:
    """Set a process's niceness.

    Raises:
        ControlError: If value is outside [-20, 19] or the OS refuses.
    """
    if not NICE_MIN <= value <= NICE_MAX:
        raise ControlError(f"Niceness must be between {NICE_MIN} and {NICE_MAX}, got {value}")
    proc = _process(pid)
    try:
        proc.nice(value)
    except psutil.NoSuchProcess as e:
        raise ControlError(f"Process {pid} not found") from e
    except psutil.AccessDenied as e:
        raise ControlError(f"Permission denied setting priority of PID {pid} to {value}") from e
    log.info("niceness_set", pid=pid, nice=value)


def clamp_niceness(value: int) -> int:
    return max(NICE_MIN, min(NICE_MAX, value))


def adjust_niceness(pid: int, delta: int) -> int:
    """Shift niceness by delta, clamped to the valid range.

    Returns:
        The niceness that was applied.
    """
    target = clamp_niceness(get_niceness(pid) + delta)
    set_niceness(pid, target)
    return target
