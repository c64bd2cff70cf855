"""Formatting utilities for consistent output across CLI and TUI."""

PROGRAM_WIDTH = 15
ARGS_WIDTH = 45


def format_time_ticks(ticks: int, hz: int) -> str:
    """Format cumulative CPU ticks as top-style TIME+.

    Args:
        ticks: Cumulative user + system ticks
        hz: Clock ticks per second

    Returns:
        "mm:ss.cc" below one hour, "XhYYmZZs" from one hour up.
    """
    hz = hz if hz > 0 else 100
    total_cs = ticks * 100 // hz

    hours = total_cs // 360000
    minutes = (total_cs % 360000) // 6000
    seconds = (total_cs % 6000) // 100
    centis = total_cs % 100

    if hours > 0:
        return f"{hours}h{minutes:02d}m{seconds:02d}s"
    return f"{minutes:02d}:{seconds:02d}.{centis:02d}"


def format_kb(kb: int) -> str:
    """Format a size in KB as human-readable string."""
    if kb < 1024:
        return f"{kb}K"
    elif kb < 1024 * 1024:
        return f"{kb / 1024:.1f}M"
    else:
        return f"{kb / (1024 * 1024):.1f}G"


def format_uptime(seconds: float) -> str:
    """Format uptime as "Nd HH:MM" or "HH:MM:SS" under a day."""
    total = int(seconds)
    days, rem = divmod(total, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, secs = divmod(rem, 60)
    if days > 0:
        return f"{days}d {hours:02d}:{minutes:02d}"
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def format_loads(loads: tuple[float, float, float]) -> str:
    return " ".join(f"{v:.2f}" for v in loads)


def _truncate(text: str, width: int) -> str:
    if len(text) > width:
        return text[: width - 3] + "..."
    return text


def program_and_args(cmd: str, comm: str) -> tuple[str, str]:
    """Split a command line into display program and arguments.

    The program is the basename of argv[0]. Processes without a command
    line (kernel threads, zombies) show as "[comm]".

    Returns:
        (program, args), truncated to the table's column widths.
    """
    if cmd:
        argv0, _, args = cmd.partition(" ")
        program = argv0.rsplit("/", 1)[-1]
    else:
        program = f"[{comm}]"
        args = ""
    return _truncate(program, PROGRAM_WIDTH), _truncate(args, ARGS_WIDTH)
