"""CLI commands for proc-sentinel."""

import click

SORT_CHOICES = ["cpu", "mem", "pid", "user", "vsize", "rss", "time"]


@click.group()
@click.version_option(package_name="proc-sentinel")
def main() -> None:
    """Watch Linux processes and alert when they run hot."""
    pass


@main.command()
@click.option("--interval", "-i", type=float, default=None, help="Seconds between samples")
@click.option("--hz", type=int, default=None, help="Clock ticks per second (default: detect)")
def tui(interval: float | None, hz: int | None) -> None:
    """Launch interactive dashboard."""
    from dataclasses import replace

    from proc_sentinel import logging as console
    from proc_sentinel.config import Config
    from proc_sentinel.tui.app import run_tui

    config = Config.load_or_default()
    if interval is not None or hz is not None:
        sampling = replace(
            config.sampling,
            interval=interval if interval is not None else config.sampling.interval,
            clock_ticks=hz if hz is not None else config.sampling.clock_ticks,
        )
        config = replace(config, sampling=sampling)
    # structlog events go to the log file, not the dashboard terminal
    console.configure(config, source="tui")
    run_tui(config)


@main.command()
@click.option("--limit", "-n", default=20, help="Number of processes to show")
@click.option(
    "--sort", "sort_key", type=click.Choice(SORT_CHOICES), default="cpu", help="Sort column"
)
@click.option("--asc", is_flag=True, help="Sort ascending")
@click.option("--filter", "filter_text", default="", help="Only show matching processes")
@click.option("--delay", default=1.0, help="Seconds between the two samples")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
def snapshot(
    limit: int, sort_key: str, asc: bool, filter_text: str, delay: float, as_json: bool
) -> None:
    """Print one ranked process table and exit.

    Takes two samples DELAY seconds apart so CPU percentages are meaningful.
    """
    import json
    import time

    from proc_sentinel import logging as console
    from proc_sentinel.config import Config
    from proc_sentinel.engine import SamplingEngine
    from proc_sentinel.formatting import format_kb, format_loads, format_time_ticks, format_uptime
    from proc_sentinel.procfs import ProcReader, detect_clock_ticks
    from proc_sentinel.sorter import SortColumn, Sorter, filter_records

    try:
        config = Config.load()
    except ValueError:
        config = Config()
    # structlog events go to the log file; stdout carries only the table
    console.configure(config, source="snapshot")
    reader = ProcReader()
    if not reader.is_available():
        click.echo(f"Error: cannot enumerate processes under {reader.root}", err=True)
        raise SystemExit(1)

    samples = []
    engine = SamplingEngine(reader, samples.append)
    engine.prime()
    engine.tick()
    time.sleep(delay)
    sample = engine.tick()

    sorter = Sorter(SortColumn(sort_key), descending=not asc)
    rows = sorter.sort(filter_records(sample.records, filter_text))[:limit]

    if as_json:
        click.echo(
            json.dumps(
                {
                    "total": sample.total,
                    "running": sample.running,
                    "loads": list(sample.loads),
                    "uptime": sample.uptime,
                    "processes": [r.to_dict() for r in rows],
                },
                indent=2,
            )
        )
        return

    hz = config.sampling.clock_ticks or detect_clock_ticks()
    click.echo(
        f"Tasks: {sample.total} total, {sample.running} running | "
        f"Load: {format_loads(sample.loads)} | Uptime: {format_uptime(sample.uptime)}"
    )
    click.echo(
        f"{'PID':>7}  {'USER':10}  {'S':1}  {'%CPU':>5}  {'%MEM':>5}  "
        f"{'VSIZE':>7}  {'RSS':>7}  {'TIME+':>9}  COMMAND"
    )
    click.echo("-" * 80)
    for r in rows:
        click.echo(
            f"{r.pid:>7}  {r.user[:10]:10}  {r.state:1}  {r.cpu_percent:>5.1f}  "
            f"{r.mem_percent:>5.1f}  {format_kb(r.vsize_kb):>7}  {format_kb(r.rss_kb):>7}  "
            f"{format_time_ticks(r.cpu_ticks, hz):>9}  {r.display_command[:60]}"
        )


@main.command("kill")
@click.argument("pid", type=int)
@click.option("--force", "-f", is_flag=True, help="Send SIGKILL instead of SIGTERM")
def kill_cmd(pid: int, force: bool) -> None:
    """Send SIGTERM (or SIGKILL) to a process."""
    from proc_sentinel.control import ControlError, force_kill, terminate

    try:
        if force:
            force_kill(pid)
        else:
            terminate(pid)
    except ControlError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    click.echo(f"Sent {'SIGKILL' if force else 'SIGTERM'} to PID {pid}")


@main.command()
@click.argument("pid", type=int)
@click.argument("value", type=int)
def renice(pid: int, value: int) -> None:
    """Set a process's niceness (-20..19)."""
    from proc_sentinel.control import ControlError, set_niceness

    try:
        set_niceness(pid, value)
    except ControlError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    click.echo(f"PID {pid} niceness set to {value}")


# ─────────────────────────────────────────────────────────────────────────────
# Daemon lifecycle
# ─────────────────────────────────────────────────────────────────────────────


@main.group()
def daemon() -> None:
    """Manage the background alerting daemon."""
    pass


@daemon.command("run")
def daemon_run() -> None:
    """Run the daemon in the foreground."""
    import asyncio

    from proc_sentinel.daemon import run_daemon
    from proc_sentinel.engine import SourceUnavailableError

    try:
        asyncio.run(run_daemon())
    except (RuntimeError, SourceUnavailableError) as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)


@daemon.command("start")
def daemon_start() -> None:
    """Start the daemon in the background."""
    from proc_sentinel.config import Config
    from proc_sentinel.daemon import daemon_status, spawn_detached, wait_for_pid_file

    config = Config.load_or_default()
    running = daemon_status(config)
    if running is not None:
        click.echo(f"Daemon already running (PID {running})")
        return

    pid = spawn_detached()
    if wait_for_pid_file(config) is None:
        click.echo(f"Daemon spawned (PID {pid}) but no PID file yet; check the log:", err=True)
        click.echo(f"  {config.log_path}", err=True)
        return
    click.echo(f"Daemon started (PID {pid})")


@daemon.command("stop")
def daemon_stop() -> None:
    """Stop the background daemon."""
    from proc_sentinel.config import Config
    from proc_sentinel.daemon import stop_daemon

    config = Config()
    pid = stop_daemon(config)
    if pid is None:
        click.echo("Daemon not running")
        return
    click.echo(f"Daemon stopped (PID {pid})")


@daemon.command("status")
def daemon_status_cmd() -> None:
    """Show whether the daemon is running."""
    from proc_sentinel.config import Config
    from proc_sentinel.daemon import daemon_status

    config = Config()
    pid = daemon_status(config)
    if pid is None:
        click.echo("Daemon: stopped")
    else:
        click.echo(f"Daemon: running (PID {pid})")
    click.echo(f"Log: {config.log_path}")


# ─────────────────────────────────────────────────────────────────────────────
# Configuration
# ─────────────────────────────────────────────────────────────────────────────


@main.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
def config_show() -> None:
    """Display current configuration."""
    from proc_sentinel.config import Config

    try:
        cfg = Config.load()
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    click.echo(f"Config file: {cfg.config_path}")
    click.echo(f"Exists: {cfg.config_path.exists()}")
    click.echo()
    click.echo("[alerts]")
    click.echo(f"  cpu_threshold = {cfg.alerts.cpu_threshold}")
    click.echo(f"  mem_threshold = {cfg.alerts.mem_threshold}")
    click.echo(f"  active_webhook = {cfg.alerts.active_webhook!r}")
    click.echo(f"  cooldown_seconds = {cfg.alerts.cooldown_seconds}")
    click.echo()
    click.echo("[sampling]")
    click.echo(f"  interval = {cfg.sampling.interval}")
    click.echo(f"  daemon_interval = {cfg.sampling.daemon_interval}")
    click.echo(f"  clock_ticks = {cfg.sampling.clock_ticks}")
    click.echo()
    click.echo("[webhooks]")
    for hook in cfg.webhooks:
        marker = "*" if hook.name == cfg.alerts.active_webhook else " "
        click.echo(f" {marker}{hook.name} = {hook.url}")


@config.command("path")
def config_path() -> None:
    """Print the config file path."""
    from proc_sentinel.config import Config

    click.echo(Config().config_path)


@config.command("edit")
def config_edit() -> None:
    """Open config file in editor."""
    import os
    import subprocess

    from proc_sentinel.config import Config

    cfg = Config.load_or_default()

    # Create config if it doesn't exist
    if not cfg.config_path.exists():
        cfg.save()
        click.echo(f"Created default config at {cfg.config_path}")

    editor = os.environ.get("EDITOR", "nano")
    subprocess.run([editor, str(cfg.config_path)])


@config.command("reset")
@click.confirmation_option(prompt="Reset config to defaults?")
def config_reset() -> None:
    """Reset configuration to defaults."""
    from proc_sentinel.config import Config

    cfg = Config()
    cfg.save()
    click.echo(f"Config reset to defaults at {cfg.config_path}")


@config.command("webhook")
@click.argument("name")
@click.argument("url", required=False)
@click.option("--remove", is_flag=True, help="Delete the webhook")
@click.option("--activate", is_flag=True, help="Make it the active alert destination")
def config_webhook(name: str, url: str | None, remove: bool, activate: bool) -> None:
    """Add, remove or activate a named webhook."""
    from proc_sentinel.config import Config

    cfg = Config.load_or_default()
    try:
        if remove:
            cfg = cfg.without_webhook(name)
        else:
            if url:
                cfg = cfg.with_webhook(name, url)
            if activate:
                cfg = cfg.with_active_webhook(name)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    cfg.save()
    click.echo(f"Saved {cfg.config_path}")


if __name__ == "__main__":
    main()
