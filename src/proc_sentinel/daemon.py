"""Background alerting daemon for proc-sentinel."""

import asyncio
import os
import queue
import signal
import subprocess
import sys
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import psutil
import structlog

from proc_sentinel import logging as console
from proc_sentinel.alerts import AlertEvaluator, AlertSink
from proc_sentinel.config import Config, ConfigHolder, ConfigWatcher
from proc_sentinel.engine import Sample, SamplingEngine
from proc_sentinel.export import exporter_from_env
from proc_sentinel.notifications import FanOutSink, LogSink, WebhookSink
from proc_sentinel.procfs import ProcReader, detect_clock_ticks

log = structlog.get_logger()

_DAEMON_MARKERS = ("proc-sentinel", "proc_sentinel")


@dataclass
class DaemonState:
    """Runtime state of the daemon."""

    running: bool = False
    sample_count: int = 0
    alert_count: int = 0
    process_count: int = 0
    last_sample_time: datetime | None = None

    def update_sample(self, process_count: int, alerts: int) -> None:
        """Update state after a sample."""
        self.sample_count += 1
        self.process_count = process_count
        self.alert_count += alerts
        self.last_sample_time = datetime.now()


# ─────────────────────────────────────────────────────────────────────────────
# PID file helpers (shared with the CLI)
# ─────────────────────────────────────────────────────────────────────────────


def read_pid_file(path: Path) -> int | None:
    """Return the PID stored in path, or None if missing or garbage."""
    try:
        return int(path.read_text().strip())
    except (OSError, ValueError):
        return None


def is_daemon_process(pid: int) -> bool:
    """Check that pid is alive and is actually a proc-sentinel process.

    Raises:
        psutil.AccessDenied: If the process exists but can't be inspected.
    """
    try:
        cmdline = " ".join(psutil.Process(pid).cmdline()).lower()
    except psutil.NoSuchProcess:
        return False
    return any(marker in cmdline for marker in _DAEMON_MARKERS)


def daemon_status(config: Config) -> int | None:
    """Return the running daemon's PID, or None if it isn't running."""
    pid = read_pid_file(config.pid_path)
    if pid is None:
        return None
    try:
        return pid if is_daemon_process(pid) else None
    except psutil.AccessDenied:
        # Can't inspect process - assume it's running to be safe
        return pid


def spawn_detached() -> int:
    """Start `proc-sentinel daemon run` in a new session.

    Returns:
        PID of the spawned process.
    """
    proc = subprocess.Popen(
        [sys.executable, "-m", "proc_sentinel.cli", "daemon", "run"],
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
    )
    log.info("daemon_spawned", pid=proc.pid)
    return proc.pid


def stop_daemon(config: Config, timeout: float = 5.0) -> int | None:
    """Send SIGTERM to the running daemon and wait for it to exit.

    Returns:
        The PID that was stopped, or None if no daemon was running.
    """
    pid = daemon_status(config)
    if pid is None:
        config.pid_path.unlink(missing_ok=True)
        return None

    try:
        proc = psutil.Process(pid)
        proc.terminate()
        proc.wait(timeout=timeout)
    except psutil.NoSuchProcess:
        pass
    except psutil.TimeoutExpired:
        log.warning("daemon_stop_timeout", pid=pid, timeout=timeout)

    config.pid_path.unlink(missing_ok=True)
    log.info("daemon_stop_requested", pid=pid)
    return pid


# ─────────────────────────────────────────────────────────────────────────────
# Daemon
# ─────────────────────────────────────────────────────────────────────────────


class Daemon:
    """Main daemon class orchestrating sampling and alerting.

    Threads:
    - sampling engine: scans /proc and puts Samples on a FIFO queue
    - config watcher: swaps in reloaded config snapshots
    - event loop (this class): drains the queue into the alert evaluator
    """

    def __init__(
        self,
        config: Config,
        config_path: Path | None = None,
        sink: AlertSink | None = None,
        reader: ProcReader | None = None,
    ):
        self.config = config
        self.config_path = config_path or config.config_path
        self.state = DaemonState()
        self.holder = ConfigHolder(config)

        self.reader = reader or ProcReader()
        self.samples: queue.Queue[Sample] = queue.Queue()
        hz = config.sampling.clock_ticks or detect_clock_ticks()
        self.engine = SamplingEngine(
            self.reader,
            self.samples.put,
            interval=config.sampling.daemon_interval,
            exporter=exporter_from_env(config.sampling.export_csv, hz),
        )

        self._webhook_sink: WebhookSink | None = None
        if sink is None:
            self._webhook_sink = WebhookSink(self.holder.get)
            sink = FanOutSink(LogSink(), self._webhook_sink)
        self.evaluator = AlertEvaluator(self.holder.get, sink)

        self.watcher = ConfigWatcher(self.holder, self.config_path)
        self._seen_reloads = 0
        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """Start the daemon."""
        from importlib.metadata import version

        log.info("daemon_starting", version=version("proc-sentinel"))

        alerts = self.config.alerts
        log.info(
            "daemon_config",
            cpu_threshold=alerts.cpu_threshold,
            mem_threshold=alerts.mem_threshold,
            active_webhook=alerts.active_webhook,
            interval=self.config.sampling.daemon_interval,
        )
        console.config_summary(alerts.cpu_threshold, alerts.mem_threshold, alerts.active_webhook)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: self._handle_signal(s))

        if self._check_already_running():
            log.error("daemon_already_running")
            raise RuntimeError("Daemon is already running")

        self._write_pid_file()

        # Fatal if /proc can't be listed at all
        self.engine.start()
        self.watcher.start()

        self.state.running = True
        log.info("daemon_started")
        console.daemon_started()

        await self._main_loop()

    async def stop(self) -> None:
        """Stop the daemon gracefully."""
        log.info("daemon_stopping")
        console.daemon_stopping()
        self.state.running = False

        # Engine first so nothing is published after the consumer stops
        self.engine.stop()
        self.watcher.stop()
        if self._webhook_sink is not None:
            self._webhook_sink.close()

        self._remove_pid_file()

        log.info("daemon_stopped", samples=self.state.sample_count, alerts=self.state.alert_count)
        console.daemon_stopped()

    def _handle_signal(self, sig: signal.Signals) -> None:
        """Handle shutdown signals."""
        log.info("signal_received", signal=sig.name)
        console.signal_received(sig.name)
        self._shutdown_event.set()

    def _write_pid_file(self) -> None:
        """Write PID file."""
        self.config.pid_path.parent.mkdir(parents=True, exist_ok=True)
        self.config.pid_path.write_text(str(os.getpid()))
        log.debug("pid_file_written", path=str(self.config.pid_path))

    def _remove_pid_file(self) -> None:
        """Remove PID file if it still belongs to this process."""
        if read_pid_file(self.config.pid_path) == os.getpid():
            self.config.pid_path.unlink(missing_ok=True)
            log.debug("pid_file_removed")

    def _check_already_running(self) -> bool:
        """Check if daemon is already running.

        Verifies not just that a process with the PID exists, but that it's
        actually a proc-sentinel daemon. This prevents false positives after
        a reboot when a different process may have the same PID.
        """
        if not self.config.pid_path.exists():
            return False

        pid = read_pid_file(self.config.pid_path)
        if pid is None:
            log.warning("pid_file_invalid", reason="not a number")
            self.config.pid_path.unlink(missing_ok=True)
            return False

        if pid == os.getpid():
            return False

        try:
            if is_daemon_process(pid):
                log.info("daemon_already_running_verified", pid=pid)
                console.already_running(pid)
                return True
        except psutil.AccessDenied:
            log.warning("pid_check_access_denied", pid=pid)
            return True

        log.warning("pid_file_stale", pid=pid)
        self.config.pid_path.unlink(missing_ok=True)
        return False

    def process_sample(self, sample: Sample) -> int:
        """Feed one sample to the alert evaluator.

        Returns:
            Number of alerts emitted.
        """
        events = self.evaluator.evaluate(sample.records)
        self.evaluator.forget(r.pid for r in sample.records)
        self.state.update_sample(len(sample.records), len(events))

        if self.watcher.reload_count != self._seen_reloads:
            self._seen_reloads = self.watcher.reload_count
            current = self.holder.get().alerts
            console.config_reloaded(current.cpu_threshold, current.mem_threshold)

        heartbeat_every = self.holder.get().system.heartbeat_samples
        if heartbeat_every > 0 and self.state.sample_count % heartbeat_every == 0:
            rss_mb = psutil.Process().memory_info().rss / (1024 * 1024)
            log.info(
                "heartbeat",
                samples=self.state.sample_count,
                processes=self.state.process_count,
                alerts=self.state.alert_count,
                rss_mb=round(rss_mb, 1),
            )
            console.heartbeat(
                self.state.sample_count,
                self.state.process_count,
                self.state.alert_count,
                rss_mb,
            )
        return len(events)

    async def _main_loop(self) -> None:
        """Drain published samples until shutdown.

        Samples are consumed strictly in the order the engine produced them.
        The blocking queue read runs in a worker thread with a short timeout
        so shutdown is noticed promptly.
        """
        while not self._shutdown_event.is_set():
            try:
                sample = await asyncio.to_thread(self.samples.get, True, 0.5)
            except queue.Empty:
                continue

            try:
                self.process_sample(sample)
            except Exception as e:
                log.error("sample_failed", error=str(e))
                console.sample_failed(str(e))


async def run_daemon(config: Config | None = None) -> None:
    """Run the daemon until shutdown.

    Args:
        config: Optional config, loads (or creates) the config file if not provided
    """
    if config is None:
        config = Config.load_or_default()

    console.configure(config)

    daemon = Daemon(config)

    try:
        await daemon.start()
    except Exception as e:
        log.exception("daemon_crashed", error=str(e))
        raise
    finally:
        await daemon.stop()


def wait_for_pid_file(config: Config, timeout: float = 3.0) -> int | None:
    """Poll for the PID file a freshly spawned daemon writes."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        pid = read_pid_file(config.pid_path)
        if pid is not None:
            return pid
        time.sleep(0.1)
    return None
