"""Configuration system for proc-sentinel.

Config objects are immutable snapshots. Changes produce a new Config via the
with_* helpers; the daemon publishes a new snapshot through ConfigHolder so
readers always see either the old or the new config, never a mix.
"""

import tempfile
import threading
from dataclasses import dataclass, field, fields, is_dataclass, replace
from pathlib import Path

import pyinotify
import structlog
import tomlkit

log = structlog.get_logger()

ENV_EXPORT_CSV = "PROC_SENTINEL_EXPORT_CSV"


@dataclass(frozen=True)
class AlertsConfig:
    """Threshold alerting configuration."""

    cpu_threshold: float = 80.0  # Alert when a process reaches this %CPU
    mem_threshold: float = 80.0  # Alert when a process reaches this %MEM
    active_webhook: str = ""  # Name of the entry in [webhooks] to post to
    cooldown_seconds: float = 60.0  # Min seconds between alerts for one PID


@dataclass(frozen=True)
class SamplingConfig:
    """Sampling loop configuration."""

    interval: float = 1.5  # Seconds between samples in the dashboard
    daemon_interval: float = 1.0  # Seconds between samples in daemon mode
    clock_ticks: int = 0  # Ticks per second for TIME+ (0 = detect)
    max_rows: int = 100  # Rows rendered in the dashboard table
    export_csv: str = ""  # Append every sample to this CSV file (empty = off)


@dataclass(frozen=True)
class SystemConfig:
    """Daemon housekeeping configuration."""

    heartbeat_samples: int = 60  # Log heartbeat every N samples
    webhook_timeout: float = 5.0  # Seconds before a webhook POST gives up
    # Log file rotation
    log_max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    log_backup_count: int = 3  # Number of backup log files to keep


@dataclass(frozen=True)
class Webhook:
    """A named alert destination."""

    name: str
    url: str


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table recursively."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


@dataclass(frozen=True)
class Config:
    """Main configuration container."""

    alerts: AlertsConfig = field(default_factory=AlertsConfig)
    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    system: SystemConfig = field(default_factory=SystemConfig)
    webhooks: tuple[Webhook, ...] = ()

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "proc-sentinel"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for logs and other expendable persistent state."""
        return Path.home() / ".local" / "state" / "proc-sentinel"

    @property
    def runtime_dir(self) -> Path:
        """Runtime directory for ephemeral files (PID file).

        Lives in the system temp dir so it's cleared on reboot.
        """
        return Path(tempfile.gettempdir()) / "proc-sentinel"

    @property
    def log_path(self) -> Path:
        """Daemon log path."""
        return self.state_dir / "daemon.log"

    @property
    def pid_path(self) -> Path:
        """PID file path."""
        return self.runtime_dir / "daemon.pid"

    # ─────────────────────────────────────────────────────────────────────
    # Webhooks
    # ─────────────────────────────────────────────────────────────────────

    def webhook_url(self, name: str) -> str:
        """URL for a named webhook, or '' if unknown."""
        for hook in self.webhooks:
            if hook.name == name:
                return hook.url
        return ""

    @property
    def active_webhook_url(self) -> str:
        """URL of the active alert destination, or '' if none."""
        return self.webhook_url(self.alerts.active_webhook)

    # ─────────────────────────────────────────────────────────────────────
    # Copy-on-write helpers
    # ─────────────────────────────────────────────────────────────────────

    def with_thresholds(self, cpu: float | None = None, mem: float | None = None) -> "Config":
        """Return a copy with new alert thresholds."""
        alerts = replace(
            self.alerts,
            cpu_threshold=self.alerts.cpu_threshold if cpu is None else cpu,
            mem_threshold=self.alerts.mem_threshold if mem is None else mem,
        )
        _validate_alerts(alerts)
        return replace(self, alerts=alerts)

    def with_webhook(self, name: str, url: str) -> "Config":
        """Return a copy with a webhook added or replaced."""
        if not name:
            raise ValueError("Webhook name must not be empty")
        hooks = [h for h in self.webhooks if h.name != name]
        hooks.append(Webhook(name=name, url=url))
        return replace(self, webhooks=tuple(hooks))

    def without_webhook(self, name: str) -> "Config":
        """Return a copy without the named webhook.

        Clears the active selection if it pointed at the removed entry.
        """
        hooks = tuple(h for h in self.webhooks if h.name != name)
        alerts = self.alerts
        if alerts.active_webhook == name:
            alerts = replace(alerts, active_webhook="")
        return replace(self, webhooks=hooks, alerts=alerts)

    def with_active_webhook(self, name: str) -> "Config":
        """Return a copy with a different active destination."""
        if name and not any(h.name == name for h in self.webhooks):
            raise ValueError(f"Unknown webhook: {name!r}")
        return replace(self, alerts=replace(self.alerts, active_webhook=name))

    # ─────────────────────────────────────────────────────────────────────
    # Persistence
    # ─────────────────────────────────────────────────────────────────────

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ("alerts", "sampling", "system"):
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        hooks = tomlkit.table()
        for hook in self.webhooks:
            hooks.add(hook.name, hook.url)
        doc.add("webhooks", hooks)

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        All defaults come from the dataclass definitions - no hardcoded values here.

        Raises:
            ValueError: If the file can't be parsed or holds invalid values.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f).unwrap()
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        webhooks_data = data.get("webhooks", {})
        if not isinstance(webhooks_data, dict):
            raise ValueError("[webhooks] must be a table of name = url")

        return cls(
            alerts=_load_alerts_config(_section(data, "alerts")),
            sampling=_load_sampling_config(_section(data, "sampling")),
            system=_load_system_config(_section(data, "system")),
            webhooks=tuple(Webhook(name=str(k), url=str(v)) for k, v in webhooks_data.items()),
        )

    @classmethod
    def load_or_default(cls, path: Path | None = None) -> "Config":
        """Load config, falling back to persisted defaults on any failure.

        A missing, unreadable or invalid file is replaced with the default
        config so subsequent runs are stable.
        """
        defaults = cls()
        path = path or defaults.config_path
        if path.exists():
            try:
                return cls.load(path)
            except (OSError, ValueError, TypeError) as e:
                log.warning("config_invalid_using_defaults", path=str(path), error=str(e))
        try:
            defaults.save(path)
            log.info("config_defaults_written", path=str(path))
        except OSError as e:
            log.warning("config_save_failed", path=str(path), error=str(e))
        return defaults


def _section(data: dict, name: str) -> dict:
    section = data.get(name, {})
    if not isinstance(section, dict):
        raise ValueError(f"[{name}] must be a table")
    return section


def _validate_alerts(alerts: AlertsConfig) -> None:
    for name in ("cpu_threshold", "mem_threshold"):
        value = getattr(alerts, name)
        if not 0 <= value <= 100:
            raise ValueError(f"{name} must be between 0 and 100, got {value}")
    if alerts.cooldown_seconds < 0:
        raise ValueError(f"cooldown_seconds must be >= 0, got {alerts.cooldown_seconds}")


def _load_alerts_config(data: dict) -> AlertsConfig:
    """Load alerts config from TOML data, using dataclass defaults for missing fields."""
    d = AlertsConfig()
    alerts = AlertsConfig(
        cpu_threshold=float(data.get("cpu_threshold", d.cpu_threshold)),
        mem_threshold=float(data.get("mem_threshold", d.mem_threshold)),
        active_webhook=str(data.get("active_webhook", d.active_webhook)),
        cooldown_seconds=float(data.get("cooldown_seconds", d.cooldown_seconds)),
    )
    _validate_alerts(alerts)
    return alerts


def _load_sampling_config(data: dict) -> SamplingConfig:
    """Load sampling config from TOML data."""
    d = SamplingConfig()
    interval = float(data.get("interval", d.interval))
    daemon_interval = float(data.get("daemon_interval", d.daemon_interval))
    clock_ticks = int(data.get("clock_ticks", d.clock_ticks))
    max_rows = int(data.get("max_rows", d.max_rows))

    if interval <= 0:
        raise ValueError(f"interval must be > 0, got {interval}")
    if daemon_interval <= 0:
        raise ValueError(f"daemon_interval must be > 0, got {daemon_interval}")
    if clock_ticks < 0:
        raise ValueError(f"clock_ticks must be >= 0, got {clock_ticks}")
    if max_rows < 1:
        raise ValueError(f"max_rows must be >= 1, got {max_rows}")

    return SamplingConfig(
        interval=interval,
        daemon_interval=daemon_interval,
        clock_ticks=clock_ticks,
        max_rows=max_rows,
        export_csv=str(data.get("export_csv", d.export_csv)),
    )


def _load_system_config(data: dict) -> SystemConfig:
    """Load system config from TOML data."""
    d = SystemConfig()
    heartbeat_samples = int(data.get("heartbeat_samples", d.heartbeat_samples))
    webhook_timeout = float(data.get("webhook_timeout", d.webhook_timeout))
    log_max_bytes = int(data.get("log_max_bytes", d.log_max_bytes))
    log_backup_count = int(data.get("log_backup_count", d.log_backup_count))

    if heartbeat_samples < 0:
        raise ValueError(f"heartbeat_samples must be >= 0, got {heartbeat_samples}")
    if webhook_timeout <= 0:
        raise ValueError(f"webhook_timeout must be > 0, got {webhook_timeout}")
    if log_max_bytes < 0:
        raise ValueError(f"log_max_bytes must be >= 0, got {log_max_bytes}")
    if log_backup_count < 0:
        raise ValueError(f"log_backup_count must be >= 0, got {log_backup_count}")

    return SystemConfig(
        heartbeat_samples=heartbeat_samples,
        webhook_timeout=webhook_timeout,
        log_max_bytes=log_max_bytes,
        log_backup_count=log_backup_count,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Hot reload
# ─────────────────────────────────────────────────────────────────────────────


class ConfigHolder:
    """Thread-safe holder for the current Config snapshot.

    The snapshot itself is immutable; swapping it is the only mutation.
    """

    def __init__(self, config: Config):
        self._lock = threading.Lock()
        self._config = config

    def get(self) -> Config:
        """Return the current snapshot."""
        with self._lock:
            return self._config

    def swap(self, config: Config) -> Config:
        """Install a new snapshot, returning the previous one."""
        with self._lock:
            previous, self._config = self._config, config
        return previous


class _ConfigEventHandler(pyinotify.ProcessEvent):
    """Forwards events for the watched file to its ConfigWatcher."""

    def my_init(self, watcher: "ConfigWatcher") -> None:
        self.watcher = watcher

    def process_default(self, event: pyinotify.Event) -> None:
        if event.name == self.watcher.path.name:
            self.watcher.reload()


class ConfigWatcher:
    """Reloads the config file when inotify reports it was rewritten.

    The parent directory is watched rather than the file itself, so editors
    that save by renaming a temp file over the original are still seen
    (IN_MOVED_TO), as are plain in-place writes (IN_CLOSE_WRITE). A file
    that fails to parse is logged and ignored; the current snapshot stays
    active until a valid file appears.
    """

    MASK = pyinotify.IN_CLOSE_WRITE | pyinotify.IN_MOVED_TO

    def __init__(self, holder: ConfigHolder, path: Path):
        self.holder = holder
        self.path = path
        self.reload_count = 0
        self._notifier: pyinotify.ThreadedNotifier | None = None

    def reload(self) -> bool:
        """Load the file and install it if it differs from the current snapshot.

        Returns:
            True if a new config was installed.
        """
        try:
            config = Config.load(self.path)
        except (OSError, ValueError, TypeError) as e:
            log.warning("config_reload_failed", path=str(self.path), error=str(e))
            return False

        if config == self.holder.get():
            return False

        self.holder.swap(config)
        self.reload_count += 1
        log.info(
            "config_reloaded",
            cpu_threshold=config.alerts.cpu_threshold,
            mem_threshold=config.alerts.mem_threshold,
            active_webhook=config.alerts.active_webhook,
        )
        return True

    @property
    def running(self) -> bool:
        return self._notifier is not None

    def start(self) -> None:
        """Start the inotify notifier thread."""
        if self._notifier is not None:
            return
        directory = self.path.parent
        directory.mkdir(parents=True, exist_ok=True)

        wm = pyinotify.WatchManager()
        notifier = pyinotify.ThreadedNotifier(wm, _ConfigEventHandler(watcher=self))
        notifier.daemon = True
        notifier.start()

        wdd = wm.add_watch(str(directory), self.MASK)
        if wdd.get(str(directory), -1) < 0:
            notifier.stop()
            log.warning("config_watch_failed", path=str(directory))
            return
        self._notifier = notifier
        log.debug("config_watch_started", path=str(self.path))

    def stop(self) -> None:
        """Stop the notifier and wait for its thread to exit."""
        if self._notifier is None:
            return
        self._notifier.stop()
        self._notifier = None
        log.debug("config_watch_stopped", path=str(self.path))

