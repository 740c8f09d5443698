"""Configuration loading helpers for the network quality monitor."""

from __future__ import annotations

import threading
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


@dataclass
class PathsConfig:
    data_dir: Path
    logs_dir: Path


@dataclass(frozen=True)
class MonitorSettings:
    """Settings read by the monitor at the start of every tick."""

    ping_target: str = "8.8.8.8"
    ping_count: int = 5
    speed_test_url: str = "https://speed.hetzner.de/10MB.bin"
    upload_url: str = "https://httpbin.org/post"
    download_bytes: int = 2 * 1024 * 1024
    upload_bytes: int = 512 * 1024
    http_test_url: str = "https://www.google.com"

    def validate(self) -> "MonitorSettings":
        if not self.ping_target:
            raise ValueError("ping_target cannot be empty")
        if not 1 <= self.ping_count <= 50:
            raise ValueError("ping_count must be between 1 and 50")
        if self.download_bytes <= 0 or self.upload_bytes <= 0:
            raise ValueError("byte budgets must be positive")
        for name in ("speed_test_url", "upload_url", "http_test_url"):
            if not getattr(self, name).startswith(("http://", "https://")):
                raise ValueError(f"{name} must be an http(s) URL")
        return self


@dataclass
class MonitorConfig:
    interface: str = "default"
    interval_seconds: int = 60
    autostart: bool = False
    settings: MonitorSettings = field(default_factory=MonitorSettings)


@dataclass
class LatencyConfig:
    provider: str = "ping"
    tcp_port: int = 443
    timeout_seconds: float = 2.0


@dataclass
class AnycastTarget:
    name: str
    ip: str
    url: str


def _default_anycast_targets() -> List[AnycastTarget]:
    return [
        AnycastTarget(name="cloudflare", ip="1.1.1.1", url="https://1.1.1.1/cdn-cgi/trace"),
        AnycastTarget(name="google", ip="8.8.8.8", url="https://dns.google/dns-query"),
    ]


@dataclass
class PacketTestConfig:
    unicast_host: str = "8.8.8.8"
    unicast_port: int = 7
    broadcast_port: int = 55555
    multicast_group: str = "224.0.0.251"
    multicast_port: int = 5353
    anycast_targets: List[AnycastTarget] = field(default_factory=_default_anycast_targets)

    def anycast_target(self, name: str) -> AnycastTarget:
        for target in self.anycast_targets:
            if target.name == name:
                return target
        raise KeyError(f"Unknown anycast target '{name}'")


@dataclass
class UpnpConfig:
    timeout_seconds: float = 3.0
    http_timeout_seconds: float = 5.0


@dataclass
class WebConfig:
    host: str = "0.0.0.0"
    port: int = 8000
    secret_key: str = "change-me"
    reverse_proxy_headers: bool = False


@dataclass
class ExportConfig:
    csv_name: str = "network_log.csv"
    json_name: str = "network_log.json"


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file_name: str = "netquality.log"
    max_bytes: int = 5 * 1024 * 1024
    backup_count: int = 5
    console: bool = True
    quiet_loggers: List[str] = field(default_factory=lambda: ["urllib3", "apscheduler"])


@dataclass
class AppConfig:
    root_dir: Path
    paths: PathsConfig
    monitor: MonitorConfig
    latency: LatencyConfig
    packet_tests: PacketTestConfig
    upnp: UpnpConfig
    web: WebConfig
    export: ExportConfig
    logging: LoggingConfig

    @property
    def csv_path(self) -> Path:
        return self.paths.data_dir / self.export.csv_name

    @property
    def json_path(self) -> Path:
        return self.paths.data_dir / self.export.json_name


class SettingsStore:
    """Process-wide mutable holder for :class:`MonitorSettings`.

    Readers always receive an immutable snapshot, so a change made while a
    tick is running only becomes visible to the next tick.
    """

    def __init__(self, initial: MonitorSettings):
        self._lock = threading.Lock()
        self._current = initial.validate()

    def snapshot(self) -> MonitorSettings:
        with self._lock:
            return self._current

    def update(self, **changes: Any) -> MonitorSettings:
        with self._lock:
            unknown = set(changes) - set(asdict(self._current))
            if unknown:
                raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")
            candidate = replace(self._current, **changes).validate()
            self._current = candidate
            return candidate


def _as_path(base: Path, maybe_path: Optional[str]) -> Path:
    if not maybe_path:
        raise ValueError("Path configuration entries cannot be empty")
    path = (base / maybe_path).resolve()
    path.mkdir(parents=True, exist_ok=True)
    return path


def _monitor_config(data: Dict[str, Any]) -> MonitorConfig:
    data = dict(data)
    settings_fields = set(MonitorSettings.__dataclass_fields__)
    settings = MonitorSettings(**{k: data.pop(k) for k in list(data) if k in settings_fields})
    return MonitorConfig(settings=settings.validate(), **data)


def _packet_test_config(data: Dict[str, Any]) -> PacketTestConfig:
    data = dict(data)
    targets = data.pop("anycast_targets", None)
    config = PacketTestConfig(**data)
    if targets:
        config.anycast_targets = [AnycastTarget(**target) for target in targets]
    return config


def config_from_dict(data: Dict[str, Any], root_dir: Path) -> AppConfig:
    """Build an :class:`AppConfig` from already parsed YAML data."""

    paths_data = data.get("paths", {})
    paths = PathsConfig(
        data_dir=_as_path(root_dir, paths_data.get("data_dir", "data")),
        logs_dir=_as_path(root_dir, paths_data.get("logs_dir", "logs")),
    )

    latency = LatencyConfig(**data.get("latency", {}))
    if latency.provider not in ("ping", "tcp"):
        raise ValueError(f"Unsupported latency provider '{latency.provider}'")

    return AppConfig(
        root_dir=root_dir,
        paths=paths,
        monitor=_monitor_config(data.get("monitor", {})),
        latency=latency,
        packet_tests=_packet_test_config(data.get("packet_tests", {})),
        upnp=UpnpConfig(**data.get("upnp", {})),
        web=WebConfig(**data.get("web", {})),
        export=ExportConfig(**data.get("export", {})),
        logging=LoggingConfig(**data.get("logging", {})),
    )


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load application configuration from YAML file."""

    root_dir = Path(path).resolve().parent if path else Path.cwd()
    source_path = Path(path) if path else root_dir / "config.yaml"
    if not source_path.exists():
        raise FileNotFoundError(f"Missing configuration file at {source_path}")

    with source_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}

    return config_from_dict(data, root_dir)
