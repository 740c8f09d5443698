"""Application bootstrap helpers."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Optional

from .config import AppConfig, SettingsStore, load_config
from .db import MeasurementStore, init_db
from .diagnostics import LanScanner
from .events import EventBus
from .exporter import CSVLogWriter, JSONExporter
from .logging_setup import configure_logging
from .measurements.http_timer import HttpTimer
from .measurements.latency import build_latency_provider
from .measurements.manager import MeasurementManager
from .measurements.stats import StatsAggregator
from .measurements.throughput import ThroughputProbe
from .packet_tests.engine import PacketTestEngine
from .scheduler import MonitorScheduler
from .upnp import UpnpController
from .web.app import create_web_app
from .web.feed import LiveFeed

LOGGER = logging.getLogger(__name__)

WORKER_POOL_SIZE = 16


class ApplicationContext:
    """Holds shared singletons for the service."""

    def __init__(self, config: AppConfig, setup_logging: bool = True):
        self.config = config
        if setup_logging:
            configure_logging(config)
        self.Session = init_db(config.paths.data_dir)
        self.executor = ThreadPoolExecutor(max_workers=WORKER_POOL_SIZE, thread_name_prefix="worker")
        self.events = EventBus()
        self.feed = LiveFeed()
        self.events.subscribe(self.feed)

        self.settings = SettingsStore(config.monitor.settings)
        self.latency = build_latency_provider(config.latency)
        self.http_timer = HttpTimer()
        self.store = MeasurementStore(self.Session)
        self.csv_log = CSVLogWriter(config.csv_path)
        self.json_exporter = JSONExporter(config.json_path)

        self.measurements = MeasurementManager(
            settings=self.settings,
            throughput=ThroughputProbe(),
            stats=StatsAggregator(self.latency),
            http_timer=self.http_timer,
            events=self.events,
        )
        self.measurements.add_sink(self.csv_log.append)
        self.measurements.add_sink(self.store.persist)

        self.scheduler = MonitorScheduler(self.measurements)
        self.packet_tests = PacketTestEngine(
            config.packet_tests,
            latency=self.latency,
            http_timer=self.http_timer,
            events=self.events,
            executor=self.executor,
        )
        self.upnp = UpnpController(
            self.events,
            discovery_timeout=config.upnp.timeout_seconds,
            http_timeout=config.upnp.http_timeout_seconds,
        )
        self.lan_scanner = LanScanner()
        self.web_app = create_web_app(self)

    def start(self) -> None:
        if self.config.monitor.autostart:
            self.scheduler.start(self.config.monitor.interface, self.config.monitor.interval_seconds)

    def shutdown(self) -> None:
        LOGGER.info("Shutting down")
        self.scheduler.shutdown()
        self.packet_tests.stop_all()
        self.executor.shutdown(wait=False)
        self.events.close()


def bootstrap(config_path: Optional[str] = None) -> ApplicationContext:
    """Load configuration and wire dependencies."""

    config_file = Path(config_path).resolve() if config_path else None
    config = load_config(str(config_file)) if config_file else load_config()
    return ApplicationContext(config)
