"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class WatcherConfig:
    """Event watcher configuration."""

    namespace: str = ""
    max_event_age_seconds: int = 5
    omit_lookup: bool = False


@dataclass
class CacheConfig:
    """Object metadata cache configuration."""

    size: int = 1024


@dataclass
class DeliveryConfig:
    """Receiver registry configuration."""

    send_timeout_seconds: float = 10.0
    max_in_flight: int = 100
    max_queued: int = 1000


@dataclass
class MetricsConfig:
    """Metrics exposition configuration."""

    prefix: str = ""
    port: int = 2112


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"
    format: str = "json"


@dataclass
class ExporterConfig:
    """Top-level kexporter configuration."""

    cluster_name: str = ""
    config_file: str = "config.yaml"
    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    log: LogConfig = field(default_factory=LogConfig)
