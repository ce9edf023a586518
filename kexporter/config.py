"""Configuration loading.

Scalar settings come from ``KEXPORTER_*`` environment variables. The route
tree and receiver definitions are structured, so they live in a YAML file
(``KEXPORTER_CONFIG_FILE``)::

    receivers:
      - name: dump
        stdout: {}
      - name: alerts
        webhook:
          endpoint: https://hooks.example.com/k8s
    route:
      drop:
        - namespace: "^kube-system$"
      routes:
        - match:
            - type: Warning
          receivers: [alerts]
        - receivers: [dump]
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from kexporter.models.config import (
    CacheConfig,
    DeliveryConfig,
    ExporterConfig,
    LogConfig,
    MetricsConfig,
    WatcherConfig,
)
from kexporter.routing.route import Route


class ConfigError(Exception):
    """Configuration is missing or malformed."""


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"KEXPORTER_{key}", default)


def _env_bool(key: str, default: bool = False) -> bool:
    val = _env(key, str(default).lower())
    return val.lower() in ("true", "1", "yes")


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    raw = _env(key, str(default))
    try:
        val = int(raw)
    except ValueError as exc:
        raise ConfigError(f"KEXPORTER_{key} must be an integer, got {raw!r}") from exc
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _env_float(key: str, default: float, min_val: float | None = None) -> float:
    raw = _env(key, str(default))
    try:
        val = float(raw)
    except ValueError as exc:
        raise ConfigError(f"KEXPORTER_{key} must be a number, got {raw!r}") from exc
    if min_val is not None:
        val = max(val, min_val)
    return val


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ConfigError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def _validate_log_format(value: str) -> str:
    valid = {"json", "console"}
    if value.lower() not in valid:
        raise ConfigError(f"Invalid log format: {value}. Must be one of {valid}")
    return value.lower()


def _validate_metrics_prefix(value: str) -> str:
    if value and not re.match(r"^[a-zA-Z_:][a-zA-Z0-9_:]*$", value):
        raise ConfigError(f"Invalid metrics prefix: {value!r}")
    return value


def load_config() -> ExporterConfig:
    """Load configuration from KEXPORTER_* environment variables."""
    return ExporterConfig(
        cluster_name=_env("CLUSTER_NAME", ""),
        config_file=_env("CONFIG_FILE", "config.yaml"),
        watcher=WatcherConfig(
            namespace=_env("NAMESPACE", ""),
            max_event_age_seconds=_env_int("MAX_EVENT_AGE_SECONDS", 5, min_val=1),
            omit_lookup=_env_bool("OMIT_LOOKUP", False),
        ),
        cache=CacheConfig(
            size=_env_int("CACHE_SIZE", 1024, min_val=0),
        ),
        delivery=DeliveryConfig(
            send_timeout_seconds=_env_float("SEND_TIMEOUT", 10.0, min_val=0.0),
            max_in_flight=_env_int("MAX_IN_FLIGHT", 100, min_val=1, max_val=10000),
            max_queued=_env_int("MAX_QUEUED", 1000, min_val=1, max_val=1000000),
        ),
        metrics=MetricsConfig(
            prefix=_validate_metrics_prefix(_env("METRICS_PREFIX", "")),
            port=_env_int("METRICS_PORT", 2112, min_val=1, max_val=65535),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
            format=_validate_log_format(_env("LOG_FORMAT", "json")),
        ),
    )


@dataclass
class RoutingConfig:
    """Parsed contents of the YAML routing file."""

    route: Route
    receivers: list[dict[str, Any]] = field(default_factory=list)

    @property
    def receiver_names(self) -> list[str]:
        return [str(r["name"]) for r in self.receivers]


def parse_routing_config(data: Any) -> RoutingConfig:
    """Validate the YAML document and build the route tree.

    Raises:
        ConfigError: structural problems, bad rules, duplicate receiver
                     names, or routes referring to undefined receivers.
    """
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("config file must contain a mapping")

    receivers = data.get("receivers") or []
    if not isinstance(receivers, list):
        raise ConfigError("receivers must be a list")
    seen: set[str] = set()
    for entry in receivers:
        if not isinstance(entry, dict) or not entry.get("name"):
            raise ConfigError(f"every receiver needs a name: {entry!r}")
        name = str(entry["name"])
        if name in seen:
            raise ConfigError(f"duplicate receiver name: {name!r}")
        seen.add(name)

    try:
        route = Route.from_dict(data.get("route"))
    except ValueError as exc:
        raise ConfigError(f"invalid route: {exc}") from exc

    undefined = sorted(set(route.receiver_names()) - seen)
    if undefined:
        raise ConfigError(f"route refers to undefined receiver(s): {', '.join(undefined)}")

    return RoutingConfig(route=route, receivers=receivers)


def load_routing_config(path: str | Path) -> RoutingConfig:
    """Read and parse the YAML routing file at *path*."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"cannot read config file {str(path)!r}: {exc}") from exc
    try:
        data = yaml.safe_load(os.path.expandvars(text))
    except yaml.YAMLError as exc:
        raise ConfigError(f"cannot parse config file {str(path)!r}: {exc}") from exc
    return parse_routing_config(data)
