"""Logging setup and Prometheus counters."""

from kexporter.observability.logging import get_logger, setup_logging
from kexporter.observability.metrics import MetricsStore

__all__ = ["MetricsStore", "get_logger", "setup_logging"]
