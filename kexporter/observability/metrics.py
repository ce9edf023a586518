"""Prometheus counters incremented by the event pipeline.

A MetricsStore owns one set of counters registered against a
CollectorRegistry. Production code uses the process-wide default registry;
tests pass a fresh ``CollectorRegistry()`` so stores never collide.
"""

from __future__ import annotations

import platform

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge


class MetricsStore:
    """The exporter's counters, optionally name-prefixed."""

    def __init__(self, prefix: str = "", registry: CollectorRegistry | None = None) -> None:
        self.registry = registry if registry is not None else REGISTRY
        self.prefix = prefix

        self.events_processed = Counter(
            f"{prefix}events_sent",
            "The total number of events processed",
            registry=self.registry,
        )
        self.events_discarded = Counter(
            f"{prefix}events_discarded",
            "The total number of events discarded because of being older than the maximum event age",
            registry=self.registry,
        )
        self.watch_errors = Counter(
            f"{prefix}watch_errors",
            "The total number of errors received from the event watch stream",
            registry=self.registry,
        )
        self.send_errors = Counter(
            f"{prefix}send_event_errors",
            "The total number of send event errors",
            ["receiver"],
            registry=self.registry,
        )
        self.cache_hits = Counter(
            f"{prefix}kube_api_read_cache_hits",
            "The total number of read requests served from cache when looking up object metadata",
            registry=self.registry,
        )
        self.cache_misses = Counter(
            f"{prefix}kube_api_read_cache_misses",
            "The total number of read requests served from kube-apiserver when looking up object metadata",
            registry=self.registry,
        )
        self.build_info = Gauge(
            f"{prefix}build_info",
            "A metric with a constant '1' value labeled by version and python version",
            ["version", "pythonversion"],
            registry=self.registry,
        )
        self.build_info.labels(version=_version(), pythonversion=platform.python_version()).set(1)

    def value(self, name: str, **labels: str) -> float:
        """Return the current value of counter *name* (without ``_total``)."""
        sample = self.registry.get_sample_value(f"{self.prefix}{name}_total", labels or None)
        return sample or 0.0


def _version() -> str:
    from kexporter import __version__

    return __version__
