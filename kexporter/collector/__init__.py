"""Collector package for kexporter.

Provides the Kubernetes watch-stream collector that ingests v1.Events into
the export pipeline.

Submodules
----------
event_watcher -- EventWatcher: list/watch loop, age filter, enrichment.
"""

from kexporter.collector.event_watcher import EventHandler, EventWatcher

__all__ = ["EventHandler", "EventWatcher"]
