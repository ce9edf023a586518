"""Destination adapters ("sinks") for kexporter.

Every adapter implements the Sink contract (``send`` / ``close``); the
registry never branches on the concrete kind at send time.

Exports:
    Sink        -- Abstract base for all adapters.
    SinkError   -- Raised by ``send`` when delivery fails.
    StdoutSink  -- JSON lines to stdout.
    WebhookSink -- Generic JSON POST.
    LokiSink    -- Grafana Loki push API.
    TeamsSink   -- Microsoft Teams incoming webhook.
    build_sink  -- Factory used by the configuration loader.
"""

from __future__ import annotations

from typing import Any

import structlog

from kexporter.sinks.base import Sink, SinkError
from kexporter.sinks.loki import LokiSink
from kexporter.sinks.stdout import StdoutSink
from kexporter.sinks.teams import TeamsSink
from kexporter.sinks.webhook import WebhookSink

_log = structlog.get_logger(component="sinks")

__all__ = [
    "LokiSink",
    "SINK_TYPES",
    "Sink",
    "SinkError",
    "StdoutSink",
    "TeamsSink",
    "WebhookSink",
    "build_sink",
]

SINK_TYPES = ("stdout", "webhook", "loki", "teams")


def _layout(name: str, cfg: dict[str, Any]) -> dict[str, Any] | None:
    layout = cfg.get("layout")
    if layout is not None and not isinstance(layout, dict):
        raise ValueError(f"receiver {name!r}: layout must be a mapping")
    return layout or None


def build_sink(receiver: dict[str, Any]) -> Sink:
    """Build the adapter described by one ``receivers`` entry.

    The entry holds a ``name`` and exactly one adapter section::

        - name: alerts
          webhook:
            endpoint: https://hooks.example.com/k8s
            headers: {Authorization: "Bearer xyz"}
            layout: {summary: "{{ .message }}", pod: "{{ .involvedObject.name }}"}

    Raises:
        ValueError: no adapter section, several sections, or an invalid one.
    """
    name = receiver.get("name", "")
    sections = [key for key in SINK_TYPES if key in receiver]
    if len(sections) != 1:
        raise ValueError(f"receiver {name!r} must define exactly one of {', '.join(SINK_TYPES)}")
    kind = sections[0]
    cfg = receiver.get(kind) or {}
    if not isinstance(cfg, dict):
        raise ValueError(f"receiver {name!r}: {kind} section must be a mapping")

    sink: Sink
    if kind == "stdout":
        sink = StdoutSink(drop_fields=cfg.get("dropFields"))
    elif kind == "webhook":
        sink = WebhookSink(
            endpoint=cfg.get("endpoint", ""),
            headers=cfg.get("headers"),
            layout=_layout(name, cfg),
            timeout=float(cfg.get("timeout", 10.0)),
        )
    elif kind == "loki":
        sink = LokiSink(
            url=cfg.get("url", ""),
            stream_labels=cfg.get("streamLabels"),
            headers=cfg.get("headers"),
            layout=_layout(name, cfg),
            username=cfg.get("username", ""),
            password=cfg.get("password", ""),
            timeout=float(cfg.get("timeout", 10.0)),
        )
    else:
        sink = TeamsSink(
            endpoint=cfg.get("endpoint", ""),
            headers=cfg.get("headers"),
            layout=_layout(name, cfg),
            timeout=float(cfg.get("timeout", 10.0)),
        )
    _log.info("sink_built", receiver=name, sink_type=sink.sink_type)
    return sink
