"""Stdout sink: one JSON document per event, one event per line."""

from __future__ import annotations

import json
import sys
from typing import TextIO

from kexporter.models.events import EnhancedEvent
from kexporter.sinks.base import Sink


class StdoutSink(Sink):
    """Writes events as JSON lines to a stream (stdout by default).

    Args:
        stream:     Target stream; defaults to ``sys.stdout`` at write time.
        drop_fields: Top-level keys removed from the output, e.g.
                    ``["metadata"]`` to shorten lines.
    """

    def __init__(self, stream: TextIO | None = None, drop_fields: list[str] | None = None) -> None:
        self._stream = stream
        self._drop_fields = list(drop_fields or [])

    @property
    def sink_type(self) -> str:
        return "stdout"

    async def send(self, event: EnhancedEvent) -> None:
        payload = event.to_dict()
        for key in self._drop_fields:
            payload.pop(key, None)
        stream = self._stream or sys.stdout
        stream.write(json.dumps(payload, default=str, sort_keys=True) + "\n")
        stream.flush()
