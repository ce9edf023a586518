"""Grafana Loki sink using the push API (``/loki/api/v1/push``).

Each event becomes one log line in one stream: the serialised event, or the
rendered ``layout`` when one is configured. Stream label values and
header values may be ``{{ .path }}`` templates; a template that does not
resolve falls back to its literal text.
"""

from __future__ import annotations

import json
import time
from typing import Any

import httpx
import structlog

from kexporter.models.events import EnhancedEvent
from kexporter.sinks.base import Sink, SinkError
from kexporter.sinks.template import TemplateError, render_or_keep, serialize_event

_log = structlog.get_logger(component="sinks.loki")


def _timestamp_ns() -> str:
    return str(time.time_ns())


class LokiSink(Sink):
    """Pushes events to Loki.

    Args:
        url:           Push endpoint.
        stream_labels: Labels attached to the stream.
        headers:       Extra request headers (e.g. ``X-Scope-OrgID``).
        layout:        Optional log line template; replaces the full event when set.
        username:      Basic auth user; used only together with ``password``.
        password:      Basic auth password.
        timeout:       HTTP request timeout in seconds.
        client:        Optional pre-built AsyncClient.
    """

    def __init__(
        self,
        url: str,
        stream_labels: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
        layout: dict[str, Any] | None = None,
        username: str = "",
        password: str = "",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not url:
            raise ValueError("Loki url must not be empty")
        self._url = url
        self._stream_labels = stream_labels or {}
        self._headers = headers or {}
        self._layout = layout
        auth = httpx.BasicAuth(username, password) if username and password else None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._auth = auth

    @property
    def sink_type(self) -> str:
        return "loki"

    def build_payload(self, event: EnhancedEvent) -> dict[str, object]:
        """Return the push body for *event*.

        Raises:
            TemplateError: the layout references a missing path.
        """
        data = event.to_dict()
        labels = {key: render_or_keep(value, data) for key, value in self._stream_labels.items()}
        line = json.dumps(serialize_event(data, self._layout), default=str, sort_keys=True)
        return {"streams": [{"stream": labels, "values": [[_timestamp_ns(), line]]}]}

    async def send(self, event: EnhancedEvent) -> None:
        try:
            payload = self.build_payload(event)
        except TemplateError as exc:
            raise SinkError(f"loki layout: {exc}") from exc
        data = event.to_dict()
        request_headers = {"Content-Type": "application/json"}
        for key, value in self._headers.items():
            request_headers[key] = render_or_keep(value, data)

        try:
            response = await self._client.post(
                self._url,
                json=payload,
                headers=request_headers,
                auth=self._auth or httpx.USE_CLIENT_DEFAULT,
            )
        except httpx.HTTPError as exc:
            raise SinkError(f"loki push failed: {exc}") from exc

        if not response.is_success:
            _log.debug("loki_non_2xx_response", status_code=response.status_code, body=response.text[:200])
            raise SinkError(f"not successful (2xx) response: {response.status_code} {response.text[:200]}")

    async def close(self) -> None:
        await self._client.aclose()
