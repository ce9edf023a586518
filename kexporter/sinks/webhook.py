"""Generic JSON webhook sink.

POSTs the serialised EnhancedEvent (or the rendered ``layout``) as the JSON
body to a configured URL. Header values may be ``{{ .path }}`` templates
resolved against the event.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from kexporter.models.events import EnhancedEvent
from kexporter.sinks.base import Sink, SinkError
from kexporter.sinks.template import TemplateError, render_or_keep, serialize_event

_log = structlog.get_logger(component="sinks.webhook")


class WebhookSink(Sink):
    """Delivers events by POSTing a JSON payload to a configurable URL.

    Args:
        endpoint: Full endpoint URL.
        headers:  Optional extra headers (e.g. Authorization).
        layout:   Optional body template; replaces the full event when set.
        timeout:  HTTP request timeout in seconds. Defaults to 10.
        client:   Optional pre-built AsyncClient (tests inject a mock transport).
    """

    def __init__(
        self,
        endpoint: str,
        headers: dict[str, str] | None = None,
        layout: dict[str, Any] | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not endpoint:
            raise ValueError("Webhook endpoint must not be empty")
        self._endpoint = endpoint
        self._headers = headers or {}
        self._layout = layout
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def sink_type(self) -> str:
        return "webhook"

    async def send(self, event: EnhancedEvent) -> None:
        """POST *event* as JSON; raise SinkError unless the reply is 2xx."""
        data = event.to_dict()
        try:
            payload = serialize_event(data, self._layout)
        except TemplateError as exc:
            raise SinkError(f"webhook layout: {exc}") from exc
        request_headers = {"Content-Type": "application/json"}
        for key, value in self._headers.items():
            request_headers[key] = render_or_keep(value, data)

        try:
            response = await self._client.post(self._endpoint, json=payload, headers=request_headers)
        except httpx.TimeoutException as exc:
            raise SinkError(f"webhook request timed out: {self._endpoint}") from exc
        except httpx.HTTPError as exc:
            raise SinkError(f"webhook request failed: {exc}") from exc

        if not response.is_success:
            _log.debug("webhook_non_2xx_response", status_code=response.status_code, body=response.text[:200])
            raise SinkError(f"not successful (2xx) response: {response.status_code} {response.text[:200]}")

    async def close(self) -> None:
        await self._client.aclose()
