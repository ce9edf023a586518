"""Microsoft Teams incoming-webhook sink.

Sends a plain-text summary (message, reason, metadata) of the serialised
event, or of the rendered ``layout`` when one is configured. Teams answers
throttled requests with HTTP 200 and an error text in the body, so that body
is checked explicitly.
"""

from __future__ import annotations

import json
from typing import Any

import httpx

from kexporter.models.events import EnhancedEvent
from kexporter.sinks.base import Sink, SinkError
from kexporter.sinks.template import TemplateError, serialize_event

_RATE_LIMITED_MARKER = "Microsoft Teams endpoint returned HTTP error 429"


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, dict | list):
        return json.dumps(value, default=str, sort_keys=True)
    return str(value)


class TeamsSink(Sink):
    """Posts ``{"summary": ..., "text": ...}`` to a Teams webhook."""

    def __init__(
        self,
        endpoint: str,
        headers: dict[str, str] | None = None,
        layout: dict[str, Any] | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not endpoint:
            raise ValueError("Teams endpoint must not be empty")
        self._endpoint = endpoint
        self._headers = headers or {}
        self._layout = layout
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def sink_type(self) -> str:
        return "teams"

    @staticmethod
    def format_text(payload: dict[str, Any]) -> str:
        return (
            f"Event: {_text(payload.get('message'))} \n"
            f"Status: {_text(payload.get('reason'))} \n"
            f"Metadata: {_text(payload.get('metadata'))}"
        )

    async def send(self, event: EnhancedEvent) -> None:
        try:
            payload = serialize_event(event.to_dict(), self._layout)
        except TemplateError as exc:
            raise SinkError(f"teams layout: {exc}") from exc
        body = {"summary": "event", "text": self.format_text(payload)}
        headers = {"Content-Type": "application/json", **self._headers}
        try:
            response = await self._client.post(self._endpoint, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise SinkError(f"teams request failed: {exc}") from exc

        if response.status_code != 200:
            raise SinkError(f"not 200: {response.text[:200]}")
        if _RATE_LIMITED_MARKER in response.text:
            raise SinkError(f"rate limited: {response.text[:200]}")

    async def close(self) -> None:
        await self._client.aclose()
