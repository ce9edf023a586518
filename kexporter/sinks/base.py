"""Sink contract shared by every destination adapter."""

from __future__ import annotations

from abc import ABC, abstractmethod

from kexporter.models.events import EnhancedEvent


class SinkError(Exception):
    """Delivery to a destination failed (transport error or non-2xx reply)."""


class Sink(ABC):
    """Abstract base class for all destination adapters.

    ``send`` either returns normally (delivered) or raises (not delivered).
    The registry catches, logs and counts the exception; it never retries.
    """

    @property
    @abstractmethod
    def sink_type(self) -> str:
        """Adapter kind used in logs (``stdout``, ``webhook``, ...)."""

    @abstractmethod
    async def send(self, event: EnhancedEvent) -> None:
        """Deliver *event*.

        Raises:
            SinkError: delivery failed.
        """

    async def close(self) -> None:  # noqa: B027
        """Release connections held by the adapter. No-op by default."""
