"""Receiver registry: named sinks and isolated, concurrent delivery.

ReceiverRegistry -- Binds receiver names to Sink instances and fans events
                    out to them. ``send_event`` never blocks the caller: each
                    (event, receiver) pair is delivered by its own asyncio
                    task, so one event sent to N receivers takes about as
                    long as the slowest one. A failing receiver never affects
                    its siblings or the watch loop.
"""

from __future__ import annotations

import asyncio
import functools

import structlog

from kexporter.models.events import EnhancedEvent
from kexporter.observability.metrics import MetricsStore
from kexporter.sinks.base import Sink

_log = structlog.get_logger(component="exporter.registry")

_DEFAULT_DRAIN_SECONDS = 15.0


class ReceiverRegistry:
    """Fan-out delivery to registered sinks.

    * Never raises from ``send_event``: unknown receivers and send failures
      are logged and counted in ``send_event_errors``.
    * No retry: one ``Sink.send`` call is one attempt.
    * ``max_in_flight`` bounds concurrent sends per receiver; further sends
      queue on a semaphore inside their own task.
    * ``max_queued`` bounds the pending tasks per receiver (running or
      queued). Sends past it are dropped and counted as errors.
    * ``send_timeout`` (seconds, ``0`` disables) bounds each send.
    """

    def __init__(
        self,
        metrics: MetricsStore,
        send_timeout: float = 10.0,
        max_in_flight: int = 100,
        max_queued: int = 1000,
    ) -> None:
        self._metrics = metrics
        self._send_timeout = send_timeout
        self._max_in_flight = max(max_in_flight, 1)
        self._max_queued = max(max_queued, self._max_in_flight)
        self._sinks: dict[str, Sink] = {}
        self._limits: dict[str, asyncio.Semaphore] = {}
        self._pending: dict[str, int] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self._closed = False

    @property
    def names(self) -> list[str]:
        return list(self._sinks)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def register(self, name: str, sink: Sink) -> None:
        """Bind *name* to *sink*. Each name can be bound once."""
        if self._closed:
            raise RuntimeError("registry is closed")
        if name in self._sinks:
            raise ValueError(f"receiver {name!r} is already registered")
        self._sinks[name] = sink
        self._limits[name] = asyncio.Semaphore(self._max_in_flight)
        self._pending[name] = 0
        _log.info("receiver_registered", receiver=name, sink_type=sink.sink_type)

    def send_event(self, name: str, event: EnhancedEvent) -> None:
        """Schedule delivery of *event* to receiver *name* and return at once."""
        sink = self._sinks.get(name)
        if sink is None:
            _log.error("receiver_not_registered", receiver=name)
            self._metrics.send_errors.labels(receiver=name).inc()
            return
        if self._closed:
            _log.warning("send_after_close_dropped", receiver=name)
            return
        if self._pending[name] >= self._max_queued:
            self._metrics.send_errors.labels(receiver=name).inc()
            _log.warning(
                "send_queue_full",
                receiver=name,
                max_queued=self._max_queued,
                reason=event.reason,
                involved_object=str(event.involved_object.reference),
            )
            return

        task = asyncio.get_running_loop().create_task(
            self._send_one(name, sink, event),
            name=f"send-{name}",
        )
        self._pending[name] += 1
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(functools.partial(self._release, name))

    def queued(self, name: str) -> int:
        """Pending delivery tasks for receiver *name*."""
        return self._pending.get(name, 0)

    def _release(self, name: str, _task: asyncio.Task[None]) -> None:
        self._pending[name] -= 1

    async def _send_one(self, name: str, sink: Sink, event: EnhancedEvent) -> None:
        """Deliver to a single receiver, counting the failure if any."""
        async with self._limits[name]:
            try:
                if self._send_timeout > 0:
                    await asyncio.wait_for(sink.send(event), timeout=self._send_timeout)
                else:
                    await sink.send(event)
            except TimeoutError:
                self._metrics.send_errors.labels(receiver=name).inc()
                _log.error(
                    "send_event_timeout",
                    receiver=name,
                    timeout=self._send_timeout,
                    involved_object=str(event.involved_object.reference),
                )
            except Exception as exc:  # noqa: BLE001
                self._metrics.send_errors.labels(receiver=name).inc()
                _log.error(
                    "send_event_failed",
                    receiver=name,
                    sink_type=sink.sink_type,
                    reason=event.reason,
                    involved_object=str(event.involved_object.reference),
                    error=str(exc),
                )
            else:
                _log.debug("event_sent", receiver=name, reason=event.reason)

    async def drain(self, timeout: float | None = _DEFAULT_DRAIN_SECONDS) -> bool:
        """Wait for in-flight sends. Returns False if *timeout* expired first."""
        if not self._tasks:
            return True
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        return not pending

    async def close(self, drain_timeout: float | None = _DEFAULT_DRAIN_SECONDS) -> None:
        """Drain in-flight sends, then close every sink.

        Sends still running after *drain_timeout* are cancelled. A sink whose
        ``close`` raises is logged and skipped; the others still close.
        """
        if self._closed:
            return
        self._closed = True

        if not await self.drain(drain_timeout):
            _log.warning("registry_drain_timed_out", pending=len(self._tasks))
            for task in list(self._tasks):
                task.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)

        for name, sink in self._sinks.items():
            try:
                await sink.close()
            except Exception as exc:  # noqa: BLE001
                _log.error("sink_close_failed", receiver=name, error=str(exc))
        _log.info("registry_closed", receivers=len(self._sinks))
