"""EventWatcher: cluster-wide (or single-namespace) v1.Event ingestion.

The watcher performs an informer-style list-then-watch against the API
server with kubernetes-asyncio:

* The initial list replays the existing backlog as ADDED notifications.
* The watch resumes from the list's resourceVersion; ADDED and MODIFIED
  notifications are processed identically (an update to a repeating event is
  a fresh observation), DELETED is ignored, BOOKMARK only advances the
  resourceVersion.
* Stream failures are counted in ``watch_errors`` and retried with
  exponential back-off; HTTP 410 Gone forces an immediate fresh list. ERROR
  frames are raised as ``ApiException`` and take the same path as errors
  raised by the client itself.

Each observation goes through the age filter, is copied without its
``managedFields``, enriched through the ObjectMetadataCache (unless lookups
are disabled) and handed to the handler synchronously on the watch task.
Notifications are processed strictly in stream order.

``stop()`` lets an observation that is being enriched or handled finish
within the grace period. A loop waiting on a stream read, list call or
back-off sleep is cancelled straight away.
"""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog

from kexporter.cache.metadata import ObjectMetadataCache
from kexporter.cache.reader import ObjectNotFoundError
from kexporter.models.events import EnhancedEvent, InvolvedObject, ObjectReference, RawEvent
from kexporter.observability.metrics import MetricsStore

_log = structlog.get_logger(component="collector.event_watcher")

EventHandler = Callable[[EnhancedEvent], None]

_INITIAL_BACKOFF = 1.0
_MAX_BACKOFF = 30.0
_WATCH_TIMEOUT_SECONDS = 300
_STOP_GRACE_SECONDS = 15.0


def _default_watch_factory() -> Any:
    from kubernetes_asyncio import watch  # type: ignore[import-untyped]

    return watch.Watch()


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class EventWatcher:
    """Watches v1.Events and feeds enriched events to *handler*.

    Args:
        core_v1:        kubernetes-asyncio ``CoreV1Api`` (or a test double with
                        the same list methods and ``api_client``).
        handler:        Called once per non-discarded observation.
        metrics:        Counter store.
        metadata_cache: Enrichment cache; required unless ``omit_lookup``.
        namespace:      Watch a single namespace; empty watches all.
        max_event_age:  Observations older than this are discarded.
        omit_lookup:    Skip enrichment; the involved object is passed through.
        cluster_name:   Stamped on every EnhancedEvent.
        startup_time:   Discards of events older than this are not logged
                        (initial backlog replay). Defaults to construction time.
        watch_factory:  Returns a ``kubernetes_asyncio.watch.Watch``-like object.
        clock:          Returns the current aware UTC datetime.
    """

    def __init__(
        self,
        core_v1: Any,
        handler: EventHandler,
        metrics: MetricsStore,
        *,
        metadata_cache: ObjectMetadataCache | None = None,
        namespace: str = "",
        max_event_age: timedelta = timedelta(seconds=5),
        omit_lookup: bool = False,
        cluster_name: str = "",
        startup_time: datetime | None = None,
        watch_factory: Callable[[], Any] = _default_watch_factory,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if metadata_cache is None and not omit_lookup:
            raise ValueError("metadata_cache is required unless omit_lookup is set")
        self._core_v1 = core_v1
        self._handler = handler
        self._metrics = metrics
        self._cache = metadata_cache
        self._namespace = namespace
        self._max_event_age = max_event_age
        self._omit_lookup = omit_lookup
        self._cluster_name = cluster_name
        self._watch_factory = watch_factory
        self._clock = clock
        self._startup_time = startup_time or clock()

        self._list_fn: Callable[..., Any]
        self._list_args: tuple[str, ...]
        if namespace:
            self._list_fn, self._list_args = core_v1.list_namespaced_event, (namespace,)
        else:
            self._list_fn, self._list_args = core_v1.list_event_for_all_namespaces, ()

        self._stopping = asyncio.Event()
        self._dispatching = False
        self._task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def startup_time(self) -> datetime:
        return self._startup_time

    def set_startup_time(self, value: datetime) -> None:
        self._startup_time = value

    async def start(self) -> None:
        """Start the list/watch loop as a background task."""
        if self.running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._run(), name="event-watcher")
        _log.info("event_watcher_started", namespace=self._namespace or "<all>")

    async def stop(self, timeout: float = _STOP_GRACE_SECONDS) -> None:
        """Signal the loop to stop and wait (bounded) for it to finish.

        An observation in progress runs to completion. The loop is cancelled
        at once only while it waits on the API server, otherwise when the
        grace period expires.
        """
        self._stopping.set()
        task = self._task
        if task is None:
            return
        if not task.done() and not self._dispatching:
            task.cancel()
        _, pending = await asyncio.wait({task}, timeout=timeout)
        if pending:
            _log.warning("event_watcher_stop_timed_out", timeout=timeout)
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._task = None
        _log.info("event_watcher_stopped")

    # ------------------------------------------------------------------
    # List / watch loop
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        from kubernetes_asyncio.client.exceptions import ApiException  # type: ignore[import-untyped]

        backoff = _INITIAL_BACKOFF
        resource_version: str | None = None
        while not self._stopping.is_set():
            try:
                if resource_version is None:
                    resource_version = await self._list()
                resource_version = await self._watch(resource_version)
                backoff = _INITIAL_BACKOFF
                continue
            except asyncio.CancelledError:
                raise
            except ApiException as exc:
                self._metrics.watch_errors.inc()
                if exc.status == 410:
                    _log.warning("watch_expired_relisting", reason=exc.reason)
                    resource_version = None
                    continue
                _log.warning("watch_api_error", status=exc.status, reason=exc.reason, retry_in=backoff)
            except Exception as exc:  # noqa: BLE001
                self._metrics.watch_errors.inc()
                _log.warning("watch_stream_error", error=str(exc), error_type=type(exc).__name__, retry_in=backoff)

            await self._sleep(backoff)
            backoff = min(backoff * 2, _MAX_BACKOFF)

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except TimeoutError:
            pass

    async def _list(self) -> str:
        """List all events, replay them as ADDED, return the list resourceVersion."""
        response = await self._list_fn(*self._list_args)
        serialize = self._core_v1.api_client.sanitize_for_serialization
        items = response.items or []
        _log.info("event_list_received", count=len(items))
        for item in items:
            await self._dispatch("ADDED", serialize(item))
            if self._stopping.is_set():
                break
        return str(response.metadata.resource_version or "")

    async def _watch(self, resource_version: str) -> str:
        """Consume one watch stream until it ends; return the last resourceVersion."""
        from kubernetes_asyncio.client.exceptions import ApiException  # type: ignore[import-untyped]

        if self._stopping.is_set():
            return resource_version
        async with self._watch_factory() as watcher:
            stream = watcher.stream(
                self._list_fn,
                *self._list_args,
                resource_version=resource_version,
                timeout_seconds=_WATCH_TIMEOUT_SECONDS,
                allow_watch_bookmarks=True,
            )
            async for notification in stream:
                event_type = notification.get("type", "")
                raw = notification.get("raw_object") or {}
                if event_type == "ERROR":
                    raise ApiException(status=raw.get("code"), reason=raw.get("message", "watch error"))
                resource_version = str((raw.get("metadata") or {}).get("resourceVersion") or resource_version)
                if event_type == "BOOKMARK":
                    continue
                await self._dispatch(event_type, raw)
                if self._stopping.is_set():
                    break
        return resource_version

    async def _dispatch(self, event_type: str, raw: dict[str, Any]) -> None:
        self._dispatching = True
        try:
            await self.handle_notification(event_type, raw)
        except Exception as exc:  # noqa: BLE001
            metadata = raw.get("metadata") or {}
            _log.error(
                "event_processing_failed",
                event_type=event_type,
                namespace=metadata.get("namespace", ""),
                name=metadata.get("name", ""),
                error=str(exc),
            )
        finally:
            self._dispatching = False

    # ------------------------------------------------------------------
    # Per-observation processing
    # ------------------------------------------------------------------

    async def handle_notification(self, event_type: str, raw: dict[str, Any]) -> None:
        """Process one watch notification. DELETED and unknown types are ignored."""
        if event_type not in ("ADDED", "MODIFIED"):
            return
        await self.on_event(raw)

    def is_discarded(self, event: RawEvent) -> bool:
        """Apply the age filter; count (and possibly log) a discard."""
        timestamp = event.most_recent_timestamp()
        if timestamp is not None and timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=UTC)
        if timestamp is not None:
            age = self._clock() - timestamp
            if age <= self._max_event_age:
                return False
        else:
            age = None

        self._metrics.events_discarded.inc()
        # Events older than startup are the initial list replay: stay quiet.
        if timestamp is not None and timestamp > self._startup_time:
            _log.warning(
                "event_discarded_too_old",
                event_age=str(age),
                namespace=event.namespace,
                name=event.name,
                max_event_age=str(self._max_event_age),
            )
        return True

    async def on_event(self, raw: dict[str, Any]) -> None:
        """Filter, copy, enrich and hand one event document to the handler."""
        if self.is_discarded(RawEvent.from_dict(raw)):
            return

        document = copy.deepcopy(raw)
        (document.get("metadata") or {}).pop("managedFields", None)
        event = RawEvent.from_dict(document)

        _log.debug(
            "event_received",
            msg=event.message,
            namespace=event.namespace,
            reason=event.reason,
            involved_object=event.involved_object.name,
        )
        self._metrics.events_processed.inc()

        involved = await self._enrich(event.involved_object)
        enhanced = EnhancedEvent(event=event, involved_object=involved, cluster_name=self._cluster_name)

        try:
            self._handler(enhanced)
        except Exception as exc:  # noqa: BLE001
            _log.error("event_handler_failed", reason=event.reason, name=event.name, error=str(exc))

    async def _enrich(self, ref: ObjectReference) -> InvolvedObject:
        if self._omit_lookup or self._cache is None:
            return InvolvedObject(reference=ref)
        try:
            metadata = await self._cache.get_object_metadata(ref)
        except ObjectNotFoundError as exc:
            _log.info("involved_object_not_found", object=str(ref), error=str(exc))
            return InvolvedObject(reference=ref, deleted=True)
        except Exception as exc:  # noqa: BLE001
            _log.error("object_metadata_lookup_failed", object=str(ref), error=str(exc))
            return InvolvedObject(reference=ref)
        return InvolvedObject.resolved(ref, metadata)
