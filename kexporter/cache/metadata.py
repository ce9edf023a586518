"""Object metadata cache.

Resolves labels, annotations and owner references for the object an event
refers to and memoises the result in a bounded LRU so that bursts of events
about the same object cost one API read.

Concurrency model: all access happens on the asyncio event loop. Concurrent
misses on the same key are coalesced onto a single in-flight read task; late
arrivals await that task instead of issuing another backend read. The read
is shielded from its callers, so a cancelled caller never cancels it.

Not-found results are memoised like positive results (same LRU, same
capacity). A hit on a negative entry raises ObjectNotFoundError again.
"""

from __future__ import annotations

import asyncio
import functools
from collections import OrderedDict

import structlog

from kexporter.cache.reader import ObjectNotFoundError, ObjectReader
from kexporter.models.events import ObjectMetadata, ObjectReference
from kexporter.observability.metrics import MetricsStore

_log = structlog.get_logger(component="cache.metadata")

CacheKey = tuple[str, str, str, str]

_DELETED = ObjectMetadata(deleted=True)


def cache_key(ref: ObjectReference) -> CacheKey:
    """Return the cache key for *ref*: (namespace, kind, apiVersion, name).

    The UID is not part of the key: a recreated object with the same name
    shares the entry.
    """
    return (ref.namespace, ref.kind, ref.api_version, ref.name)


class ObjectMetadataCache:
    """Read-through LRU cache of ObjectMetadata keyed by object identity.

    Args:
        reader:   Backend used on a miss.
        metrics:  Counter store (cache hits / misses).
        capacity: Maximum number of entries. ``0`` disables storage; lookups
                  still coalesce but every non-concurrent call reads through.
    """

    def __init__(self, reader: ObjectReader, metrics: MetricsStore, capacity: int = 1024) -> None:
        self._reader = reader
        self._metrics = metrics
        self._capacity = max(capacity, 0)
        self._entries: OrderedDict[CacheKey, ObjectMetadata] = OrderedDict()
        self._in_flight: dict[CacheKey, asyncio.Future[ObjectMetadata]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, ref: object) -> bool:
        return isinstance(ref, ObjectReference) and cache_key(ref) in self._entries

    @property
    def capacity(self) -> int:
        return self._capacity

    async def get_object_metadata(self, ref: ObjectReference) -> ObjectMetadata:
        """Return metadata for *ref*, reading through to the API on a miss.

        Raises:
            ObjectNotFoundError: the object does not exist (possibly memoised).
            Exception:           any other backend error, propagated unchanged.
        """
        key = cache_key(ref)

        cached = self._entries.get(key)
        if cached is not None:
            self._entries.move_to_end(key)
            self._metrics.cache_hits.inc()
            if cached is _DELETED:
                raise ObjectNotFoundError(ref)
            return cached

        read = self._in_flight.get(key)
        if read is not None:
            # Coalesced onto the read already in progress for this key.
            self._metrics.cache_hits.inc()
        else:
            self._metrics.cache_misses.inc()
            read = asyncio.ensure_future(self._resolve(ref))
            self._in_flight[key] = read
            read.add_done_callback(functools.partial(self._settle, key))

        # The read belongs to no caller: cancelling one caller leaves it
        # running for the others.
        result = await asyncio.shield(read)
        if result is _DELETED:
            raise ObjectNotFoundError(ref)
        return result

    def _settle(self, key: CacheKey, read: asyncio.Future[ObjectMetadata]) -> None:
        del self._in_flight[key]
        if read.cancelled():
            return
        # exception() also marks it retrieved; there may be no waiters left.
        if read.exception() is None:
            self._store(key, read.result())

    async def _resolve(self, ref: ObjectReference) -> ObjectMetadata:
        try:
            obj = await self._reader.read(ref)
        except ObjectNotFoundError:
            _log.debug("object_not_found", object=str(ref))
            return _DELETED
        return ObjectMetadata.from_object(obj)

    def _store(self, key: CacheKey, metadata: ObjectMetadata) -> None:
        if self._capacity == 0:
            return
        self._entries[key] = metadata
        self._entries.move_to_end(key)
        while len(self._entries) > self._capacity:
            evicted, _ = self._entries.popitem(last=False)
            _log.debug("cache_evicted", key="/".join(evicted))

    def clear(self) -> None:
        """Drop every entry. In-flight reads are unaffected."""
        self._entries.clear()
