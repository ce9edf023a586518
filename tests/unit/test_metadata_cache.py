"""Tests for ObjectMetadataCache: hits, misses, LRU eviction and coalescing."""

from __future__ import annotations

import asyncio

import pytest

from kexporter.cache.metadata import ObjectMetadataCache, cache_key
from kexporter.cache.reader import ObjectNotFoundError
from kexporter.models.events import ObjectReference
from kexporter.observability.metrics import MetricsStore
from tests.conftest import FakeReader, make_object


def _ref(name: str = "web-1", kind: str = "Pod", namespace: str = "default", uid: str = "") -> ObjectReference:
    return ObjectReference(kind=kind, name=name, namespace=namespace, api_version="v1", uid=uid)


def _reader_with(*names: str, delay: float = 0.0) -> FakeReader:
    return FakeReader(
        objects={("Pod", "default", n): make_object(name=n, labels={"app": n}) for n in names},
        delay=delay,
    )


class TestCacheKey:
    def test_uid_not_part_of_key(self) -> None:
        assert cache_key(_ref(uid="a")) == cache_key(_ref(uid="b"))

    def test_key_components(self) -> None:
        assert cache_key(_ref()) == ("default", "Pod", "v1", "web-1")


class TestHitsAndMisses:
    async def test_second_lookup_served_from_cache(self, metrics: MetricsStore) -> None:
        reader = _reader_with("web-1")
        cache = ObjectMetadataCache(reader, metrics, capacity=10)

        first = await cache.get_object_metadata(_ref())
        second = await cache.get_object_metadata(_ref())

        assert first == second
        assert first.labels == {"app": "web-1"}
        assert len(reader.calls) == 1
        assert metrics.value("kube_api_read_cache_misses") == 1
        assert metrics.value("kube_api_read_cache_hits") == 1

    async def test_warm_cache_is_idempotent(self, metrics: MetricsStore) -> None:
        cache = ObjectMetadataCache(_reader_with("web-1"), metrics, capacity=10)
        results = [await cache.get_object_metadata(_ref()) for _ in range(3)]
        assert results[0] == results[1] == results[2]

    async def test_other_errors_propagate_and_are_not_cached(self, metrics: MetricsStore) -> None:
        reader = FakeReader(errors={"web-1": RuntimeError("apiserver unavailable")})
        cache = ObjectMetadataCache(reader, metrics, capacity=10)

        with pytest.raises(RuntimeError, match="apiserver unavailable"):
            await cache.get_object_metadata(_ref())
        with pytest.raises(RuntimeError):
            await cache.get_object_metadata(_ref())

        assert len(reader.calls) == 2
        assert len(cache) == 0


class TestNegativeResults:
    async def test_not_found_raises_and_is_memoised(self, metrics: MetricsStore) -> None:
        reader = FakeReader()
        cache = ObjectMetadataCache(reader, metrics, capacity=10)

        with pytest.raises(ObjectNotFoundError):
            await cache.get_object_metadata(_ref("gone"))
        with pytest.raises(ObjectNotFoundError):
            await cache.get_object_metadata(_ref("gone"))

        assert len(reader.calls) == 1
        assert metrics.value("kube_api_read_cache_hits") == 1
        assert _ref("gone") in cache


class TestEviction:
    async def test_least_recently_used_is_evicted(self, metrics: MetricsStore) -> None:
        reader = _reader_with("a", "b", "c")
        cache = ObjectMetadataCache(reader, metrics, capacity=2)

        await cache.get_object_metadata(_ref("a"))
        await cache.get_object_metadata(_ref("b"))
        await cache.get_object_metadata(_ref("a"))  # a is now most recent
        await cache.get_object_metadata(_ref("c"))  # evicts b

        assert _ref("a") in cache
        assert _ref("b") not in cache
        assert _ref("c") in cache

        await cache.get_object_metadata(_ref("b"))
        assert [r.name for r in reader.calls] == ["a", "b", "c", "b"]
        assert metrics.value("kube_api_read_cache_misses") == 4

    async def test_zero_capacity_reads_through(self, metrics: MetricsStore) -> None:
        reader = _reader_with("web-1")
        cache = ObjectMetadataCache(reader, metrics, capacity=0)

        await cache.get_object_metadata(_ref())
        await cache.get_object_metadata(_ref())

        assert len(cache) == 0
        assert len(reader.calls) == 2

    async def test_clear_drops_entries(self, metrics: MetricsStore) -> None:
        cache = ObjectMetadataCache(_reader_with("web-1"), metrics, capacity=5)
        await cache.get_object_metadata(_ref())
        cache.clear()
        assert len(cache) == 0


class TestCoalescing:
    async def test_concurrent_misses_issue_one_read(self, metrics: MetricsStore) -> None:
        reader = _reader_with("web-1", delay=0.05)
        cache = ObjectMetadataCache(reader, metrics, capacity=10)

        results = await asyncio.gather(*(cache.get_object_metadata(_ref()) for _ in range(10)))

        assert len(reader.calls) == 1
        assert all(r == results[0] for r in results)
        assert metrics.value("kube_api_read_cache_misses") == 1

    async def test_concurrent_misses_share_not_found(self, metrics: MetricsStore) -> None:
        reader = FakeReader(delay=0.05)
        cache = ObjectMetadataCache(reader, metrics, capacity=10)

        results = await asyncio.gather(
            *(cache.get_object_metadata(_ref("gone")) for _ in range(5)),
            return_exceptions=True,
        )

        assert len(reader.calls) == 1
        assert all(isinstance(r, ObjectNotFoundError) for r in results)

    async def test_concurrent_misses_share_errors(self, metrics: MetricsStore) -> None:
        reader = FakeReader(errors={"web-1": RuntimeError("boom")}, delay=0.05)
        cache = ObjectMetadataCache(reader, metrics, capacity=10)

        results = await asyncio.gather(
            *(cache.get_object_metadata(_ref()) for _ in range(3)),
            return_exceptions=True,
        )

        assert len(reader.calls) == 1
        assert all(isinstance(r, RuntimeError) for r in results)

    async def test_distinct_keys_read_independently(self, metrics: MetricsStore) -> None:
        reader = _reader_with("a", "b", delay=0.01)
        cache = ObjectMetadataCache(reader, metrics, capacity=10)

        await asyncio.gather(cache.get_object_metadata(_ref("a")), cache.get_object_metadata(_ref("b")))

        assert sorted(r.name for r in reader.calls) == ["a", "b"]

    async def test_cancelled_first_caller_does_not_fail_followers(self, metrics: MetricsStore) -> None:
        reader = _reader_with("web-1", delay=0.05)
        cache = ObjectMetadataCache(reader, metrics, capacity=10)

        first = asyncio.create_task(cache.get_object_metadata(_ref()))
        await asyncio.sleep(0)
        follower = asyncio.create_task(cache.get_object_metadata(_ref()))
        await asyncio.sleep(0)
        first.cancel()

        result = await follower

        assert first.cancelled()
        assert result.labels == {"app": "web-1"}
        assert len(reader.calls) == 1

    async def test_read_completes_after_sole_caller_cancelled(self, metrics: MetricsStore) -> None:
        reader = _reader_with("web-1", delay=0.02)
        cache = ObjectMetadataCache(reader, metrics, capacity=10)

        caller = asyncio.create_task(cache.get_object_metadata(_ref()))
        await asyncio.sleep(0)
        caller.cancel()
        await asyncio.sleep(0.05)

        assert _ref() in cache
        assert (await cache.get_object_metadata(_ref())).labels == {"app": "web-1"}
        assert len(reader.calls) == 1
