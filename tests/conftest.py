"""Shared fixtures and factories for kexporter tests.

Everything here runs without a Kubernetes cluster: the API server is
replaced by in-memory readers, fake list/watch callables and recording
registries.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from prometheus_client import CollectorRegistry

from kexporter.cache.reader import ObjectNotFoundError
from kexporter.models.events import (
    EnhancedEvent,
    InvolvedObject,
    ObjectReference,
    RawEvent,
)
from kexporter.observability.metrics import MetricsStore
from kexporter.sinks.base import Sink

# ---------------------------------------------------------------------------
# Timestamp helpers
# ---------------------------------------------------------------------------

NOW = datetime(2026, 2, 18, 12, 0, 0, tzinfo=UTC)


def iso(ts: datetime) -> str:
    return ts.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def iso_micro(ts: datetime) -> str:
    return ts.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


# ---------------------------------------------------------------------------
# Event factories
# ---------------------------------------------------------------------------


def make_raw_event(
    reason: str = "Failed",
    message: str = "Error: ImagePullBackOff",
    event_type: str = "Warning",
    namespace: str = "default",
    name: str = "web-1.17a3c9e2b4d5f6a7",
    kind: str = "Pod",
    object_name: str = "web-1",
    api_version: str = "v1",
    count: int = 1,
    first_timestamp: datetime | None = None,
    last_timestamp: datetime | None = None,
    event_time: datetime | None = None,
    series_last_observed: datetime | None = None,
    component: str = "kubelet",
    managed_fields: bool = True,
) -> dict[str, Any]:
    """Return a v1.Event document shaped like the API server's JSON."""
    if first_timestamp is None and last_timestamp is None and event_time is None and series_last_observed is None:
        last_timestamp = NOW - timedelta(seconds=10)
        first_timestamp = last_timestamp
    metadata: dict[str, Any] = {
        "name": name,
        "namespace": namespace,
        "uid": f"uid-{name}",
        "resourceVersion": "4242",
    }
    if managed_fields:
        metadata["managedFields"] = [{"manager": "kubelet", "operation": "Update"}]
    doc: dict[str, Any] = {
        "apiVersion": "v1",
        "kind": "Event",
        "metadata": metadata,
        "reason": reason,
        "message": message,
        "type": event_type,
        "count": count,
        "involvedObject": {
            "apiVersion": api_version,
            "kind": kind,
            "namespace": namespace,
            "name": object_name,
            "uid": f"uid-{object_name}",
        },
        "source": {"component": component, "host": "node-0"},
        "firstTimestamp": iso(first_timestamp) if first_timestamp else None,
        "lastTimestamp": iso(last_timestamp) if last_timestamp else None,
        "eventTime": iso_micro(event_time) if event_time else None,
    }
    if series_last_observed is not None:
        doc["series"] = {"count": count, "lastObservedTime": iso_micro(series_last_observed)}
    return doc


def make_enhanced_event(
    labels: dict[str, str] | None = None,
    annotations: dict[str, str] | None = None,
    deleted: bool = False,
    cluster_name: str = "",
    **kwargs: Any,
) -> EnhancedEvent:
    event = RawEvent.from_dict(make_raw_event(**kwargs))
    return EnhancedEvent(
        event=event,
        involved_object=InvolvedObject(
            reference=event.involved_object,
            labels=labels or {},
            annotations=annotations or {},
            deleted=deleted,
        ),
        cluster_name=cluster_name,
    )


def make_object(
    name: str = "web-1",
    namespace: str = "default",
    labels: dict[str, str] | None = None,
    annotations: dict[str, str] | None = None,
    owner_references: list[dict[str, Any]] | None = None,
    deletion_timestamp: str | None = None,
) -> dict[str, Any]:
    """Return an object document as the dynamic client would."""
    metadata: dict[str, Any] = {
        "name": name,
        "namespace": namespace,
        "labels": labels if labels is not None else {"app": "web"},
        "annotations": annotations if annotations is not None else {"team": "payments"},
        "ownerReferences": owner_references
        if owner_references is not None
        else [
            {
                "apiVersion": "apps/v1",
                "kind": "ReplicaSet",
                "name": "web-7b4f8c6d",
                "uid": "uid-rs",
                "controller": True,
            }
        ],
    }
    if deletion_timestamp:
        metadata["deletionTimestamp"] = deletion_timestamp
    return {"apiVersion": "v1", "kind": "Pod", "metadata": metadata}


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeReader:
    """In-memory ObjectReader keyed by (kind, namespace, name)."""

    def __init__(
        self,
        objects: dict[tuple[str, str, str], dict[str, Any]] | None = None,
        errors: dict[str, Exception] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.objects = objects if objects is not None else {}
        self.errors = errors or {}
        self.delay = delay
        self.calls: list[ObjectReference] = []

    async def read(self, ref: ObjectReference) -> dict[str, Any]:
        self.calls.append(ref)
        if self.delay:
            await asyncio.sleep(self.delay)
        if ref.name in self.errors:
            raise self.errors[ref.name]
        obj = self.objects.get((ref.kind, ref.namespace, ref.name))
        if obj is None:
            raise ObjectNotFoundError(ref)
        return obj


class RecordingRegistry:
    """EventSender that records (receiver, event) pairs."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, EnhancedEvent]] = []

    def send_event(self, name: str, event: EnhancedEvent) -> None:
        self.sent.append((name, event))

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.sent]


class RecordingSink(Sink):
    """Sink that records deliveries, optionally sleeping or failing."""

    def __init__(self, delay: float = 0.0, error: Exception | None = None) -> None:
        self.delay = delay
        self.error = error
        self.received: list[EnhancedEvent] = []
        self.closed = False

    @property
    def sink_type(self) -> str:
        return "recording"

    async def send(self, event: EnhancedEvent) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        self.received.append(event)

    async def close(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def metrics() -> MetricsStore:
    """MetricsStore on a private registry."""
    return MetricsStore(registry=CollectorRegistry())


@pytest.fixture()
def web_reader() -> FakeReader:
    """Reader that knows Pod/default/web-1."""
    return FakeReader(objects={("Pod", "default", "web-1"): make_object()})
