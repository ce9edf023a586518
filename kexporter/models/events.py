"""Core event data structures.

RawEvent is parsed from the API server's ``v1.Event`` JSON document.
EnhancedEvent pairs a RawEvent with the resolved metadata of the object it
concerns and is what routing and delivery operate on.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


def parse_time(value: object) -> datetime | None:
    """Parse a Kubernetes timestamp (``Time`` or ``MicroTime``).

    Returns None for missing values and for the zero time, which the API
    server may serialise as ``0001-01-01T00:00:00Z``.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.year <= 1:
        return None
    return parsed


@dataclass(frozen=True)
class ObjectReference:
    """Reference to the object an event is about (``involvedObject``)."""

    kind: str
    name: str
    namespace: str = ""
    api_version: str = ""
    uid: str = ""
    resource_version: str = ""
    field_path: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ObjectReference:
        data = data or {}
        return cls(
            kind=str(data.get("kind") or ""),
            name=str(data.get("name") or ""),
            namespace=str(data.get("namespace") or ""),
            api_version=str(data.get("apiVersion") or ""),
            uid=str(data.get("uid") or ""),
            resource_version=str(data.get("resourceVersion") or ""),
            field_path=str(data.get("fieldPath") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"kind": self.kind, "name": self.name}
        if self.namespace:
            out["namespace"] = self.namespace
        if self.api_version:
            out["apiVersion"] = self.api_version
        if self.uid:
            out["uid"] = self.uid
        if self.resource_version:
            out["resourceVersion"] = self.resource_version
        if self.field_path:
            out["fieldPath"] = self.field_path
        return out

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.kind}/{self.namespace}/{self.name}"
        return f"{self.kind}/{self.name}"


@dataclass(frozen=True)
class OwnerReference:
    """One entry of an object's ``metadata.ownerReferences``."""

    kind: str
    name: str
    uid: str = ""
    api_version: str = ""
    controller: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OwnerReference:
        return cls(
            kind=str(data.get("kind") or ""),
            name=str(data.get("name") or ""),
            uid=str(data.get("uid") or ""),
            api_version=str(data.get("apiVersion") or ""),
            controller=bool(data.get("controller") or False),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.name,
            "uid": self.uid,
            "controller": self.controller,
        }


@dataclass(frozen=True)
class EventSeries:
    """Aggregation data for a repeating event (``series``)."""

    count: int = 0
    last_observed_time: datetime | None = None


@dataclass(frozen=True)
class RawEvent:
    """A single observation of a ``v1.Event`` as delivered by the API server.

    ``raw`` keeps the full JSON document (minus managed fields) so that sinks
    can serialise fields this class does not model explicitly.
    """

    name: str
    namespace: str
    reason: str
    message: str
    involved_object: ObjectReference
    type: str = ""
    uid: str = ""
    count: int = 0
    first_timestamp: datetime | None = None
    last_timestamp: datetime | None = None
    event_time: datetime | None = None
    series: EventSeries | None = None
    source_component: str = ""
    source_host: str = ""
    reporting_controller: str = ""
    reporting_instance: str = ""
    action: str = ""
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> RawEvent:
        metadata = raw.get("metadata") or {}
        source = raw.get("source") or {}
        series_raw = raw.get("series")
        series = None
        if series_raw:
            series = EventSeries(
                count=int(series_raw.get("count") or 0),
                last_observed_time=parse_time(series_raw.get("lastObservedTime")),
            )
        return cls(
            name=str(metadata.get("name") or ""),
            namespace=str(metadata.get("namespace") or ""),
            uid=str(metadata.get("uid") or ""),
            reason=str(raw.get("reason") or ""),
            message=str(raw.get("message") or ""),
            type=str(raw.get("type") or ""),
            count=int(raw.get("count") or 0),
            involved_object=ObjectReference.from_dict(raw.get("involvedObject")),
            first_timestamp=parse_time(raw.get("firstTimestamp")),
            last_timestamp=parse_time(raw.get("lastTimestamp")),
            event_time=parse_time(raw.get("eventTime")),
            series=series,
            source_component=str(source.get("component") or ""),
            source_host=str(source.get("host") or ""),
            reporting_controller=str(raw.get("reportingComponent") or raw.get("reportingController") or ""),
            reporting_instance=str(raw.get("reportingInstance") or ""),
            action=str(raw.get("action") or ""),
            raw=raw,
        )

    def most_recent_timestamp(self) -> datetime | None:
        """Return the timestamp of the latest activity recorded on this event.

        Priority: series.lastObservedTime, then lastTimestamp, then eventTime,
        then firstTimestamp.
        """
        if self.series is not None and self.series.last_observed_time is not None:
            return self.series.last_observed_time
        if self.last_timestamp is not None:
            return self.last_timestamp
        if self.event_time is not None:
            return self.event_time
        return self.first_timestamp


@dataclass(frozen=True)
class ObjectMetadata:
    """Metadata resolved for an involved object."""

    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    owner_references: tuple[OwnerReference, ...] = ()
    deleted: bool = False

    @classmethod
    def from_object(cls, obj: dict[str, Any]) -> ObjectMetadata:
        """Extract metadata from a full object document as returned by the API."""
        metadata = obj.get("metadata") or {}
        return cls(
            labels={str(k): str(v) for k, v in (metadata.get("labels") or {}).items()},
            annotations={str(k): str(v) for k, v in (metadata.get("annotations") or {}).items()},
            owner_references=tuple(OwnerReference.from_dict(o) for o in metadata.get("ownerReferences") or []),
            deleted=bool(metadata.get("deletionTimestamp")),
        )


@dataclass(frozen=True)
class InvolvedObject:
    """The involved object reference extended with its resolved metadata."""

    reference: ObjectReference
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    owner_references: tuple[OwnerReference, ...] = ()
    deleted: bool = False

    @classmethod
    def resolved(cls, reference: ObjectReference, metadata: ObjectMetadata) -> InvolvedObject:
        return cls(
            reference=reference,
            labels=dict(metadata.labels),
            annotations=dict(metadata.annotations),
            owner_references=metadata.owner_references,
            deleted=metadata.deleted,
        )

    def to_dict(self) -> dict[str, Any]:
        out = self.reference.to_dict()
        if self.labels:
            out["labels"] = dict(self.labels)
        if self.annotations:
            out["annotations"] = dict(self.annotations)
        if self.owner_references:
            out["ownerReferences"] = [o.to_dict() for o in self.owner_references]
        out["deleted"] = self.deleted
        return out


@dataclass(frozen=True)
class EnhancedEvent:
    """A RawEvent enriched with involved-object metadata.

    Created once per observation by the EventWatcher, consumed by the router
    and sinks. Immutable: sinks that need to keep it past their own send call
    must copy what they need.
    """

    event: RawEvent
    involved_object: InvolvedObject
    cluster_name: str = ""

    @property
    def reason(self) -> str:
        return self.event.reason

    @property
    def message(self) -> str:
        return self.event.message

    @property
    def namespace(self) -> str:
        return self.event.namespace

    def to_dict(self) -> dict[str, Any]:
        """Serialise to the API server's JSON shape, extended with metadata."""
        out = copy.deepcopy(self.event.raw)
        out.setdefault("metadata", {"name": self.event.name, "namespace": self.event.namespace})
        out.setdefault("reason", self.event.reason)
        out.setdefault("message", self.event.message)
        out.setdefault("type", self.event.type)
        out.setdefault("count", self.event.count)
        out["involvedObject"] = self.involved_object.to_dict()
        if self.cluster_name:
            out["clusterName"] = self.cluster_name
        return out
