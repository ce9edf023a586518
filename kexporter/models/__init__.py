"""Core data structures for kexporter."""

from kexporter.models.config import ExporterConfig
from kexporter.models.events import (
    EnhancedEvent,
    EventSeries,
    InvolvedObject,
    ObjectMetadata,
    ObjectReference,
    OwnerReference,
    RawEvent,
)

__all__ = [
    "EnhancedEvent",
    "EventSeries",
    "ExporterConfig",
    "InvolvedObject",
    "ObjectMetadata",
    "ObjectReference",
    "OwnerReference",
    "RawEvent",
]
