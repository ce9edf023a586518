"""Match/drop predicates evaluated against an EnhancedEvent.

Every string field of a Rule is a regular expression applied with
``re.search`` (unanchored, so ``Failed`` matches ``FailedMount``); use
``^...$`` for an exact match. All fields that are set must match for the
rule to match. A rule with no fields matches every event.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from kexporter.models.events import EnhancedEvent

# config key -> Rule attribute
_STRING_FIELDS = {
    "type": "type",
    "kind": "kind",
    "namespace": "namespace",
    "reason": "reason",
    "message": "message",
    "apiVersion": "api_version",
    "component": "component",
    "host": "host",
}
_KNOWN_KEYS = frozenset(_STRING_FIELDS) | {"labels", "annotations", "minCount"}


def _compile(key: str, value: object) -> re.Pattern[str]:
    try:
        return re.compile(str(value))
    except re.error as exc:
        raise ValueError(f"invalid pattern for {key!r}: {value!r}: {exc}") from exc


@dataclass(frozen=True)
class Rule:
    """A conjunction of field predicates."""

    type: re.Pattern[str] | None = None
    kind: re.Pattern[str] | None = None
    namespace: re.Pattern[str] | None = None
    reason: re.Pattern[str] | None = None
    message: re.Pattern[str] | None = None
    api_version: re.Pattern[str] | None = None
    component: re.Pattern[str] | None = None
    host: re.Pattern[str] | None = None
    labels: dict[str, re.Pattern[str]] = field(default_factory=dict)
    annotations: dict[str, re.Pattern[str]] = field(default_factory=dict)
    min_count: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Rule:
        """Build a Rule from its configuration mapping.

        Raises:
            ValueError: unknown key, bad pattern or non-integer minCount.
        """
        if not isinstance(data, dict):
            raise ValueError(f"rule must be a mapping, got {type(data).__name__}")
        unknown = set(data) - _KNOWN_KEYS
        if unknown:
            raise ValueError(f"unknown rule field(s): {', '.join(sorted(unknown))}")

        kwargs: dict[str, Any] = {}
        for key, attr in _STRING_FIELDS.items():
            if data.get(key) not in (None, ""):
                kwargs[attr] = _compile(key, data[key])
        for key in ("labels", "annotations"):
            mapping = data.get(key) or {}
            if not isinstance(mapping, dict):
                raise ValueError(f"{key} must be a mapping")
            kwargs[key] = {str(k): _compile(f"{key}.{k}", v) for k, v in mapping.items()}
        if data.get("minCount") is not None:
            try:
                kwargs["min_count"] = int(data["minCount"])
            except (TypeError, ValueError) as exc:
                raise ValueError(f"minCount must be an integer, got {data['minCount']!r}") from exc
        return cls(**kwargs)

    def matches(self, ev: EnhancedEvent) -> bool:
        event = ev.event
        ref = ev.involved_object.reference
        checks = (
            (self.type, event.type),
            (self.kind, ref.kind),
            (self.namespace, event.namespace),
            (self.reason, event.reason),
            (self.message, event.message),
            (self.api_version, ref.api_version),
            (self.component, event.source_component or event.reporting_controller),
            (self.host, event.source_host),
        )
        for pattern, value in checks:
            if pattern is not None and pattern.search(value) is None:
                return False

        if not _mapping_matches(self.labels, ev.involved_object.labels):
            return False
        if not _mapping_matches(self.annotations, ev.involved_object.annotations):
            return False

        return event.count >= self.min_count


def _mapping_matches(patterns: dict[str, re.Pattern[str]], values: dict[str, str]) -> bool:
    for key, pattern in patterns.items():
        value = values.get(key)
        if value is None or pattern.search(value) is None:
            return False
    return True
