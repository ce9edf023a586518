"""Routing tree and router.

A Route node is evaluated depth-first:

1. if any ``drop`` rule matches, the event stops here (whole subtree);
2. every ``match`` rule must match (an empty list matches everything);
3. on a match the event is sent to each of the node's ``receivers`` and
   then offered to every child route, in order.

Siblings are independent: one event can reach several receivers through
several matching branches.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any, Protocol

import structlog

from kexporter.models.events import EnhancedEvent
from kexporter.routing.rules import Rule

_log = structlog.get_logger(component="routing")

_KNOWN_KEYS = frozenset({"drop", "match", "receivers", "routes"})


class EventSender(Protocol):
    """Anything that accepts an event for a named receiver (the registry)."""

    def send_event(self, name: str, event: EnhancedEvent) -> None: ...


@dataclass(frozen=True)
class Route:
    """One node of the routing tree. Immutable once built."""

    drop: tuple[Rule, ...] = ()
    match: tuple[Rule, ...] = ()
    receivers: tuple[str, ...] = ()
    routes: tuple[Route, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Route:
        """Build a route tree from its configuration mapping.

        Raises:
            ValueError: malformed node or rule.
        """
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValueError(f"route must be a mapping, got {type(data).__name__}")
        unknown = set(data) - _KNOWN_KEYS
        if unknown:
            raise ValueError(f"unknown route field(s): {', '.join(sorted(unknown))}")

        receivers = data.get("receivers") or []
        if isinstance(receivers, str):
            receivers = [receivers]
        return cls(
            drop=tuple(Rule.from_dict(r) for r in _as_list(data, "drop")),
            match=tuple(Rule.from_dict(r) for r in _as_list(data, "match")),
            receivers=tuple(str(r) for r in receivers),
            routes=tuple(cls.from_dict(r) for r in _as_list(data, "routes")),
        )

    def process_event(self, event: EnhancedEvent, registry: EventSender) -> None:
        for rule in self.drop:
            if rule.matches(event):
                return

        for rule in self.match:
            if not rule.matches(event):
                return

        for name in self.receivers:
            registry.send_event(name, event)

        for route in self.routes:
            route.process_event(event, registry)

    def receiver_names(self) -> Iterator[str]:
        """Yield every receiver name referenced anywhere in this subtree."""
        yield from self.receivers
        for route in self.routes:
            yield from route.receiver_names()


def _as_list(data: dict[str, Any], key: str) -> list[Any]:
    value = data.get(key) or []
    if not isinstance(value, list):
        raise ValueError(f"{key} must be a list")
    return value


class Router:
    """Routes every event through the current route tree.

    ``swap`` replaces the tree with a single reference assignment; a
    traversal already running keeps the tree it started with.
    """

    def __init__(self, route: Route, registry: EventSender) -> None:
        self._route = route
        self._registry = registry

    @property
    def route(self) -> Route:
        return self._route

    def swap(self, route: Route) -> None:
        self._route = route
        _log.info("route_tree_swapped", receivers=sorted(set(route.receiver_names())))

    def process_event(self, event: EnhancedEvent) -> None:
        route = self._route
        route.process_event(event, self._registry)

    __call__ = process_event
