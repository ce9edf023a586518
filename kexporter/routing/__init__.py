"""Routing engine: rule predicates and the recursive route tree."""

from kexporter.routing.route import EventSender, Route, Router
from kexporter.routing.rules import Rule

__all__ = ["EventSender", "Route", "Router", "Rule"]
