"""Tiny ``{{ .path }}`` templating against the serialised event.

Paths are dotted keys into ``EnhancedEvent.to_dict()``, e.g.
``{{ .involvedObject.labels.app }}`` or ``{{ .reason }}``. Only values
containing ``{{`` and ``}}`` are treated as templates.

A receiver ``layout`` is a mapping of such templates. ``serialize_event``
renders it into the payload a sink sends in place of the full event.
"""

from __future__ import annotations

import re
from typing import Any

_PLACEHOLDER = re.compile(r"\{\{\s*\.([A-Za-z0-9_./-]+)\s*\}\}")


class TemplateError(ValueError):
    """A placeholder path does not resolve against the event."""


def is_template(value: str) -> bool:
    return "{{" in value and "}}" in value


def lookup(data: Any, path: str) -> Any:
    current = data
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            raise TemplateError(f"path {path!r} not found")
    return current


def render(value: str, data: dict[str, Any]) -> str:
    """Substitute every placeholder in *value*.

    Raises:
        TemplateError: a placeholder path is missing.
    """
    return _PLACEHOLDER.sub(lambda m: str(lookup(data, m.group(1))), value)


def render_or_keep(value: str, data: dict[str, Any]) -> str:
    """Render *value* if it is a template; fall back to the literal on error."""
    if not is_template(value):
        return value
    try:
        return render(value, data)
    except TemplateError:
        return value


def render_layout(layout: Any, data: dict[str, Any]) -> Any:
    """Render every template string inside *layout*, recursing into dicts and lists.

    A string that is exactly one placeholder takes the referenced value
    unchanged, so ``"{{ .involvedObject.labels }}"`` stays a mapping.
    Non-string scalars are returned as-is.

    Raises:
        TemplateError: a placeholder path is missing.
    """
    if isinstance(layout, dict):
        return {key: render_layout(value, data) for key, value in layout.items()}
    if isinstance(layout, list):
        return [render_layout(item, data) for item in layout]
    if isinstance(layout, str) and is_template(layout):
        whole = _PLACEHOLDER.fullmatch(layout.strip())
        if whole is not None:
            return lookup(data, whole.group(1))
        return render(layout, data)
    return layout


def serialize_event(data: dict[str, Any], layout: dict[str, Any] | None) -> dict[str, Any]:
    """Return the payload for *data*: the rendered *layout*, or *data* itself without one."""
    if not layout:
        return data
    return render_layout(layout, data)
