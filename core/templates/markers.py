"""Placeholder literal and marker markup shared by templates, editor and populator."""

from __future__ import annotations

import html
import re
import uuid

MARKER_CLASS = "field-placeholder"
FIELD_ATTR = "data-field"
INSTANCE_ATTR = "data-instance-id"

LITERAL_RE = re.compile(r"\{\{\s*([a-zA-Z_][a-zA-Z0-9_]*)\s*\}\}")


def field_literal(field_name: str) -> str:
    return "{{" + field_name + "}}"


def new_instance_id() -> str:
    return f"field-{uuid.uuid4().hex[:12]}"


def marker_html(field_name: str, instance_id: str) -> str:
    """Render the inline marker element bound to one mapping instance."""

    name = html.escape(field_name, quote=True)
    return (
        f'<span class="{MARKER_CLASS}" {FIELD_ATTR}="{name}" '
        f'{INSTANCE_ATTR}="{html.escape(instance_id, quote=True)}" '
        f'title="Field: {name}">{html.escape(field_literal(field_name))}</span>'
    )


def find_literals(text: str) -> list[tuple[str, str]]:
    """Return ``(literal, token)`` pairs in document order, duplicates included."""

    return [(match.group(0), match.group(1)) for match in LITERAL_RE.finditer(text)]
