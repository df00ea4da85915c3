"""Apply schema field renames and removals to stored templates."""

from __future__ import annotations

import html as html_lib
import logging
import re
from collections.abc import Callable, Iterable

from core.storage.base import RecordStore
from core.templates.markers import (
    FIELD_ATTR,
    INSTANCE_ATTR,
    LITERAL_RE,
    MARKER_CLASS,
    field_literal,
    marker_html,
    new_instance_id,
)
from core.templates.models import FieldChange, MigrationResult, TemplateRecord
from core.templates.persistence import TEMPLATES_TABLE
from core.utils.timestamps import utc_now_iso

logger = logging.getLogger("trustdocs.templates")

_SPAN_RE = re.compile(r"<span\b([^>]*)>([^<]*)</span>", re.IGNORECASE)
_CLASS_RE = re.compile(r'\bclass="([^"]*)"', re.IGNORECASE)
_FIELD_ATTR_RE = re.compile(r"\b" + re.escape(FIELD_ATTR) + r'="([^"]*)"', re.IGNORECASE)
_INSTANCE_ATTR_RE = re.compile(r"\b" + re.escape(INSTANCE_ATTR) + r'="([^"]*)"', re.IGNORECASE)


def removed_field_text(field_name: str) -> str:
    return f"[{field_name.upper()}_REMOVED]"


def migrate_template_fields(
    template: TemplateRecord, changes: Iterable[FieldChange]
) -> tuple[TemplateRecord, MigrationResult]:
    """Return an updated copy of ``template`` with every change applied.

    Marker spans bound to the changed field are rewritten whole, so the
    ``data-field`` attribute and the displayed literal stay in agreement.
    A rename keeps any non-canonical mapping key and only updates its field.
    """

    html = template.html_content
    mappings = dict(template.field_mappings)
    result = MigrationResult(template_id=template.id, changed=False)

    for change in changes:
        old_literal = field_literal(change.field)
        if change.kind == "rename":
            if not change.new_field:
                raise ValueError(f"rename of '{change.field}' requires new_field")
            new_field = change.new_field
            html, count = _rewrite_markers(
                html, change.field, lambda instance_id: marker_html(new_field, instance_id)
            )
            html, literal_count = _literal_pattern(change.field).subn(field_literal(new_field), html)
            count += literal_count
            renamed = {}
            for literal, field_name in mappings.items():
                if literal == old_literal:
                    renamed[field_literal(new_field)] = new_field
                    count += 1
                elif field_name == change.field:
                    renamed[literal] = new_field
                    count += 1
                else:
                    renamed[literal] = field_name
            mappings = renamed
            if count:
                result.renamed.append(change.field)
        else:
            removed_text = removed_field_text(change.field)
            html, count = _rewrite_markers(
                html, change.field, lambda _instance_id: html_lib.escape(removed_text)
            )
            html, literal_count = _literal_pattern(change.field).subn(removed_text, html)
            count += literal_count
            kept = {
                literal: field_name
                for literal, field_name in mappings.items()
                if field_name != change.field and literal != old_literal
            }
            count += len(mappings) - len(kept)
            mappings = kept
            if count:
                result.removed.append(change.field)

    result.changed = bool(result.renamed or result.removed)
    updated = template.model_copy(update={"html_content": html, "field_mappings": mappings})
    return updated, result


def migrate_stored_templates(
    records: RecordStore, changes: list[FieldChange]
) -> list[MigrationResult]:
    results: list[MigrationResult] = []
    for row in records.select(TEMPLATES_TABLE):
        template = TemplateRecord.model_validate(row)
        updated, result = migrate_template_fields(template, changes)
        if result.changed:
            records.update(
                TEMPLATES_TABLE,
                template.id,
                {
                    "html_content": updated.html_content,
                    "field_mappings": updated.field_mappings,
                    "updated_at": utc_now_iso(),
                },
            )
            logger.info(
                "migrated template %s renamed=%s removed=%s",
                template.id,
                result.renamed,
                result.removed,
            )
        results.append(result)
    return results


def _literal_pattern(field_name: str) -> re.Pattern[str]:
    return re.compile(r"\{\{\s*" + re.escape(field_name) + r"\s*\}\}")


def _rewrite_markers(
    html: str, field_name: str, render: Callable[[str], str]
) -> tuple[str, int]:
    """Replace each marker span bound to ``field_name`` with ``render(instance_id)``."""

    count = 0

    def replace(match: re.Match[str]) -> str:
        nonlocal count
        attrs, text = match.group(1), match.group(2)
        class_match = _CLASS_RE.search(attrs)
        if class_match is None or MARKER_CLASS not in class_match.group(1).split():
            return match.group(0)
        field_match = _FIELD_ATTR_RE.search(attrs)
        if field_match and field_match.group(1):
            bound = html_lib.unescape(field_match.group(1))
        else:
            literal = LITERAL_RE.search(html_lib.unescape(text))
            bound = literal.group(1) if literal else None
        if bound != field_name:
            return match.group(0)
        instance_match = _INSTANCE_ATTR_RE.search(attrs)
        instance_id = html_lib.unescape(instance_match.group(1)) if instance_match else ""
        count += 1
        return render(instance_id or new_instance_id())

    return _SPAN_RE.sub(replace, html), count
