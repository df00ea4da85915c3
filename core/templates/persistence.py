"""Template field-mapping persistence with re-derivation and confirmation."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from core.schema.models import ValidationResult
from core.schema.registry import SchemaRegistry
from core.storage.base import RecordStore
from core.templates.markers import find_literals
from core.templates.models import DetectedPlaceholder, SaveOutcome, TemplateRecord
from core.utils.errors import ConfirmationRequiredError
from core.utils.timestamps import utc_now_iso

logger = logging.getLogger("trustdocs.templates")

TEMPLATES_TABLE = "document_templates"


def derive_field_mapping(html: str, supplied: Mapping[str, str] | None = None) -> dict[str, str]:
    """Rebuild ``literal -> field`` from the literals present in ``html``.

    A supplied entry is honoured only when its literal still occurs in the
    markup; every other literal maps to its own token name.
    """

    overrides = dict(supplied or {})
    mapping: dict[str, str] = {}
    for literal, token in find_literals(html):
        if literal in mapping:
            continue
        mapping[literal] = (overrides.get(literal) or "").strip() or token
    return mapping


def detected_placeholders(
    html: str, mapping: Mapping[str, str], validation: ValidationResult
) -> list[DetectedPlaceholder]:
    valid_fields = {item.field.name for item in validation.valid_placeholders}
    seen: set[str] = set()
    detected: list[DetectedPlaceholder] = []
    for literal, token in find_literals(html):
        if token in seen:
            continue
        seen.add(token)
        target = mapping.get(literal, token)
        detected.append(
            DetectedPlaceholder(name=token, field=target if target in valid_fields else None)
        )
    return detected


def load_template(records: RecordStore, template_id: str) -> TemplateRecord:
    return TemplateRecord.model_validate(records.get(TEMPLATES_TABLE, template_id))


def save_template(
    records: RecordStore,
    registry: SchemaRegistry,
    template_id: str,
    html: str,
    mapping: Mapping[str, str] | None = None,
    *,
    confirm: bool = False,
    extra_field_names: Iterable[str] = (),
) -> SaveOutcome:
    """Persist html plus a mapping recomputed from it.

    Raises:
        RecordNotFoundError: When the template does not exist.
        ConfirmationRequiredError: When invalid entries remain and the caller
            has not confirmed the save.
    """

    load_template(records, template_id)

    derived = derive_field_mapping(html, mapping)
    validation = registry.validate(derived, extra_field_names=extra_field_names)
    if not validation.valid:
        if not confirm:
            raise ConfirmationRequiredError(
                f"{validation.invalid_count} placeholder(s) reference unknown fields",
                validation=validation,
            )
        logger.warning(
            "saving template %s with %d invalid mapping(s): %s",
            template_id,
            validation.invalid_count,
            ", ".join(validation.invalid_field_names()),
        )

    row = records.update(
        TEMPLATES_TABLE,
        template_id,
        {
            "html_content": html,
            "field_mappings": derived,
            "detected_placeholders": [
                item.model_dump(mode="json")
                for item in detected_placeholders(html, derived, validation)
            ],
            "updated_at": utc_now_iso(),
        },
    )
    return SaveOutcome(
        template=TemplateRecord.model_validate(row),
        field_mappings=derived,
        validation=validation,
        confirmed_with_invalid=not validation.valid,
    )
