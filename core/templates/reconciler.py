"""Cross-reference extracted tokens with the schema registry and drive repair."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from core.schema.models import ValidationResult
from core.schema.registry import SchemaRegistry
from core.utils.errors import InvalidPlaceholderError

logger = logging.getLogger("trustdocs.templates")


def reconcile(
    tokens: Iterable[str],
    registry: SchemaRegistry,
    mapping: Mapping[str, str] | None = None,
) -> ValidationResult:
    """Partition tokens into valid and invalid against the registry's field names.

    When ``mapping`` is given, each token is checked as the field it was
    mapped to; tokens without an entry are checked as themselves.
    """

    chosen = dict(mapping or {})
    return registry.validate(
        {token: (chosen.get(token) or "").strip() or token for token in sorted(set(tokens))}
    )


def build_repair_mapping(validation: ValidationResult) -> dict[str, str]:
    """Pre-populate each invalid token with its suggestion, or ``""`` when there is none."""

    return {
        (item.placeholder or item.field_name): item.suggestion or ""
        for item in validation.invalid_mappings
    }


def resolve_repair_mapping(
    repair: Mapping[str, str],
    registry: SchemaRegistry,
) -> dict[str, str]:
    """Verify every repaired token now names a valid field.

    Raises:
        InvalidPlaceholderError: When any entry is empty or still unknown.
    """

    cleaned = {token: (field or "").strip() for token, field in repair.items()}
    unresolved = {token: field for token, field in cleaned.items() if not field}
    validation = registry.validate(
        {token: field for token, field in cleaned.items() if field}
    )

    if unresolved or not validation.valid:
        logger.info(
            "repair mapping incomplete: %d empty, %d invalid",
            len(unresolved),
            validation.invalid_count,
        )
        remaining = {**build_repair_mapping(validation), **unresolved}
        raise InvalidPlaceholderError(
            "Every invalid placeholder must be mapped to a valid field",
            validation=validation,
            repair_mapping=remaining,
        )
    return cleaned
