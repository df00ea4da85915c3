from __future__ import annotations

import io
from pathlib import Path

import pytest
from docx import Document

from core.config.models import MatchingConfig
from core.schema.registry import SchemaRegistry
from core.storage.local import JsonRecordStore
from core.templates.extractor import extract_placeholders
from core.templates.reconciler import build_repair_mapping, reconcile, resolve_repair_mapping
from core.utils.errors import InvalidPlaceholderError


@pytest.fixture
def registry(tmp_path: Path) -> SchemaRegistry:
    config = MatchingConfig(aliases={"name": "full_name", "firstname": "first_name"})
    return SchemaRegistry(JsonRecordStore(tmp_path / "records.json"), config)


def test_reconcile_all_valid(registry: SchemaRegistry) -> None:
    result = reconcile({"first_name", "email"}, registry)

    assert result.valid is True
    assert [item.name for item in result.valid_placeholders] == ["email", "first_name"]


def test_reconcile_partitions_invalid_tokens(registry: SchemaRegistry) -> None:
    result = reconcile(["firstname", "email", "foo_bar"], registry)

    assert result.valid is False
    assert result.invalid_field_names() == ["firstname", "foo_bar"]


def test_reconcile_checks_mapped_field_instead_of_token(registry: SchemaRegistry) -> None:
    result = reconcile(["client_name", "foo_bar"], registry, {"client_name": "full_name", "foo_bar": " "})

    assert result.valid is False
    assert [item.name for item in result.valid_placeholders] == ["client_name"]
    assert result.invalid_field_names() == ["foo_bar"]


def test_build_repair_mapping_keys_by_token(registry: SchemaRegistry) -> None:
    result = reconcile(["firstname", "foo_bar"], registry)

    assert build_repair_mapping(result) == {"firstname": "first_name", "foo_bar": ""}


def test_build_repair_mapping_for_mapped_token(registry: SchemaRegistry) -> None:
    result = reconcile(["client_nm"], registry, {"client_nm": "firstname"})

    assert build_repair_mapping(result) == {"client_nm": "first_name"}


def test_resolve_repair_mapping_accepts_complete_repair(registry: SchemaRegistry) -> None:
    assert resolve_repair_mapping({"firstname": " first_name "}, registry) == {
        "firstname": "first_name"
    }


def test_resolve_repair_mapping_rejects_empty_or_unknown(registry: SchemaRegistry) -> None:
    with pytest.raises(InvalidPlaceholderError) as exc_info:
        resolve_repair_mapping({"firstname": "first_name", "foo": "", "bar": "nope"}, registry)

    assert exc_info.value.repair_mapping == {"foo": "", "bar": ""}
    assert exc_info.value.validation.invalid_field_names() == ["nope"]


def test_extracted_tokens_reconcile_with_unknown_field(registry: SchemaRegistry) -> None:
    document = Document()
    document.add_paragraph("{first_name} and {unknown_field}")
    buffer = io.BytesIO()
    document.save(buffer)

    tokens = extract_placeholders(buffer.getvalue()).placeholders
    result = reconcile(tokens, registry)

    assert tokens == {"first_name", "unknown_field"}
    assert (result.valid_count, result.invalid_count) == (1, 1)
    assert result.invalid_mappings[0].field_name == "unknown_field"
    assert result.invalid_mappings[0].suggestion is None
