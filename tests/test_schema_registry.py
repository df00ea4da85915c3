from __future__ import annotations

import logging
from pathlib import Path

import pytest

from core.config.models import MatchingConfig
from core.schema.registry import CLIENTS_TABLE, SchemaRegistry
from core.storage.local import JsonRecordStore


class _FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _registry(tmp_path: Path, **kwargs) -> tuple[SchemaRegistry, JsonRecordStore]:
    store = JsonRecordStore(tmp_path / "records.json")
    config = MatchingConfig(aliases={"firstname": "first_name", "name": "full_name"})
    return SchemaRegistry(store, config, **kwargs), store


def test_empty_store_falls_back_to_default_columns(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    registry, _ = _registry(tmp_path)

    with caplog.at_level(logging.WARNING, logger="trustdocs.schema"):
        names = registry.field_names()

    assert "first_name" in names
    assert "email" in names
    assert registry.metadata().discovery_method == "default"
    assert any("default column list" in record.getMessage() for record in caplog.records)


def test_computed_fields_follow_client_fields(tmp_path: Path) -> None:
    registry, _ = _registry(tmp_path)

    names = registry.field_names()

    for computed in ("full_name", "full_address", "current_date", "current_year", "current_datetime"):
        assert computed in names
        assert names.index(computed) > names.index("first_name")
    assert registry.get_field("full_name").computed is True
    assert registry.list_fields(include_computed=False)
    assert all(not item.computed for item in registry.list_fields(include_computed=False))


def test_catalog_discovery_excludes_system_columns(tmp_path: Path) -> None:
    registry, store = _registry(tmp_path)
    store.set_columns(
        CLIENTS_TABLE,
        [
            {"name": "id", "type": "uuid"},
            {"name": "first_name", "type": "text"},
            {"name": "last_name", "type": "text"},
            {"name": "dob", "type": "date"},
            {"name": "created_at", "type": "timestamp with time zone"},
        ],
    )

    names = registry.field_names()

    assert "id" not in names
    assert "created_at" not in names
    assert registry.get_field("dob").label == "Date of Birth"
    assert registry.get_field("dob").type == "date"
    assert "full_name" in names
    assert "full_address" not in names
    assert registry.metadata().discovery_method == "catalog"


def test_sample_discovery_infers_types(tmp_path: Path) -> None:
    registry, store = _registry(tmp_path)
    store.insert(
        CLIENTS_TABLE,
        {"id": "c1", "first_name": "Ada", "email": "ada@example.com", "created_at": "2024-01-01"},
    )

    assert registry.get_field("email").type == "email"
    assert registry.get_field("created_at") is None
    assert registry.metadata().discovery_method == "sample"


def test_validate_partitions_and_suggests(tmp_path: Path) -> None:
    registry, _ = _registry(tmp_path)

    result = registry.validate(
        {"{{first_name}}": "first_name", "{{firstname}}": "firstname", "{{zzz}}": "zzz"}
    )

    assert result.valid is False
    assert result.valid_count == 1
    assert result.invalid_count == 2
    assert result.total_count == 3
    assert result.valid_placeholders[0].name == "{{first_name}}"
    suggestions = {item.field_name: item.suggestion for item in result.invalid_mappings}
    assert suggestions == {"firstname": "first_name", "zzz": None}
    assert result.invalid_mappings[0].placeholder == "{{firstname}}"


def test_validate_case_insensitive_suggestion(tmp_path: Path) -> None:
    registry, _ = _registry(tmp_path)

    result = registry.validate({"{{Email}}": "Email"})

    assert result.invalid_mappings[0].suggestion == "email"


def test_validate_warns_on_multiple_usage(tmp_path: Path) -> None:
    registry, _ = _registry(tmp_path)

    result = registry.validate(
        {
            "{{email}}": "email",
            "{{contact}}": "email",
            "{{current_date}}": "current_date",
            "{{today}}": "current_date",
        }
    )

    assert result.valid is True
    assert [(item.field_name, item.count) for item in result.warnings] == [("email", 2)]


def test_validate_accepts_extra_field_names(tmp_path: Path) -> None:
    registry, _ = _registry(tmp_path)

    result = registry.validate({"{{trust_name}}": "trust_name"}, extra_field_names=["trust_name"])

    assert result.valid is True
    assert result.valid_placeholders[0].field.custom is True


def test_create_placeholder_invalidates_cache(tmp_path: Path) -> None:
    registry, _ = _registry(tmp_path)
    assert not registry.is_valid_field("policy_number")

    created = registry.create_placeholder("policy_number", "Policy Number")

    assert created.name == "policy_number"
    field = registry.get_field("policy_number")
    assert field is not None
    assert field.category == "custom"
    assert field.source == "placeholder"
    assert [item.name for item in registry.list_placeholders()] == ["policy_number"]


@pytest.mark.parametrize("name", ["Policy", "1policy", "policy-number", ""])
def test_create_placeholder_rejects_bad_names(tmp_path: Path, name: str) -> None:
    registry, _ = _registry(tmp_path)

    with pytest.raises(ValueError):
        registry.create_placeholder(name, "Label")


def test_create_placeholder_rejects_duplicates(tmp_path: Path) -> None:
    registry, _ = _registry(tmp_path)
    registry.create_placeholder("policy_number", "Policy Number")

    with pytest.raises(ValueError, match="already exists"):
        registry.create_placeholder("policy_number", "Again")


def test_cache_expires_after_ttl(tmp_path: Path) -> None:
    clock = _FakeClock()
    store = JsonRecordStore(tmp_path / "records.json")
    registry = SchemaRegistry(store, MatchingConfig(schema_cache_ttl_seconds=10), clock=clock)

    assert registry.metadata().is_cached is False
    registry.field_names()
    assert registry.metadata().is_cached is True

    store.set_columns(CLIENTS_TABLE, [{"name": "trust_name", "type": "text"}])
    assert "trust_name" not in registry.field_names()

    clock.now += 10
    assert "trust_name" in registry.field_names()
    assert registry.metadata().discovery_method == "catalog"


def test_refresh_rediscovers_immediately(tmp_path: Path) -> None:
    registry, store = _registry(tmp_path)
    registry.field_names()
    store.set_columns(CLIENTS_TABLE, [{"name": "trust_name", "type": "text"}])

    fields = registry.refresh()

    assert "trust_name" in [item.name for item in fields]


def test_fields_by_category_groups_fields(tmp_path: Path) -> None:
    registry, _ = _registry(tmp_path)

    grouped = registry.fields_by_category()

    assert "first_name" in [item.name for item in grouped["personal"]]
    assert "current_date" in [item.name for item in grouped["system"]]
    assert list(grouped) == sorted(grouped)
