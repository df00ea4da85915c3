from __future__ import annotations

import pytest

from core.schema.labels import categorize_field, generate_label, infer_type_from_value
from core.schema.matching import find_similar_key, similarity, suggest_field

FIELDS = ["first_name", "last_name", "email", "full_name", "current_date"]
ALIASES = {"name": "full_name", "mail": "email", "zip": "postal_code"}


def test_suggest_exact_case_insensitive_match() -> None:
    assert suggest_field("EMAIL", FIELDS, ALIASES) == "email"


def test_suggest_substring_in_registry_order() -> None:
    assert suggest_field("client_email_address", FIELDS, ALIASES) == "email"
    assert suggest_field("last", FIELDS, ALIASES) == "last_name"


def test_suggest_alias_only_when_target_exists() -> None:
    assert suggest_field("mail", ["first_name", "email"], ALIASES) == "email"
    assert suggest_field("zip", FIELDS, ALIASES) is None


def test_suggest_substring_wins_over_alias() -> None:
    assert suggest_field("name", FIELDS, ALIASES) == "first_name"


def test_suggest_returns_none_without_match() -> None:
    assert suggest_field("xyz", FIELDS, ALIASES) is None


def test_similarity_bounds() -> None:
    assert similarity("", "") == pytest.approx(1.0)
    assert similarity("abc", "abc") == pytest.approx(1.0)
    assert similarity("abcd", "abxd") == pytest.approx(0.75)


def test_find_similar_key_prefers_substring() -> None:
    keys = ["email", "client_first_name", "first_name"]

    assert find_similar_key("first_name", keys, threshold=0.7) == "client_first_name"


def test_find_similar_key_uses_edit_distance_threshold() -> None:
    keys = ["occupation", "company"]

    assert find_similar_key("ocupation", keys, threshold=0.7, allow_substring=False) == "occupation"
    assert find_similar_key("xyz", keys, threshold=0.7) is None


def test_find_similar_key_threshold_is_strict() -> None:
    assert find_similar_key("abcd", ["abxd"], threshold=0.75, allow_substring=False) is None
    assert find_similar_key("abcd", ["abxd"], threshold=0.74, allow_substring=False) == "abxd"


def test_labels_and_categories() -> None:
    assert generate_label("tax_id") == "Tax ID"
    assert generate_label("spouse_name") == "Spouse Name"
    assert categorize_field("work_email") == "contact"
    assert categorize_field("custom_score") == "custom"


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (None, "string"),
        (True, "boolean"),
        (3, "number"),
        ({"a": 1}, "json"),
        ("2024-03-01", "date"),
        ("2024-03-01T10:00:00Z", "datetime"),
        ("ada@example.com", "email"),
    ],
)
def test_infer_type_from_value(value: object, expected: str) -> None:
    assert infer_type_from_value(value) == expected
