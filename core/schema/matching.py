"""Rule-based suggestion and fuzzy matching for field names."""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from rapidfuzz.distance import Levenshtein


def suggest_field(
    name: str,
    available_fields: Iterable[str],
    aliases: Mapping[str, str],
) -> str | None:
    """Suggest a valid field for an unknown name.

    Order: exact case-insensitive match, substring containment in either
    direction (first hit in registry order), then the alias table. The alias
    target is only suggested when it is itself an available field.
    """

    candidates = list(available_fields)
    lowered = name.lower()

    for field_name in candidates:
        if field_name.lower() == lowered:
            return field_name

    if lowered:
        for field_name in candidates:
            candidate = field_name.lower()
            if lowered in candidate or candidate in lowered:
                return field_name

    alias_target = aliases.get(lowered)
    if alias_target is not None and alias_target in candidates:
        return alias_target
    return None


def similarity(left: str, right: str) -> float:
    """Return (longer_len - edit_distance) / longer_len, 1.0 for two empty strings."""

    return Levenshtein.normalized_similarity(left, right)


def find_similar_key(
    token: str,
    keys: Iterable[str],
    *,
    threshold: float,
    allow_substring: bool = True,
) -> str | None:
    """Find the first key that contains/is contained by token or is similar enough."""

    token_lower = token.lower()
    if not token_lower:
        return None

    for key in keys:
        key_lower = key.lower()
        if not key_lower:
            continue
        if allow_substring and (token_lower in key_lower or key_lower in token_lower):
            return key
        if similarity(key_lower, token_lower) > threshold:
            return key
    return None
