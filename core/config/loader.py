"""Matching configuration loading utilities."""

from __future__ import annotations

from pathlib import Path

import yaml  # type: ignore[import-untyped]
from pydantic import ValidationError

from core.config.models import MatchingConfig


def load_matching_config(path: Path | None = None) -> MatchingConfig:
    """Load and validate matching configuration from YAML."""

    config_path = path or Path(__file__).with_name("matching.yaml")

    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ValueError(f"Matching config not found: {config_path}") from exc
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in matching config: {config_path}") from exc

    if not isinstance(raw, dict):
        raise ValueError(f"Matching config must contain a mapping: {config_path}")

    normalized = _normalize_aliases(raw, config_path)

    try:
        return MatchingConfig.model_validate(normalized)
    except ValidationError as exc:
        raise ValueError(f"Invalid matching config schema: {config_path}") from exc


def _normalize_aliases(raw: dict[object, object], config_path: Path) -> dict[object, object]:
    normalized = dict(raw)
    aliases = normalized.get("aliases")
    if aliases is None:
        return normalized
    if not isinstance(aliases, dict):
        raise ValueError(f"'aliases' must be a mapping in {config_path}")
    # Alias lookups are case-insensitive.
    normalized["aliases"] = {str(key).lower(): str(value) for key, value in aliases.items()}
    return normalized
