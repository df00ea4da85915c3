"""Configuration models for field matching and schema caching."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class MatchingConfig(BaseModel):
    """Heuristic knobs for suggestions, fuzzy fallback and schema caching."""

    model_config = ConfigDict(extra="forbid")

    aliases: dict[str, str] = Field(default_factory=dict)
    fuzzy_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    fuzzy_substring: bool = True
    schema_cache_ttl_seconds: float = Field(default=300.0, gt=0)
    date_format: str = "%B %d, %Y"
    datetime_format: str = "%B %d, %Y %I:%M %p"
    missing_sentinel: str = "[MISSING: {token}]"
