"""Population report models."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

PopulateStatus = Literal["replaced", "fuzzy", "missing"]


class ReplaceLogEntry(BaseModel):
    """Outcome for one distinct placeholder token."""

    model_config = ConfigDict(extra="forbid")

    status: PopulateStatus
    token: str
    count: int
    matched_key: str | None = None
    new_text: str | None = None


class ReplaceSummary(BaseModel):
    """Aggregate counts over placeholder occurrences."""

    model_config = ConfigDict(extra="forbid")

    total_placeholders: int
    replaced_count: int
    fuzzy_count: int
    missing_count: int


class PopulateReport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    entries: list[ReplaceLogEntry] = Field(default_factory=list)
    summary: ReplaceSummary

    def missing_tokens(self) -> list[str]:
        return [entry.token for entry in self.entries if entry.status == "missing"]


class PopulateResult(BaseModel):
    """Populated html plus its report."""

    model_config = ConfigDict(extra="forbid")

    html: str
    report: PopulateReport
