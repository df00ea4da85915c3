"""Task document generation models."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from core.render.models import ReplaceSummary


class GeneratedDocument(BaseModel):
    """One stored output document recorded on a task."""

    model_config = ConfigDict(extra="ignore")

    template_id: str
    template_name: str
    file_name: str
    status: Literal["generated"] = "generated"
    generated_at: str
    storage_path: str
    file_size: int
    download_url: str | None = None
    summary: ReplaceSummary | None = None


class GenerationSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")

    task_id: str
    generated: list[GeneratedDocument] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors
