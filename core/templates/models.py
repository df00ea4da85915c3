"""Data models for placeholder extraction, template records and field migration."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from core.schema.models import ValidationResult


@dataclass
class ExtractionResult:
    """Placeholder extraction output.

    ``placeholders`` is a set; first-appearance order is not preserved.
    """

    placeholders: set[str] = field(default_factory=set)
    plain_text: str = ""


@dataclass(frozen=True)
class ConversionResult:
    """HTML produced from an uploaded document plus converter messages."""

    html: str
    warnings: list[str] = field(default_factory=list)


class DetectedPlaceholder(BaseModel):
    """A token found in a template and the field it resolves to, if any."""

    model_config = ConfigDict(extra="forbid")

    name: str
    field: str | None = None


class TemplateRecord(BaseModel):
    """Persisted template row."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    description: str = ""
    html_content: str = ""
    field_mappings: dict[str, str] = Field(default_factory=dict)
    detected_placeholders: list[DetectedPlaceholder] = Field(default_factory=list)
    status: str = "active"
    file_name: str | None = None
    file_path: str | None = None
    service_id: str | None = None
    is_active: bool = True
    created_at: str | None = None
    updated_at: str | None = None

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class SaveOutcome(BaseModel):
    """Result of persisting a template's html and re-derived mapping."""

    model_config = ConfigDict(extra="forbid")

    template: TemplateRecord
    field_mappings: dict[str, str]
    validation: ValidationResult
    confirmed_with_invalid: bool = False


class FieldChange(BaseModel):
    """One schema change applied to stored templates."""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["rename", "remove"]
    field: str
    new_field: str | None = None


class MigrationResult(BaseModel):
    """Per-template outcome of applying field changes."""

    model_config = ConfigDict(extra="forbid")

    template_id: str
    changed: bool
    renamed: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)


class UploadOutcome(BaseModel):
    """Accepted upload: the stored template and the validation it passed."""

    model_config = ConfigDict(extra="forbid")

    template: TemplateRecord
    validation: ValidationResult
    placeholders: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
