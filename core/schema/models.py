"""Schema registry data models."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

FieldSource = Literal["client", "placeholder", "computed"]


class FieldDescriptor(BaseModel):
    """One substitutable data field exposed by the schema registry."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str
    label: str
    description: str
    category: str
    type: str = "string"
    computed: bool = False
    custom: bool = False
    source: FieldSource = "client"


@dataclass(frozen=True)
class ColumnInfo:
    """A column of the client record table."""

    name: str
    type: str
    nullable: bool = True
    default: str | None = None


@dataclass(frozen=True)
class CustomPlaceholder:
    """Operator-created placeholder stored as a durable record."""

    name: str
    label: str
    description: str = ""
    field_type: str = "text"


class ValidPlaceholder(BaseModel):
    """A literal whose mapped field exists in the registry."""

    model_config = ConfigDict(extra="forbid")

    name: str
    field: FieldDescriptor


class InvalidMapping(BaseModel):
    """A literal whose mapped field is unknown, with a best-effort suggestion."""

    model_config = ConfigDict(extra="forbid")

    field_name: str
    placeholder: str | None = None
    suggestion: str | None = None
    reason: str = "Field does not exist in schema or custom fields"


class ValidationWarning(BaseModel):
    """Non-blocking observation about a mapping."""

    model_config = ConfigDict(extra="forbid")

    type: str
    field_name: str
    count: int
    message: str


class ValidationResult(BaseModel):
    """Derived validity of a mapping against a registry snapshot."""

    model_config = ConfigDict(extra="forbid")

    valid: bool
    valid_count: int
    invalid_count: int
    total_count: int
    valid_placeholders: list[ValidPlaceholder] = Field(default_factory=list)
    invalid_mappings: list[InvalidMapping] = Field(default_factory=list)
    warnings: list[ValidationWarning] = Field(default_factory=list)

    @classmethod
    def empty(cls) -> ValidationResult:
        return cls(valid=True, valid_count=0, invalid_count=0, total_count=0)

    def invalid_field_names(self) -> list[str]:
        return [item.field_name for item in self.invalid_mappings]


class SchemaMetadata(BaseModel):
    """Cache and discovery diagnostics for the registry."""

    model_config = ConfigDict(extra="forbid")

    is_cached: bool
    last_discovery: float | None = None
    discovery_method: str = "unknown"
    field_count: int = 0
    ttl_seconds: float
