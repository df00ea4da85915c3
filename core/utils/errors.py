"""Custom exceptions for core logic."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from core.editor.models import RangeSnapshot
    from core.schema.models import ValidationResult


class InvalidDocumentFormat(Exception):
    """Raised when an uploaded document archive or its main content cannot be read."""

    def __init__(self, message: str, *, filename: str | None = None) -> None:
        super().__init__(message)
        self.filename = filename


class InvalidPlaceholderError(Exception):
    """Raised when tokens have no matching schema field and the upload must be repaired."""

    def __init__(
        self,
        message: str,
        *,
        validation: ValidationResult,
        repair_mapping: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.validation = validation
        self.repair_mapping = dict(repair_mapping or {})


class StaleRangeError(Exception):
    """Raised when a captured cursor/selection no longer matches the document."""

    def __init__(self, message: str, *, snapshot: RangeSnapshot | None = None) -> None:
        super().__init__(message)
        self.snapshot = snapshot


class StorageFailure(Exception):
    """Raised when an object store or record store call fails."""

    def __init__(self, message: str, *, operation: str, target: str | None = None) -> None:
        super().__init__(message)
        self.operation = operation
        self.target = target


class RecordNotFoundError(StorageFailure):
    """Raised when a record lookup by id returns nothing."""


class InvalidTransitionError(Exception):
    """Raised when an editing-session event is not allowed in the current state."""

    def __init__(self, message: str, *, state: str) -> None:
        super().__init__(message)
        self.state = state


class ConfirmationRequiredError(Exception):
    """Raised when a template save has invalid mappings and was not confirmed."""

    def __init__(self, message: str, *, validation: ValidationResult) -> None:
        super().__init__(message)
        self.validation = validation
