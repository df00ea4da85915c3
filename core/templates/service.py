"""Template upload workflow: extract, reconcile, store, convert, record."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Mapping
from pathlib import PurePath

from core.schema.models import ValidationResult
from core.schema.registry import SchemaRegistry
from core.storage.base import ObjectStore, RecordStore
from core.templates.conversion import convert_docx_to_html, tokens_to_markers
from core.templates.extractor import extract_placeholders
from core.templates.models import SaveOutcome, TemplateRecord, UploadOutcome
from core.templates.persistence import (
    TEMPLATES_TABLE,
    derive_field_mapping,
    detected_placeholders,
    load_template,
    save_template,
)
from core.templates.reconciler import build_repair_mapping, reconcile
from core.utils.errors import InvalidDocumentFormat, InvalidPlaceholderError, StorageFailure
from core.utils.timestamps import utc_now_iso

logger = logging.getLogger("trustdocs.templates")

TEMPLATES_BUCKET = "document-templates"
DOCX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024


class TemplateService:
    """Accept document uploads and persist editable templates."""

    def __init__(
        self,
        objects: ObjectStore,
        records: RecordStore,
        registry: SchemaRegistry,
        *,
        max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
    ) -> None:
        self._objects = objects
        self._records = records
        self._registry = registry
        self._max_upload_bytes = max_upload_bytes

    def upload(
        self,
        file_bytes: bytes,
        filename: str,
        name: str,
        description: str = "",
        placeholder_mappings: Mapping[str, str] | None = None,
        *,
        service_id: str | None = None,
    ) -> UploadOutcome:
        """Run the upload path from scratch.

        Raises:
            ValueError: Missing name or oversized file.
            InvalidDocumentFormat: Wrong extension or unreadable archive.
            InvalidPlaceholderError: Tokens without a valid field; carries the
                validation result and a pre-populated repair mapping.
            StorageFailure: Object or record store failure.
        """

        clean_name = name.strip()
        if not clean_name:
            raise ValueError("Template name is required")
        if PurePath(filename).suffix.lower() != ".docx":
            raise InvalidDocumentFormat("Only .docx files are supported", filename=filename)
        if len(file_bytes) > self._max_upload_bytes:
            raise ValueError(
                f"File size exceeds {self._max_upload_bytes // (1024 * 1024)}MB limit"
            )

        extraction = extract_placeholders(file_bytes, filename=filename)
        tokens = sorted(extraction.placeholders)
        mapping = {
            token: field.strip()
            for token, field in (placeholder_mappings or {}).items()
            if field and field.strip()
        }

        if tokens:
            validation = reconcile(tokens, self._registry, mapping)
            if not validation.valid:
                logger.info(
                    "upload blocked for %s: invalid placeholders %s",
                    filename,
                    ", ".join(validation.invalid_field_names()),
                )
                raise InvalidPlaceholderError(
                    f"{validation.invalid_count} placeholder(s) do not match any field",
                    validation=validation,
                    repair_mapping=build_repair_mapping(validation),
                )
        else:
            validation = ValidationResult.empty()

        conversion = convert_docx_to_html(file_bytes, filename=filename)
        html = tokens_to_markers(conversion.html, mapping)
        field_mappings = derive_field_mapping(html)
        field_validation = self._registry.validate(field_mappings)

        template_id = str(uuid.uuid4())
        file_path = f"templates/{template_id}/{PurePath(filename).name}"
        self._objects.store(
            TEMPLATES_BUCKET,
            file_path,
            file_bytes,
            content_type=DOCX_CONTENT_TYPE,
            upsert=False,
        )

        now = utc_now_iso()
        record = TemplateRecord(
            id=template_id,
            name=clean_name,
            description=description.strip(),
            html_content=html,
            field_mappings=field_mappings,
            detected_placeholders=detected_placeholders(html, field_mappings, field_validation),
            status="active",
            file_name=PurePath(filename).name,
            file_path=file_path,
            service_id=service_id,
            created_at=now,
            updated_at=now,
        )
        try:
            row = self._records.insert(TEMPLATES_TABLE, record.to_row())
        except StorageFailure:
            logger.warning("template insert failed, removing stored file %s", file_path)
            self._objects.remove(TEMPLATES_BUCKET, [file_path])
            raise

        logger.info("template %s uploaded with %d placeholder(s)", template_id, len(tokens))
        return UploadOutcome(
            template=TemplateRecord.model_validate(row),
            validation=validation,
            placeholders=tokens,
            warnings=conversion.warnings,
        )

    def get(self, template_id: str) -> TemplateRecord:
        return load_template(self._records, template_id)

    def list_templates(self, service_id: str | None = None) -> list[TemplateRecord]:
        filters = {"service_id": service_id} if service_id else None
        return [
            TemplateRecord.model_validate(row)
            for row in self._records.select(TEMPLATES_TABLE, filters)
        ]

    def save(
        self,
        template_id: str,
        html: str,
        mapping: Mapping[str, str] | None = None,
        *,
        confirm: bool = False,
        extra_field_names: Iterable[str] = (),
    ) -> SaveOutcome:
        return save_template(
            self._records,
            self._registry,
            template_id,
            html,
            mapping,
            confirm=confirm,
            extra_field_names=extra_field_names,
        )
