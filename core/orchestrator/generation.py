"""Generate, store and serve populated documents for tasks."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from datetime import date, datetime
from typing import Any

from core.config.models import MatchingConfig
from core.orchestrator.models import GeneratedDocument, GenerationSummary
from core.render.docx_export import export_docx
from core.render.models import PopulateResult
from core.render.populator import populate
from core.schema.registry import CLIENTS_TABLE, SchemaRegistry
from core.storage.base import ObjectStore, RecordStore, Row
from core.templates.models import TemplateRecord
from core.templates.persistence import TEMPLATES_TABLE, load_template
from core.utils.errors import InvalidTransitionError, RecordNotFoundError, StorageFailure
from core.utils.timestamps import utc_now_iso

logger = logging.getLogger("trustdocs.generation")

TASKS_TABLE = "tasks"
SERVICES_TABLE = "services"
DOCUMENTS_BUCKET = "task-documents"
DEFAULT_SIGNED_URL_TTL_SECONDS = 3600

_UNSAFE_NAME_RE = re.compile(r"[^a-zA-Z0-9\s]")
_WHITESPACE_RE = re.compile(r"\s+")


def generate_file_name(template_name: str, client_name: str, today: date) -> str:
    """Return ``<Client>_<Template>_<YYYY-MM-DD>`` with unsafe characters dropped."""

    clean_template = _WHITESPACE_RE.sub("_", _UNSAFE_NAME_RE.sub("", template_name).strip())
    clean_client = _WHITESPACE_RE.sub("_", _UNSAFE_NAME_RE.sub("", client_name).strip())
    return f"{clean_client}_{clean_template}_{today.isoformat()}"


class GenerationService:
    """Populate a task's templates and manage the stored output documents."""

    def __init__(
        self,
        objects: ObjectStore,
        records: RecordStore,
        registry: SchemaRegistry,
        config: MatchingConfig,
        *,
        signed_url_ttl_seconds: int = DEFAULT_SIGNED_URL_TTL_SECONDS,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._objects = objects
        self._records = records
        self._registry = registry
        self._config = config
        self._signed_url_ttl_seconds = signed_url_ttl_seconds
        self._clock = clock

    def generate_for_task(self, task_id: str) -> GenerationSummary:
        """Populate and store every template of the task's service.

        Per-template failures are collected; the task is updated with what
        was generated and a joined error string.

        Raises:
            RecordNotFoundError: Task, client or service missing.
            InvalidTransitionError: Task is not in ``awaiting`` status.
        """

        task = self._records.get(TASKS_TABLE, task_id)
        status = str(task.get("status") or "")
        if status != "awaiting":
            raise InvalidTransitionError(
                f"Task must be in 'awaiting' status to generate documents. Current status: {status}",
                state=status,
            )

        client = self._records.get(CLIENTS_TABLE, str(task["client_id"]))
        templates = self._task_templates(task)
        client_name = str(task.get("client_name") or _client_display_name(client))
        now = self._clock()

        summary = GenerationSummary(task_id=task_id)
        for template in templates:
            try:
                result = self._populate(template, client, task)
                file_name = generate_file_name(template.name, client_name, now.date())
                storage_path = f"{client['id']}/{task_id}/{template.id}-{file_name}.html"
                payload = result.html.encode("utf-8")
                self._objects.store(
                    DOCUMENTS_BUCKET,
                    storage_path,
                    payload,
                    content_type="text/html",
                    upsert=True,
                )
                summary.generated.append(
                    GeneratedDocument(
                        template_id=template.id,
                        template_name=template.name,
                        file_name=file_name,
                        generated_at=utc_now_iso(),
                        storage_path=storage_path,
                        file_size=len(payload),
                        download_url=self._objects.get_public_url(DOCUMENTS_BUCKET, storage_path),
                        summary=result.report.summary,
                    )
                )
            except (StorageFailure, ValueError) as exc:
                logger.warning("generation failed for template %s: %s", template.id, exc)
                summary.errors.append(f"Failed to generate {template.name}: {exc}")

        patch: dict[str, Any] = {
            "generated_documents": [
                item.model_dump(mode="json") for item in summary.generated
            ],
            "generation_completed_at": utc_now_iso(),
            "updated_at": utc_now_iso(),
            "generation_error": "; ".join(summary.errors) or None,
        }
        self._records.update(TASKS_TABLE, task_id, patch)
        logger.info(
            "generated %d document(s) for task %s with %d error(s)",
            len(summary.generated),
            task_id,
            len(summary.errors),
        )
        return summary

    def preview(self, task_id: str, template_id: str) -> PopulateResult:
        """Populate one template for a task without storing anything."""

        task = self._records.get(TASKS_TABLE, task_id)
        client = self._records.get(CLIENTS_TABLE, str(task["client_id"]))
        template = load_template(self._records, template_id)
        return self._populate(template, client, task)

    def document_content(self, task_id: str, template_id: str) -> str:
        document = self._generated_document(task_id, template_id)
        return self._objects.fetch(DOCUMENTS_BUCKET, document.storage_path).decode("utf-8")

    def document_link(self, task_id: str, template_id: str) -> str:
        document = self._generated_document(task_id, template_id)
        return self._objects.create_signed_url(
            DOCUMENTS_BUCKET, document.storage_path, self._signed_url_ttl_seconds
        )

    def document_docx(self, task_id: str, template_id: str) -> tuple[str, bytes]:
        document = self._generated_document(task_id, template_id)
        content = self.document_content(task_id, template_id)
        return f"{document.file_name}.docx", export_docx(content)

    def _populate(self, template: TemplateRecord, client: Row, task: Row) -> PopulateResult:
        return populate(
            template.html_content,
            template.field_mappings,
            client,
            task.get("custom_field_values") or {},
            self._config,
            columns=self._registry.client_columns(),
            now=self._clock(),
        )

    def _task_templates(self, task: Row) -> list[TemplateRecord]:
        service_id = task.get("service_id")
        if not service_id:
            return []
        service = self._records.get(SERVICES_TABLE, str(service_id))
        wanted = [str(item) for item in service.get("template_ids") or []]
        rows = {
            row["id"]: row
            for row in self._records.select(TEMPLATES_TABLE)
            if row.get("id") in wanted
        }
        return [TemplateRecord.model_validate(rows[item]) for item in wanted if item in rows]

    def _generated_document(self, task_id: str, template_id: str) -> GeneratedDocument:
        task = self._records.get(TASKS_TABLE, task_id)
        for item in task.get("generated_documents") or []:
            document = GeneratedDocument.model_validate(item)
            if document.template_id == template_id:
                return document
        raise RecordNotFoundError(
            f"Document for template {template_id} not found in task {task_id}",
            operation="generated_document",
            target=template_id,
        )


def _client_display_name(client: Row) -> str:
    full_name = f"{client.get('first_name') or ''} {client.get('last_name') or ''}".strip()
    return full_name or str(client.get("name") or client.get("id") or "Client")
