"""FastAPI surface for template mapping and document generation."""

from __future__ import annotations

import json
import logging
import os
import threading
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Any, Literal

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from core.ai.suggestions import MistralSuggestionClient, suggest_mappings
from core.config.loader import load_matching_config
from core.config.models import MatchingConfig
from core.orchestrator.generation import GenerationService
from core.schema.models import ColumnInfo
from core.schema.registry import SchemaRegistry
from core.storage.local import JsonRecordStore, LocalObjectStore
from core.templates.markers import find_literals
from core.templates.migration import migrate_stored_templates
from core.templates.models import FieldChange
from core.templates.service import TemplateService
from core.utils.errors import (
    ConfirmationRequiredError,
    InvalidDocumentFormat,
    InvalidPlaceholderError,
    InvalidTransitionError,
    RecordNotFoundError,
    StorageFailure,
)

app = FastAPI(title="trustdocs API", version="0.1.0")
logger = logging.getLogger("trustdocs.api")

REQUEST_ID_HEADER = "X-Trustdocs-Request-Id"
DocumentMode = Literal["content", "link", "preview", "docx"]

_DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024
_DEFAULT_SIGNED_URL_TTL_SECONDS = 3600
_DEFAULT_DATA_DIR = ".trustdocs"
_DOCX_MAGIC = b"PK\x03\x04"
_DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


@dataclass(frozen=True)
class _ContextKey:
    data_dir: str
    max_upload_bytes: int
    signed_url_ttl_seconds: int
    matching_config: str | None
    client_schema: str | None
    ai_api_key: str | None
    ai_model: str | None


@dataclass
class AppContext:
    config: MatchingConfig
    objects: LocalObjectStore
    records: JsonRecordStore
    registry: SchemaRegistry
    templates: TemplateService
    generation: GenerationService
    ai_client: MistralSuggestionClient | None
    key: _ContextKey


class ApiRequestError(Exception):
    def __init__(
        self,
        *,
        status_code: int,
        error_code: str,
        message: str,
        detail: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.message = message
        self.detail = detail or {}


class SchemaValidateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    field_mappings: dict[str, str] = Field(default_factory=dict)
    template_id: str | None = None


class PlaceholderCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    label: str
    description: str = ""
    field_type: str = "text"


class TemplateSaveRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    html_content: str
    field_mappings: dict[str, str] | None = None
    confirm: bool = False


class FieldMigrationRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    changes: list[FieldChange]


class SuggestMappingsRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    document_text: str
    placeholders: list[str] | None = None


_context_lock = threading.Lock()
_context_cache: AppContext | None = None


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Ensure every response has a request id header."""

    request_id = uuid.uuid4().hex
    request.state.request_id = request_id
    try:
        response = await call_next(request)
    except Exception:  # noqa: BLE001
        _log_event(
            logging.ERROR,
            "error",
            request_id,
            error_code="INTERNAL_ERROR",
            status_code=500,
            failure_stage="middleware",
        )
        response = _error_response(
            status_code=500,
            error_code="INTERNAL_ERROR",
            message="internal server error",
            request_id=request_id,
            detail={"path": request.url.path},
        )
    response.headers.setdefault(REQUEST_ID_HEADER, request_id)
    return response


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    request_id = _request_id_from_request(request)
    return _error_response(
        status_code=400,
        error_code="INVALID_REQUEST",
        message="request validation failed",
        request_id=request_id,
        detail={"errors": json.loads(json.dumps(exc.errors(), default=str))},
    )


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    """Liveness endpoint."""

    return {"status": "ok"}


@app.get("/v1/fields/schema")
def get_schema(
    request: Request,
    category: str | None = None,
    include_computed: bool = True,
) -> JSONResponse:
    """List fields, grouped by category, with cache metadata."""

    request_id = _request_id_from_request(request)
    try:
        registry = _get_context().registry
        fields = registry.list_fields(category=category, include_computed=include_computed)
        categories = registry.fields_by_category()
        payload = {
            "fields": [item.model_dump(mode="json") for item in fields],
            "categories": {
                name: [item.name for item in items] for name, items in categories.items()
            },
            "total_fields": len(fields),
            "metadata": registry.metadata().model_dump(mode="json"),
        }
        return _json_response(payload, request_id=request_id)
    except Exception as exc:  # noqa: BLE001
        return _exception_response(exc, request_id=request_id, failure_stage="schema")


@app.post("/v1/fields/schema")
def validate_schema(request: Request, body: SchemaValidateRequest) -> JSONResponse:
    """Validate ``literal -> field`` mappings against the current schema."""

    request_id = _request_id_from_request(request)
    try:
        context = _get_context()
        mappings = body.field_mappings
        if body.template_id and not mappings:
            mappings = context.templates.get(body.template_id).field_mappings
        validation = context.registry.validate(mappings)
        return _json_response(
            {"validation": validation.model_dump(mode="json")}, request_id=request_id
        )
    except Exception as exc:  # noqa: BLE001
        return _exception_response(exc, request_id=request_id, failure_stage="validate")


@app.put("/v1/fields/schema")
def refresh_schema(request: Request) -> JSONResponse:
    """Invalidate the schema cache and rediscover."""

    request_id = _request_id_from_request(request)
    try:
        registry = _get_context().registry
        fields = registry.refresh()
        _log_event(logging.INFO, "schema_refreshed", request_id, field_count=len(fields))
        return _json_response(
            {
                "message": "Schema cache refreshed",
                "field_count": len(fields),
                "metadata": registry.metadata().model_dump(mode="json"),
            },
            request_id=request_id,
        )
    except Exception as exc:  # noqa: BLE001
        return _exception_response(exc, request_id=request_id, failure_stage="refresh")


@app.get("/v1/placeholders")
def list_placeholders(request: Request) -> JSONResponse:
    request_id = _request_id_from_request(request)
    try:
        placeholders = _get_context().registry.list_placeholders()
        return _json_response(
            {"placeholders": [_placeholder_payload(item) for item in placeholders]},
            request_id=request_id,
        )
    except Exception as exc:  # noqa: BLE001
        return _exception_response(exc, request_id=request_id, failure_stage="placeholders")


@app.post("/v1/placeholders")
def create_placeholder(request: Request, body: PlaceholderCreateRequest) -> JSONResponse:
    """Create a custom placeholder and invalidate the schema cache."""

    request_id = _request_id_from_request(request)
    try:
        placeholder = _get_context().registry.create_placeholder(
            body.name, body.label, body.description, body.field_type
        )
        return _json_response(
            {"placeholder": _placeholder_payload(placeholder)},
            request_id=request_id,
            status_code=201,
        )
    except Exception as exc:  # noqa: BLE001
        return _exception_response(exc, request_id=request_id, failure_stage="placeholders")


@app.post("/v1/templates/upload")
def upload_template(
    request: Request,
    file: Annotated[UploadFile, File(...)],
    name: Annotated[str, Form()],
    description: Annotated[str, Form()] = "",
    placeholder_mappings: Annotated[str | None, Form()] = None,
) -> JSONResponse:
    """Upload a DOCX template; blocks with a repair payload on invalid placeholders."""

    return _run_upload(
        request,
        file=file,
        name=name,
        description=description,
        placeholder_mappings=placeholder_mappings,
        require_mappings=False,
    )


@app.post("/v1/templates/upload/complete")
def complete_template_upload(
    request: Request,
    file: Annotated[UploadFile, File(...)],
    name: Annotated[str, Form()],
    placeholder_mappings: Annotated[str, Form()],
    description: Annotated[str, Form()] = "",
) -> JSONResponse:
    """Retry an upload with operator-resolved mappings, re-validating from scratch."""

    return _run_upload(
        request,
        file=file,
        name=name,
        description=description,
        placeholder_mappings=placeholder_mappings,
        require_mappings=True,
    )


@app.get("/v1/templates/{template_id}")
def get_template(request: Request, template_id: str) -> JSONResponse:
    request_id = _request_id_from_request(request)
    try:
        template = _get_context().templates.get(template_id)
        return _json_response(
            {"template": template.model_dump(mode="json")}, request_id=request_id
        )
    except Exception as exc:  # noqa: BLE001
        return _exception_response(exc, request_id=request_id, failure_stage="template")


@app.put("/v1/templates/{template_id}")
def save_template(
    request: Request, template_id: str, body: TemplateSaveRequest
) -> JSONResponse:
    """Persist template html with a mapping re-derived from its markup."""

    request_id = _request_id_from_request(request)
    try:
        outcome = _get_context().templates.save(
            template_id, body.html_content, body.field_mappings, confirm=body.confirm
        )
        return _json_response(
            {
                "template": outcome.template.model_dump(mode="json"),
                "field_mappings": outcome.field_mappings,
                "validation": outcome.validation.model_dump(mode="json"),
            },
            request_id=request_id,
        )
    except Exception as exc:  # noqa: BLE001
        return _exception_response(exc, request_id=request_id, failure_stage="save_template")


@app.post("/v1/templates/migrate-fields")
def migrate_fields(request: Request, body: FieldMigrationRequest) -> JSONResponse:
    """Apply field renames/removals to every stored template."""

    request_id = _request_id_from_request(request)
    try:
        context = _get_context()
        results = migrate_stored_templates(context.records, body.changes)
        return _json_response(
            {
                "results": [item.model_dump(mode="json") for item in results],
                "changed": sum(1 for item in results if item.changed),
            },
            request_id=request_id,
        )
    except Exception as exc:  # noqa: BLE001
        return _exception_response(exc, request_id=request_id, failure_stage="migrate")


@app.post("/v1/ai/suggest-field-mappings")
def suggest_field_mappings(request: Request, body: SuggestMappingsRequest) -> JSONResponse:
    """Rule-based suggestions, enhanced by the AI client when configured."""

    request_id = _request_id_from_request(request)
    try:
        context = _get_context()
        tokens = body.placeholders
        if tokens is None:
            tokens = [token for _, token in find_literals(body.document_text)]
        suggestions = suggest_mappings(
            body.document_text, tokens, context.registry, context.ai_client
        )
        return _json_response(
            {
                "suggestions": [item.model_dump(mode="json") for item in suggestions],
                "ai_enabled": context.ai_client is not None,
            },
            request_id=request_id,
        )
    except Exception as exc:  # noqa: BLE001
        return _exception_response(exc, request_id=request_id, failure_stage="suggest")


@app.post("/v1/tasks/{task_id}/generate")
def generate_task_documents(request: Request, task_id: str) -> JSONResponse:
    """Populate and store every template of a task's service."""

    request_started = time.perf_counter()
    request_id = _request_id_from_request(request)
    try:
        _log_event(logging.INFO, "start", request_id, task_id=task_id)
        summary = _get_context().generation.generate_for_task(task_id)
        _log_event(
            logging.INFO,
            "done",
            request_id,
            task_id=task_id,
            generated=len(summary.generated),
            errors=len(summary.errors),
            total_ms=_elapsed_ms(request_started),
        )
        return _json_response(
            {
                "success": summary.success,
                "task_id": summary.task_id,
                "generated_documents": [
                    item.model_dump(mode="json") for item in summary.generated
                ],
                "errors": summary.errors or None,
            },
            request_id=request_id,
        )
    except Exception as exc:  # noqa: BLE001
        return _exception_response(exc, request_id=request_id, failure_stage="generate")


@app.get("/v1/tasks/{task_id}/documents/{template_id}", response_model=None)
def task_document(
    request: Request,
    task_id: str,
    template_id: str,
    mode: DocumentMode = "content",
) -> Response:
    """Return stored content, a signed link, an unsaved preview, or a .docx export."""

    request_id = _request_id_from_request(request)
    headers = {REQUEST_ID_HEADER: request_id}
    try:
        context = _get_context()
        generation = context.generation
        if mode == "link":
            url = generation.document_link(task_id, template_id)
            return _json_response(
                {"url": url, "expires_in": context.key.signed_url_ttl_seconds},
                request_id=request_id,
            )
        if mode == "preview":
            result = generation.preview(task_id, template_id)
            return _json_response(
                {"html": result.html, "report": result.report.model_dump(mode="json")},
                request_id=request_id,
            )
        if mode == "docx":
            file_name, payload = generation.document_docx(task_id, template_id)
            headers["Content-Disposition"] = f'attachment; filename="{file_name}"'
            return Response(content=payload, media_type=_DOCX_MEDIA_TYPE, headers=headers)
        return HTMLResponse(
            content=generation.document_content(task_id, template_id), headers=headers
        )
    except Exception as exc:  # noqa: BLE001
        return _exception_response(exc, request_id=request_id, failure_stage="document")


def _run_upload(
    request: Request,
    *,
    file: UploadFile,
    name: str,
    description: str,
    placeholder_mappings: str | None,
    require_mappings: bool,
) -> JSONResponse:
    request_started = time.perf_counter()
    request_id = _request_id_from_request(request)
    failure_stage = "init"

    try:
        failure_stage = "validate_inputs"
        context = _get_context()
        mappings = _parse_mappings(placeholder_mappings)
        if require_mappings and not mappings:
            raise ApiRequestError(
                status_code=400,
                error_code="INVALID_REQUEST",
                message="placeholder_mappings is required",
                detail={"field": "placeholder_mappings"},
            )

        failure_stage = "upload"
        _validate_upload_name(file.filename, expected_suffix=".docx", field_name="file")
        payload = _read_upload_with_limit(
            upload=file, max_bytes=context.key.max_upload_bytes, field_name="file"
        )
        if payload[:4] != _DOCX_MAGIC:
            raise ApiRequestError(
                status_code=415,
                error_code="INVALID_MEDIA_TYPE",
                message="file must be a valid .docx file",
                detail={"field": "file"},
            )

        _log_event(
            logging.INFO,
            "start",
            request_id,
            filename=file.filename,
            mappings_provided=bool(mappings),
            max_upload_bytes=context.key.max_upload_bytes,
        )

        failure_stage = "process_upload"
        outcome = context.templates.upload(
            payload,
            file.filename or "template.docx",
            name,
            description,
            mappings,
        )

        _log_event(
            logging.INFO,
            "done",
            request_id,
            template_id=outcome.template.id,
            placeholders=len(outcome.placeholders),
            total_ms=_elapsed_ms(request_started),
        )
        return _json_response(
            {
                "success": True,
                "template": outcome.template.model_dump(mode="json"),
                "validation": outcome.validation.model_dump(mode="json"),
                "placeholders": outcome.placeholders,
                "warnings": outcome.warnings,
            },
            request_id=request_id,
        )
    except InvalidPlaceholderError as exc:
        _log_event(
            logging.WARNING,
            "blocked",
            request_id,
            error_code="INVALID_PLACEHOLDERS",
            status_code=400,
            failure_stage=failure_stage,
            invalid=exc.validation.invalid_field_names(),
        )
        return _error_response(
            status_code=400,
            error_code="INVALID_PLACEHOLDERS",
            message=str(exc),
            request_id=request_id,
            extra_content={
                "block_upload": True,
                "validation": exc.validation.model_dump(mode="json"),
                "repair_mapping": exc.repair_mapping,
            },
        )
    except Exception as exc:  # noqa: BLE001
        return _exception_response(exc, request_id=request_id, failure_stage=failure_stage)


def _exception_response(exc: Exception, *, request_id: str, failure_stage: str) -> JSONResponse:
    status_code, error_code, message, detail, level = _classify_exception(exc)
    _log_event(
        level,
        "error",
        request_id,
        error_code=error_code,
        status_code=status_code,
        failure_stage=failure_stage,
    )
    return _error_response(
        status_code=status_code,
        error_code=error_code,
        message=message,
        request_id=request_id,
        detail=detail,
    )


def _classify_exception(exc: Exception) -> tuple[int, str, str, dict[str, Any], int]:
    if isinstance(exc, ApiRequestError):
        return exc.status_code, exc.error_code, exc.message, exc.detail, logging.ERROR
    if isinstance(exc, InvalidDocumentFormat):
        return 400, "INVALID_DOCUMENT", str(exc), {"filename": exc.filename}, logging.ERROR
    if isinstance(exc, InvalidPlaceholderError):
        return (
            400,
            "INVALID_PLACEHOLDERS",
            str(exc),
            {"repair_mapping": exc.repair_mapping},
            logging.WARNING,
        )
    if isinstance(exc, ConfirmationRequiredError):
        return (
            409,
            "CONFIRMATION_REQUIRED",
            str(exc),
            {
                "invalid_mappings": [
                    item.model_dump(mode="json") for item in exc.validation.invalid_mappings
                ],
                "validation": exc.validation.model_dump(mode="json"),
            },
            logging.WARNING,
        )
    if isinstance(exc, RecordNotFoundError):
        return 404, "NOT_FOUND", str(exc), {"target": exc.target}, logging.WARNING
    if isinstance(exc, InvalidTransitionError):
        return 409, "INVALID_STATE", str(exc), {"state": exc.state}, logging.WARNING
    if isinstance(exc, StorageFailure):
        return (
            502,
            "STORAGE_FAILURE",
            str(exc),
            {"operation": exc.operation, "target": exc.target},
            logging.ERROR,
        )
    if isinstance(exc, ValidationError):
        return 400, "INVALID_REQUEST", "request validation failed", {}, logging.ERROR
    if isinstance(exc, ValueError):
        return 400, "INVALID_REQUEST", str(exc), {}, logging.ERROR
    logger.exception("unhandled error")
    return 500, "INTERNAL_ERROR", "internal server error", {"error": str(exc)}, logging.ERROR


def _parse_mappings(raw: str | None) -> dict[str, str]:
    if raw is None or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ApiRequestError(
            status_code=400,
            error_code="INVALID_REQUEST",
            message="placeholder_mappings must be valid JSON",
            detail={"field": "placeholder_mappings", "error": str(exc)},
        ) from exc
    if not isinstance(parsed, dict):
        raise ApiRequestError(
            status_code=400,
            error_code="INVALID_REQUEST",
            message="placeholder_mappings must be a JSON object",
            detail={"field": "placeholder_mappings"},
        )
    return {str(key): str(value) for key, value in parsed.items() if value is not None}


def _placeholder_payload(placeholder: Any) -> dict[str, str]:
    return {
        "name": placeholder.name,
        "label": placeholder.label,
        "description": placeholder.description,
        "field_type": placeholder.field_type,
    }


def _request_id_from_request(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if isinstance(request_id, str) and request_id:
        return request_id
    generated = uuid.uuid4().hex
    request.state.request_id = generated
    return generated


def _validate_upload_name(filename: str | None, *, expected_suffix: str, field_name: str) -> None:
    if filename is None or not filename.lower().endswith(expected_suffix):
        raise ApiRequestError(
            status_code=415,
            error_code="INVALID_MEDIA_TYPE",
            message=f"{field_name} must be a {expected_suffix} file",
            detail={"field": field_name, "filename": filename},
        )


def _read_upload_with_limit(*, upload: UploadFile, max_bytes: int, field_name: str) -> bytes:
    chunks: list[bytes] = []
    total_size = 0

    source = upload.file
    source.seek(0)
    while True:
        chunk = source.read(1024 * 1024)
        if not chunk:
            break
        total_size += len(chunk)
        if total_size > max_bytes:
            raise ApiRequestError(
                status_code=413,
                error_code="UPLOAD_TOO_LARGE",
                message=f"{field_name} exceeds upload size limit",
                detail={
                    "field": field_name,
                    "max_bytes": max_bytes,
                    "received_bytes": total_size,
                },
            )
        chunks.append(chunk)

    source.close()
    return b"".join(chunks)


def _max_upload_bytes() -> int:
    raw = os.getenv("TRUSTDOCS_MAX_UPLOAD_BYTES")
    if raw is None:
        return _DEFAULT_MAX_UPLOAD_BYTES
    try:
        parsed = int(raw)
    except ValueError:
        return _DEFAULT_MAX_UPLOAD_BYTES
    return parsed if parsed > 0 else _DEFAULT_MAX_UPLOAD_BYTES


def _signed_url_ttl_seconds() -> int:
    raw = os.getenv("TRUSTDOCS_SIGNED_URL_TTL_SECONDS")
    if raw is None:
        return _DEFAULT_SIGNED_URL_TTL_SECONDS
    try:
        parsed = int(raw)
    except ValueError:
        return _DEFAULT_SIGNED_URL_TTL_SECONDS
    return parsed if parsed > 0 else _DEFAULT_SIGNED_URL_TTL_SECONDS


def _context_key() -> _ContextKey:
    return _ContextKey(
        data_dir=os.getenv("TRUSTDOCS_DATA_DIR") or _DEFAULT_DATA_DIR,
        max_upload_bytes=_max_upload_bytes(),
        signed_url_ttl_seconds=_signed_url_ttl_seconds(),
        matching_config=os.getenv("TRUSTDOCS_MATCHING_CONFIG") or None,
        client_schema=os.getenv("TRUSTDOCS_CLIENT_SCHEMA") or None,
        ai_api_key=os.getenv("MISTRAL_API_KEY") or None,
        ai_model=os.getenv("TRUSTDOCS_AI_MODEL") or None,
    )


def _client_schema_columns(raw: str | None) -> list[ColumnInfo] | None:
    if raw is None:
        return None
    try:
        parsed = json.loads(raw)
        columns = [
            ColumnInfo(
                name=str(item["name"]),
                type=str(item.get("type") or "text"),
                nullable=bool(item.get("nullable", True)),
                default=item.get("default"),
            )
            for item in parsed
        ]
    except (json.JSONDecodeError, KeyError, TypeError) as exc:
        raise ValueError("TRUSTDOCS_CLIENT_SCHEMA must be a JSON list of column objects") from exc
    return columns or None


def _build_context(key: _ContextKey) -> AppContext:
    data_dir = Path(key.data_dir)
    config = load_matching_config(Path(key.matching_config) if key.matching_config else None)
    objects = LocalObjectStore(data_dir / "objects")
    records = JsonRecordStore(data_dir / "records.json")
    registry = SchemaRegistry(
        records, config, default_columns=_client_schema_columns(key.client_schema)
    )
    ai_client = None
    if key.ai_api_key:
        ai_client = MistralSuggestionClient(
            key.ai_api_key, **({"model": key.ai_model} if key.ai_model else {})
        )
    return AppContext(
        config=config,
        objects=objects,
        records=records,
        registry=registry,
        templates=TemplateService(
            objects, records, registry, max_upload_bytes=key.max_upload_bytes
        ),
        generation=GenerationService(
            objects,
            records,
            registry,
            config,
            signed_url_ttl_seconds=key.signed_url_ttl_seconds,
        ),
        ai_client=ai_client,
        key=key,
    )


def _get_context() -> AppContext:
    global _context_cache

    key = _context_key()
    with _context_lock:
        if _context_cache is None or _context_cache.key != key:
            _context_cache = _build_context(key)
        return _context_cache


def _json_response(
    payload: dict[str, Any], *, request_id: str, status_code: int = 200
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        headers={REQUEST_ID_HEADER: request_id},
        content=payload,
    )


def _error_response(
    *,
    status_code: int,
    error_code: str,
    message: str,
    request_id: str,
    detail: dict[str, Any] | None = None,
    extra_content: dict[str, Any] | None = None,
) -> JSONResponse:
    payload_detail = dict(detail or {})
    payload_detail["request_id"] = request_id

    content: dict[str, Any] = {
        "error_code": error_code,
        "message": message,
        "detail": payload_detail,
    }
    if extra_content is not None:
        content.update(extra_content)

    return JSONResponse(
        status_code=status_code,
        headers={REQUEST_ID_HEADER: request_id},
        content=content,
    )


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _dump_json(payload: dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False, sort_keys=True, separators=(",", ":"))


def _log_event(level: int, event: str, request_id: str, **fields: Any) -> None:
    payload = {
        "event": event,
        "request_id": request_id,
        **fields,
    }
    logger.log(level, _dump_json(payload))
