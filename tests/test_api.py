from __future__ import annotations

import io
import json
from pathlib import Path

import httpx
import pytest
from docx import Document

from apps.api.main import REQUEST_ID_HEADER, app
from core.orchestrator.generation import SERVICES_TABLE, TASKS_TABLE
from core.schema.registry import CLIENTS_TABLE
from core.storage.local import JsonRecordStore
from core.templates.markers import marker_html
from core.templates.models import TemplateRecord
from core.templates.persistence import TEMPLATES_TABLE

DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


def _docx_bytes(*paragraphs: str) -> bytes:
    document = Document()
    for text in paragraphs:
        document.add_paragraph(text)
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("TRUSTDOCS_DATA_DIR", str(tmp_path))
    for name in (
        "TRUSTDOCS_MAX_UPLOAD_BYTES",
        "TRUSTDOCS_SIGNED_URL_TTL_SECONDS",
        "TRUSTDOCS_MATCHING_CONFIG",
        "TRUSTDOCS_CLIENT_SCHEMA",
        "MISTRAL_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


def _client() -> httpx.AsyncClient:
    transport = httpx.ASGITransport(app=app)
    return httpx.AsyncClient(transport=transport, base_url="http://testserver")


def _seed_task(data_dir: Path) -> JsonRecordStore:
    records = JsonRecordStore(data_dir / "records.json")
    records.insert(CLIENTS_TABLE, {"id": "client-1", "first_name": "Jane", "last_name": "Doe"})
    records.insert(
        TEMPLATES_TABLE,
        TemplateRecord(
            id="tpl-1",
            name="Welcome Letter",
            html_content="<p>Dear " + marker_html("full_name", "field-1") + "</p>",
            field_mappings={"{{full_name}}": "full_name"},
        ).to_row(),
    )
    records.insert(SERVICES_TABLE, {"id": "svc-1", "template_ids": ["tpl-1"]})
    records.insert(
        TASKS_TABLE,
        {"id": "task-1", "status": "awaiting", "client_id": "client-1", "service_id": "svc-1"},
    )
    return records


@pytest.mark.anyio
async def test_healthz_sets_request_id_header(data_dir: Path) -> None:
    async with _client() as client:
        response = await client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert response.headers[REQUEST_ID_HEADER]


@pytest.mark.anyio
async def test_schema_listing_validation_and_refresh(data_dir: Path) -> None:
    async with _client() as client:
        listing = await client.get("/v1/fields/schema")
        validation = await client.post(
            "/v1/fields/schema",
            json={"field_mappings": {"{{email}}": "email", "{{nope}}": "nope_zzz"}},
        )
        refreshed = await client.put("/v1/fields/schema")

    payload = listing.json()
    names = [item["name"] for item in payload["fields"]]
    assert "first_name" in names and "full_name" in names
    assert payload["total_fields"] == len(names)
    assert "email" in payload["categories"]["contact"]
    assert payload["metadata"]["is_cached"] is True

    result = validation.json()["validation"]
    assert result["valid"] is False
    assert result["valid_count"] == 1
    assert [item["field_name"] for item in result["invalid_mappings"]] == ["nope_zzz"]

    assert refreshed.json()["message"] == "Schema cache refreshed"
    assert refreshed.json()["field_count"] == len(names)


@pytest.mark.anyio
async def test_schema_validation_rejects_unknown_body_keys(data_dir: Path) -> None:
    async with _client() as client:
        response = await client.post("/v1/fields/schema", json={"mappings": {}})

    assert response.status_code == 400
    payload = response.json()
    assert payload["error_code"] == "INVALID_REQUEST"
    assert payload["detail"]["request_id"] == response.headers[REQUEST_ID_HEADER]


@pytest.mark.anyio
async def test_create_and_list_placeholders(data_dir: Path) -> None:
    async with _client() as client:
        created = await client.post(
            "/v1/placeholders", json={"name": "trust_name", "label": "Trust Name"}
        )
        duplicate = await client.post(
            "/v1/placeholders", json={"name": "trust_name", "label": "Trust Name"}
        )
        listing = await client.get("/v1/placeholders")
        schema = await client.get("/v1/fields/schema", params={"category": "custom"})

    assert created.status_code == 201
    assert created.json()["placeholder"]["name"] == "trust_name"
    assert duplicate.status_code == 400
    assert "already exists" in duplicate.json()["message"]
    assert [item["name"] for item in listing.json()["placeholders"]] == ["trust_name"]
    assert "trust_name" in [item["name"] for item in schema.json()["fields"]]


@pytest.mark.anyio
async def test_upload_valid_template(data_dir: Path) -> None:
    async with _client() as client:
        response = await client.post(
            "/v1/templates/upload",
            files={"file": ("letter.docx", _docx_bytes("Dear {first_name},"), DOCX_MEDIA_TYPE)},
            data={"name": "Welcome Letter"},
        )
        template_id = response.json()["template"]["id"]
        fetched = await client.get(f"/v1/templates/{template_id}")

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert payload["placeholders"] == ["first_name"]
    assert payload["template"]["field_mappings"] == {"{{first_name}}": "first_name"}
    assert fetched.json()["template"]["name"] == "Welcome Letter"


@pytest.mark.anyio
async def test_upload_with_invalid_placeholders_is_blocked(data_dir: Path) -> None:
    async with _client() as client:
        response = await client.post(
            "/v1/templates/upload",
            files={"file": ("letter.docx", _docx_bytes("Your {foo_bar} is ready"), DOCX_MEDIA_TYPE)},
            data={"name": "Letter"},
        )

    assert response.status_code == 400
    payload = response.json()
    assert payload["error_code"] == "INVALID_PLACEHOLDERS"
    assert payload["block_upload"] is True
    assert payload["repair_mapping"] == {"foo_bar": ""}
    assert payload["validation"]["invalid_count"] == 1
    assert payload["detail"]["request_id"] == response.headers[REQUEST_ID_HEADER]


@pytest.mark.anyio
async def test_upload_complete_binds_resolved_mappings(data_dir: Path) -> None:
    async with _client() as client:
        missing = await client.post(
            "/v1/templates/upload/complete",
            files={"file": ("letter.docx", _docx_bytes("Your {foo_bar}"), DOCX_MEDIA_TYPE)},
            data={"name": "Letter"},
        )
        response = await client.post(
            "/v1/templates/upload/complete",
            files={"file": ("letter.docx", _docx_bytes("Your {foo_bar}"), DOCX_MEDIA_TYPE)},
            data={"name": "Letter", "placeholder_mappings": json.dumps({"foo_bar": "email"})},
        )

    assert missing.status_code == 400
    assert missing.json()["error_code"] == "INVALID_REQUEST"
    assert response.status_code == 200
    assert response.json()["template"]["field_mappings"] == {"{{email}}": "email"}


@pytest.mark.anyio
async def test_upload_rejects_invalid_mapping_json(data_dir: Path) -> None:
    async with _client() as client:
        response = await client.post(
            "/v1/templates/upload",
            files={"file": ("letter.docx", _docx_bytes("Hi"), DOCX_MEDIA_TYPE)},
            data={"name": "Letter", "placeholder_mappings": "{not json"},
        )

    assert response.status_code == 400
    assert response.json()["detail"]["field"] == "placeholder_mappings"


@pytest.mark.anyio
async def test_upload_rejects_wrong_extension_and_non_zip(data_dir: Path) -> None:
    async with _client() as client:
        wrong_name = await client.post(
            "/v1/templates/upload",
            files={"file": ("letter.pdf", b"%PDF-1.4", "application/pdf")},
            data={"name": "Letter"},
        )
        not_zip = await client.post(
            "/v1/templates/upload",
            files={"file": ("letter.docx", b"plain text", DOCX_MEDIA_TYPE)},
            data={"name": "Letter"},
        )

    assert wrong_name.status_code == 415
    assert not_zip.status_code == 415
    assert not_zip.json()["error_code"] == "INVALID_MEDIA_TYPE"


@pytest.mark.anyio
async def test_upload_too_large_returns_413(
    data_dir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("TRUSTDOCS_MAX_UPLOAD_BYTES", "32")

    async with _client() as client:
        response = await client.post(
            "/v1/templates/upload",
            files={"file": ("letter.docx", _docx_bytes("Hello"), DOCX_MEDIA_TYPE)},
            data={"name": "Letter"},
        )

    assert response.status_code == 413
    payload = response.json()
    assert payload["error_code"] == "UPLOAD_TOO_LARGE"
    assert payload["detail"]["max_bytes"] == 32


@pytest.mark.anyio
async def test_save_template_requires_confirmation_for_invalid_mappings(data_dir: Path) -> None:
    _seed_task(data_dir)
    html = "<p>" + marker_html("bogus_field", "field-1") + "</p>"

    async with _client() as client:
        unconfirmed = await client.put("/v1/templates/tpl-1", json={"html_content": html})
        confirmed = await client.put(
            "/v1/templates/tpl-1", json={"html_content": html, "confirm": True}
        )
        missing = await client.get("/v1/templates/absent")

    assert unconfirmed.status_code == 409
    payload = unconfirmed.json()
    assert payload["error_code"] == "CONFIRMATION_REQUIRED"
    assert [item["field_name"] for item in payload["detail"]["invalid_mappings"]] == [
        "bogus_field"
    ]
    assert confirmed.status_code == 200
    assert confirmed.json()["field_mappings"] == {"{{bogus_field}}": "bogus_field"}
    assert missing.status_code == 404
    assert missing.json()["error_code"] == "NOT_FOUND"


@pytest.mark.anyio
async def test_migrate_fields_renames_across_templates(data_dir: Path) -> None:
    records = _seed_task(data_dir)

    async with _client() as client:
        response = await client.post(
            "/v1/templates/migrate-fields",
            json={"changes": [{"kind": "rename", "field": "full_name", "new_field": "client_name"}]},
        )

    assert response.status_code == 200
    assert response.json()["changed"] == 1
    assert records.get(TEMPLATES_TABLE, "tpl-1")["field_mappings"] == {
        "{{client_name}}": "client_name"
    }


@pytest.mark.anyio
async def test_suggest_field_mappings_without_ai(data_dir: Path) -> None:
    async with _client() as client:
        response = await client.post(
            "/v1/ai/suggest-field-mappings",
            json={"document_text": "Dear {{client_name}}, dated {{today}} re {{widget}}"},
        )

    payload = response.json()
    assert payload["ai_enabled"] is False
    assert [(item["placeholder"], item["suggested_field"]) for item in payload["suggestions"]] == [
        ("client_name", "full_name"),
        ("today", "current_date"),
    ]


@pytest.mark.anyio
async def test_generate_and_fetch_task_documents(data_dir: Path) -> None:
    _seed_task(data_dir)

    async with _client() as client:
        generated = await client.post("/v1/tasks/task-1/generate")
        content = await client.get("/v1/tasks/task-1/documents/tpl-1")
        link = await client.get("/v1/tasks/task-1/documents/tpl-1", params={"mode": "link"})
        preview = await client.get("/v1/tasks/task-1/documents/tpl-1", params={"mode": "preview"})
        docx = await client.get("/v1/tasks/task-1/documents/tpl-1", params={"mode": "docx"})
        again = await client.post("/v1/tasks/task-1/generate")

    assert generated.status_code == 200
    payload = generated.json()
    assert payload["success"] is True
    assert payload["errors"] is None
    assert payload["generated_documents"][0]["template_id"] == "tpl-1"

    assert content.status_code == 200
    assert content.text == "<p>Dear Jane Doe</p>"
    assert content.headers[REQUEST_ID_HEADER]

    assert link.json()["url"].startswith("trustdocs://task-documents/client-1/task-1/tpl-1-")
    assert link.json()["expires_in"] == 3600

    assert preview.json()["html"] == "<p>Dear Jane Doe</p>"
    assert preview.json()["report"]["summary"]["replaced_count"] == 1

    assert docx.headers["content-type"] == DOCX_MEDIA_TYPE
    assert docx.headers["content-disposition"].startswith('attachment; filename="Jane_Doe_')
    assert Document(io.BytesIO(docx.content)).paragraphs[0].text == "Dear Jane Doe"

    assert again.status_code == 200


@pytest.mark.anyio
async def test_generate_rejects_non_awaiting_task(data_dir: Path) -> None:
    records = _seed_task(data_dir)
    records.update(TASKS_TABLE, "task-1", {"status": "completed"})

    async with _client() as client:
        response = await client.post("/v1/tasks/task-1/generate")
        unknown = await client.get("/v1/tasks/task-1/documents/tpl-1")

    assert response.status_code == 409
    assert response.json()["error_code"] == "INVALID_STATE"
    assert response.json()["detail"]["state"] == "completed"
    assert unknown.status_code == 404
