from __future__ import annotations

import json
from pathlib import Path

from docx import Document
from typer.testing import CliRunner

from apps.cli.main import EXIT_BLOCKED, EXIT_INTERNAL, EXIT_INVALID_DOCUMENT, EXIT_OK, app

runner = CliRunner()


def _write_docx(path: Path, *paragraphs: str) -> None:
    document = Document()
    for text in paragraphs:
        document.add_paragraph(text)
    document.save(str(path))


def _write_json(path: Path, payload: object) -> None:
    path.write_text(json.dumps(payload), encoding="utf-8")


def test_extract_lists_tokens(tmp_path: Path) -> None:
    template = tmp_path / "letter.docx"
    _write_docx(template, "Dear {last_name}, {first_name}", "Again {first_name}")

    result = runner.invoke(app, ["extract", str(template)])
    as_json = runner.invoke(app, ["extract", str(template), "--json"])

    assert result.exit_code == EXIT_OK
    assert result.stdout.splitlines() == ["first_name", "last_name", "INFO: 2 placeholder(s)"]
    assert json.loads(as_json.stdout) == ["first_name", "last_name"]


def test_extract_invalid_document_exits_3(tmp_path: Path) -> None:
    template = tmp_path / "broken.docx"
    template.write_bytes(b"not a zip")

    result = runner.invoke(app, ["extract", str(template)])

    assert result.exit_code == EXIT_INVALID_DOCUMENT
    assert result.stdout.startswith("ERROR:")


def test_validate_valid_template(tmp_path: Path) -> None:
    template = tmp_path / "letter.docx"
    _write_docx(template, "Dear {first_name}, dated {current_date}")

    result = runner.invoke(
        app, ["validate", str(template), "--data-dir", str(tmp_path / "data")]
    )

    assert result.exit_code == EXIT_OK
    assert "INFO: 2 placeholder(s) valid" in result.stdout


def test_validate_blocked_template_prints_repair_mapping(tmp_path: Path) -> None:
    template = tmp_path / "letter.docx"
    _write_docx(template, "Dear {first_name}, your {foo_bar}")

    result = runner.invoke(
        app, ["validate", str(template), "--data-dir", str(tmp_path / "data")]
    )

    assert result.exit_code == EXIT_BLOCKED
    assert "ERROR: 1 placeholder(s) do not match any field" in result.stdout
    repair = json.loads(result.stdout.split("field\n", 1)[1])
    assert repair == {"foo_bar": ""}


def test_validate_with_mapping_resolves_tokens(tmp_path: Path) -> None:
    template = tmp_path / "letter.docx"
    mapping = tmp_path / "mapping.json"
    _write_docx(template, "Your {foo_bar}")
    _write_json(mapping, {"foo_bar": "email"})

    result = runner.invoke(
        app,
        [
            "validate",
            str(template),
            "--mapping",
            str(mapping),
            "--data-dir",
            str(tmp_path / "data"),
        ],
    )

    assert result.exit_code == EXIT_OK


def test_validate_rejects_non_object_mapping(tmp_path: Path) -> None:
    template = tmp_path / "letter.docx"
    mapping = tmp_path / "mapping.json"
    _write_docx(template, "Your {foo_bar}")
    _write_json(mapping, ["foo_bar"])

    result = runner.invoke(app, ["validate", str(template), "--mapping", str(mapping)])

    assert result.exit_code == EXIT_INTERNAL
    assert "Mapping JSON must be an object" in result.stdout


def test_convert_writes_html_and_report(tmp_path: Path) -> None:
    template = tmp_path / "letter.docx"
    out = tmp_path / "out" / "letter.html"
    _write_docx(template, "Dear {first_name}")

    result = runner.invoke(app, ["convert", str(template), "--out", str(out)])

    assert result.exit_code == EXIT_OK
    html = out.read_text(encoding="utf-8")
    assert 'data-field="first_name"' in html
    report = json.loads((tmp_path / "out" / "letter.report.json").read_text(encoding="utf-8"))
    assert report["field_mappings"] == {"{{first_name}}": "first_name"}


def test_convert_invalid_document_writes_error_report(tmp_path: Path) -> None:
    template = tmp_path / "broken.docx"
    template.write_bytes(b"not a zip")
    out = tmp_path / "broken.html"

    result = runner.invoke(app, ["convert", str(template), "--out", str(out)])

    assert result.exit_code == EXIT_INVALID_DOCUMENT
    assert not out.exists()
    report = json.loads((tmp_path / "broken.report.json").read_text(encoding="utf-8"))
    assert report["error"]["error_type"] == "InvalidDocumentFormat"
    assert report["error"]["stage"] == "convert"


def test_populate_writes_html_docx_and_report(tmp_path: Path) -> None:
    template = tmp_path / "letter.html"
    client = tmp_path / "client.json"
    custom = tmp_path / "custom.json"
    out = tmp_path / "filled.html"
    docx_out = tmp_path / "filled.docx"
    template.write_text("<p>Dear {{first_name}} of {{trust_name}}</p>", encoding="utf-8")
    _write_json(client, {"first_name": "Jane", "last_name": "Doe"})
    _write_json(custom, {"trust_name": "Doe Trust"})

    result = runner.invoke(
        app,
        [
            "populate",
            str(template),
            "--client",
            str(client),
            "--custom",
            str(custom),
            "--out",
            str(out),
            "--docx",
            str(docx_out),
        ],
    )

    assert result.exit_code == EXIT_OK
    assert "INFO(populate): replaced=2 fuzzy=0 missing=0" in result.stdout
    assert out.read_text(encoding="utf-8") == "<p>Dear Jane of Doe Trust</p>"
    assert Document(str(docx_out)).paragraphs[0].text == "Dear Jane of Doe Trust"
    report = json.loads((tmp_path / "filled.report.json").read_text(encoding="utf-8"))
    assert report["summary"]["replaced_count"] == 2


def test_populate_missing_values_warn_and_can_fail(tmp_path: Path) -> None:
    template = tmp_path / "letter.html"
    client = tmp_path / "client.json"
    out = tmp_path / "filled.html"
    template.write_text("<p>{{zzqx}}</p>", encoding="utf-8")
    _write_json(client, {"first_name": "Jane"})
    args = ["populate", str(template), "--client", str(client), "--out", str(out)]

    lenient = runner.invoke(app, args)
    strict = runner.invoke(app, [*args, "--fail-on-missing"])

    assert lenient.exit_code == EXIT_OK
    assert "WARNING(populate): missing values for zzqx" in lenient.stdout
    assert strict.exit_code == EXIT_BLOCKED
    assert out.read_text(encoding="utf-8") == "<p>[MISSING: ZZQX]</p>"


def test_populate_rejects_non_object_client(tmp_path: Path) -> None:
    template = tmp_path / "letter.html"
    client = tmp_path / "client.json"
    out = tmp_path / "filled.html"
    template.write_text("<p>{{first_name}}</p>", encoding="utf-8")
    _write_json(client, [1, 2])

    result = runner.invoke(
        app, ["populate", str(template), "--client", str(client), "--out", str(out)]
    )

    assert result.exit_code == EXIT_INTERNAL
    report = json.loads((tmp_path / "filled.report.json").read_text(encoding="utf-8"))
    assert report["error"]["stage"] == "load_inputs"
