"""Typer CLI entrypoint for trustdocs."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Any

import typer

from apps.cli.io import (
    load_json_object,
    report_path_for,
    write_bytes_atomic,
    write_error_report,
    write_report_atomic,
    write_text_atomic,
)
from core.config.loader import load_matching_config
from core.render.docx_export import export_docx
from core.render.populator import populate
from core.schema.registry import SchemaRegistry
from core.storage.local import JsonRecordStore
from core.templates.conversion import convert_docx_to_html, tokens_to_markers
from core.templates.extractor import extract_placeholders
from core.templates.persistence import derive_field_mapping
from core.templates.reconciler import build_repair_mapping, reconcile
from core.utils.errors import InvalidDocumentFormat, StorageFailure

app = typer.Typer(help="Trust document template CLI", rich_markup_mode=None)

EXIT_OK = 0
EXIT_INTERNAL = 1
EXIT_BLOCKED = 2
EXIT_INVALID_DOCUMENT = 3

ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", exists=True, dir_okay=False, help="Alternate matching YAML."),
]


@app.callback()
def cli_callback() -> None:
    """CLI root callback to keep subcommands explicit."""


@app.command("extract")
def extract_command(
    template: Annotated[Path, typer.Argument(exists=True, dir_okay=False, file_okay=True)],
    as_json: Annotated[bool, typer.Option("--json", help="Print tokens as a JSON list.")] = False,
) -> None:
    """List the single-brace placeholder tokens of a .docx template."""

    try:
        result = extract_placeholders(template.read_bytes(), filename=template.name)
    except InvalidDocumentFormat as exc:
        typer.echo(f"ERROR: {exc}")
        raise typer.Exit(code=EXIT_INVALID_DOCUMENT) from exc

    tokens = sorted(result.placeholders)
    if as_json:
        typer.echo(json.dumps(tokens))
    else:
        for token in tokens:
            typer.echo(token)
        typer.echo(f"INFO: {len(tokens)} placeholder(s)")
    raise typer.Exit(code=EXIT_OK)


@app.command("validate")
def validate_command(
    template: Annotated[Path, typer.Argument(exists=True, dir_okay=False, file_okay=True)],
    mapping: Annotated[
        Path | None,
        typer.Option("--mapping", exists=True, dir_okay=False, help="JSON {token: field}."),
    ] = None,
    data_dir: Annotated[Path, typer.Option("--data-dir")] = Path(".trustdocs"),
    config: ConfigOption = None,
) -> None:
    """Check template tokens against the field registry; exit 2 with a repair mapping when blocked."""

    try:
        chosen = _load_mapping(mapping)
        registry = _registry(data_dir, config)
        result = extract_placeholders(template.read_bytes(), filename=template.name)
        validation = reconcile(result.placeholders, registry, chosen)
    except InvalidDocumentFormat as exc:
        typer.echo(f"ERROR: {exc}")
        raise typer.Exit(code=EXIT_INVALID_DOCUMENT) from exc
    except (ValueError, StorageFailure) as exc:
        typer.echo(f"ERROR: {type(exc).__name__}: {exc}")
        raise typer.Exit(code=EXIT_INTERNAL) from exc

    for warning in validation.warnings:
        typer.echo(f"WARNING: {warning.message}")

    if validation.valid:
        typer.echo(f"INFO: {validation.valid_count} placeholder(s) valid")
        raise typer.Exit(code=EXIT_OK)

    typer.echo(f"ERROR: {validation.invalid_count} placeholder(s) do not match any field")
    typer.echo(json.dumps(build_repair_mapping(validation), indent=2, sort_keys=True))
    raise typer.Exit(code=EXIT_BLOCKED)


@app.command("convert")
def convert_command(
    template: Annotated[Path, typer.Argument(exists=True, dir_okay=False, file_okay=True)],
    out: Annotated[Path, typer.Option("--out", dir_okay=False)],
    mapping: Annotated[
        Path | None,
        typer.Option("--mapping", exists=True, dir_okay=False, help="JSON {token: field}."),
    ] = None,
) -> None:
    """Convert a .docx template into editable html with field markers."""

    report_path = report_path_for(out)
    failure_stage = "load_mapping"
    try:
        chosen = _load_mapping(mapping)
        failure_stage = "convert"
        conversion = convert_docx_to_html(template.read_bytes(), filename=template.name)
        html = tokens_to_markers(conversion.html, chosen)
        failure_stage = "write_output"
        write_text_atomic(out, html)
        write_report_atomic(
            report_path,
            {
                "field_mappings": derive_field_mapping(html),
                "warnings": conversion.warnings,
            },
        )
    except InvalidDocumentFormat as exc:
        typer.echo(f"ERROR: {exc}")
        _safe_write_error_report(report_path, exc, failure_stage)
        raise typer.Exit(code=EXIT_INVALID_DOCUMENT) from exc
    except Exception as exc:  # noqa: BLE001
        typer.echo(f"ERROR: {type(exc).__name__}: {exc}")
        _safe_write_error_report(report_path, exc, failure_stage)
        raise typer.Exit(code=EXIT_INTERNAL) from exc

    for warning in conversion.warnings:
        typer.echo(f"WARNING(convert): {warning}")
    typer.echo(f"INFO: wrote {out}")
    raise typer.Exit(code=EXIT_OK)


@app.command("populate")
def populate_command(
    template: Annotated[Path, typer.Argument(exists=True, dir_okay=False, file_okay=True)],
    client: Annotated[Path, typer.Option("--client", exists=True, dir_okay=False)],
    out: Annotated[Path, typer.Option("--out", dir_okay=False)],
    custom: Annotated[
        Path | None, typer.Option("--custom", exists=True, dir_okay=False)
    ] = None,
    mapping: Annotated[
        Path | None,
        typer.Option("--mapping", exists=True, dir_okay=False, help="JSON {literal: field}."),
    ] = None,
    docx_out: Annotated[Path | None, typer.Option("--docx", dir_okay=False)] = None,
    fail_on_missing: Annotated[
        bool,
        typer.Option("--fail-on-missing", help="Exit 2 when any placeholder stays missing."),
    ] = False,
    config: ConfigOption = None,
) -> None:
    """Substitute client and custom values into template html."""

    report_path = report_path_for(out)
    failure_stage = "load_inputs"
    try:
        html = template.read_text(encoding="utf-8")
        client_data = load_json_object(client, label="Client")
        custom_values = load_json_object(custom, label="Custom values") if custom else {}
        field_mapping = _load_mapping(mapping) or derive_field_mapping(html)
        matching = load_matching_config(config)

        failure_stage = "populate"
        result = populate(html, field_mapping, client_data, custom_values, matching)

        failure_stage = "write_output"
        write_text_atomic(out, result.html)
        if docx_out is not None:
            write_bytes_atomic(docx_out, export_docx(result.html))
        write_report_atomic(report_path, result.report.model_dump(mode="json"))
    except Exception as exc:  # noqa: BLE001
        typer.echo(f"ERROR: {type(exc).__name__}: {exc}")
        _safe_write_error_report(report_path, exc, failure_stage)
        raise typer.Exit(code=EXIT_INTERNAL) from exc

    missing = result.report.missing_tokens()
    summary = result.report.summary
    typer.echo(
        "INFO(populate): "
        f"replaced={summary.replaced_count} fuzzy={summary.fuzzy_count} "
        f"missing={summary.missing_count}"
    )
    if missing:
        typer.echo(f"WARNING(populate): missing values for {', '.join(missing)}")
        if fail_on_missing:
            raise typer.Exit(code=EXIT_BLOCKED)
    typer.echo(f"INFO: wrote {out}")
    raise typer.Exit(code=EXIT_OK)


def _load_mapping(path: Path | None) -> dict[str, str]:
    if path is None:
        return {}
    raw: dict[str, Any] = load_json_object(path, label="Mapping")
    return {str(key): str(value) for key, value in raw.items() if value is not None}


def _registry(data_dir: Path, config: Path | None) -> SchemaRegistry:
    return SchemaRegistry(JsonRecordStore(data_dir / "records.json"), load_matching_config(config))


def _safe_write_error_report(path: Path, exc: Exception, stage: str) -> None:
    try:
        write_error_report(
            path, error_type=type(exc).__name__, error_message=str(exc), stage=stage
        )
    except Exception:  # noqa: BLE001
        pass


def main() -> None:
    """Console script entrypoint."""

    app()


if __name__ == "__main__":
    main()
