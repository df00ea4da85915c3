"""Build substitution values from a client record and its column list."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import date, datetime
from typing import Any

from core.config.models import MatchingConfig
from core.schema.models import ColumnInfo

_ADDRESS_PARTS = ("address_line_1", "address_line_2", "city", "state", "postal_code", "country")


def format_value(value: Any, data_type: str, config: MatchingConfig) -> str:
    """Render a column value as document text."""

    if value is None:
        return ""
    if data_type in {"date", "datetime"}:
        return _format_date(value, config)
    if data_type == "boolean" or isinstance(value, bool):
        return "Yes" if value else "No"
    return str(value)


def build_full_address(client: Mapping[str, Any]) -> str:
    return ", ".join(str(client[part]) for part in _ADDRESS_PARTS if client.get(part))


def computed_values(config: MatchingConfig, now: datetime) -> dict[str, str]:
    current_date = now.strftime(config.date_format)
    return {
        "current_date": current_date,
        "today": current_date,
        "current_datetime": now.strftime(config.datetime_format),
        "current_year": str(now.year),
        "year": str(now.year),
    }


def build_client_fields(
    client: Mapping[str, Any],
    columns: Iterable[ColumnInfo] | None,
    config: MatchingConfig,
) -> dict[str, str]:
    """Map every client column (and ``client_`` variants) to formatted text.

    Columns come from schema discovery; when none are given the record's own
    keys are used. Name and address concatenations are added when their
    parts exist.
    """

    column_list = (
        list(columns)
        if columns is not None
        else [ColumnInfo(name=key, type="string") for key in client]
    )

    values: dict[str, str] = {}
    for column in column_list:
        text = format_value(client.get(column.name), column.type, config)
        values[column.name] = text
        values[f"client_{column.name}"] = text

    names = {column.name for column in column_list}
    if {"first_name", "last_name"} <= names and client.get("last_name"):
        full_name = f"{client.get('first_name') or ''} {client.get('last_name') or ''}".strip()
        values.setdefault("full_name", full_name)
        values.setdefault("client_full_name", full_name)
        values.setdefault("client_name", full_name)

    if names.intersection(_ADDRESS_PARTS):
        full_address = build_full_address(client)
        values.setdefault("full_address", full_address)
        values.setdefault("client_address", full_address)
        values.setdefault("address", full_address)

    return values


def _format_date(value: Any, config: MatchingConfig) -> str:
    if isinstance(value, datetime):
        parsed: date = value
    elif isinstance(value, date):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return ""
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return text
    return parsed.strftime(config.date_format)
