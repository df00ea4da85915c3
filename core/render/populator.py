"""Substitute client, task and computed values into template html.

Every placeholder ends as a value or as a visible missing-value sentinel.
"""

from __future__ import annotations

import html as html_lib
import logging
import re
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from core.config.models import MatchingConfig
from core.render.client_fields import build_client_fields, computed_values
from core.render.models import PopulateReport, PopulateResult, ReplaceLogEntry, ReplaceSummary
from core.schema.matching import find_similar_key
from core.schema.models import ColumnInfo
from core.templates.markers import MARKER_CLASS

logger = logging.getLogger("trustdocs.populate")

_ANY_LITERAL_RE = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")
_LEFTOVER_MARKER_RE = re.compile(
    r'<span[^>]*class="[^"]*\b' + re.escape(MARKER_CLASS) + r'\b[^"]*"[^>]*>([^<]*)</span>',
    re.IGNORECASE,
)
_NON_IDENTIFIER_RE = re.compile(r"[^a-zA-Z0-9]")


def build_value_table(
    client: Mapping[str, Any],
    custom_values: Mapping[str, Any] | None,
    field_mapping: Mapping[str, str] | None,
    config: MatchingConfig,
    *,
    columns: Iterable[ColumnInfo] | None = None,
    now: datetime | None = None,
) -> dict[str, str]:
    """Resolve every known key to text.

    Priority, highest first: task custom values (exact, lowercase, snake_case
    keys), client fields, computed fields, then template mapping entries
    resolved through the same chain.
    """

    table: dict[str, str] = {}
    table.update(computed_values(config, now or datetime.now()))
    table.update(build_client_fields(client, columns, config))

    for key, value in (custom_values or {}).items():
        text = "" if value is None else str(value)
        for variant in _key_variants(key):
            table[variant] = text

    for literal, field_name in (field_mapping or {}).items():
        token = _literal_token(literal)
        if not token or token in table:
            continue
        resolved = _lookup(table, field_name)
        if resolved is not None:
            table[token] = resolved

    return table


def populate(
    html: str,
    field_mapping: Mapping[str, str] | None,
    client: Mapping[str, Any],
    custom_values: Mapping[str, Any] | None,
    config: MatchingConfig,
    *,
    columns: Iterable[ColumnInfo] | None = None,
    now: datetime | None = None,
) -> PopulateResult:
    """Populate ``html`` and report what happened to each token."""

    table = build_value_table(
        client, custom_values, field_mapping, config, columns=columns, now=now
    )

    tokens: dict[str, int] = {}
    for match in _ANY_LITERAL_RE.finditer(html):
        token = match.group(1)
        tokens[token] = tokens.get(token, 0) + 1

    output = html
    entries: list[ReplaceLogEntry] = []
    unresolved: list[str] = []

    for token, count in tokens.items():
        value = _lookup(table, token)
        if value is None:
            unresolved.append(token)
            continue
        output = _substitute(output, token, value)
        entries.append(
            ReplaceLogEntry(status="replaced", token=token, count=count, matched_key=token, new_text=value)
        )

    output = _LEFTOVER_MARKER_RE.sub(r"\1", output)

    for token in unresolved:
        count = tokens[token]
        similar = find_similar_key(
            token,
            table.keys(),
            threshold=config.fuzzy_threshold,
            allow_substring=config.fuzzy_substring,
        )
        if similar is not None:
            value = table[similar]
            output = _substitute(output, token, value)
            logger.warning("auto-mapped {{%s}} to similar field %s", token, similar)
            entries.append(
                ReplaceLogEntry(status="fuzzy", token=token, count=count, matched_key=similar, new_text=value)
            )
            continue

        sentinel = config.missing_sentinel.format(token=token.upper())
        output = _substitute(output, token, sentinel, escape=False)
        logger.warning("no value for placeholder {{%s}}; marked as missing", token)
        entries.append(
            ReplaceLogEntry(status="missing", token=token, count=count, new_text=sentinel)
        )

    summary = ReplaceSummary(
        total_placeholders=sum(tokens.values()),
        replaced_count=sum(item.count for item in entries if item.status == "replaced"),
        fuzzy_count=sum(item.count for item in entries if item.status == "fuzzy"),
        missing_count=sum(item.count for item in entries if item.status == "missing"),
    )
    logger.info(
        "populated %d placeholder(s): replaced=%d fuzzy=%d missing=%d",
        summary.total_placeholders,
        summary.replaced_count,
        summary.fuzzy_count,
        summary.missing_count,
    )
    return PopulateResult(html=output, report=PopulateReport(entries=entries, summary=summary))


def _key_variants(key: str) -> list[str]:
    variants = [key, key.lower()]
    snake = _NON_IDENTIFIER_RE.sub("_", key).lower()
    if snake not in variants:
        variants.append(snake)
    return variants


def _lookup(table: Mapping[str, str], key: str) -> str | None:
    for variant in _key_variants(key):
        if variant in table:
            return table[variant]
    lowered = key.lower()
    for candidate, value in table.items():
        if candidate.lower() == lowered:
            return value
    return None


def _literal_token(literal: str) -> str:
    match = _ANY_LITERAL_RE.fullmatch(literal.strip())
    return match.group(1) if match else literal.strip()


def _substitute(output: str, token: str, value: str, *, escape: bool = True) -> str:
    """Replace marker-wrapped, inline-wrapped and bare forms of ``{{token}}``."""

    text = html_lib.escape(value, quote=False) if escape else value
    literal = r"\{\{\s*" + re.escape(token) + r"\s*\}\}"
    wrapped = re.compile(
        r"<(?P<tag>span|mark)\b[^>]*>\s*" + literal + r"\s*</(?P=tag)>",
        re.IGNORECASE,
    )
    output = wrapped.sub(lambda _match: text, output)
    return re.sub(literal, lambda _match: text, output, flags=re.IGNORECASE)
