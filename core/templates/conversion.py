"""DOCX to HTML template conversion."""

from __future__ import annotations

import io
import logging
import re
import zipfile
from collections.abc import Mapping

import mammoth
from bs4 import BeautifulSoup, NavigableString, Tag

from core.templates.markers import MARKER_CLASS, marker_html, new_instance_id
from core.templates.models import ConversionResult
from core.utils.errors import InvalidDocumentFormat

logger = logging.getLogger("trustdocs.templates")

_SINGLE_TOKEN_RE = re.compile(r"(?<!\{)\{([a-zA-Z_][a-zA-Z0-9_]*)\}(?!\})")

_STYLE_MAP = """
p[style-name='Title'] => h1:fresh
p[style-name='Heading 1'] => h1:fresh
p[style-name='Heading 2'] => h2:fresh
p[style-name='Heading 3'] => h3:fresh
p[style-name='Normal'] => p:fresh
b => strong
i => em
u => u
table => table.table
"""


def convert_docx_to_html(document_bytes: bytes, filename: str | None = None) -> ConversionResult:
    try:
        result = mammoth.convert_to_html(io.BytesIO(document_bytes), style_map=_STYLE_MAP)
    except (zipfile.BadZipFile, KeyError, ValueError) as exc:
        raise InvalidDocumentFormat(
            "Document could not be converted to HTML", filename=filename
        ) from exc

    warnings = [str(message.message) for message in result.messages]
    if warnings:
        logger.info("docx conversion produced %d warning(s)", len(warnings))
    return ConversionResult(html=result.value, warnings=warnings)


def tokens_to_markers(html: str, mapping: Mapping[str, str] | None = None) -> str:
    """Rewrite ``{token}`` text into marker spans bound to the mapped field.

    Tokens absent from ``mapping`` keep their own name. Text already inside a
    marker and double-brace literals are left untouched.
    """

    field_for = dict(mapping or {})
    soup = BeautifulSoup(html, "html.parser")

    for text_node in list(soup.find_all(string=_SINGLE_TOKEN_RE)):
        if type(text_node) is not NavigableString:
            continue
        parent = text_node.parent
        if isinstance(parent, Tag) and _is_marker(parent):
            continue

        text = str(text_node)
        cursor = 0
        for match in _SINGLE_TOKEN_RE.finditer(text):
            if match.start() > cursor:
                text_node.insert_before(NavigableString(text[cursor : match.start()]))
            token = match.group(1)
            field_name = (field_for.get(token) or token).strip() or token
            fragment = BeautifulSoup(marker_html(field_name, new_instance_id()), "html.parser")
            text_node.insert_before(fragment.span)
            cursor = match.end()
        if cursor < len(text):
            text_node.insert_before(NavigableString(text[cursor:]))
        text_node.extract()

    return str(soup)


def _is_marker(tag: Tag) -> bool:
    return tag.name == "span" and MARKER_CLASS in (tag.get("class") or [])
