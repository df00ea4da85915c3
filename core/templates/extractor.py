"""Placeholder extractor for uploaded DOCX archives.

Markup is stripped with a regex rather than parsed; text of adjacent runs is
joined without regard to the document structure.
"""

from __future__ import annotations

import io
import re
import zipfile

from core.templates.models import ExtractionResult
from core.utils.errors import InvalidDocumentFormat

MAIN_CONTENT_ENTRY = "word/document.xml"

_TAG_RE = re.compile(r"<[^>]*>")
_TOKEN_RE = re.compile(r"\{([a-zA-Z_][a-zA-Z0-9_]*)\}")


def extract_placeholders(document_bytes: bytes, filename: str | None = None) -> ExtractionResult:
    """Extract ``{identifier}`` tokens from the document's main content entry.

    Args:
        document_bytes: Raw bytes of the uploaded document archive.
        filename: Optional name used in error messages.

    Returns:
        ExtractionResult with the deduplicated token set and the stripped text.

    Raises:
        InvalidDocumentFormat: When the archive is unreadable or has no
            main content entry.
    """

    xml_text = read_main_content(document_bytes, filename=filename)
    plain_text = strip_markup(xml_text)
    return ExtractionResult(placeholders=find_tokens(plain_text), plain_text=plain_text)


def read_main_content(document_bytes: bytes, filename: str | None = None) -> str:
    try:
        with zipfile.ZipFile(io.BytesIO(document_bytes)) as archive:
            try:
                raw = archive.read(MAIN_CONTENT_ENTRY)
            except KeyError as exc:
                raise InvalidDocumentFormat(
                    f"Document is missing {MAIN_CONTENT_ENTRY}", filename=filename
                ) from exc
    except zipfile.BadZipFile as exc:
        raise InvalidDocumentFormat(
            "Document archive could not be opened", filename=filename
        ) from exc

    return raw.decode("utf-8", errors="replace")


def strip_markup(xml_text: str) -> str:
    return _TAG_RE.sub("", xml_text)


def find_tokens(text: str) -> set[str]:
    return {match.group(1) for match in _TOKEN_RE.finditer(text)}
