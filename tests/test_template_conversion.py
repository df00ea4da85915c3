from __future__ import annotations

import io

import pytest
from bs4 import BeautifulSoup
from docx import Document

from core.templates.conversion import convert_docx_to_html, tokens_to_markers
from core.templates.markers import find_literals, marker_html
from core.utils.errors import InvalidDocumentFormat


def _docx_bytes() -> bytes:
    document = Document()
    document.add_heading("Trust Deed", level=1)
    paragraph = document.add_paragraph("Dear ")
    paragraph.add_run("{client_name}").bold = True
    paragraph.add_run(", welcome.")
    document.add_paragraph("Signed on {current_date}.")
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def test_convert_docx_to_html_keeps_structure_and_tokens() -> None:
    result = convert_docx_to_html(_docx_bytes(), filename="deed.docx")

    soup = BeautifulSoup(result.html, "html.parser")
    assert soup.find("h1").get_text() == "Trust Deed"
    assert soup.find("strong").get_text() == "{client_name}"
    assert "Signed on {current_date}." in result.html


def test_convert_rejects_non_archive() -> None:
    with pytest.raises(InvalidDocumentFormat):
        convert_docx_to_html(b"not a document", filename="bad.docx")


def test_tokens_to_markers_binds_mapped_field() -> None:
    html = "<p>Dear <strong>{client_name}</strong>, on {current_date}.</p>"

    converted = tokens_to_markers(html, {"client_name": "full_name"})

    soup = BeautifulSoup(converted, "html.parser")
    markers = soup.find_all("span", class_="field-placeholder")
    assert [marker["data-field"] for marker in markers] == ["full_name", "current_date"]
    assert [marker.get_text() for marker in markers] == ["{{full_name}}", "{{current_date}}"]
    assert all(marker["data-instance-id"].startswith("field-") for marker in markers)
    assert markers[0].parent.name == "strong"
    assert soup.get_text() == "Dear {{full_name}}, on {{current_date}}."


def test_tokens_to_markers_is_idempotent_on_marked_html() -> None:
    html = "<p>" + marker_html("email", "field-abc") + " and {{ literal }}</p>"

    assert tokens_to_markers(html) == str(BeautifulSoup(html, "html.parser"))


def test_find_literals_returns_pairs_in_order() -> None:
    text = "{{ first_name }} and {{email}} then {{first_name}}"

    assert find_literals(text) == [
        ("{{ first_name }}", "first_name"),
        ("{{email}}", "email"),
        ("{{first_name}}", "first_name"),
    ]


def test_marker_html_escapes_field_name() -> None:
    markup = marker_html('x"y', "field-1")

    assert 'data-field="x&quot;y"' in markup
