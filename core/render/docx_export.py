"""Convert populated template html into a downloadable .docx."""

from __future__ import annotations

import io

from bs4 import BeautifulSoup, NavigableString, Tag
from docx import Document
from docx.document import Document as DocxDocument
from docx.text.paragraph import Paragraph

_HEADING_LEVELS = {"h1": 1, "h2": 2, "h3": 3, "h4": 4, "h5": 5, "h6": 6}
_CONTAINERS = {"html", "body", "div", "section", "article", "main", "header", "footer", "blockquote"}
_BOLD = {"strong", "b"}
_ITALIC = {"em", "i"}


def export_docx(html: str) -> bytes:
    """Render headings, paragraphs, lists and tables; inline bold/italic/underline survive."""

    soup = BeautifulSoup(html, "html.parser")
    document = Document()
    _emit_blocks(document, soup)

    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def _emit_blocks(document: DocxDocument, element: Tag) -> None:
    loose: list[NavigableString | Tag] = []

    def flush() -> None:
        if any(_has_text(item) for item in loose):
            paragraph = document.add_paragraph()
            for item in loose:
                _add_inline(paragraph, item)
        loose.clear()

    for child in element.children:
        if isinstance(child, Tag) and child.name in _HEADING_LEVELS:
            flush()
            document.add_heading(child.get_text(" ", strip=True), level=_HEADING_LEVELS[child.name])
        elif isinstance(child, Tag) and child.name == "p":
            flush()
            paragraph = document.add_paragraph()
            _add_inline(paragraph, child)
        elif isinstance(child, Tag) and child.name in {"ul", "ol"}:
            flush()
            style = "List Number" if child.name == "ol" else "List Bullet"
            for item in child.find_all("li", recursive=False):
                paragraph = document.add_paragraph(style=style)
                _add_inline(paragraph, item)
        elif isinstance(child, Tag) and child.name == "table":
            flush()
            _emit_table(document, child)
        elif isinstance(child, Tag) and child.name in _CONTAINERS:
            flush()
            _emit_blocks(document, child)
        elif isinstance(child, Tag) or type(child) is NavigableString:
            loose.append(child)
    flush()


def _emit_table(document: DocxDocument, table: Tag) -> None:
    rows = table.find_all("tr")
    if not rows:
        return
    width = max(len(row.find_all(["td", "th"], recursive=False)) for row in rows)
    if width == 0:
        return

    docx_table = document.add_table(rows=len(rows), cols=width)
    docx_table.style = "Table Grid"
    for row_index, row in enumerate(rows):
        for cell_index, cell in enumerate(row.find_all(["td", "th"], recursive=False)):
            docx_table.cell(row_index, cell_index).text = cell.get_text(" ", strip=True)


def _add_inline(
    paragraph: Paragraph,
    node: Tag | NavigableString,
    *,
    bold: bool = False,
    italic: bool = False,
    underline: bool = False,
) -> None:
    if isinstance(node, NavigableString):
        if type(node) is not NavigableString or not str(node):
            return
        run = paragraph.add_run(str(node))
        run.bold = bold or None
        run.italic = italic or None
        run.underline = underline or None
        return

    if node.name == "br":
        paragraph.add_run().add_break()
        return

    for child in node.children:
        if isinstance(child, (Tag, NavigableString)):
            _add_inline(
                paragraph,
                child,
                bold=bold or node.name in _BOLD,
                italic=italic or node.name in _ITALIC,
                underline=underline or node.name == "u",
            )


def _has_text(node: Tag | NavigableString) -> bool:
    if isinstance(node, NavigableString):
        return type(node) is NavigableString and bool(str(node).strip())
    return bool(node.get_text(strip=True)) or node.find("br") is not None
