"""Flat editor document model: ordered text, tag and marker nodes.

Offsets count characters of text nodes plus the ``{{field}}`` display text of
markers. Tags contribute nothing. Markers are atomic: no offset may fall
strictly inside one after normalization, so markers never nest.
"""

from __future__ import annotations

import html
import logging

from bs4 import BeautifulSoup, NavigableString, Tag

from core.editor.models import MarkerNode, Node, TagNode, TextNode
from core.templates.markers import (
    FIELD_ATTR,
    INSTANCE_ATTR,
    LITERAL_RE,
    MARKER_CLASS,
    new_instance_id,
)
from core.utils.errors import StaleRangeError

logger = logging.getLogger("trustdocs.editor")


class EditorDocument:
    """Mutable document model with a revision counter bumped on every change."""

    def __init__(self, nodes: list[Node] | None = None) -> None:
        self._nodes: list[Node] = list(nodes or [])
        self.revision = 0

    @classmethod
    def from_html(cls, source: str) -> EditorDocument:
        soup = BeautifulSoup(source, "html.parser")
        nodes: list[Node] = []
        _flatten(soup, nodes)
        return cls(_merge_text(nodes))

    @property
    def nodes(self) -> tuple[Node, ...]:
        return tuple(self._nodes)

    def to_html(self) -> str:
        parts: list[str] = []
        for node in self._nodes:
            if isinstance(node, TextNode):
                parts.append(html.escape(node.text, quote=False))
            elif isinstance(node, MarkerNode):
                parts.append(node.markup)
            else:
                parts.append(node.raw)
        return "".join(parts)

    def plain_text(self) -> str:
        return "".join(
            node.text for node in self._nodes if isinstance(node, (TextNode, MarkerNode))
        )

    @property
    def text_length(self) -> int:
        return sum(node.length for node in self._nodes)

    def markers(self) -> list[MarkerNode]:
        return [node for node in self._nodes if isinstance(node, MarkerNode)]

    def find_marker(self, instance_id: str) -> MarkerNode | None:
        for node in self._nodes:
            if isinstance(node, MarkerNode) and node.instance_id == instance_id:
                return node
        return None

    def marker_span(self, instance_id: str) -> tuple[int, int] | None:
        for node, start, end in self._spans():
            if isinstance(node, MarkerNode) and node.instance_id == instance_id:
                return start, end
        return None

    def marker_containing(self, offset: int) -> MarkerNode | None:
        """Return the marker whose interior (edges excluded) holds ``offset``."""

        for node, start, end in self._spans():
            if isinstance(node, MarkerNode) and start < offset < end:
                return node
        return None

    def normalize_offset(self, offset: int) -> int:
        """Clamp to the document and move offsets inside a marker to its nearest edge.

        An offset exactly halfway snaps to the edge after the marker.
        """

        clamped = max(0, min(offset, self.text_length))
        for node, start, end in self._spans():
            if isinstance(node, MarkerNode) and start < clamped < end:
                return start if clamped - start < end - clamped else end
        return clamped

    def range_touches_marker(self, start: int, end: int) -> bool:
        if start == end:
            return self.marker_containing(start) is not None
        for node, node_start, node_end in self._spans():
            if isinstance(node, MarkerNode) and node_start < end and start < node_end:
                return True
        return False

    def text_in_range(self, start: int, end: int) -> str:
        pieces: list[str] = []
        for node, node_start, node_end in self._spans():
            if isinstance(node, TagNode) or node_end <= start or node_start >= end:
                continue
            local_start = max(start, node_start) - node_start
            local_end = min(end, node_end) - node_start
            pieces.append(node.text[local_start:local_end])
        return "".join(pieces)

    def insert_marker(self, offset: int, field_name: str, instance_id: str) -> MarkerNode:
        """Insert a marker at a normalized offset.

        Raises:
            StaleRangeError: When ``offset`` lies outside the document.
        """

        if offset < 0 or offset > self.text_length:
            raise StaleRangeError(f"Offset {offset} is outside the document")

        marker = MarkerNode(field=field_name, instance_id=instance_id)
        index = self._boundary_index(self.normalize_offset(offset))
        self._nodes.insert(index, marker)
        self._touch()
        return marker

    def replace_range(
        self, start: int, end: int, field_name: str, instance_id: str
    ) -> tuple[MarkerNode, str]:
        """Replace the text in ``[start, end)`` with a marker.

        Returns the marker and the removed text.

        Raises:
            StaleRangeError: When the range is empty, out of bounds or
                overlaps an existing marker.
        """

        if not 0 <= start < end <= self.text_length:
            raise StaleRangeError(f"Range {start}-{end} is not a valid selection")
        if self.range_touches_marker(start, end):
            raise StaleRangeError(f"Range {start}-{end} overlaps an existing marker")

        marker = MarkerNode(field=field_name, instance_id=instance_id)
        removed: list[str] = []
        rebuilt: list[Node] = []
        placed = False

        for node, node_start, node_end in self._spans():
            overlaps = (
                isinstance(node, TextNode) and node_start < end and start < node_end
            )
            if not overlaps:
                rebuilt.append(node)
                continue
            local_start = max(start, node_start) - node_start
            local_end = min(end, node_end) - node_start
            removed.append(node.text[local_start:local_end])
            before, after = node.text[:local_start], node.text[local_end:]
            if before:
                rebuilt.append(TextNode(before))
            if not placed:
                rebuilt.append(marker)
                placed = True
            if after:
                rebuilt.append(TextNode(after))

        self._nodes = rebuilt
        self._touch()
        return marker, "".join(removed)

    def append_marker(self, field_name: str, instance_id: str) -> MarkerNode:
        """Append a marker at the end of the document, padded with spaces."""

        marker = MarkerNode(field=field_name, instance_id=instance_id)
        self._nodes.extend([TextNode(" "), marker, TextNode(" ")])
        self._nodes = _merge_text(self._nodes)
        self._touch()
        return marker

    def remove_marker(self, instance_id: str) -> MarkerNode | None:
        for index, node in enumerate(self._nodes):
            if isinstance(node, MarkerNode) and node.instance_id == instance_id:
                del self._nodes[index]
                self._nodes = _merge_text(self._nodes)
                self._touch()
                return node
        return None

    def remove_field(self, field_name: str) -> list[MarkerNode]:
        removed = [
            node
            for node in self._nodes
            if isinstance(node, MarkerNode) and node.field == field_name
        ]
        if removed:
            self._nodes = _merge_text(
                [
                    node
                    for node in self._nodes
                    if not (isinstance(node, MarkerNode) and node.field == field_name)
                ]
            )
            self._touch()
        return removed

    def _spans(self) -> list[tuple[Node, int, int]]:
        spans: list[tuple[Node, int, int]] = []
        cursor = 0
        for node in self._nodes:
            spans.append((node, cursor, cursor + node.length))
            cursor += node.length
        return spans

    def _boundary_index(self, offset: int) -> int:
        """Pick the node index where an insertion at ``offset`` should land.

        Text nodes straddling the offset are split. Among equal-offset
        boundaries, prefer one right after text, then right before text, then
        right after an opening tag.
        """

        for index, (node, start, end) in enumerate(self._spans()):
            if isinstance(node, TextNode) and start < offset < end:
                cut = offset - start
                self._nodes[index : index + 1] = [
                    TextNode(node.text[:cut]),
                    TextNode(node.text[cut:]),
                ]
                return index + 1

        candidates: list[int] = []
        cursor = 0
        for index in range(len(self._nodes) + 1):
            if cursor == offset:
                candidates.append(index)
            if index < len(self._nodes):
                cursor += self._nodes[index].length
        if not candidates:
            return len(self._nodes)

        for index in candidates:
            if index > 0 and not isinstance(self._nodes[index - 1], TagNode):
                return index
        for index in candidates:
            if index < len(self._nodes) and not isinstance(self._nodes[index], TagNode):
                return index
        for index in candidates:
            previous = self._nodes[index - 1] if index > 0 else None
            if isinstance(previous, TagNode) and previous.kind == "open":
                return index
        return candidates[-1]

    def _touch(self) -> None:
        self.revision += 1


def _flatten(element: Tag, out: list[Node]) -> None:
    for child in element.children:
        if isinstance(child, Tag):
            field_name = _marker_field(child)
            if field_name is not None:
                instance_id = child.get(INSTANCE_ATTR)
                out.append(
                    MarkerNode(
                        field=field_name,
                        instance_id=str(instance_id) if instance_id else new_instance_id(),
                    )
                )
                continue
            if child.is_empty_element:
                out.append(TagNode(_render_tag(child, closing=True), kind="void", name=child.name))
                continue
            out.append(TagNode(_render_tag(child), kind="open", name=child.name))
            _flatten(child, out)
            out.append(TagNode(f"</{child.name}>", kind="close", name=child.name))
        elif type(child) is NavigableString:
            out.append(TextNode(str(child)))
        elif isinstance(child, NavigableString):
            out.append(TagNode(child.output_ready(), kind="other"))


def _marker_field(tag: Tag) -> str | None:
    if tag.name != "span" or MARKER_CLASS not in (tag.get("class") or []):
        return None
    field_name = tag.get(FIELD_ATTR)
    if field_name:
        return str(field_name)
    match = LITERAL_RE.search(tag.get_text())
    return match.group(1) if match else None


def _render_tag(tag: Tag, closing: bool = False) -> str:
    parts = [tag.name]
    for key, value in tag.attrs.items():
        if isinstance(value, list):
            value = " ".join(value)
        parts.append(f'{key}="{html.escape(str(value), quote=True)}"')
    suffix = "/>" if closing else ">"
    return "<" + " ".join(parts) + suffix


def _merge_text(nodes: list[Node]) -> list[Node]:
    merged: list[Node] = []
    for node in nodes:
        if isinstance(node, TextNode):
            if not node.text:
                continue
            if merged and isinstance(merged[-1], TextNode):
                merged[-1] = TextNode(merged[-1].text + node.text)
                continue
        merged.append(node)
    return merged
