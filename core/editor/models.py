"""Editor document nodes, mapping instances and session state."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal, Protocol

from core.templates.markers import field_literal, marker_html

InteractionType = Literal["highlight", "click"]
TagKind = Literal["open", "close", "void", "other"]


@dataclass
class TextNode:
    """Unescaped character data."""

    text: str

    @property
    def length(self) -> int:
        return len(self.text)


@dataclass(frozen=True)
class TagNode:
    """Serialized markup that contributes no text (tags, comments, doctype)."""

    raw: str
    kind: TagKind = "other"
    name: str | None = None

    @property
    def length(self) -> int:
        return 0


@dataclass(frozen=True)
class MarkerNode:
    """Atomic inline marker bound to one field; its text is ``{{field}}``."""

    field: str
    instance_id: str

    @property
    def text(self) -> str:
        return field_literal(self.field)

    @property
    def length(self) -> int:
        return len(self.text)

    @property
    def markup(self) -> str:
        return marker_html(self.field, self.instance_id)


Node = TextNode | TagNode | MarkerNode


@dataclass(frozen=True)
class MappingInstance:
    """One binding of a marker in the document to a field."""

    instance_id: str
    field: str
    original_text: str
    placeholder_markup: str
    interaction_type: InteractionType
    degraded: bool = False


@dataclass(frozen=True)
class RangeSnapshot:
    """Cursor or selection captured at a given document revision."""

    start: int
    end: int
    revision: int
    x: float | None = None
    y: float | None = None

    @property
    def collapsed(self) -> bool:
        return self.start == self.end


class SessionState(str, Enum):
    IDLE = "idle"
    AWAITING_FIELD_CHOICE = "awaiting_field_choice"
    CONFIRMING_MARKER = "confirming_marker"


@dataclass(frozen=True)
class PendingSelection:
    snapshot: RangeSnapshot
    interaction_type: InteractionType
    selected_text: str = ""
    replace_instance_id: str | None = None


@dataclass(frozen=True)
class MarkerPrompt:
    """What the operator may do with a clicked marker."""

    instance_id: str
    field: str
    valid: bool
    options: tuple[str, ...] = field(default=("remove",))


class LayoutResolver(Protocol):
    """Presentation-layer collaborator that maps screen points to text offsets."""

    def offset_at_point(self, x: float, y: float) -> int | None:
        """Return the text offset under a point, or None when off-document."""
