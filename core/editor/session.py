"""Single-operator field-mapping session over an editor document."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from core.editor.document import EditorDocument
from core.editor.models import (
    LayoutResolver,
    MappingInstance,
    MarkerNode,
    MarkerPrompt,
    PendingSelection,
    RangeSnapshot,
    SessionState,
)
from core.schema.models import ValidationResult
from core.templates.markers import new_instance_id
from core.templates.persistence import derive_field_mapping
from core.utils.errors import InvalidTransitionError, StaleRangeError

logger = logging.getLogger("trustdocs.editor")


class MappingSession:
    """Event-driven mapping session.

    The session owns the document model and the list of mapping instances it
    created; both are mutated together so they never diverge. Instances are
    discarded with the session unless the caller saves the html.
    """

    def __init__(
        self,
        html: str,
        *,
        available_fields: Iterable[str] | None = None,
        validation: ValidationResult | None = None,
        layout: LayoutResolver | None = None,
    ) -> None:
        self._document = EditorDocument.from_html(html)
        self._available = set(available_fields) if available_fields is not None else None
        self._invalid_fields = set(validation.invalid_field_names()) if validation else set()
        self._layout = layout
        self._instances: dict[str, MappingInstance] = {}
        self.state = SessionState.IDLE
        self.pending: PendingSelection | None = None
        self.prompt: MarkerPrompt | None = None

    @property
    def document(self) -> EditorDocument:
        return self._document

    @property
    def html(self) -> str:
        return self._document.to_html()

    @property
    def instances(self) -> list[MappingInstance]:
        return list(self._instances.values())

    def field_mapping(self) -> dict[str, str]:
        return derive_field_mapping(self.html)

    def set_validation(self, validation: ValidationResult) -> None:
        self._invalid_fields = set(validation.invalid_field_names())

    def normalize_caret(self, offset: int) -> int:
        return self._document.normalize_offset(offset)

    def pointer_up(
        self,
        start: int,
        end: int | None = None,
        *,
        x: float | None = None,
        y: float | None = None,
    ) -> SessionState:
        """Record a cursor or selection and open the field chooser.

        A collapsed cursor inside a marker is treated as a click on that
        marker. Selections touching a marker are rejected.
        """

        self._require(SessionState.IDLE, SessionState.AWAITING_FIELD_CHOICE, event="pointer_up")
        end = start if end is None else end
        start, end = sorted((start, end))
        length = self._document.text_length
        start, end = max(0, min(start, length)), max(0, min(end, length))

        if start == end:
            clicked = self._document.marker_containing(start)
            if clicked is not None:
                self.click_marker(clicked.instance_id)
                return self.state
        elif self._document.range_touches_marker(start, end):
            logger.info("selection %d-%d overlaps a marker; ignoring", start, end)
            self._reset()
            return self.state

        snapshot = RangeSnapshot(
            start=start, end=end, revision=self._document.revision, x=x, y=y
        )
        self.pending = PendingSelection(
            snapshot=snapshot,
            interaction_type="click" if snapshot.collapsed else "highlight",
            selected_text=self._document.text_in_range(start, end),
        )
        self.prompt = None
        self.state = SessionState.AWAITING_FIELD_CHOICE
        return self.state

    def choose_field(self, field_name: str) -> MappingInstance:
        """Bind the pending cursor or selection to ``field_name``."""

        self._require(SessionState.AWAITING_FIELD_CHOICE, event="choose_field")
        if self._available is not None and field_name not in self._available:
            raise ValueError(f"Unknown field: {field_name}")
        pending = self.pending
        if pending is None:
            raise InvalidTransitionError("No pending selection to bind", state=self.state.value)

        instance_id = new_instance_id()
        try:
            instance = self._apply(pending, field_name, instance_id)
        except StaleRangeError as exc:
            logger.warning(
                "marker insertion for %s failed (%s); appending at end of document",
                field_name,
                exc,
            )
            marker = self._document.append_marker(field_name, instance_id)
            instance = MappingInstance(
                instance_id=instance_id,
                field=field_name,
                original_text="",
                placeholder_markup=marker.markup,
                interaction_type=pending.interaction_type,
                degraded=True,
            )

        self._instances[instance.instance_id] = instance
        self._reset()
        return instance

    def cancel(self) -> SessionState:
        self._reset()
        return self.state

    def key_press(self, key: str) -> SessionState:
        if key == "Escape":
            return self.cancel()
        return self.state

    def click_outside(self) -> SessionState:
        return self.cancel()

    def click_marker(self, instance_id: str) -> MarkerPrompt:
        """Intercept a click on an existing marker and prompt for its fate."""

        self._require(
            SessionState.IDLE,
            SessionState.AWAITING_FIELD_CHOICE,
            SessionState.CONFIRMING_MARKER,
            event="click_marker",
        )
        marker = self._document.find_marker(instance_id)
        if marker is None:
            raise KeyError(instance_id)

        valid = self._is_valid(marker.field)
        self.prompt = MarkerPrompt(
            instance_id=instance_id,
            field=marker.field,
            valid=valid,
            options=("remove",) if valid else ("remove", "replace"),
        )
        self.pending = None
        self.state = SessionState.CONFIRMING_MARKER
        return self.prompt

    def begin_replace(self) -> PendingSelection:
        """Re-enter field choice with the prompted invalid marker pre-selected."""

        self._require(SessionState.CONFIRMING_MARKER, event="begin_replace")
        prompt = self._require_prompt()
        if prompt.valid:
            raise InvalidTransitionError(
                "Only markers bound to invalid fields can be replaced", state=self.state.value
            )
        span = self._document.marker_span(prompt.instance_id)
        if span is None:
            self._reset()
            raise KeyError(prompt.instance_id)

        start, end = span
        self.pending = PendingSelection(
            snapshot=RangeSnapshot(start=start, end=end, revision=self._document.revision),
            interaction_type="highlight",
            selected_text=self._document.text_in_range(start, end),
            replace_instance_id=prompt.instance_id,
        )
        self.prompt = None
        self.state = SessionState.AWAITING_FIELD_CHOICE
        return self.pending

    def confirm_removal(self) -> MarkerNode | None:
        self._require(SessionState.CONFIRMING_MARKER, event="confirm_removal")
        prompt = self._require_prompt()
        return self.remove_instance(prompt.instance_id)

    def remove_instance(self, instance_id: str) -> MarkerNode | None:
        """Delete exactly one marker and its mapping instance."""

        removed = self._document.remove_marker(instance_id)
        self._instances.pop(instance_id, None)
        if self.prompt is not None and self.prompt.instance_id == instance_id:
            self._reset()
        return removed

    def remove_field(self, field_name: str) -> list[str]:
        """Delete every marker bound to ``field_name``; returns removed instance ids."""

        removed = self._document.remove_field(field_name)
        removed_ids = [marker.instance_id for marker in removed]
        for instance_id in removed_ids:
            self._instances.pop(instance_id, None)
        if self.prompt is not None and self.prompt.instance_id in removed_ids:
            self._reset()
        return removed_ids

    def sync_from_surface(self, html: str) -> None:
        """Adopt html read back from the editing surface.

        Instances whose marker is no longer present are dropped, and any
        pending range becomes stale through the revision bump.
        """

        revision = self._document.revision
        self._document = EditorDocument.from_html(html)
        self._document.revision = revision + 1
        present = {marker.instance_id for marker in self._document.markers()}
        for instance_id in list(self._instances):
            if instance_id not in present:
                del self._instances[instance_id]

    def _apply(
        self, pending: PendingSelection, field_name: str, instance_id: str
    ) -> MappingInstance:
        snapshot = pending.snapshot

        if pending.replace_instance_id is not None:
            span = self._document.marker_span(pending.replace_instance_id)
            if span is None:
                raise StaleRangeError("Marker to replace is gone", snapshot=snapshot)
            old = self._document.remove_marker(pending.replace_instance_id)
            self._instances.pop(pending.replace_instance_id, None)
            marker = self._document.insert_marker(span[0], field_name, instance_id)
            return MappingInstance(
                instance_id=instance_id,
                field=field_name,
                original_text=old.text if old is not None else pending.selected_text,
                placeholder_markup=marker.markup,
                interaction_type="highlight",
            )

        if pending.interaction_type == "highlight":
            if snapshot.revision != self._document.revision and (
                self._document.text_in_range(snapshot.start, snapshot.end)
                != pending.selected_text
            ):
                raise StaleRangeError("Selection no longer matches the document", snapshot=snapshot)
            marker, removed = self._document.replace_range(
                snapshot.start, snapshot.end, field_name, instance_id
            )
            return MappingInstance(
                instance_id=instance_id,
                field=field_name,
                original_text=removed,
                placeholder_markup=marker.markup,
                interaction_type="highlight",
            )

        offset = self._resolve_click_offset(snapshot)
        marker = self._document.insert_marker(offset, field_name, instance_id)
        return MappingInstance(
            instance_id=instance_id,
            field=field_name,
            original_text="",
            placeholder_markup=marker.markup,
            interaction_type="click",
        )

    def _resolve_click_offset(self, snapshot: RangeSnapshot) -> int:
        if snapshot.revision == self._document.revision:
            return snapshot.start

        if self._layout is not None and snapshot.x is not None and snapshot.y is not None:
            offset = self._layout.offset_at_point(snapshot.x, snapshot.y)
            if offset is not None:
                logger.info(
                    "stale cursor at %d recomputed to %d from coordinates",
                    snapshot.start,
                    offset,
                )
                return offset
        raise StaleRangeError("Cursor position is stale", snapshot=snapshot)

    def _is_valid(self, field_name: str) -> bool:
        if field_name in self._invalid_fields:
            return False
        return self._available is None or field_name in self._available

    def close(self) -> list[MappingInstance]:
        """End the session, returning and discarding the unsaved instances."""

        discarded = list(self._instances.values())
        self._instances.clear()
        self._reset()
        if discarded:
            logger.info("session closed, discarding %d unsaved instance(s)", len(discarded))
        return discarded

    def _require(self, *states: SessionState, event: str) -> None:
        if self.state not in states:
            raise InvalidTransitionError(
                f"Event '{event}' is not allowed in state '{self.state.value}'",
                state=self.state.value,
            )

    def _require_prompt(self) -> MarkerPrompt:
        if self.prompt is None:
            raise InvalidTransitionError("No marker prompt is open", state=self.state.value)
        return self.prompt

    def _reset(self) -> None:
        self.state = SessionState.IDLE
        self.pending = None
        self.prompt = None
