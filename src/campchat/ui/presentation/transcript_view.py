"""Headless presentation of the chat widget.

:class:`TranscriptView` subscribes to the session's events and keeps what a
widget would currently display; a widget layer binds to it and tests assert
against it. The console front end in :mod:`campchat.app` prints events
directly instead. :func:`blocks_to_html` turns the markdown tree into markup
with every piece of text escaped.
"""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable

from ...chat.markdown import Block, BulletList, Heading, InlineRun, Paragraph
from ...chat.message_model import Citation
from ..events import (
    ActiveTenantChanged,
    AttributeSchemaInstalled,
    CitationsCleared,
    CitationsShown,
    ComposerTextChanged,
    ControlBusyChanged,
    CustomInstructionsCleared,
    CustomInstructionsLoaded,
    EventBus,
    InputLockChanged,
    LauncherAvailabilityChanged,
    RosterChanged,
    StatusCleared,
    StatusMessage,
    SuggestionsHidden,
    SuggestionsShown,
    TenantsLoaded,
    ThinkingIndicatorHidden,
    ThinkingIndicatorShown,
    TranscriptCleared,
    TurnAppended,
    TurnUpdated,
)

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class DisplayedTurn:
    turn_id: str
    role: str
    kind: str
    text: str
    blocks: tuple[Block, ...] = ()
    citations: tuple[Citation, ...] = ()


@dataclass(slots=True)
class ViewState:
    """Snapshot of everything currently on screen."""

    turns: list[DisplayedTurn] = field(default_factory=list)
    thinking_phrase: str | None = None
    suggestions: tuple[str, ...] = ()
    composer_text: str = ""
    input_enabled: bool = True
    launcher_enabled: bool = True
    tenant_names: tuple[str, ...] = ()
    active_tenant: str | None = None
    instructions_text: str = ""
    instructions_present: bool = False
    busy_controls: set[str] = field(default_factory=set)
    status: str | None = None
    status_level: str = "info"
    roster: tuple = ()
    schema: tuple = ()


class TranscriptView:
    """Event-driven mirror of the widget.

    ``on_change`` is invoked with the event after each update so a caller can
    redraw incrementally.
    """

    def __init__(self, event_bus: EventBus, *, on_change: Callable[[object], None] | None = None) -> None:
        self._bus = event_bus
        self._on_change = on_change
        self.state = ViewState()
        self._subscriptions = (
            (TenantsLoaded, self._handle_tenants_loaded),
            (ActiveTenantChanged, self._handle_active_tenant),
            (InputLockChanged, self._handle_input_lock),
            (LauncherAvailabilityChanged, self._handle_launcher),
            (TranscriptCleared, self._handle_transcript_cleared),
            (TurnAppended, self._handle_turn_appended),
            (TurnUpdated, self._handle_turn_updated),
            (ThinkingIndicatorShown, self._handle_thinking_shown),
            (ThinkingIndicatorHidden, self._handle_thinking_hidden),
            (CitationsShown, self._handle_citations_shown),
            (CitationsCleared, self._handle_citations_cleared),
            (SuggestionsShown, self._handle_suggestions_shown),
            (SuggestionsHidden, self._handle_suggestions_hidden),
            (ComposerTextChanged, self._handle_composer_text),
            (RosterChanged, self._handle_roster),
            (AttributeSchemaInstalled, self._handle_schema),
            (CustomInstructionsLoaded, self._handle_instructions_loaded),
            (CustomInstructionsCleared, self._handle_instructions_cleared),
            (ControlBusyChanged, self._handle_control_busy),
            (StatusMessage, self._handle_status),
            (StatusCleared, self._handle_status_cleared),
        )
        for event_type, handler in self._subscriptions:
            event_bus.subscribe(event_type, handler)

    def detach(self) -> None:
        for event_type, handler in self._subscriptions:
            self._bus.unsubscribe(event_type, handler)

    def find_turn(self, turn_id: str) -> DisplayedTurn | None:
        for turn in self.state.turns:
            if turn.turn_id == turn_id:
                return turn
        return None

    def render_html(self) -> str:
        parts: list[str] = []
        for turn in self.state.turns:
            if turn.blocks:
                body = blocks_to_html(turn.blocks)
            else:
                body = f"<p>{html.escape(turn.text)}</p>"
            parts.append(f'<div class="message {html.escape(turn.kind)}">{body}</div>')
            if turn.citations:
                parts.append(citations_to_html(turn.citations))
        return "\n".join(parts)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _handle_tenants_loaded(self, event: TenantsLoaded) -> None:
        self.state.tenant_names = tuple(tenant.display_name for tenant in event.tenants)
        self._changed(event)

    def _handle_active_tenant(self, event: ActiveTenantChanged) -> None:
        self.state.active_tenant = event.tenant.display_name if event.tenant else None
        self.state.instructions_text = ""
        self.state.instructions_present = False
        self._changed(event)

    def _handle_input_lock(self, event: InputLockChanged) -> None:
        self.state.input_enabled = not event.locked
        self._changed(event)

    def _handle_launcher(self, event: LauncherAvailabilityChanged) -> None:
        self.state.launcher_enabled = event.enabled
        self._changed(event)

    def _handle_transcript_cleared(self, event: TranscriptCleared) -> None:
        self.state.turns.clear()
        self.state.thinking_phrase = None
        self._changed(event)

    def _handle_turn_appended(self, event: TurnAppended) -> None:
        self.state.turns.append(
            DisplayedTurn(
                turn_id=event.turn_id,
                role=event.role,
                kind=event.kind,
                text=event.text,
                blocks=event.blocks,
            )
        )
        self._changed(event)

    def _handle_turn_updated(self, event: TurnUpdated) -> None:
        turn = self.find_turn(event.turn_id)
        if turn is None:
            LOGGER.debug("Update for unknown turn %s", event.turn_id)
            return
        turn.text = event.text
        turn.blocks = event.blocks
        self._changed(event)

    def _handle_thinking_shown(self, event: ThinkingIndicatorShown) -> None:
        self.state.thinking_phrase = event.phrase
        self._changed(event)

    def _handle_thinking_hidden(self, event: ThinkingIndicatorHidden) -> None:
        self.state.thinking_phrase = None
        self._changed(event)

    def _handle_citations_shown(self, event: CitationsShown) -> None:
        turn = self.find_turn(event.turn_id)
        if turn is not None:
            turn.citations = event.citations
        self._changed(event)

    def _handle_citations_cleared(self, event: CitationsCleared) -> None:
        for turn in self.state.turns:
            turn.citations = ()
        self._changed(event)

    def _handle_suggestions_shown(self, event: SuggestionsShown) -> None:
        self.state.suggestions = event.questions
        self._changed(event)

    def _handle_suggestions_hidden(self, event: SuggestionsHidden) -> None:
        self.state.suggestions = ()
        self._changed(event)

    def _handle_composer_text(self, event: ComposerTextChanged) -> None:
        self.state.composer_text = event.text
        self._changed(event)

    def _handle_roster(self, event: RosterChanged) -> None:
        self.state.roster = event.campers
        self.state.schema = event.schema
        self._changed(event)

    def _handle_schema(self, event: AttributeSchemaInstalled) -> None:
        self.state.schema = event.schema
        self._changed(event)

    def _handle_instructions_loaded(self, event: CustomInstructionsLoaded) -> None:
        self.state.instructions_text = event.text
        self.state.instructions_present = event.present
        self._changed(event)

    def _handle_instructions_cleared(self, event: CustomInstructionsCleared) -> None:
        self.state.instructions_text = ""
        self.state.instructions_present = False
        self._changed(event)

    def _handle_control_busy(self, event: ControlBusyChanged) -> None:
        if event.busy:
            self.state.busy_controls.add(event.control)
        else:
            self.state.busy_controls.discard(event.control)
        self._changed(event)

    def _handle_status(self, event: StatusMessage) -> None:
        self.state.status = event.message
        self.state.status_level = event.level
        self._changed(event)

    def _handle_status_cleared(self, event: StatusCleared) -> None:
        self.state.status = None
        self.state.status_level = "info"
        self._changed(event)

    def _changed(self, event: object) -> None:
        if self._on_change is not None:
            self._on_change(event)


def inline_to_html(runs: Iterable[InlineRun]) -> str:
    parts: list[str] = []
    for run in runs:
        text = html.escape(run.text)
        if run.style == "strong":
            parts.append(f"<strong>{text}</strong>")
        elif run.style == "emphasis":
            parts.append(f"<em>{text}</em>")
        else:
            parts.append(text)
    return "".join(parts)


def blocks_to_html(blocks: Iterable[Block]) -> str:
    """Serialize a markdown block tree; all text content is HTML-escaped."""

    parts: list[str] = []
    for block in blocks:
        if isinstance(block, Heading):
            parts.append(f"<h{block.level}>{inline_to_html(block.runs)}</h{block.level}>")
        elif isinstance(block, BulletList):
            items = "".join(f"<li>{inline_to_html(item)}</li>" for item in block.items)
            parts.append(f"<ul>{items}</ul>")
        elif isinstance(block, Paragraph):
            parts.append(f"<p>{inline_to_html(block.runs)}</p>")
    return "".join(parts)


def citations_to_html(citations: Iterable[Citation]) -> str:
    items: list[str] = []
    for citation in citations:
        score = f" ({citation.score:.2f})" if citation.score is not None else ""
        items.append(f"<li>{html.escape(citation.source)}{html.escape(score)}</li>")
    return f'<ul class="sources">{"".join(items)}</ul>'


__all__ = [
    "DisplayedTurn",
    "ViewState",
    "TranscriptView",
    "blocks_to_html",
    "inline_to_html",
    "citations_to_html",
]
