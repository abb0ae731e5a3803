"""Conversation session engine.

Owns the session state and drives every user-visible procedure of the chat
widget: start-up, camp switching, message submission, reset, and roster
edits. Nothing here touches a widget; every visible change is published on
the :class:`~campchat.ui.events.EventBus`.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import random
from typing import Any, AsyncIterator, Coroutine, Mapping, Protocol, Sequence

from ...ai.client import ChatRequest, CollaboratorError
from ...ai.prompts import GENERIC_FAILURE_MESSAGE, NO_TENANT_MESSAGE
from ...ai.stream_decoder import decode_stream
from ...chat.markdown import Block, render_markdown
from ...chat.message_model import Citation, TranscriptTurn, TurnKind
from ...chat.personalization import build_personalization_context, build_welcome_message
from ...chat.roster import AttributeSchemaEntry, CamperProfile
from ...chat.thinking import ThinkingIndicator
from ...services.instruction_cache import CustomInstructionCache
from ...services.settings import Settings
from ...services.suggestions import SuggestionController
from ..events import (
    ActiveTenantChanged,
    AttributeSchemaInstalled,
    AttributeSchemaLoading,
    CitationsCleared,
    CitationsShown,
    ComposerTextChanged,
    EventBus,
    InputLockChanged,
    LauncherAvailabilityChanged,
    RosterChanged,
    SessionPhaseChanged,
    TenantsLoaded,
    TranscriptCleared,
    TurnAppended,
    TurnUpdated,
)
from ..models.session_models import SessionPhase, SessionState, SubmitOutcome, Tenant

LOGGER = logging.getLogger(__name__)

LOCK_INITIALIZING = "INITIALIZING"
LOCK_CAMP_SWITCH = "CAMP_SWITCH"
LOCK_AWAITING_RESPONSE = "AWAITING_RESPONSE"


class SessionClient(Protocol):
    """Collaborator operations the session depends on."""

    async def list_tenants(self) -> list[Tenant]:
        ...

    async def get_attribute_schema(self, tenant_id: str) -> list[AttributeSchemaEntry]:
        ...

    async def get_suggested_questions(self, tenant_id: str, personalization_context: str) -> list[str]:
        ...

    async def transform_query(self, question: str, history: Sequence[Mapping[str, str]]) -> str:
        ...

    async def load_custom_instructions(self, tenant_id: str) -> str:
        ...

    async def save_custom_instructions(self, tenant_id: str, text: str) -> None:
        ...

    async def delete_custom_instructions(self, tenant_id: str) -> None:
        ...

    def stream_chat(self, request: ChatRequest) -> AsyncIterator[bytes]:
        ...


class ConversationSession:
    """State machine for one parent's chat session.

    Phases run ``UNINITIALIZED -> INITIALIZING -> IDLE <-> AWAITING_RESPONSE``
    with ``NO_TENANT_SELECTED`` entered when the camp selector is cleared.

    Events Emitted:
        - SessionPhaseChanged, InputLockChanged, LauncherAvailabilityChanged
        - TenantsLoaded, ActiveTenantChanged
        - TranscriptCleared, TurnAppended, TurnUpdated, CitationsShown,
          CitationsCleared, ComposerTextChanged
        - RosterChanged, AttributeSchemaLoading, AttributeSchemaInstalled
        - everything published by the suggestion controller, the
          instruction cache, and the thinking indicator
    """

    def __init__(
        self,
        client: SessionClient,
        event_bus: EventBus,
        *,
        settings: Settings | None = None,
        state: SessionState | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._client = client
        self._bus = event_bus
        self._settings = settings or Settings()
        self._state = state or SessionState()
        self._instructions = CustomInstructionCache(
            client, event_bus, status_timeout=self._settings.status_timeout
        )
        self._suggestions = SuggestionController(
            client, event_bus, max_suggestions=self._settings.max_suggestions
        )
        self._thinking = ThinkingIndicator(
            event_bus, interval=self._settings.thinking_interval, rng=rng
        )
        self._turn_ids = itertools.count(1)
        self._welcome_turn_id: str | None = None
        self._lock_reasons: list[str] = []
        self._background: set[asyncio.Task[Any]] = set()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def phase(self) -> SessionPhase:
        return self._state.phase

    @property
    def active_tenant(self) -> Tenant | None:
        return self._state.active_tenant

    @property
    def instructions(self) -> CustomInstructionCache:
        return self._instructions

    @property
    def suggestions(self) -> SuggestionController:
        return self._suggestions

    @property
    def input_locked(self) -> bool:
        return self._state.input_locked

    def personalization_context(self) -> str:
        return build_personalization_context(self._state.roster)

    def welcome_text(self) -> str:
        return build_welcome_message(self._state.roster)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Load the camps and select the first one.

        Input and the launcher stay disabled until this returns. A failed
        tenant fetch leaves the session in ``NO_TENANT_SELECTED``.
        """

        if self._state.phase is not SessionPhase.UNINITIALIZED:
            LOGGER.warning("Session already initialized (phase=%s)", self._state.phase.value)
            return

        self._set_phase(SessionPhase.INITIALIZING)
        self._acquire_lock(LOCK_INITIALIZING)
        self._bus.publish(LauncherAvailabilityChanged(enabled=False))
        try:
            try:
                tenants = await self._client.list_tenants()
            except CollaboratorError as exc:
                LOGGER.warning("Unable to load camps: %s", exc)
                tenants = []
            self._state.tenants = tuple(tenants)
            self._bus.publish(TenantsLoaded(tenants=self._state.tenants))
            LOGGER.debug("Loaded %d camp(s)", len(self._state.tenants))

            if self._state.tenants:
                await self._switch_tenant(self._state.tenants[0])
            else:
                self._deselect_tenant()
        finally:
            self._set_phase(
                SessionPhase.IDLE if self._state.active_tenant else SessionPhase.NO_TENANT_SELECTED
            )
            self._release_lock(LOCK_INITIALIZING)
            self._bus.publish(LauncherAvailabilityChanged(enabled=True))

    async def select_tenant(self, tenant_id: str | None) -> bool:
        """React to a camp selector change; ``None`` clears the selection."""

        if tenant_id is None:
            self._deselect_tenant()
            self._settle_phase()
            return True
        tenant = self._state.find_tenant(tenant_id)
        if tenant is None:
            LOGGER.warning("Ignoring selection of unknown camp %s", tenant_id)
            return False
        await self._switch_tenant(tenant)
        self._settle_phase()
        return True

    def reset(self) -> None:
        """Start a fresh conversation with the same camp and campers."""

        LOGGER.debug("Resetting conversation")
        self._clear_conversation()
        self._show_welcome()
        self._suggestions.resume()
        self.refresh_suggestions()

    async def aclose(self) -> None:
        """Cancel background work owned by the session."""

        self._suggestions.cancel()
        self._thinking.stop()
        tasks = [task for task in self._background if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._background.clear()

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def submit(self, text: str) -> SubmitOutcome:
        """Send ``text`` and stream the answer into the transcript."""

        message = (text or "").strip()
        if not message:
            return SubmitOutcome.EMPTY_INPUT
        if self._state.phase in (SessionPhase.UNINITIALIZED, SessionPhase.INITIALIZING):
            LOGGER.debug("Submit rejected: session not ready")
            return SubmitOutcome.NOT_READY
        if self._state.phase is SessionPhase.AWAITING_RESPONSE or self._state.input_locked:
            LOGGER.debug("Submit rejected: input locked")
            return SubmitOutcome.BUSY

        tenant = self._state.active_tenant
        self._bus.publish(ComposerTextChanged(text=""))
        if tenant is None:
            self._append_turn("user", "user", message)
            self._append_turn("assistant", "notice", NO_TENANT_MESSAGE)
            return SubmitOutcome.NO_TENANT

        generation = self._state.conversation_generation
        self._state.first_message_sent = True
        self._suggestions.suppress()
        self._append_turn("user", "user", message)
        self._acquire_lock(LOCK_AWAITING_RESPONSE)
        self._set_phase(SessionPhase.AWAITING_RESPONSE)
        self._thinking.start()

        try:
            return await self._run_turn(tenant, message, generation)
        except asyncio.CancelledError:
            raise
        except Exception:
            LOGGER.exception("Chat turn for %s failed", tenant.id)
            if generation == self._state.conversation_generation:
                self._thinking.stop()
                self._append_turn("assistant", "error", GENERIC_FAILURE_MESSAGE)
            return SubmitOutcome.FAILED
        finally:
            self._thinking.stop()
            self._release_lock(LOCK_AWAITING_RESPONSE)
            self._set_phase(
                SessionPhase.IDLE if self._state.active_tenant else SessionPhase.NO_TENANT_SELECTED
            )

    async def _run_turn(self, tenant: Tenant, message: str, generation: int) -> SubmitOutcome:
        history = self._state.history.suffix(self._settings.history_turns)
        query = await self._transform_query(message, history)
        request = ChatRequest(
            message=query,
            tenant_id=tenant.id,
            base_instructions=self._settings.base_instructions,
            personalization_context=self.personalization_context(),
            custom_instructions=await self._instructions.load(tenant.id),
            history=history,
        )

        response_turn: TranscriptTurn | None = None
        parts: list[str] = []
        citations: tuple[Citation, ...] = ()
        failed = False
        async for event in decode_stream(self._client.stream_chat(request)):
            if generation != self._state.conversation_generation:
                continue
            if event.type == "citations":
                citations = event.citations
                continue
            self._thinking.stop()
            if event.is_error:
                failed = True
                self._append_turn("assistant", "error", event.text)
                continue
            if response_turn is None:
                response_turn = self._append_turn("assistant", "assistant", "")
            parts.append(event.text)
            self._update_turn(response_turn, "".join(parts))

        if generation != self._state.conversation_generation:
            LOGGER.debug("Dropping answer for a cleared conversation")
            return SubmitOutcome.SUPERSEDED
        if failed:
            return SubmitOutcome.FAILED
        if response_turn is None:
            LOGGER.warning("Chat stream for %s ended without any text", tenant.id)
            self._thinking.stop()
            self._append_turn("assistant", "error", GENERIC_FAILURE_MESSAGE)
            return SubmitOutcome.FAILED

        if citations:
            self._bus.publish(CitationsShown(turn_id=response_turn.turn_id, citations=citations))
        self._state.history.append_exchange(message, response_turn.text, citations)
        return SubmitOutcome.COMPLETED

    async def _transform_query(self, message: str, history: Sequence[Mapping[str, str]]) -> str:
        if not self._settings.transform_queries:
            return message
        try:
            transformed = await self._client.transform_query(message, history)
        except CollaboratorError as exc:
            LOGGER.debug("Query transform failed, using original text: %s", exc)
            return message
        return transformed or message

    # ------------------------------------------------------------------
    # Suggestions
    # ------------------------------------------------------------------

    def refresh_suggestions(self) -> asyncio.Task[None] | None:
        tenant = self._state.active_tenant
        return self._suggestions.refresh(
            tenant.id if tenant else None, self.personalization_context()
        )

    def choose_suggestion(self, index: int) -> str:
        """Copy suggestion ``index`` into the composer."""

        return self._suggestions.choose(index)

    # ------------------------------------------------------------------
    # Camper roster
    # ------------------------------------------------------------------

    def add_camper(self, name: str = "") -> CamperProfile:
        camper = self._state.roster.add_camper(name)
        self._roster_changed()
        return camper

    def remove_camper(self, camper_id: str) -> bool:
        if not self._state.roster.remove_camper(camper_id):
            return False
        self._roster_changed()
        return True

    def set_camper_name(self, camper_id: str, name: str) -> bool:
        if not self._state.roster.set_name(camper_id, name):
            return False
        self._roster_changed()
        return True

    def set_camper_attribute(self, camper_id: str, label: str, value: str) -> bool:
        if not self._state.roster.set_attribute(camper_id, label, value):
            return False
        self._roster_changed()
        return True

    def _roster_changed(self) -> None:
        self._publish_roster()
        self._refresh_welcome()
        self.refresh_suggestions()

    def _publish_roster(self) -> None:
        roster = self._state.roster
        self._bus.publish(RosterChanged(campers=roster.snapshot(), schema=roster.schema))

    # ------------------------------------------------------------------
    # Custom instructions
    # ------------------------------------------------------------------

    async def load_custom_instructions(self) -> str:
        tenant = self._state.active_tenant
        if tenant is None:
            return ""
        return await self._instructions.load(tenant.id)

    async def save_custom_instructions(self, text: str) -> bool:
        tenant = self._state.active_tenant
        return await self._instructions.save(tenant.id if tenant else None, text)

    async def delete_custom_instructions(self, *, confirmed: bool) -> bool:
        tenant = self._state.active_tenant
        return await self._instructions.delete(tenant.id if tenant else None, confirmed=confirmed)

    # ------------------------------------------------------------------
    # Camp switching
    # ------------------------------------------------------------------

    async def _switch_tenant(self, tenant: Tenant) -> None:
        state = self._state
        self._acquire_lock(LOCK_CAMP_SWITCH)
        state.switch_generation += 1
        generation = state.switch_generation
        LOGGER.info("Switching to camp %s (%s)", tenant.id, tenant.display_name)

        state.active_tenant = tenant
        self._bus.publish(ActiveTenantChanged(tenant=tenant))
        self._clear_conversation()
        state.roster.reset()
        state.roster.install_schema(())
        self._show_welcome()
        self._publish_roster()
        self._suggestions.resume()
        self._suggestions.cancel()
        self._suggestions.hide()

        self._bus.publish(AttributeSchemaLoading(tenant_id=tenant.id))
        try:
            try:
                schema = await self._client.get_attribute_schema(tenant.id)
            except CollaboratorError as exc:
                LOGGER.warning("Unable to load attribute schema for %s: %s", tenant.id, exc)
                schema = []

            if generation != state.switch_generation:
                LOGGER.debug("Camp switch to %s superseded", tenant.id)
                return
            state.roster.install_schema(schema)
            self._bus.publish(AttributeSchemaInstalled(tenant_id=tenant.id, schema=state.roster.schema))
            self._publish_roster()
            self._spawn(self._instructions.load(tenant.id))
            self.refresh_suggestions()
        finally:
            # A newer switch owns the lock once the generation moves on.
            if generation == state.switch_generation:
                self._release_lock(LOCK_CAMP_SWITCH)

    def _deselect_tenant(self) -> None:
        state = self._state
        state.switch_generation += 1
        state.active_tenant = None
        self._bus.publish(ActiveTenantChanged(tenant=None))
        self._suggestions.cancel()
        self._suggestions.hide()
        self._clear_conversation()
        self._show_welcome()
        self._release_lock(LOCK_CAMP_SWITCH)

    def _settle_phase(self) -> None:
        if self._state.phase in (SessionPhase.AWAITING_RESPONSE, SessionPhase.INITIALIZING):
            return
        self._set_phase(
            SessionPhase.IDLE if self._state.active_tenant else SessionPhase.NO_TENANT_SELECTED
        )

    # ------------------------------------------------------------------
    # Transcript helpers
    # ------------------------------------------------------------------

    def _clear_conversation(self) -> None:
        state = self._state
        state.conversation_generation += 1
        state.transcript.clear()
        state.history.clear()
        state.first_message_sent = False
        self._welcome_turn_id = None
        self._thinking.stop()
        self._bus.publish(TranscriptCleared())
        self._bus.publish(CitationsCleared())

    def _show_welcome(self) -> None:
        turn = self._append_turn("assistant", "welcome", self.welcome_text())
        self._welcome_turn_id = turn.turn_id

    def _refresh_welcome(self) -> None:
        transcript = self._state.transcript
        if self._welcome_turn_id is None or not transcript:
            return
        first = transcript[0]
        if first.turn_id != self._welcome_turn_id:
            return
        text = self.welcome_text()
        if text != first.text:
            self._update_turn(first, text)

    def _append_turn(self, role: str, kind: TurnKind, text: str) -> TranscriptTurn:
        turn = TranscriptTurn(turn_id=f"turn-{next(self._turn_ids)}", role=role, kind=kind, text=text)
        self._state.transcript.append(turn)
        self._bus.publish(
            TurnAppended(
                turn_id=turn.turn_id,
                role=role,
                kind=kind,
                text=text,
                blocks=_blocks_for(kind, text),
            )
        )
        return turn

    def _update_turn(self, turn: TranscriptTurn, text: str) -> None:
        turn.text = text
        self._bus.publish(
            TurnUpdated(turn_id=turn.turn_id, text=text, blocks=_blocks_for(turn.kind, text))
        )

    # ------------------------------------------------------------------
    # Input lock & phase
    # ------------------------------------------------------------------

    def _acquire_lock(self, reason: str) -> None:
        if reason in self._lock_reasons:
            return
        self._lock_reasons.append(reason)
        self._publish_lock()

    def _release_lock(self, reason: str) -> None:
        if reason not in self._lock_reasons:
            return
        self._lock_reasons.remove(reason)
        self._publish_lock()

    def _publish_lock(self) -> None:
        locked = bool(self._lock_reasons)
        reason = self._lock_reasons[-1] if locked else ""
        self._state.input_locked = locked
        self._bus.publish(InputLockChanged(locked=locked, reason=reason))

    def _set_phase(self, phase: SessionPhase) -> None:
        previous = self._state.phase
        if previous is phase:
            return
        self._state.phase = phase
        LOGGER.debug("Session phase %s -> %s", previous.value, phase.value)
        self._bus.publish(SessionPhaseChanged(phase=phase, previous=previous))

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task


def _blocks_for(kind: TurnKind, text: str) -> tuple[Block, ...]:
    if kind == "user":
        return ()
    return render_markdown(text)


__all__ = [
    "ConversationSession",
    "SessionClient",
    "LOCK_INITIALIZING",
    "LOCK_CAMP_SWITCH",
    "LOCK_AWAITING_RESPONSE",
]
