"""Session state models shared by the engine and its collaborators.

Everything the conversation engine mutates lives on one explicit
:class:`SessionState` object so tests can build, inject, and inspect it
without going through the network layer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, Mapping, Sequence

from ...chat.message_model import ChatMessage, Citation, TranscriptTurn
from ...chat.roster import CamperRoster


class SessionPhase(Enum):
    """Lifecycle of a chat session.

    Values:
        UNINITIALIZED: Nothing loaded yet.
        INITIALIZING: Tenant list is being fetched; input is blocked.
        IDLE: Ready for a message.
        AWAITING_RESPONSE: A chat stream is in flight.
        NO_TENANT_SELECTED: The camp selector was cleared.
    """

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    IDLE = "idle"
    AWAITING_RESPONSE = "awaiting_response"
    NO_TENANT_SELECTED = "no_tenant_selected"


class SubmitOutcome(Enum):
    """Result of :meth:`ConversationSession.submit`."""

    COMPLETED = "completed"
    FAILED = "failed"
    SUPERSEDED = "superseded"
    EMPTY_INPUT = "empty_input"
    NOT_READY = "not_ready"
    BUSY = "busy"
    NO_TENANT = "no_tenant"


@dataclass(slots=True, frozen=True)
class Tenant:
    """A camp and the knowledge base that backs it."""

    id: str
    display_name: str
    knowledge_base_id: str

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Tenant | None":
        tenant_id = str(payload.get("id") or "").strip()
        if not tenant_id:
            return None
        name = str(payload.get("name") or "").strip() or tenant_id
        knowledge_base = str(payload.get("vectorStoreId") or tenant_id)
        return cls(id=tenant_id, display_name=name, knowledge_base_id=knowledge_base)


class ConversationHistory:
    """Append-only list of completed user/assistant turns for the session."""

    def __init__(self, messages: Sequence[ChatMessage] | None = None) -> None:
        self._messages: list[ChatMessage] = list(messages or [])

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[ChatMessage]:
        return iter(self._messages)

    def __getitem__(self, index: int) -> ChatMessage:
        return self._messages[index]

    @property
    def messages(self) -> tuple[ChatMessage, ...]:
        return tuple(self._messages)

    def append_exchange(
        self,
        user_text: str,
        assistant_text: str,
        citations: Sequence[Citation] = (),
    ) -> None:
        """Record a finished exchange; user and assistant turns are always added together."""

        self._messages.append(ChatMessage(role="user", content=user_text))
        self._messages.append(
            ChatMessage(role="assistant", content=assistant_text, citations=tuple(citations))
        )

    def suffix(self, turns: int) -> list[dict[str, str]]:
        """Return the last ``turns`` entries in relay format."""

        if turns <= 0:
            return []
        return [message.to_history_entry() for message in self._messages[-turns:]]

    def clear(self) -> None:
        self._messages.clear()


@dataclass(slots=True)
class SessionState:
    """Mutable state owned by one :class:`ConversationSession`.

    Attributes:
        phase: Current lifecycle phase.
        tenants: Tenants offered by the selector.
        active_tenant: The selected camp, or None.
        roster: Camper profiles and the active attribute schema.
        history: Completed exchanges forwarded (as a suffix) to the relay.
        transcript: Turns currently displayed, welcome turn first.
        input_locked: Whether message input is disabled.
        first_message_sent: Whether a message was sent since the last reset.
        switch_generation: Bumped on every camp switch or deselect.
        conversation_generation: Bumped whenever the transcript is cleared.
    """

    phase: SessionPhase = SessionPhase.UNINITIALIZED
    tenants: tuple[Tenant, ...] = ()
    active_tenant: Tenant | None = None
    roster: CamperRoster = field(default_factory=CamperRoster)
    history: ConversationHistory = field(default_factory=ConversationHistory)
    transcript: list[TranscriptTurn] = field(default_factory=list)
    input_locked: bool = False
    first_message_sent: bool = False
    switch_generation: int = 0
    conversation_generation: int = 0

    def find_tenant(self, tenant_id: str) -> Tenant | None:
        for tenant in self.tenants:
            if tenant.id == tenant_id:
                return tenant
        return None


def parse_tenants(payload: Any) -> list[Tenant]:
    """Convert a tenant payload (a list, or ``{"data": [...]}``) into tenants."""

    raw = payload.get("data", payload.get("tenants")) if isinstance(payload, Mapping) else payload
    if not isinstance(raw, (list, tuple)):
        return []
    tenants: list[Tenant] = []
    for item in raw:
        if not isinstance(item, Mapping):
            continue
        tenant = Tenant.from_payload(item)
        if tenant is not None:
            tenants.append(tenant)
    return tenants


__all__ = [
    "SessionPhase",
    "SubmitOutcome",
    "Tenant",
    "ConversationHistory",
    "SessionState",
    "parse_tenants",
]
