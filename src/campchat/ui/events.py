"""Event bus and the events the chat session publishes.

The session engine never touches widgets directly. Every visible change is
published as a small dataclass event, and whichever presentation layer is
attached (console, web bridge, test view) subscribes to the ones it renders.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Generic, TypeVar
from weakref import WeakMethod

if TYPE_CHECKING:  # pragma: no cover - imports for type checking only
    from typing import DefaultDict

    from ..chat.markdown import Block
    from ..chat.message_model import Citation, TurnKind
    from ..chat.roster import AttributeSchemaEntry, CamperProfile
    from .models.session_models import SessionPhase, Tenant

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")

Handler = Callable[[E], None]


@dataclass(slots=True)
class Event:
    """Base class for all session events."""


# Streaming and timer events fire constantly; they are published without logging.
_QUIET_EVENT_TYPES: set[type] = set()


# =============================================================================
# Tenant & session lifecycle
# =============================================================================


@dataclass(slots=True)
class TenantsLoaded(Event):
    """The tenant list finished loading (possibly empty)."""

    tenants: tuple[Tenant, ...]


@dataclass(slots=True)
class ActiveTenantChanged(Event):
    """The active camp changed; ``tenant`` is None when the selector was cleared."""

    tenant: Tenant | None


@dataclass(slots=True)
class SessionPhaseChanged(Event):
    phase: SessionPhase
    previous: SessionPhase


@dataclass(slots=True)
class InputLockChanged(Event):
    """The message input and send control were disabled or re-enabled.

    Attributes:
        locked: Whether input is currently disabled.
        reason: ``"INITIALIZING"``, ``"CAMP_SWITCH"``, ``"AWAITING_RESPONSE"``
            or empty when unlocked.
    """

    locked: bool
    reason: str


@dataclass(slots=True)
class LauncherAvailabilityChanged(Event):
    enabled: bool


# =============================================================================
# Transcript
# =============================================================================


@dataclass(slots=True)
class TranscriptCleared(Event):
    pass


@dataclass(slots=True)
class TurnAppended(Event):
    """A new turn was added to the bottom of the transcript."""

    turn_id: str
    role: str
    kind: TurnKind
    text: str
    blocks: tuple[Block, ...] = ()


@dataclass(slots=True)
class TurnUpdated(Event):
    """An existing turn was re-rendered from its full accumulated text."""

    turn_id: str
    text: str
    blocks: tuple[Block, ...] = ()


_QUIET_EVENT_TYPES.add(TurnUpdated)


@dataclass(slots=True)
class ThinkingIndicatorShown(Event):
    """The thinking placeholder is visible with ``phrase`` (re-sent on every rotation)."""

    indicator_id: str
    phrase: str


_QUIET_EVENT_TYPES.add(ThinkingIndicatorShown)


@dataclass(slots=True)
class ThinkingIndicatorHidden(Event):
    indicator_id: str


@dataclass(slots=True)
class CitationsShown(Event):
    turn_id: str
    citations: tuple[Citation, ...]


@dataclass(slots=True)
class CitationsCleared(Event):
    pass


# =============================================================================
# Suggestions & composer
# =============================================================================


@dataclass(slots=True)
class SuggestionsShown(Event):
    tenant_id: str
    questions: tuple[str, ...]


@dataclass(slots=True)
class SuggestionsHidden(Event):
    pass


@dataclass(slots=True)
class ComposerTextChanged(Event):
    """The message input should show ``text`` (nothing is submitted)."""

    text: str


# =============================================================================
# Personalization
# =============================================================================


@dataclass(slots=True)
class RosterChanged(Event):
    campers: tuple[CamperProfile, ...]
    schema: tuple[AttributeSchemaEntry, ...]


@dataclass(slots=True)
class AttributeSchemaLoading(Event):
    tenant_id: str


@dataclass(slots=True)
class AttributeSchemaInstalled(Event):
    tenant_id: str
    schema: tuple[AttributeSchemaEntry, ...]


# =============================================================================
# Custom instructions & status
# =============================================================================


@dataclass(slots=True)
class CustomInstructionsLoaded(Event):
    """Instructions for ``tenant_id`` are cached; ``present`` drives the indicator."""

    tenant_id: str
    text: str
    present: bool


@dataclass(slots=True)
class CustomInstructionsCleared(Event):
    tenant_id: str


@dataclass(slots=True)
class ControlBusyChanged(Event):
    """A control (``"save_instructions"``, ``"delete_instructions"``) is busy or free."""

    control: str
    busy: bool


@dataclass(slots=True)
class StatusMessage(Event):
    """Transient status text; ``timeout_seconds`` of 0 keeps it until replaced."""

    message: str
    level: str = "info"
    timeout_seconds: float = 0.0


@dataclass(slots=True)
class StatusCleared(Event):
    pass


class EventBus(Generic[E]):
    """Typed publish/subscribe hub shared by the engine and its presentation.

    Bound-method handlers are held through :class:`weakref.WeakMethod` so a
    discarded view stops receiving events on its own; plain functions are
    held strongly. A handler that raises is logged and skipped so one broken
    view cannot stall the session.

    Not thread-safe: publish and subscribe from the event-loop thread only.
    """

    __slots__ = ("_handlers",)

    def __init__(self) -> None:
        self._handlers: DefaultDict[type[Event], list[_HandlerRef]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        self._handlers[event_type].append(_HandlerRef.create(handler))
        logger.debug("Subscribed %s to %s", _handler_name(handler), event_type.__name__)

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Remove the first registration of ``handler``; unknown handlers are ignored."""

        handlers = self._handlers.get(event_type)
        if not handlers:
            return
        for index, handler_ref in enumerate(handlers):
            if handler_ref.matches(handler):
                handlers.pop(index)
                return

    def publish(self, event: E) -> None:
        """Deliver ``event`` synchronously to its handlers in subscription order."""

        event_type = type(event)
        handlers = self._handlers.get(event_type)
        if event_type not in _QUIET_EVENT_TYPES:
            logger.debug("Publishing %s to %d handler(s)", event_type.__name__, len(handlers or ()))
        if not handlers:
            return

        dead: list[_HandlerRef] = []
        for handler_ref in list(handlers):
            handler = handler_ref.resolve()
            if handler is None:
                dead.append(handler_ref)
                continue
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Handler %s raised for event %s", _handler_name(handler), event_type.__name__
                )
        for handler_ref in dead:
            handlers.remove(handler_ref)

    def clear(self) -> None:
        self._handlers.clear()

    def handler_count(self, event_type: type[E] | None = None) -> int:
        if event_type is not None:
            return len(self._handlers.get(event_type, []))
        return sum(len(handlers) for handlers in self._handlers.values())


class _HandlerRef:
    __slots__ = ("_ref", "_is_weak")

    def __init__(self, target: Any, is_weak: bool) -> None:
        self._ref = target
        self._is_weak = is_weak

    @classmethod
    def create(cls, handler: Handler[Any]) -> "_HandlerRef":
        if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
            try:
                return cls(WeakMethod(handler), is_weak=True)
            except TypeError:
                pass
        return cls(handler, is_weak=False)

    def resolve(self) -> Handler[Any] | None:
        if self._is_weak:
            return self._ref()
        return self._ref

    def matches(self, handler: Handler[Any]) -> bool:
        resolved = self.resolve()
        return resolved is not None and resolved == handler


def _handler_name(handler: Handler[Any]) -> str:
    if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
        return f"{type(handler.__self__).__name__}.{handler.__func__.__name__}"
    return getattr(handler, "__name__", repr(handler))


__all__ = [
    "Event",
    "EventBus",
    "Handler",
    "TenantsLoaded",
    "ActiveTenantChanged",
    "SessionPhaseChanged",
    "InputLockChanged",
    "LauncherAvailabilityChanged",
    "TranscriptCleared",
    "TurnAppended",
    "TurnUpdated",
    "ThinkingIndicatorShown",
    "ThinkingIndicatorHidden",
    "CitationsShown",
    "CitationsCleared",
    "SuggestionsShown",
    "SuggestionsHidden",
    "ComposerTextChanged",
    "RosterChanged",
    "AttributeSchemaLoading",
    "AttributeSchemaInstalled",
    "CustomInstructionsLoaded",
    "CustomInstructionsCleared",
    "ControlBusyChanged",
    "StatusMessage",
    "StatusCleared",
]
