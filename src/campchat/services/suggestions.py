"""Suggested-question fetching with last-request-wins cancellation."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Protocol

from ..ui.events import ComposerTextChanged, EventBus, SuggestionsHidden, SuggestionsShown

LOGGER = logging.getLogger(__name__)


class SuggestionSource(Protocol):
    async def get_suggested_questions(self, tenant_id: str, personalization_context: str) -> list[str]:
        ...


class SuggestionController:
    """Fetches up to ``max_suggestions`` starter questions for the active camp.

    Every :meth:`refresh` hides what is on screen, cancels the outstanding
    request and issues a new one tagged with a fresh generation number. A
    result is rendered only if its generation is still current, so a slow
    response for a previous camp or roster can never overwrite a newer one.
    """

    def __init__(self, source: SuggestionSource, event_bus: EventBus, *, max_suggestions: int = 3) -> None:
        self._source = source
        self._bus = event_bus
        self._max_suggestions = max(1, max_suggestions)
        self._generation = 0
        self._task: asyncio.Task[None] | None = None
        self._questions: tuple[str, ...] = ()
        self._suppressed = False

    @property
    def questions(self) -> tuple[str, ...]:
        """Questions currently displayed."""

        return self._questions

    @property
    def suppressed(self) -> bool:
        return self._suppressed

    @property
    def pending(self) -> asyncio.Task[None] | None:
        task = self._task
        if task is None or task.done():
            return None
        return task

    def refresh(self, tenant_id: str | None, personalization_context: str) -> asyncio.Task[None] | None:
        """Hide current suggestions and request new ones; returns the request task."""

        self.hide()
        self.cancel()
        if tenant_id is None or self._suppressed:
            return None
        self._generation += 1
        generation = self._generation
        LOGGER.debug("Requesting suggestions for %s (generation=%d)", tenant_id, generation)
        self._task = asyncio.get_running_loop().create_task(
            self._fetch(generation, tenant_id, personalization_context)
        )
        return self._task

    def cancel(self) -> None:
        """Abort the outstanding request; its result, if any, is dropped."""

        self._generation += 1
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

    def hide(self) -> None:
        if self._questions:
            self._questions = ()
        self._bus.publish(SuggestionsHidden())

    def suppress(self) -> None:
        """Stop showing suggestions until :meth:`resume` (called once a message is sent)."""

        self._suppressed = True
        self.cancel()
        self.hide()

    def resume(self) -> None:
        self._suppressed = False

    def choose(self, index: int) -> str:
        """Put the chosen question into the composer without submitting it."""

        if not 0 <= index < len(self._questions):
            raise IndexError("Suggestion index out of range")
        text = self._questions[index]
        self._bus.publish(ComposerTextChanged(text=text))
        return text

    async def _fetch(self, generation: int, tenant_id: str, personalization_context: str) -> None:
        try:
            raw = await self._source.get_suggested_questions(tenant_id, personalization_context)
        except asyncio.CancelledError:
            LOGGER.debug("Suggestion request %d cancelled", generation)
            raise
        except Exception as exc:
            LOGGER.warning("Suggestion request for %s failed: %s", tenant_id, exc)
            return
        if generation != self._generation or self._suppressed:
            LOGGER.debug("Dropping stale suggestions (generation=%d)", generation)
            return
        questions = tuple(sanitize_suggestions(raw, self._max_suggestions))
        self._questions = questions
        if questions:
            self._bus.publish(SuggestionsShown(tenant_id=tenant_id, questions=questions))


def sanitize_suggestions(raw_items: Iterable[Any], max_suggestions: int) -> list[str]:
    """Trim, de-duplicate, and cap suggestion strings."""

    sanitized: list[str] = []
    seen: set[str] = set()
    limit = max(1, max_suggestions)
    for item in raw_items:
        text = str(item).strip()
        if not text or text in seen:
            continue
        sanitized.append(text)
        seen.add(text)
        if len(sanitized) >= limit:
            break
    return sanitized


__all__ = ["SuggestionController", "SuggestionSource", "sanitize_suggestions"]
