"""Rotating "thinking" placeholder shown until the first streamed token arrives."""

from __future__ import annotations

import asyncio
import itertools
import logging
import random
from typing import Sequence

from ..ai.prompts import THINKING_PHRASES
from ..ui.events import EventBus, ThinkingIndicatorHidden, ThinkingIndicatorShown

LOGGER = logging.getLogger(__name__)


class ThinkingIndicator:
    """Publishes a random phrase immediately and a new one every ``interval`` seconds.

    The rotation task is the nullable handle: :meth:`stop` cancels it and is
    safe to call any number of times.
    """

    def __init__(
        self,
        event_bus: EventBus,
        *,
        interval: float = 3.0,
        phrases: Sequence[str] = THINKING_PHRASES,
        rng: random.Random | None = None,
    ) -> None:
        if not phrases:
            raise ValueError("phrases must not be empty")
        self._bus = event_bus
        self._interval = max(0.01, float(interval))
        self._phrases = tuple(phrases)
        self._rng = rng or random.Random()
        self._task: asyncio.Task[None] | None = None
        self._indicator_id: str | None = None
        self._ids = itertools.count(1)

    @property
    def active(self) -> bool:
        return self._indicator_id is not None

    @property
    def indicator_id(self) -> str | None:
        return self._indicator_id

    def start(self) -> str:
        """Show the indicator and begin rotating phrases; returns its id."""

        self.stop()
        indicator_id = f"thinking-{next(self._ids)}"
        self._indicator_id = indicator_id
        self._show_phrase()
        self._task = asyncio.get_running_loop().create_task(self._rotate(indicator_id))
        return indicator_id

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        indicator_id, self._indicator_id = self._indicator_id, None
        if indicator_id is not None:
            self._bus.publish(ThinkingIndicatorHidden(indicator_id=indicator_id))

    async def _rotate(self, indicator_id: str) -> None:
        while True:
            await asyncio.sleep(self._interval)
            if self._indicator_id != indicator_id:
                return
            self._show_phrase()

    def _show_phrase(self) -> None:
        if self._indicator_id is None:
            return
        phrase = self._rng.choice(self._phrases)
        self._bus.publish(ThinkingIndicatorShown(indicator_id=self._indicator_id, phrase=phrase))


__all__ = ["ThinkingIndicator"]
