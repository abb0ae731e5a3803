"""Per-camp cache of operator-supplied custom instructions."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from ..ui.events import (
    ControlBusyChanged,
    CustomInstructionsCleared,
    CustomInstructionsLoaded,
    EventBus,
    StatusCleared,
    StatusMessage,
)

LOGGER = logging.getLogger(__name__)

SAVE_CONTROL = "save_instructions"
DELETE_CONTROL = "delete_instructions"


class InstructionStore(Protocol):
    async def load_custom_instructions(self, tenant_id: str) -> str:
        ...

    async def save_custom_instructions(self, tenant_id: str, text: str) -> None:
        ...

    async def delete_custom_instructions(self, tenant_id: str) -> None:
        ...


class CustomInstructionCache:
    """Caches instruction text per tenant.

    An absent entry means "not loaded yet"; an empty string means "loaded,
    nothing configured". Saving or deleting removes the entry so the next
    access goes back to the store.
    """

    def __init__(
        self,
        store: InstructionStore,
        event_bus: EventBus,
        *,
        status_timeout: float = 3.0,
    ) -> None:
        self._store = store
        self._bus = event_bus
        self._status_timeout = max(0.0, status_timeout)
        self._entries: dict[str, str] = {}
        self._generations: dict[str, int] = {}
        self._status_task: asyncio.Task[None] | None = None

    def __contains__(self, tenant_id: object) -> bool:
        return tenant_id in self._entries

    def peek(self, tenant_id: str) -> str | None:
        """Return the cached text without loading, or None when absent."""

        return self._entries.get(tenant_id)

    def invalidate(self, tenant_id: str) -> None:
        """Drop the entry; loads already in flight for the tenant are discarded."""

        self._entries.pop(tenant_id, None)
        self._generations[tenant_id] = self._generations.get(tenant_id, 0) + 1

    async def load(self, tenant_id: str) -> str:
        """Return instructions for ``tenant_id``, fetching them on a cache miss.

        Fetch failures yield an empty string and leave the entry absent so a
        later call retries. A fetch that resolves after :meth:`invalidate` is
        thrown away and the store is asked again.
        """

        cached = self._entries.get(tenant_id)
        if cached is not None:
            return cached
        generation = self._generations.get(tenant_id, 0)
        try:
            text = await self._store.load_custom_instructions(tenant_id)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.warning("Loading custom instructions for %s failed: %s", tenant_id, exc)
            return ""
        text = text.strip()
        if generation != self._generations.get(tenant_id, 0):
            LOGGER.debug("Discarding custom instructions for %s loaded before invalidation", tenant_id)
            return await self.load(tenant_id)
        self._entries[tenant_id] = text
        self._bus.publish(CustomInstructionsLoaded(tenant_id=tenant_id, text=text, present=bool(text)))
        return text

    async def save(self, tenant_id: str | None, text: str) -> bool:
        if not tenant_id:
            self._post_status("Select a camp before saving custom instructions.", "error")
            return False
        if not text or not text.strip():
            self._post_status("Custom instructions cannot be empty.", "error")
            return False

        self._bus.publish(ControlBusyChanged(control=SAVE_CONTROL, busy=True))
        try:
            await self._store.save_custom_instructions(tenant_id, text.strip())
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.warning("Saving custom instructions for %s failed: %s", tenant_id, exc)
            self._post_status("Failed to save custom instructions.", "error")
            return False
        finally:
            self._bus.publish(ControlBusyChanged(control=SAVE_CONTROL, busy=False))

        self.invalidate(tenant_id)
        self._post_status("Custom instructions saved.", "success")
        await self.load(tenant_id)
        return True

    async def delete(self, tenant_id: str | None, *, confirmed: bool) -> bool:
        """Delete the tenant's instructions; nothing happens unless ``confirmed``."""

        if not tenant_id:
            self._post_status("Select a camp before deleting custom instructions.", "error")
            return False
        if not confirmed:
            LOGGER.debug("Delete of custom instructions for %s not confirmed", tenant_id)
            return False

        self._bus.publish(ControlBusyChanged(control=DELETE_CONTROL, busy=True))
        try:
            await self._store.delete_custom_instructions(tenant_id)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.warning("Deleting custom instructions for %s failed: %s", tenant_id, exc)
            self._post_status("Failed to delete custom instructions.", "error")
            return False
        finally:
            self._bus.publish(ControlBusyChanged(control=DELETE_CONTROL, busy=False))

        self.invalidate(tenant_id)
        self._bus.publish(CustomInstructionsCleared(tenant_id=tenant_id))
        self._post_status("Custom instructions deleted.", "success")
        return True

    def _post_status(self, message: str, level: str) -> None:
        self._bus.publish(
            StatusMessage(message=message, level=level, timeout_seconds=self._status_timeout)
        )
        if self._status_task is not None and not self._status_task.done():
            self._status_task.cancel()
        self._status_task = None
        if self._status_timeout <= 0:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._status_task = loop.create_task(self._dismiss_status())

    async def _dismiss_status(self) -> None:
        await asyncio.sleep(self._status_timeout)
        self._bus.publish(StatusCleared())


__all__ = ["CustomInstructionCache", "InstructionStore", "SAVE_CONTROL", "DELETE_CONTROL"]
