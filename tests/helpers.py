"""Shared test helpers and stub classes.

Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator, Iterable, Mapping, Sequence

from campchat.ai.client import ChatRequest, CollaboratorError
from campchat.chat.roster import AttributeSchemaEntry
from campchat.ui.events import Event, EventBus
from campchat.ui.models.session_models import Tenant


def sse(*frames: Any, done: bool = True) -> bytes:
    """Encode frames (dicts or raw strings) as a server-sent-event body."""

    lines: list[str] = []
    for frame in frames:
        payload = frame if isinstance(frame, str) else json.dumps(frame)
        lines.append(f"data: {payload}\n\n")
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode("utf-8")


def text_delta(text: str) -> dict[str, Any]:
    return {"type": "response.output_text.delta", "delta": text}


def citation_frame(*results: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "type": "response.output_item.done",
        "item": {"type": "file_search_call", "results": [dict(item) for item in results]},
    }


async def chunked(*parts: bytes) -> AsyncIterator[bytes]:
    for part in parts:
        yield part


class EventRecorder:
    """Subscribes to event types and keeps every event it receives, in order."""

    def __init__(self, bus: EventBus, *event_types: type[Event]) -> None:
        self.events: list[Event] = []
        for event_type in event_types:
            bus.subscribe(event_type, self._record)

    def _record(self, event: Event) -> None:
        self.events.append(event)

    def of_type(self, event_type: type[Event]) -> list[Any]:
        return [event for event in self.events if isinstance(event, event_type)]

    def clear(self) -> None:
        self.events.clear()


class FakeRelayClient:
    """Scripted stand-in for :class:`campchat.ai.client.CampChatClient`.

    ``calls`` records every collaborator operation by name. Any operation can
    be held open with :meth:`gate` (keyed ``"<operation>:<tenant id>"``) and
    released by setting the returned event.
    """

    def __init__(
        self,
        *,
        tenants: Sequence[Tenant] | None = None,
        schemas: Mapping[str, Sequence[AttributeSchemaEntry]] | None = None,
        suggestions: Mapping[str, Sequence[str]] | None = None,
        instructions: Mapping[str, str] | None = None,
        stream_chunks: Iterable[bytes] | None = None,
        transformed: str | None = None,
    ) -> None:
        self.tenants = list(tenants or [])
        self.schemas = dict(schemas or {})
        self.suggestions = dict(suggestions or {})
        self.instructions = dict(instructions or {})
        self.stream_chunks: list[bytes] = list(stream_chunks or [sse(text_delta("Hello!"))])
        self.stream_error: Exception | None = None
        self.transformed = transformed
        self.errors: dict[str, Exception] = {}
        self.calls: list[tuple[str, Any]] = []
        self.chat_requests: list[ChatRequest] = []
        self._gates: dict[str, asyncio.Event] = {}

    def gate(self, key: str) -> asyncio.Event:
        event = asyncio.Event()
        self._gates[key] = event
        return event

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    async def _enter(self, name: str, key: Any = None) -> None:
        self.calls.append((name, key))
        gate = self._gates.get(f"{name}:{key}")
        if gate is not None:
            await gate.wait()
        error = self.errors.get(name)
        if error is not None:
            raise error

    async def list_tenants(self) -> list[Tenant]:
        await self._enter("list_tenants")
        return list(self.tenants)

    async def get_attribute_schema(self, tenant_id: str) -> list[AttributeSchemaEntry]:
        await self._enter("get_attribute_schema", tenant_id)
        return list(self.schemas.get(tenant_id, []))

    async def get_suggested_questions(self, tenant_id: str, personalization_context: str) -> list[str]:
        await self._enter("get_suggested_questions", tenant_id)
        return list(self.suggestions.get(tenant_id, []))

    async def transform_query(self, question: str, history: Sequence[Mapping[str, str]]) -> str:
        await self._enter("transform_query", question)
        if self.transformed is None:
            raise CollaboratorError("/api/transform-query", "HTTP 500: unavailable", status_code=500)
        return self.transformed

    async def load_custom_instructions(self, tenant_id: str) -> str:
        await self._enter("load_custom_instructions", tenant_id)
        return self.instructions.get(tenant_id, "")

    async def save_custom_instructions(self, tenant_id: str, text: str) -> None:
        await self._enter("save_custom_instructions", tenant_id)
        self.instructions[tenant_id] = text

    async def delete_custom_instructions(self, tenant_id: str) -> None:
        await self._enter("delete_custom_instructions", tenant_id)
        self.instructions.pop(tenant_id, None)

    async def stream_chat(self, request: ChatRequest) -> AsyncIterator[bytes]:
        self.calls.append(("stream_chat", request.tenant_id))
        self.chat_requests.append(request)
        for chunk in self.stream_chunks:
            yield chunk
        if self.stream_error is not None:
            raise self.stream_error

    async def aclose(self) -> None:
        self.calls.append(("aclose", None))
