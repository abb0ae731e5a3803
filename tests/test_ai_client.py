"""Tests for the relay HTTP client."""

from __future__ import annotations

import json
from typing import Callable

import httpx
import pytest

from campchat.ai.client import CampChatClient, ChatRequest, ClientSettings, CollaboratorError
from campchat.ai.prompts import CONNECTION_ERROR_MESSAGE, CUSTOM_INSTRUCTIONS_HEADER
from campchat.ai.stream_decoder import decode_stream
from campchat.chat.roster import AttributeSchemaEntry
from campchat.ui.models.session_models import Tenant

from tests.helpers import citation_frame, sse, text_delta

Handler = Callable[[httpx.Request], httpx.Response]


def _client(handler: Handler, *, max_retries: int = 2) -> CampChatClient:
    settings = ClientSettings(
        base_url="http://relay.test",
        max_retries=max_retries,
        retry_min_seconds=0.0,
        retry_max_seconds=0.0,
    )
    http = httpx.AsyncClient(base_url=settings.base_url, transport=httpx.MockTransport(handler))
    return CampChatClient(settings, http_client=http)


class _Recorder:
    def __init__(self, *responses: httpx.Response | Exception) -> None:
        self._responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    def body(self, index: int = -1) -> dict:
        return json.loads(self.requests[index].content)


# =============================================================================
# JSON collaborators
# =============================================================================


class TestJsonCollaborators:
    @pytest.mark.asyncio
    async def test_list_tenants(self) -> None:
        handler = _Recorder(
            httpx.Response(200, json={"data": [{"id": "vs_1", "name": "Camp One"}, {"id": "vs_2"}, {"name": "x"}]})
        )
        client = _client(handler)

        tenants = await client.list_tenants()

        assert tenants == [
            Tenant(id="vs_1", display_name="Camp One", knowledge_base_id="vs_1"),
            Tenant(id="vs_2", display_name="vs_2", knowledge_base_id="vs_2"),
        ]
        assert handler.requests[0].method == "GET"
        assert handler.requests[0].url.path == "/api/vector-stores"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_attribute_schema(self) -> None:
        handler = _Recorder(httpx.Response(200, json={"segments": [{"label": "Session", "values": ["1", "2"]}]}))
        client = _client(handler)

        schema = await client.get_attribute_schema("vs_1")

        assert schema == [AttributeSchemaEntry("Session", ("1", "2"))]
        assert handler.body() == {"vectorStoreId": "vs_1"}
        assert handler.requests[0].url.path == "/api/extract-segments"

    @pytest.mark.asyncio
    async def test_suggested_questions(self) -> None:
        handler = _Recorder(httpx.Response(200, json={"questions": ["When is pickup?", 7]}))
        client = _client(handler)

        questions = await client.get_suggested_questions("vs_1", "Alex (Session: 1)")

        assert questions == ["When is pickup?", "7"]
        assert handler.body() == {"vectorStoreId": "vs_1", "camperContext": "Alex (Session: 1)"}

    @pytest.mark.asyncio
    async def test_suggested_questions_without_list_fail(self) -> None:
        client = _client(_Recorder(httpx.Response(200, json={"error": "nope"})))
        with pytest.raises(CollaboratorError):
            await client.get_suggested_questions("vs_1", "")

    @pytest.mark.asyncio
    async def test_transform_query(self) -> None:
        handler = _Recorder(httpx.Response(200, json={"transformedQuery": "  dinner time at Camp One "}))
        client = _client(handler)

        result = await client.transform_query("dinner?", [{"role": "user", "content": "hi"}])

        assert result == "dinner time at Camp One"
        assert handler.body() == {"question": "dinner?", "conversationHistory": ["user: hi"]}

    @pytest.mark.asyncio
    async def test_blank_transform_is_a_failure(self) -> None:
        client = _client(_Recorder(httpx.Response(200, json={"transformedQuery": " "})))
        with pytest.raises(CollaboratorError):
            await client.transform_query("dinner?", [])

    @pytest.mark.asyncio
    async def test_custom_instruction_endpoints(self) -> None:
        handler = _Recorder(httpx.Response(200, json={"customInstructions": "Be brief."}))
        client = _client(handler)

        assert await client.load_custom_instructions("vs_1") == "Be brief."
        await client.save_custom_instructions("vs_1", "Be kind.")
        await client.delete_custom_instructions("vs_1")

        assert [request.url.path for request in handler.requests] == [
            "/api/load-custom-instructions",
            "/api/upload-custom-instructions",
            "/api/delete-custom-instructions",
        ]
        assert handler.body(1) == {"vectorStoreId": "vs_1", "customInstructions": "Be kind."}


class TestRetries:
    @pytest.mark.asyncio
    async def test_server_errors_are_retried(self) -> None:
        handler = _Recorder(httpx.Response(503, text="busy"), httpx.Response(200, json=[{"id": "vs_1"}]))
        client = _client(handler)

        tenants = await client.list_tenants()

        assert [tenant.id for tenant in tenants] == ["vs_1"]
        assert len(handler.requests) == 2

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self) -> None:
        handler = _Recorder(httpx.Response(404, text="missing"))
        client = _client(handler, max_retries=3)

        with pytest.raises(CollaboratorError) as excinfo:
            await client.get_attribute_schema("vs_1")

        assert excinfo.value.status_code == 404
        assert excinfo.value.retryable is False
        assert len(handler.requests) == 1

    @pytest.mark.asyncio
    async def test_transport_errors_exhaust_retries(self) -> None:
        handler = _Recorder(httpx.ConnectError("refused"))
        client = _client(handler, max_retries=2)

        with pytest.raises(CollaboratorError) as excinfo:
            await client.list_tenants()

        assert excinfo.value.status_code is None
        assert len(handler.requests) == 3

    @pytest.mark.asyncio
    async def test_invalid_json_is_not_retried(self) -> None:
        handler = _Recorder(httpx.Response(200, text="<html>"))
        client = _client(handler)

        with pytest.raises(CollaboratorError):
            await client.list_tenants()

        assert len(handler.requests) == 1


# =============================================================================
# Streaming
# =============================================================================


class TestStreamChat:
    @pytest.mark.asyncio
    async def test_payload_and_decoded_events(self) -> None:
        body = sse(text_delta("Dinner "), text_delta("is at 6."), citation_frame({"filename": "menu.pdf"}))
        handler = _Recorder(httpx.Response(200, content=body, headers={"content-type": "text/event-stream"}))
        client = _client(handler)
        request = ChatRequest(
            message="When is dinner?",
            tenant_id="vs_1",
            base_instructions="Be helpful.",
            personalization_context="Parent of Alex.",
            custom_instructions="Mention the mess hall.",
            history=[{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}],
        )

        events = [event async for event in decode_stream(client.stream_chat(request))]

        assert "".join(event.text for event in events if event.type == "text.delta") == "Dinner is at 6."
        assert events[-1].citations[0].source == "menu.pdf"
        payload = handler.body()
        assert payload["message"] == "When is dinner?"
        assert payload["vectorStoreId"] == "vs_1"
        assert payload["history"][1] == {"role": "assistant", "content": "hello"}
        assert payload["instructions"] == (
            f"{CUSTOM_INSTRUCTIONS_HEADER}\nMention the mess hall.\n\nBe helpful.\n\nParent of Alex."
        )

    @pytest.mark.asyncio
    async def test_error_status_becomes_error_delta(self) -> None:
        client = _client(_Recorder(httpx.Response(500, text="upstream failed")))
        request = ChatRequest(message="Hi", tenant_id="vs_1", base_instructions="")

        events = [event async for event in decode_stream(client.stream_chat(request))]

        assert len(events) == 1
        assert events[0].is_error
        assert events[0].text == CONNECTION_ERROR_MESSAGE

    @pytest.mark.asyncio
    async def test_streaming_is_not_retried(self) -> None:
        handler = _Recorder(httpx.Response(503))
        client = _client(handler)

        events = [
            event
            async for event in decode_stream(
                client.stream_chat(ChatRequest(message="Hi", tenant_id="vs_1", base_instructions=""))
            )
        ]

        assert events[0].is_error
        assert len(handler.requests) == 1


def test_chat_request_omits_empty_instruction_sections() -> None:
    request = ChatRequest(message="Hi", tenant_id="vs_1", base_instructions="Base.")
    assert request.instructions == "Base."
    assert request.to_payload()["customInstructions"] == ""


class TestResponseShapes:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [{"data": 5}, {"data": {"id": "vs_1"}}, "camps", 7])
    async def test_tenant_list_of_wrong_shape_fails(self, body: object) -> None:
        client = _client(_Recorder(httpx.Response(200, json=body)))
        with pytest.raises(CollaboratorError):
            await client.list_tenants()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [{"segments": 5}, {"segments": None}, {"error": "nope"}])
    async def test_schema_of_wrong_shape_fails(self, body: object) -> None:
        client = _client(_Recorder(httpx.Response(200, json=body)))
        with pytest.raises(CollaboratorError):
            await client.get_attribute_schema("vs_1")

    @pytest.mark.asyncio
    async def test_zero_retries_means_a_single_attempt(self) -> None:
        handler = _Recorder(httpx.Response(502, text="bad gateway"))
        client = _client(handler, max_retries=0)

        with pytest.raises(CollaboratorError):
            await client.list_tenants()

        assert len(handler.requests) == 1
