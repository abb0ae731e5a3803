"""Async client for the camp chat relay endpoints."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Mapping, Sequence

import httpx
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from ..chat.roster import AttributeSchemaEntry, parse_schema
from ..services.settings import EndpointSettings, Settings
from ..ui.models.session_models import Tenant, parse_tenants
from .prompts import compose_instructions

LOGGER = logging.getLogger(__name__)


class CollaboratorError(Exception):
    """A relay call failed: non-2xx status, transport error, or unreadable body."""

    def __init__(self, endpoint: str, message: str, *, status_code: int | None = None) -> None:
        super().__init__(f"{endpoint}: {message}")
        self.endpoint = endpoint
        self.message = message
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.status_code is None or self.status_code >= 500


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the relay client."""

    base_url: str
    request_timeout: float | None = 60.0
    max_retries: int = 2
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 4.0
    endpoints: EndpointSettings = field(default_factory=EndpointSettings)
    debug_logging: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "ClientSettings":
        return cls(
            base_url=settings.base_url,
            request_timeout=settings.request_timeout,
            max_retries=settings.max_retries,
            retry_min_seconds=settings.retry_min_seconds,
            retry_max_seconds=settings.retry_max_seconds,
            endpoints=settings.endpoints,
            debug_logging=settings.debug_logging,
        )


@dataclass(slots=True)
class ChatRequest:
    """Everything one streamed answer needs."""

    message: str
    tenant_id: str
    base_instructions: str
    personalization_context: str = ""
    custom_instructions: str = ""
    history: Sequence[Mapping[str, str]] = ()

    @property
    def instructions(self) -> str:
        return compose_instructions(
            self.base_instructions, self.custom_instructions, self.personalization_context
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "userMessage": self.message,
            "vectorStoreId": self.tenant_id,
            "tenantId": self.tenant_id,
            "instructions": self.instructions,
            "baseInstructions": self.base_instructions,
            "camperContext": self.personalization_context,
            "customInstructions": self.custom_instructions,
            "history": [dict(entry) for entry in self.history],
        }


class CampChatClient:
    """Async wrapper around the relay with retry semantics for non-streaming calls."""

    def __init__(
        self,
        settings: ClientSettings,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._http = http_client or httpx.AsyncClient(
            base_url=settings.base_url,
            timeout=settings.request_timeout,
        )

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    # ------------------------------------------------------------------
    # Collaborator operations
    # ------------------------------------------------------------------
    async def list_tenants(self) -> List[Tenant]:
        endpoint = self._settings.endpoints.tenants
        payload = await self._request_json("GET", endpoint)
        return parse_tenants(_expect_list(endpoint, payload, "data", "tenants"))

    async def get_attribute_schema(self, tenant_id: str) -> List[AttributeSchemaEntry]:
        endpoint = self._settings.endpoints.schema
        payload = await self._request_json("POST", endpoint, {"vectorStoreId": tenant_id})
        return parse_schema(_expect_list(endpoint, payload, "segments"))

    async def get_suggested_questions(self, tenant_id: str, personalization_context: str) -> List[str]:
        """Return raw suggested questions; cancel the awaiting task to abort the request."""

        payload = await self._request_json(
            "POST",
            self._settings.endpoints.suggestions,
            {"vectorStoreId": tenant_id, "camperContext": personalization_context},
        )
        questions = payload.get("questions") if isinstance(payload, Mapping) else None
        if not isinstance(questions, list):
            raise CollaboratorError(self._settings.endpoints.suggestions, "response has no questions list")
        return [str(item) for item in questions]

    async def transform_query(self, question: str, history: Sequence[Mapping[str, str]]) -> str:
        endpoint = self._settings.endpoints.transform
        payload = await self._request_json(
            "POST",
            endpoint,
            {
                "question": question,
                "conversationHistory": [
                    f"{entry.get('role', 'user')}: {entry.get('content', '')}" for entry in history
                ],
            },
        )
        transformed = payload.get("transformedQuery") if isinstance(payload, Mapping) else None
        if not isinstance(transformed, str) or not transformed.strip():
            raise CollaboratorError(endpoint, "response has no transformed query")
        return transformed.strip()

    async def load_custom_instructions(self, tenant_id: str) -> str:
        payload = await self._request_json(
            "POST", self._settings.endpoints.load_instructions, {"vectorStoreId": tenant_id}
        )
        if not isinstance(payload, Mapping):
            return ""
        text = payload.get("customInstructions", payload.get("text", ""))
        return str(text or "")

    async def save_custom_instructions(self, tenant_id: str, text: str) -> None:
        await self._request_json(
            "POST",
            self._settings.endpoints.save_instructions,
            {"vectorStoreId": tenant_id, "customInstructions": text},
        )

    async def delete_custom_instructions(self, tenant_id: str) -> None:
        await self._request_json(
            "POST", self._settings.endpoints.delete_instructions, {"vectorStoreId": tenant_id}
        )

    async def stream_chat(self, request: ChatRequest) -> AsyncIterator[bytes]:
        """Yield the raw SSE bytes of a streamed answer.

        Not retried: once the relay starts answering, the stream runs to
        completion or fails. A non-2xx status raises :class:`CollaboratorError`
        from the first iteration.
        """

        endpoint = self._settings.endpoints.chat
        payload = request.to_payload()
        LOGGER.debug(
            "Starting chat stream for tenant %s with %d history entr(ies)",
            request.tenant_id,
            len(request.history),
        )
        if self._settings.debug_logging:
            self._log_payload(endpoint, payload)
        try:
            async with self._http.stream("POST", endpoint, json=payload) as response:
                if response.is_error:
                    body = await response.aread()
                    raise CollaboratorError(
                        endpoint,
                        f"HTTP {response.status_code}: {body[:200].decode('utf-8', 'replace')}",
                        status_code=response.status_code,
                    )
                async for chunk in response.aiter_bytes():
                    yield chunk
        except httpx.HTTPError as exc:
            raise CollaboratorError(endpoint, str(exc) or type(exc).__name__) from exc

    async def aclose(self) -> None:
        """Close the underlying HTTP client to release network resources."""

        await self._http.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    async def _request_json(
        self, method: str, endpoint: str, payload: Mapping[str, Any] | None = None
    ) -> Any:
        if self._settings.debug_logging and payload is not None:
            self._log_payload(endpoint, payload)
        async for attempt in self._retrying():
            with attempt:
                return await self._send(method, endpoint, payload)
        raise AssertionError("unreachable")  # pragma: no cover

    async def _send(self, method: str, endpoint: str, payload: Mapping[str, Any] | None) -> Any:
        try:
            response = await self._http.request(method, endpoint, json=payload)
        except httpx.HTTPError as exc:
            raise CollaboratorError(endpoint, str(exc) or type(exc).__name__) from exc
        if response.is_error:
            raise CollaboratorError(
                endpoint,
                f"HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise CollaboratorError(
                endpoint, "response body is not valid JSON", status_code=response.status_code
            ) from exc

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(0, self._settings.max_retries) + 1),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception(_is_retryable),
        )

    def _log_payload(self, endpoint: str, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("Payload for %s (unserializable): %s", endpoint, payload)
        else:
            LOGGER.debug("Payload for %s:\n%s", endpoint, serialized)


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, CollaboratorError) and exc.retryable


def _expect_list(endpoint: str, payload: Any, *keys: str) -> list[Any]:
    """Return the list carried by ``payload``, either bare or under one of ``keys``."""

    if isinstance(payload, list):
        return payload
    if isinstance(payload, Mapping):
        for key in keys:
            value = payload.get(key)
            if isinstance(value, list):
                return value
    raise CollaboratorError(endpoint, "response has no list of entries")


__all__ = ["CampChatClient", "ChatRequest", "ClientSettings", "CollaboratorError"]
