"""Decoder turning the relay's server-sent-event bytes into typed stream events.

The relay forwards the upstream Responses stream verbatim: newline-delimited
``data: <json>`` frames ending with ``data: [DONE]``. Chunk boundaries fall
anywhere, including inside a multi-byte character or in the middle of a line,
so bytes go through an incremental UTF-8 decoder and only complete lines are
handed to the frame parser.
"""

from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterable, AsyncIterator, Literal, Mapping

from ..chat.message_model import Citation
from .prompts import CONNECTION_ERROR_MESSAGE

LOGGER = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"
_DATA_PREFIX = "data:"
_CITATION_ITEM_TYPE = "file_search_call"

StreamEventType = Literal["text.delta", "citations"]


@dataclass(slots=True, frozen=True)
class StreamEvent:
    """Normalized representation of one decoded frame."""

    type: StreamEventType
    text: str = ""
    citations: tuple[Citation, ...] = ()
    is_error: bool = False


class SSELineBuffer:
    """Reassembles ``data:`` payloads from arbitrarily split byte chunks."""

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._pending = ""

    def feed(self, chunk: bytes) -> list[str]:
        """Consume ``chunk`` and return the payloads of every completed line."""

        self._pending += self._decoder.decode(chunk)
        *lines, self._pending = self._pending.split("\n")
        return [payload for payload in map(_data_payload, lines) if payload is not None]

    def flush(self) -> list[str]:
        """Return the payload of a final unterminated line, if any."""

        self._pending += self._decoder.decode(b"", final=True)
        remainder, self._pending = self._pending, ""
        payload = _data_payload(remainder)
        return [payload] if payload is not None else []


def _data_payload(line: str) -> str | None:
    line = line.rstrip("\r")
    if not line.startswith(_DATA_PREFIX):
        return None
    payload = line[len(_DATA_PREFIX):]
    if payload.startswith(" "):
        payload = payload[1:]
    return payload


def parse_frame(payload: str) -> StreamEvent | None:
    """Map one JSON frame to a :class:`StreamEvent`, or None when it carries nothing."""

    try:
        frame = json.loads(payload)
    except json.JSONDecodeError:
        LOGGER.warning("Skipping malformed stream frame: %.200s", payload)
        return None
    if not isinstance(frame, Mapping):
        LOGGER.debug("Skipping non-object stream frame: %.200s", payload)
        return None

    frame_type = frame.get("type")
    delta = frame.get("delta")

    if frame_type == "response.output_item.delta":
        text = _nested_output_text(delta)
        return StreamEvent(type="text.delta", text=text) if text else None
    if frame_type == "response.output_text.delta":
        if isinstance(delta, str) and delta:
            return StreamEvent(type="text.delta", text=delta)
        return None
    if frame_type == "content_block.delta":
        text = delta.get("text") if isinstance(delta, Mapping) else None
        return StreamEvent(type="text.delta", text=str(text)) if text else None
    if frame_type == "response.output_item.done":
        item = frame.get("item")
        if isinstance(item, Mapping) and item.get("type") == _CITATION_ITEM_TYPE:
            return _citation_event(item.get("results"))
        return None
    if frame_type == "response.file_search_call.completed":
        return _citation_event(frame.get("results"))

    LOGGER.debug("Ignoring stream frame of type %s", frame_type)
    return None


def _nested_output_text(delta: Any) -> str:
    if not isinstance(delta, Mapping):
        return ""
    content = delta.get("content")
    if not isinstance(content, list):
        return ""
    parts: list[str] = []
    for item in content:
        if isinstance(item, Mapping) and item.get("type") == "output_text" and item.get("text"):
            parts.append(str(item["text"]))
    return "".join(parts)


def _citation_event(results: Any) -> StreamEvent | None:
    if not isinstance(results, list):
        return None
    citations = tuple(Citation.from_payload(item) for item in results if isinstance(item, Mapping))
    return StreamEvent(type="citations", citations=citations)


async def decode_stream(chunks: AsyncIterable[bytes]) -> AsyncIterator[StreamEvent]:
    """Yield typed events from a byte stream until ``[DONE]`` or end of input.

    Any failure raised while reading ``chunks`` (transport errors, a
    non-success response surfaced by the client) ends the sequence after a
    single synthetic error delta; the exception never reaches the caller.
    """

    buffer = SSELineBuffer()
    try:
        async for chunk in chunks:
            for payload in buffer.feed(chunk):
                if payload.strip() == DONE_SENTINEL:
                    return
                event = parse_frame(payload)
                if event is not None:
                    yield event
        for payload in buffer.flush():
            if payload.strip() == DONE_SENTINEL:
                return
            event = parse_frame(payload)
            if event is not None:
                yield event
    except Exception as exc:
        LOGGER.warning("Chat stream failed: %s", exc)
        yield StreamEvent(type="text.delta", text=CONNECTION_ERROR_MESSAGE, is_error=True)
    finally:
        close = getattr(chunks, "aclose", None)
        if close is not None:
            try:
                await close()
            except Exception:  # pragma: no cover - transport teardown failure
                LOGGER.debug("Closing chat stream failed", exc_info=True)


__all__ = ["StreamEvent", "SSELineBuffer", "parse_frame", "decode_stream", "DONE_SENTINEL"]
