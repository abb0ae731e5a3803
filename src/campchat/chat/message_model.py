"""Chat message and citation data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Mapping

ChatRole = Literal["user", "assistant"]
TurnKind = Literal["welcome", "user", "assistant", "notice", "error"]


def _utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(timezone.utc)


def _coerce_score(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass(slots=True, frozen=True)
class Citation:
    """A retrieval result attached to a completed assistant turn."""

    source: str
    score: float | None = None
    excerpt: str = ""

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Citation":
        source = (
            payload.get("filename")
            or payload.get("file_name")
            or payload.get("file_id")
            or "Unknown source"
        )
        excerpt = payload.get("text") or ""
        return cls(source=str(source), score=_coerce_score(payload.get("score")), excerpt=str(excerpt))

    def as_dict(self) -> Dict[str, Any]:
        return {"source": self.source, "score": self.score, "excerpt": self.excerpt}


@dataclass(slots=True)
class ChatMessage:
    """A turn recorded in the conversation history."""

    role: ChatRole
    content: str
    created_at: datetime = field(default_factory=_utcnow)
    citations: tuple[Citation, ...] = ()

    def to_history_entry(self) -> Dict[str, str]:
        """Serialize the message for the history suffix sent to the relay."""

        return {"role": self.role, "content": self.content}


@dataclass(slots=True)
class TranscriptTurn:
    """A turn currently displayed in the transcript."""

    turn_id: str
    role: ChatRole
    kind: TurnKind
    text: str = ""


__all__ = ["ChatRole", "TurnKind", "Citation", "ChatMessage", "TranscriptTurn"]
