"""Domain layer of the chat widget.

The :class:`ConversationSession` owns all session state, receives its
collaborators via constructor injection, and reports every change through
the event bus. It has no dependency on any presentation code.
"""

from __future__ import annotations

from .session_engine import ConversationSession, SessionClient

__all__ = ["ConversationSession", "SessionClient"]
