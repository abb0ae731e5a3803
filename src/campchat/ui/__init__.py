"""Session engine, its events, and the presentation layers that consume them."""

from .events import EventBus

__all__ = ["EventBus"]
