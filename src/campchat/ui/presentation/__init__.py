"""Presentation layer: components that subscribe to session events and mirror them."""

from .transcript_view import TranscriptView, ViewState, blocks_to_html

__all__ = ["TranscriptView", "ViewState", "blocks_to_html"]
