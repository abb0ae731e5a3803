"""Relay client, stream decoding, and prompt text."""
