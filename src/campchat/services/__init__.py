"""Service layer helpers (settings, suggestions, instruction cache)."""
