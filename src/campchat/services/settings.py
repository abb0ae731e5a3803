"""Settings dataclasses and persistence helpers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

from ..ai.prompts import BASE_INSTRUCTIONS

__all__ = ["Settings", "EndpointSettings", "SettingsStore"]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".campchat"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_ENV_OVERRIDES: Mapping[str, str] = {
    "CAMPCHAT_BASE_URL": "base_url",
    "CAMPCHAT_BASE_INSTRUCTIONS": "base_instructions",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "CAMPCHAT_TRANSFORM_QUERIES": "transform_queries",
    "CAMPCHAT_DEBUG_LOGGING": "debug_logging",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "CAMPCHAT_REQUEST_TIMEOUT": "request_timeout",
    "CAMPCHAT_THINKING_INTERVAL": "thinking_interval",
    "CAMPCHAT_STATUS_TIMEOUT": "status_timeout",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "CAMPCHAT_MAX_RETRIES": "max_retries",
    "CAMPCHAT_HISTORY_TURNS": "history_turns",
    "CAMPCHAT_MAX_SUGGESTIONS": "max_suggestions",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}


@dataclass(slots=True)
class EndpointSettings:
    """Relative paths of the relay endpoints the client talks to."""

    tenants: str = "/api/vector-stores"
    schema: str = "/api/extract-segments"
    chat: str = "/api/chat"
    suggestions: str = "/api/suggest-questions"
    transform: str = "/api/transform-query"
    load_instructions: str = "/api/load-custom-instructions"
    save_instructions: str = "/api/upload-custom-instructions"
    delete_instructions: str = "/api/delete-custom-instructions"


@dataclass(slots=True)
class Settings:
    """User-configurable settings for one chat session."""

    base_url: str = "http://localhost:3000"
    request_timeout: float = 60.0
    max_retries: int = 2
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 4.0
    history_turns: int = 6
    max_suggestions: int = 3
    thinking_interval: float = 3.0
    status_timeout: float = 3.0
    transform_queries: bool = True
    base_instructions: str = BASE_INSTRUCTIONS
    debug_logging: bool = False
    endpoints: EndpointSettings = field(default_factory=EndpointSettings)


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH

    @property
    def path(self) -> Path:
        """Return the resolved path backing this store."""

        return self._path

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, then apply CLI and environment overrides."""

        payload = self._read_payload()
        settings = Settings()
        if payload:
            data = _filter_fields(payload)
            endpoint_payload = data.get("endpoints")
            if isinstance(endpoint_payload, Mapping):
                try:
                    data["endpoints"] = EndpointSettings(**endpoint_payload)
                except TypeError:
                    LOGGER.warning("Ignoring malformed endpoint settings in %s", self._path)
                    data["endpoints"] = EndpointSettings()
            try:
                settings = Settings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")
        return self._apply_env_overrides(settings)

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with an atomic replace."""

        data = asdict(settings)
        data["version"] = _SETTINGS_VERSION
        body = json.dumps(data, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            LOGGER.warning("Unable to read settings from %s: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Settings file %s does not contain an object", self._path)
            return {}
        return payload

    def _apply_overrides(
        self, settings: Settings, overrides: Mapping[str, Any], *, source: str
    ) -> Settings:
        valid = {name for name in _field_names()}
        applied: Dict[str, Any] = {}
        for key, value in overrides.items():
            if value is None:
                continue
            if key not in valid:
                LOGGER.warning("Ignoring unknown %s override %s", source, key)
                continue
            applied[key] = value
        if not applied:
            return settings
        LOGGER.debug("Applying %s overrides: %s", source, sorted(applied))
        return replace(settings, **applied)

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _INT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = int(value, 10)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid integer", env_name, value)
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = float(value)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid float", env_name, value)
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings


def _field_names() -> tuple[str, ...]:
    return tuple(item.name for item in fields(Settings))


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    names = set(_field_names())
    data: Dict[str, Any] = {}
    for key, value in payload.items():
        if key == "version":
            continue
        if key not in names:
            LOGGER.warning("Ignoring unknown settings key %s", key)
            continue
        data[key] = value
    return data
