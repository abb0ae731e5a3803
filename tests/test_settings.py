"""Tests for settings loading and persistence."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from campchat.ai.prompts import BASE_INSTRUCTIONS
from campchat.services.settings import EndpointSettings, Settings, SettingsStore


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "CAMPCHAT_BASE_URL",
        "CAMPCHAT_HISTORY_TURNS",
        "CAMPCHAT_REQUEST_TIMEOUT",
        "CAMPCHAT_TRANSFORM_QUERIES",
        "CAMPCHAT_DEBUG_LOGGING",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults_when_file_missing(tmp_path: Path) -> None:
    settings = SettingsStore(tmp_path / "missing.json").load()

    assert settings == Settings()
    assert settings.base_instructions == BASE_INSTRUCTIONS
    assert settings.endpoints.chat == "/api/chat"
    assert settings.history_turns == 6


def test_file_values_and_unknown_keys(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    path = tmp_path / "settings.json"
    path.write_text(
        json.dumps(
            {
                "version": 1,
                "base_url": "https://camp.example",
                "max_suggestions": 5,
                "endpoints": {"chat": "/relay/chat"},
                "theme": "dark",
            }
        ),
        encoding="utf-8",
    )

    with caplog.at_level("WARNING"):
        settings = SettingsStore(path).load()

    assert settings.base_url == "https://camp.example"
    assert settings.max_suggestions == 5
    assert settings.endpoints.chat == "/relay/chat"
    assert settings.endpoints.tenants == "/api/vector-stores"
    assert "theme" in caplog.text


def test_unreadable_file_falls_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text("{not json", encoding="utf-8")
    assert SettingsStore(path).load() == Settings()


def test_cli_then_environment_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CAMPCHAT_BASE_URL", "https://env.example")
    monkeypatch.setenv("CAMPCHAT_HISTORY_TURNS", "4")
    monkeypatch.setenv("CAMPCHAT_TRANSFORM_QUERIES", "off")

    settings = SettingsStore(tmp_path / "settings.json").load(
        overrides={"base_url": "https://cli.example", "request_timeout": 5.0, "bogus": 1}
    )

    assert settings.base_url == "https://env.example"
    assert settings.request_timeout == 5.0
    assert settings.history_turns == 4
    assert settings.transform_queries is False


def test_invalid_numeric_environment_override_is_skipped(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("CAMPCHAT_HISTORY_TURNS", "lots")
    monkeypatch.setenv("CAMPCHAT_REQUEST_TIMEOUT", "soon")

    settings = SettingsStore(tmp_path / "settings.json").load()

    assert settings.history_turns == 6
    assert settings.request_timeout == 60.0


def test_save_writes_atomically(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "settings.json"
    store = SettingsStore(path)

    store.save(Settings(base_url="https://saved.example", endpoints=EndpointSettings(chat="/c")))

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["version"] == 1
    assert payload["base_url"] == "https://saved.example"
    assert not path.with_suffix(".tmp").exists()
    assert store.load().endpoints.chat == "/c"
