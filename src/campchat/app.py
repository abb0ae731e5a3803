"""Console entry point for the camp chat client."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import os
import sys
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

from .ai.client import CampChatClient, ClientSettings
from .services.settings import Settings, SettingsStore
from .ui.domain.session_engine import ConversationSession
from .ui.events import (
    CitationsShown,
    EventBus,
    StatusMessage,
    SuggestionsShown,
    ThinkingIndicatorHidden,
    ThinkingIndicatorShown,
    TurnAppended,
    TurnUpdated,
)
from .ui.models.session_models import SubmitOutcome
from .utils import logging as logging_utils

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_LOGGER = logging.getLogger(__name__)

HELP_TEXT = """Commands:
  /camp [ID]                      list camps, or switch to camp ID ("none" clears it)
  /camper                         list campers and the camp's attributes
  /camper add [NAME]              add a camper
  /camper remove ID               remove a camper
  /camper name ID NAME            set a camper's name
  /camper set ID LABEL [VALUE]    select (or clear) an attribute value
  /suggest [N]                    refresh suggestions, or copy suggestion N
  /instructions                   show custom instructions
  /instructions save TEXT         save custom instructions
  /instructions delete            delete custom instructions
  /reset                          start a new conversation
  /quit                           exit"""


def configure_logging(debug: bool = False) -> None:
    """Configure file logging; the console stays reserved for the chat."""

    level = logging_utils.resolve_level(debug)
    logging_utils.setup_logging(level)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        settings = active_store.load(overrides=overrides)
    except (OSError, ValueError, TypeError) as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        settings = Settings()
    return settings


class ConsolePresenter:
    """Writes session events to a text stream as they happen."""

    def __init__(self, event_bus: EventBus, *, stream: TextIO | None = None) -> None:
        self._out = stream or sys.stdout
        self._printed: dict[str, int] = {}
        self._streaming_turn: str | None = None
        event_bus.subscribe(TurnAppended, self._handle_turn_appended)
        event_bus.subscribe(TurnUpdated, self._handle_turn_updated)
        event_bus.subscribe(ThinkingIndicatorShown, self._handle_thinking)
        event_bus.subscribe(ThinkingIndicatorHidden, self._handle_thinking_hidden)
        event_bus.subscribe(CitationsShown, self._handle_citations)
        event_bus.subscribe(SuggestionsShown, self._handle_suggestions)
        event_bus.subscribe(StatusMessage, self._handle_status)

    def _handle_turn_appended(self, event: TurnAppended) -> None:
        self._end_stream()
        if event.kind == "user":
            return
        if event.kind == "assistant" and not event.text:
            self._streaming_turn = event.turn_id
            self._printed[event.turn_id] = 0
            self._write("bot> ")
            return
        prefix = {"welcome": "bot> ", "assistant": "bot> ", "notice": "!! ", "error": "!! "}[event.kind]
        self._write(f"{prefix}{event.text}\n")
        self._printed[event.turn_id] = len(event.text)

    def _handle_turn_updated(self, event: TurnUpdated) -> None:
        if event.turn_id == self._streaming_turn:
            start = self._printed.get(event.turn_id, 0)
            self._write(event.text[start:])
            self._printed[event.turn_id] = len(event.text)
            return
        self._end_stream()
        self._write(f"bot> (updated) {event.text}\n")

    def _handle_thinking(self, event: ThinkingIndicatorShown) -> None:
        self._write(f"   ... {event.phrase}\n")

    def _handle_thinking_hidden(self, event: ThinkingIndicatorHidden) -> None:
        del event

    def _handle_citations(self, event: CitationsShown) -> None:
        self._end_stream()
        self._write("Sources:\n")
        for citation in event.citations:
            score = f" ({citation.score:.2f})" if citation.score is not None else ""
            self._write(f"  - {citation.source}{score}\n")

    def _handle_suggestions(self, event: SuggestionsShown) -> None:
        self._end_stream()
        self._write("Suggested questions:\n")
        for index, question in enumerate(event.questions, start=1):
            self._write(f"  {index}. {question}\n")

    def _handle_status(self, event: StatusMessage) -> None:
        self._end_stream()
        self._write(f"[{event.level}] {event.message}\n")

    def finish(self) -> None:
        self._end_stream()

    def _end_stream(self) -> None:
        if self._streaming_turn is not None:
            self._streaming_turn = None
            self._write("\n")

    def _write(self, text: str) -> None:
        self._out.write(text)
        self._out.flush()


class CommandShell:
    """Maps console input onto session operations."""

    def __init__(self, session: ConversationSession, presenter: ConsolePresenter, *, stream: TextIO | None = None) -> None:
        self._session = session
        self._presenter = presenter
        self._out = stream or sys.stdout
        self._commands: Dict[str, Callable[[list[str]], Any]] = {
            "/camp": self._cmd_camp,
            "/camper": self._cmd_camper,
            "/suggest": self._cmd_suggest,
            "/instructions": self._cmd_instructions,
            "/reset": self._cmd_reset,
            "/help": self._cmd_help,
        }

    async def handle(self, line: str) -> bool:
        """Process one input line; returns False when the user asked to quit."""

        text = line.strip()
        if not text:
            return True
        if text in {"/quit", "/exit"}:
            return False
        if text.startswith("/"):
            name, *args = text.split()
            command = self._commands.get(name)
            if command is None:
                self._print(f"Unknown command {name}; try /help")
                return True
            result = command(args)
            if asyncio.iscoroutine(result):
                await result
            return True

        outcome = await self._session.submit(text)
        self._presenter.finish()
        if outcome is SubmitOutcome.BUSY:
            self._print("Please wait for the current answer to finish.")
        elif outcome is SubmitOutcome.NOT_READY:
            self._print("Still loading, try again in a moment.")
        return True

    async def _cmd_camp(self, args: list[str]) -> None:
        if not args:
            active = self._session.active_tenant
            for tenant in self._session.state.tenants:
                marker = "*" if active is not None and tenant.id == active.id else " "
                self._print(f" {marker} {tenant.id}  {tenant.display_name}")
            if not self._session.state.tenants:
                self._print("No camps available.")
            return
        target = None if args[0].lower() == "none" else args[0]
        if not await self._session.select_tenant(target):
            self._print(f"Unknown camp {args[0]}")

    def _cmd_camper(self, args: list[str]) -> None:
        session = self._session
        if not args:
            for camper in session.state.roster:
                details = ", ".join(f"{label}={value}" for label, value in camper.selected_attributes())
                self._print(f"  {camper.id}: {camper.name or '(unnamed)'} {details}".rstrip())
            for entry in session.state.roster.schema:
                self._print(f"  [{entry.label}] {' | '.join(entry.allowed_values)}")
            return
        action, rest = args[0], args[1:]
        if action == "add":
            camper = session.add_camper(" ".join(rest))
            self._print(f"Added {camper.id}")
        elif action == "remove" and rest:
            if not session.remove_camper(rest[0]):
                self._print("Unable to remove that camper.")
        elif action == "name" and len(rest) >= 1:
            if not session.set_camper_name(rest[0], " ".join(rest[1:])):
                self._print(f"Unknown camper {rest[0]}")
        elif action == "set" and len(rest) >= 2:
            if not session.set_camper_attribute(rest[0], rest[1], " ".join(rest[2:])):
                self._print("That attribute or value is not available for this camp.")
        else:
            self._print(HELP_TEXT)

    def _cmd_suggest(self, args: list[str]) -> None:
        if not args:
            if self._session.refresh_suggestions() is None:
                self._print("Suggestions are unavailable right now.")
            return
        try:
            text = self._session.choose_suggestion(int(args[0]) - 1)
        except (ValueError, IndexError):
            self._print("No such suggestion.")
            return
        self._print(f"Composer: {text}")

    async def _cmd_instructions(self, args: list[str]) -> None:
        if not args:
            text = await self._session.load_custom_instructions()
            self._print(text or "(no custom instructions)")
        elif args[0] == "save":
            await self._session.save_custom_instructions(" ".join(args[1:]))
        elif args[0] == "delete":
            answer = await _read_line("Delete custom instructions? [y/N] ")
            confirmed = (answer or "").strip().lower() in {"y", "yes"}
            await self._session.delete_custom_instructions(confirmed=confirmed)
        else:
            self._print(HELP_TEXT)

    def _cmd_reset(self, args: list[str]) -> None:
        del args
        self._session.reset()

    def _cmd_help(self, args: list[str]) -> None:
        del args
        self._print(HELP_TEXT)

    def _print(self, text: str) -> None:
        self._out.write(text + "\n")
        self._out.flush()


async def run_console(settings: Settings) -> None:
    bus = EventBus()
    client = CampChatClient(ClientSettings.from_settings(settings))
    session = ConversationSession(client, bus, settings=settings)
    presenter = ConsolePresenter(bus)
    shell = CommandShell(session, presenter)
    try:
        await session.initialize()
        if session.active_tenant is not None:
            print(f"Connected to {session.active_tenant.display_name}. Type /help for commands.")
        while True:
            line = await _read_line("you> ")
            if line is None or not await shell.handle(line):
                break
    finally:
        await session.aclose()
        await client.aclose()


async def _read_line(prompt: str) -> str | None:
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(None, input, prompt)
    except EOFError:
        return None


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point invoked by the `campchat` console script."""

    args = _parse_cli_args(argv)

    debug = _env_flag("CAMPCHAT_DEBUG", default=False)
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("CAMPCHAT_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc
    if args.base_url:
        cli_overrides["base_url"] = args.base_url

    settings = load_settings(resolved_path, store=settings_store, overrides=cli_overrides or None)

    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return

    if settings.debug_logging and not debug:
        configure_logging(True)

    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(run_console(settings))
    _LOGGER.info("Session closed.")


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="campchat",
        description="Chat with a camp's knowledge base from the terminal.",
    )
    parser.add_argument("--base-url", metavar="URL", help="Relay base URL (overrides settings).")
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.campchat/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings before launch (repeatable).",
    )
    return parser.parse_args(argv)


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    fields = Settings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(Settings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        annotation = type_hints.get(key, fields[key].type)
        overrides[key] = _coerce_value(annotation, raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    target = annotation
    origin = get_origin(annotation)
    if origin is not None:
        args = [arg for arg in get_args(annotation) if arg is not type(None)]
        target = args[0] if args else origin

    if target is str or target is Any:
        return raw_value
    if target is bool:
        return _parse_bool(raw_value)
    if target is int:
        return int(raw_value, 10)
    if target is float:
        return float(raw_value)
    if is_dataclass(target) and isinstance(target, type):
        try:
            payload = json.loads(raw_value or "{}")
        except json.JSONDecodeError as exc:
            raise ValueError("Dataclass overrides must be valid JSON") from exc
        return target(**payload)
    return raw_value


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    metadata = {
        "path": str(store.path),
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": sorted(name for name in os.environ if name.startswith("CAMPCHAT_")),
    }
    json.dump({"settings": asdict(settings), "meta": metadata}, destination, indent=2)
    destination.write("\n")


if __name__ == "__main__":  # pragma: no cover
    main()
