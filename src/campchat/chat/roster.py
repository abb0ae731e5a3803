"""Camper roster model with per-camp attribute schemas."""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Mapping

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class AttributeSchemaEntry:
    """One labelled attribute a camp lets parents choose from (e.g. ``Session``)."""

    label: str
    allowed_values: tuple[str, ...] = ()

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "AttributeSchemaEntry | None":
        label = str(payload.get("label") or "").strip()
        if not label:
            return None
        raw_values = payload.get("values") or payload.get("allowed_values") or ()
        values: list[str] = []
        if isinstance(raw_values, (list, tuple)):
            for value in raw_values:
                text = str(value).strip()
                if text and text not in values:
                    values.append(text)
        return cls(label=label, allowed_values=tuple(values))


@dataclass(slots=True)
class CamperProfile:
    """A camper the parent is asking about."""

    id: str
    name: str = ""
    attributes: dict[str, str] = field(default_factory=dict)

    @property
    def first_name(self) -> str:
        return first_name(self.name)

    @property
    def is_configured(self) -> bool:
        return bool(self.name.strip())

    def selected_attributes(self) -> list[tuple[str, str]]:
        """Return ``(label, value)`` pairs with a non-empty value, in insertion order."""

        return [(label, value) for label, value in self.attributes.items() if value]


def first_name(full_name: str) -> str:
    """Return the text before the first space of ``full_name``."""

    return (full_name or "").strip().split(" ")[0]


class CamperRoster:
    """Ordered camper profiles plus the active camp's attribute schema.

    Camper ids are handed out monotonically (``camper-1``, ``camper-2``, ...)
    and are never reused, even across :meth:`reset`.
    """

    def __init__(self) -> None:
        self._campers: list[CamperProfile] = []
        self._schema: tuple[AttributeSchemaEntry, ...] = ()
        self._ids = itertools.count(1)

    def __iter__(self) -> Iterator[CamperProfile]:
        return iter(self._campers)

    def __len__(self) -> int:
        return len(self._campers)

    @property
    def campers(self) -> tuple[CamperProfile, ...]:
        return tuple(self._campers)

    @property
    def schema(self) -> tuple[AttributeSchemaEntry, ...]:
        return self._schema

    def configured_campers(self) -> list[CamperProfile]:
        return [camper for camper in self._campers if camper.is_configured]

    def get(self, camper_id: str) -> CamperProfile | None:
        for camper in self._campers:
            if camper.id == camper_id:
                return camper
        return None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def reset(self) -> CamperProfile:
        """Drop every camper and start over with a single empty one."""

        self._campers = []
        return self.add_camper()

    def add_camper(self, name: str = "") -> CamperProfile:
        camper = CamperProfile(id=f"camper-{next(self._ids)}", name=name.strip())
        self._campers.append(camper)
        LOGGER.debug("Added camper %s (total=%d)", camper.id, len(self._campers))
        return camper

    def remove_camper(self, camper_id: str) -> bool:
        """Remove ``camper_id``; refused when it would leave the roster empty."""

        if len(self._campers) <= 1:
            LOGGER.debug("Refusing to remove %s: roster needs at least one camper", camper_id)
            return False
        remaining = [camper for camper in self._campers if camper.id != camper_id]
        if len(remaining) == len(self._campers):
            return False
        self._campers = remaining
        return True

    def set_name(self, camper_id: str, name: str) -> bool:
        """Rename a camper, clearing its attribute selections."""

        camper = self.get(camper_id)
        if camper is None:
            LOGGER.warning("Unknown camper id %s", camper_id)
            return False
        camper.name = (name or "").strip()
        camper.attributes = {}
        return True

    def set_attribute(self, camper_id: str, label: str, value: str) -> bool:
        """Select ``value`` for ``label``; an empty value clears the selection."""

        camper = self.get(camper_id)
        if camper is None:
            LOGGER.warning("Unknown camper id %s", camper_id)
            return False
        entry = self._schema_entry(label)
        if entry is None:
            LOGGER.warning("Attribute %s is not part of the active schema", label)
            return False
        normalized = (value or "").strip()
        if not normalized:
            camper.attributes.pop(label, None)
            return True
        if entry.allowed_values and normalized not in entry.allowed_values:
            LOGGER.warning("Value %r is not allowed for attribute %s", normalized, label)
            return False
        camper.attributes[label] = normalized
        return True

    def install_schema(self, entries: Iterable[AttributeSchemaEntry]) -> None:
        """Replace the schema wholesale and drop selections it no longer covers."""

        self._schema = tuple(entries)
        labels = {entry.label: entry for entry in self._schema}
        for camper in self._campers:
            kept: dict[str, str] = {}
            for label, value in camper.attributes.items():
                entry = labels.get(label)
                if entry is None:
                    continue
                if entry.allowed_values and value not in entry.allowed_values:
                    continue
                kept[label] = value
            camper.attributes = kept

    def snapshot(self) -> tuple[CamperProfile, ...]:
        """Return detached copies suitable for publishing to listeners."""

        return tuple(
            CamperProfile(id=camper.id, name=camper.name, attributes=dict(camper.attributes))
            for camper in self._campers
        )

    def _schema_entry(self, label: str) -> AttributeSchemaEntry | None:
        for entry in self._schema:
            if entry.label == label:
                return entry
        return None


def parse_schema(payload: Any) -> list[AttributeSchemaEntry]:
    """Convert a schema payload (``{"segments": [...]}`` or a list) into entries."""

    raw = payload.get("segments") if isinstance(payload, Mapping) else payload
    if not isinstance(raw, (list, tuple)):
        return []
    entries: list[AttributeSchemaEntry] = []
    for item in raw:
        if not isinstance(item, Mapping):
            continue
        entry = AttributeSchemaEntry.from_payload(item)
        if entry is not None:
            entries.append(entry)
    return entries


__all__ = [
    "AttributeSchemaEntry",
    "CamperProfile",
    "CamperRoster",
    "first_name",
    "parse_schema",
]
