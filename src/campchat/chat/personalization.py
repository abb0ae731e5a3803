"""Personalization context and welcome text derived from the camper roster."""

from __future__ import annotations

from typing import Iterable, Sequence

from ..ai.prompts import GENERIC_WELCOME, PERSONALIZATION_TEMPLATE, PERSONALIZED_WELCOME
from .roster import CamperProfile


def describe_camper(camper: CamperProfile) -> str:
    """Return ``"Alex (Session: 1, Age Group: Junior)"`` style text for one camper."""

    details = ", ".join(f"{label}: {value}" for label, value in camper.selected_attributes())
    if details:
        return f"{camper.first_name} ({details})"
    return camper.first_name


def build_personalization_context(campers: Iterable[CamperProfile]) -> str:
    """Build the instruction sentence describing the configured campers.

    Returns an empty string when no camper has a name.
    """

    configured = [camper for camper in campers if camper.is_configured]
    if not configured:
        return ""
    count = len(configured)
    return PERSONALIZATION_TEMPLATE.format(
        count=count,
        plural="s" if count > 1 else "",
        campers=", ".join(describe_camper(camper) for camper in configured),
        first_names=", ".join(camper.first_name for camper in configured),
    )


def join_names(names: Sequence[str]) -> str:
    """Join names as ``"A"``, ``"A and B"``, ``"A, B and C"``."""

    if not names:
        return ""
    if len(names) == 1:
        return names[0]
    return ", ".join(names[:-1]) + " and " + names[-1]


def build_welcome_message(campers: Iterable[CamperProfile]) -> str:
    first_names = [camper.first_name for camper in campers if camper.is_configured]
    if not first_names:
        return GENERIC_WELCOME
    return PERSONALIZED_WELCOME.format(names=join_names(first_names))


__all__ = [
    "describe_camper",
    "build_personalization_context",
    "build_welcome_message",
    "join_names",
]
