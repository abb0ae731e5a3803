"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from campchat.chat.roster import AttributeSchemaEntry
from campchat.services.settings import Settings
from campchat.ui.events import EventBus
from campchat.ui.models.session_models import Tenant

from tests.helpers import FakeRelayClient


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def tenants() -> list[Tenant]:
    return [
        Tenant(id="vs_pine", display_name="Camp Pine Lake", knowledge_base_id="vs_pine"),
        Tenant(id="vs_cedar", display_name="Camp Cedar Ridge", knowledge_base_id="vs_cedar"),
    ]


@pytest.fixture
def session_schema() -> list[AttributeSchemaEntry]:
    return [
        AttributeSchemaEntry(label="Session", allowed_values=("1", "2", "3")),
        AttributeSchemaEntry(label="Age Group", allowed_values=("Junior", "Senior")),
    ]


@pytest.fixture
def fake_client(tenants: list[Tenant], session_schema: list[AttributeSchemaEntry]) -> FakeRelayClient:
    return FakeRelayClient(
        tenants=tenants,
        schemas={"vs_pine": session_schema, "vs_cedar": [AttributeSchemaEntry("Cabin", ("Oak", "Elm"))]},
        suggestions={
            "vs_pine": ["What should I pack?", "When is pickup?"],
            "vs_cedar": ["Is there a lake?"],
        },
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(status_timeout=0.0, thinking_interval=3.0, history_turns=6)
