"""Tests for the suggested-question controller."""

from __future__ import annotations

import asyncio

import pytest

from campchat.services.suggestions import SuggestionController, sanitize_suggestions
from campchat.ui.events import ComposerTextChanged, EventBus, SuggestionsHidden, SuggestionsShown

from tests.helpers import EventRecorder, FakeRelayClient


@pytest.fixture
def recorder(event_bus: EventBus) -> EventRecorder:
    return EventRecorder(event_bus, SuggestionsShown, SuggestionsHidden, ComposerTextChanged)


class TestSuggestionController:
    @pytest.mark.asyncio
    async def test_only_latest_request_is_rendered(
        self, fake_client: FakeRelayClient, event_bus: EventBus, recorder: EventRecorder
    ) -> None:
        controller = SuggestionController(fake_client, event_bus)
        gate_a = fake_client.gate("get_suggested_questions:vs_pine")

        task_a = controller.refresh("vs_pine", "")
        await asyncio.sleep(0)
        task_b = controller.refresh("vs_cedar", "")
        await task_b
        gate_a.set()
        await asyncio.gather(task_a, return_exceptions=True)

        shown = recorder.of_type(SuggestionsShown)
        assert [event.tenant_id for event in shown] == ["vs_cedar"]
        assert controller.questions == ("Is there a lake?",)
        assert task_a is not None and task_a.cancelled()

    @pytest.mark.asyncio
    async def test_refresh_hides_current_questions_first(
        self, fake_client: FakeRelayClient, event_bus: EventBus, recorder: EventRecorder
    ) -> None:
        controller = SuggestionController(fake_client, event_bus)
        await controller.refresh("vs_pine", "")
        recorder.clear()

        task = controller.refresh("vs_pine", "")

        assert isinstance(recorder.events[0], SuggestionsHidden)
        assert controller.questions == ()
        await task

    @pytest.mark.asyncio
    async def test_results_are_capped(self, event_bus: EventBus) -> None:
        client = FakeRelayClient(suggestions={"t": ["a", "b", " ", "a", "c", "d"]})
        controller = SuggestionController(client, event_bus, max_suggestions=3)

        await controller.refresh("t", "")

        assert controller.questions == ("a", "b", "c")

    @pytest.mark.asyncio
    async def test_failed_request_renders_nothing(
        self, fake_client: FakeRelayClient, event_bus: EventBus, recorder: EventRecorder
    ) -> None:
        fake_client.errors["get_suggested_questions"] = RuntimeError("boom")
        controller = SuggestionController(fake_client, event_bus)

        await controller.refresh("vs_pine", "")

        assert recorder.of_type(SuggestionsShown) == []
        assert controller.questions == ()

    @pytest.mark.asyncio
    async def test_suppressed_controller_issues_no_requests(
        self, fake_client: FakeRelayClient, event_bus: EventBus
    ) -> None:
        controller = SuggestionController(fake_client, event_bus)
        controller.suppress()

        assert controller.refresh("vs_pine", "") is None
        assert fake_client.calls == []

        controller.resume()
        await controller.refresh("vs_pine", "")
        assert fake_client.call_names() == ["get_suggested_questions"]

    @pytest.mark.asyncio
    async def test_no_tenant_issues_no_request(self, fake_client: FakeRelayClient, event_bus: EventBus) -> None:
        controller = SuggestionController(fake_client, event_bus)
        assert controller.refresh(None, "") is None
        assert fake_client.calls == []

    @pytest.mark.asyncio
    async def test_choose_fills_composer_without_submitting(
        self, fake_client: FakeRelayClient, event_bus: EventBus, recorder: EventRecorder
    ) -> None:
        controller = SuggestionController(fake_client, event_bus)
        await controller.refresh("vs_pine", "")

        assert controller.choose(1) == "When is pickup?"
        assert recorder.of_type(ComposerTextChanged) == [ComposerTextChanged(text="When is pickup?")]
        with pytest.raises(IndexError):
            controller.choose(5)


def test_sanitize_suggestions() -> None:
    assert sanitize_suggestions(["  Hi ", "Hi", "", "Yo"], 5) == ["Hi", "Yo"]
    assert sanitize_suggestions(["a", "b"], 0) == ["a"]
