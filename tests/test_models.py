"""Tests for chat and session data models."""

from __future__ import annotations

from campchat.ai.prompts import compose_instructions
from campchat.chat.message_model import ChatMessage, Citation
from campchat.ui.models.session_models import ConversationHistory, SessionState, Tenant, parse_tenants


def test_citation_from_payload_falls_back_through_source_keys() -> None:
    assert Citation.from_payload({"filename": "a.pdf", "file_id": "f1"}).source == "a.pdf"
    assert Citation.from_payload({"file_name": "b.pdf"}).source == "b.pdf"
    assert Citation.from_payload({"file_id": "f1"}).source == "f1"
    assert Citation.from_payload({}).source == "Unknown source"
    assert Citation.from_payload({"score": "0.5"}).score == 0.5
    assert Citation.from_payload({"score": "high"}).score is None


def test_history_appends_pairs_and_bounds_suffix() -> None:
    history = ConversationHistory()
    history.append_exchange("one", "first answer")
    history.append_exchange("two", "second answer", [Citation("faq.pdf")])

    assert len(history) == 4
    assert [message.role for message in history] == ["user", "assistant", "user", "assistant"]
    assert history.suffix(3) == [
        {"role": "assistant", "content": "first answer"},
        {"role": "user", "content": "two"},
        {"role": "assistant", "content": "second answer"},
    ]
    assert history.suffix(0) == []
    assert history[-1].citations == (Citation("faq.pdf"),)

    history.clear()
    assert len(history) == 0


def test_chat_message_history_entry() -> None:
    assert ChatMessage(role="user", content="hi").to_history_entry() == {"role": "user", "content": "hi"}


def test_parse_tenants_shapes() -> None:
    expected = [Tenant(id="vs_1", display_name="One", knowledge_base_id="vs_1")]
    assert parse_tenants([{"id": "vs_1", "name": "One"}]) == expected
    assert parse_tenants({"data": [{"id": "vs_1", "name": "One"}, {"id": " "}]}) == expected
    assert parse_tenants({"tenants": [{"id": "vs_1", "name": "One"}]}) == expected
    assert parse_tenants("garbage") == []
    assert parse_tenants({"data": 5}) == []
    assert parse_tenants({"data": {"id": "vs_1"}}) == []


def test_session_state_find_tenant() -> None:
    tenant = Tenant(id="vs_1", display_name="One", knowledge_base_id="vs_1")
    state = SessionState(tenants=(tenant,))
    assert state.find_tenant("vs_1") is tenant
    assert state.find_tenant("vs_2") is None
    assert len(state.roster) == 0


def test_compose_instructions_order() -> None:
    composed = compose_instructions("Base.", custom="Custom.", personalization="Personal.")
    assert composed.index("Custom.") < composed.index("Base.") < composed.index("Personal.")
    assert compose_instructions("Base.", custom="  ") == "Base."
