"""Unit tests for the chat session service."""

from __future__ import annotations

import asyncio

import pytest

from hydra_router.application.services import ChatSessionService
from hydra_router.domain.enums import ChunkKind, ProviderId
from hydra_router.domain.exceptions import (
    SessionNotFoundError,
    UnknownModelError,
    ValidationError,
)
from hydra_router.adapters.outbound.llm.gemini import build_body
from hydra_router.domain.value_objects import StreamChunk, ToolCall, ToolDeclaration
from hydra_router.shared.providers.catalog import AUTO_BEST, GEMINI_FLASH, MISTRAL_SMALL

LOOKUP = ToolDeclaration(name="lookup", description="Find a record")


@pytest.fixture
def service(make_gateway):
    gateway, _, _ = make_gateway()
    return ChatSessionService(gateway, history_limit=4)


async def _collect(stream):
    return [chunk async for chunk in stream]


# ── Lifecycle ────────────────────────────────────────────────
class TestSessionLifecycle:
    def test_create_uses_default_model(self, service):
        session = service.create_session()
        assert session.model_id == GEMINI_FLASH
        assert session.history.limit == 4
        assert service.session_count == 1

    def test_create_with_unknown_model_falls_back(self, service):
        assert service.create_session("made-up").model_id == GEMINI_FLASH

    def test_duplicate_tool_names_rejected(self, service):
        with pytest.raises(ValidationError):
            service.create_session(tools=[LOOKUP, LOOKUP])

    def test_get_missing_session(self, service):
        with pytest.raises(SessionNotFoundError):
            service.get_session("nope")

    def test_close_session(self, service):
        session = service.create_session()
        service.close_session(session.id)
        assert service.session_count == 0
        with pytest.raises(SessionNotFoundError):
            service.close_session(session.id)

    def test_switch_model(self, service):
        session = service.create_session()
        assert service.switch_model(session.id, MISTRAL_SMALL).model_id == MISTRAL_SMALL
        assert service.switch_model(session.id, AUTO_BEST).model_id == AUTO_BEST
        with pytest.raises(UnknownModelError):
            service.switch_model(session.id, "made-up")


# ── Turns ────────────────────────────────────────────────────
class TestTurns:
    @pytest.mark.asyncio
    async def test_send_message_extends_history(self, service):
        session = service.create_session()
        chunks = await _collect(service.send_message(session.id, "hello"))
        assert chunks[-1].metadata.kind is ChunkKind.COMPLETED
        assert [t.content for t in service.history(session.id)] == ["hello", "ok"]

    def test_validation_is_eager(self, service):
        session = service.create_session()
        with pytest.raises(ValidationError):
            service.send_message(session.id, "   ")
        with pytest.raises(SessionNotFoundError):
            service.send_message("nope", "hi")

    @pytest.mark.asyncio
    async def test_sessions_keep_separate_histories(self, service):
        a = service.create_session()
        b = service.create_session()
        await _collect(service.send_message(a.id, "for a"))
        assert len(service.history(a.id)) == 2
        assert len(service.history(b.id)) == 0

    @pytest.mark.asyncio
    async def test_turns_on_one_session_are_serialised(self, service, adapters):
        session = service.create_session()
        await asyncio.gather(
            _collect(service.send_message(session.id, "first")),
            _collect(service.send_message(session.id, "second")),
        )
        second_request = adapters[ProviderId.GEMINI].calls[1][0]
        assert [t.content for t in second_request.history] == ["first", "ok"]
        assert len(service.history(session.id)) == 4

    @pytest.mark.asyncio
    async def test_tool_result_is_sent_as_next_message(self, service, adapters):
        session = service.create_session(tools=[LOOKUP])
        await _collect(service.submit_tool_result(session.id, "lookup", {"id": 7}))
        request = adapters[ProviderId.GEMINI].calls[0][0]
        assert request.message == 'Result of tool `lookup`:\n{"id": 7}'
        assert request.tools == (LOOKUP,)

    @pytest.mark.asyncio
    async def test_tool_call_then_tool_result(self, service, adapters):
        session = service.create_session(tools=[LOOKUP])
        call = StreamChunk(tool_call=ToolCall("lookup", {"id": 7}, "c1"))
        adapters[ProviderId.GEMINI].script = [(call,), ("Record 7 is Ada.",)]

        await _collect(service.send_message(session.id, "who is 7?"))
        await _collect(service.submit_tool_result(session.id, "lookup", {"name": "Ada"}))

        follow_up = adapters[ProviderId.GEMINI].calls[1][0]
        assert [t.content for t in follow_up.history] == [
            "who is 7?",
            'Called tool `lookup` with {"id": 7}',
        ]
        contents = build_body(follow_up)["contents"]
        assert [c["role"] for c in contents] == ["user", "model", "user"]
        assert all(part.get("text") for c in contents for part in c["parts"])
        assert service.history(session.id)[-1].content == "Record 7 is Ada."

    def test_undeclared_tool_result_rejected(self, service):
        session = service.create_session(tools=[LOOKUP])
        with pytest.raises(ValidationError):
            service.submit_tool_result(session.id, "other", "x")
