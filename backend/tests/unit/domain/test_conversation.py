"""Unit tests for conversation entities."""

from __future__ import annotations

import pytest

from hydra_router.domain.entities import ChatSession, ConversationHistory
from hydra_router.domain.enums import Role
from hydra_router.domain.value_objects import ConversationTurn


# ── ConversationHistory ──────────────────────────────────────
class TestConversationHistory:
    def test_starts_empty(self):
        history = ConversationHistory()
        assert len(history) == 0
        assert history.limit == 16
        assert history.snapshot() == ()

    def test_append_exchange(self):
        history = ConversationHistory()
        history.append_exchange("hi", "hello")
        assert [t.role for t in history] == [Role.USER, Role.ASSISTANT]
        assert [t.content for t in history] == ["hi", "hello"]

    def test_evicts_oldest_turns(self):
        history = ConversationHistory(limit=4)
        for i in range(3):
            history.append_exchange(f"q{i}", f"a{i}")
        assert [t.content for t in history] == ["q1", "a1", "q2", "a2"]

    def test_odd_limit_evicts_whole_exchanges(self):
        history = ConversationHistory(limit=3)
        for i in range(3):
            history.append_exchange(f"q{i}", f"a{i}")
        assert [t.content for t in history] == ["q2", "a2"]
        assert history.snapshot()[0].role is Role.USER

    def test_initial_turns_are_bounded(self):
        turns = [ConversationTurn("user", str(i)) for i in range(5)]
        history = ConversationHistory(limit=2, turns=turns)
        assert [t.content for t in history] == ["3", "4"]

    def test_snapshot_is_detached(self):
        history = ConversationHistory()
        history.append_exchange("a", "b")
        snap = history.snapshot()
        history.append_exchange("c", "d")
        assert len(snap) == 2

    def test_clear(self):
        history = ConversationHistory()
        history.append(ConversationTurn(Role.USER, "x"))
        history.clear()
        assert len(history) == 0

    def test_invalid_limit(self):
        with pytest.raises(ValueError):
            ConversationHistory(limit=1)


# ── ChatSession ──────────────────────────────────────────────
class TestChatSession:
    def test_ids_are_unique(self):
        a = ChatSession(model_id="m", history=ConversationHistory())
        b = ChatSession(model_id="m", history=ConversationHistory())
        assert a.id != b.id

    def test_switch_model_keeps_history(self):
        session = ChatSession(model_id="m1", history=ConversationHistory())
        session.history.append_exchange("q", "a")
        before = session.last_active_at
        session.switch_model("m2")
        assert session.model_id == "m2"
        assert len(session.history) == 2
        assert session.last_active_at >= before
