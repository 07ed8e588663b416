"""Domain entities — objects with identity and lifecycle.

Entities are *mutable* but expose controlled mutation methods that enforce
business invariants.  They carry a unique ``id`` field.
"""

from __future__ import annotations

import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Iterator

from hydra_router.domain.enums import Role
from hydra_router.domain.value_objects import ConversationTurn, ToolDeclaration


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


# ═══════════════════════════════════════════════════════════════
#  ConversationHistory
# ═══════════════════════════════════════════════════════════════
class ConversationHistory:
    """Bounded sliding window of turns; oldest turns are evicted first."""

    def __init__(self, limit: int = 16, turns: Iterable[ConversationTurn] = ()) -> None:
        if limit < 2:
            raise ValueError("History limit must hold at least one exchange")
        self._turns: deque[ConversationTurn] = deque(turns, maxlen=limit)

    @property
    def limit(self) -> int:
        return self._turns.maxlen or 0

    def append(self, turn: ConversationTurn) -> None:
        self._turns.append(turn)

    def append_exchange(self, user_text: str, assistant_text: str) -> None:
        self._turns.append(ConversationTurn(Role.USER, user_text))
        self._turns.append(ConversationTurn(Role.ASSISTANT, assistant_text))
        # Evict by whole exchange: the window never opens on an answer.
        while self._turns and self._turns[0].role is Role.ASSISTANT:
            self._turns.popleft()

    def snapshot(self) -> tuple[ConversationTurn, ...]:
        return tuple(self._turns)

    def clear(self) -> None:
        self._turns.clear()

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[ConversationTurn]:
        return iter(tuple(self._turns))


# ═══════════════════════════════════════════════════════════════
#  ChatSession
# ═══════════════════════════════════════════════════════════════
@dataclass(slots=True)
class ChatSession:
    """One conversation: preferred model, tool set, and its own history."""

    model_id: str
    history: ConversationHistory
    id: str = field(default_factory=_new_id)
    tools: tuple[ToolDeclaration, ...] = ()
    system_instruction: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    last_active_at: datetime = field(default_factory=_utcnow)

    def touch(self) -> None:
        self.last_active_at = _utcnow()

    def switch_model(self, model_id: str) -> None:
        self.model_id = model_id
        self.touch()
