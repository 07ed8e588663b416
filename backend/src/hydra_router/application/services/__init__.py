"""Chat session service.

Owns the conversations that the HTTP surface talks to.  Each session keeps
its preferred model, tool declarations and a bounded history; turns on one
session are serialised so two requests never interleave on the same
history, while different sessions stream concurrently.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator, Sequence

import structlog

from hydra_router.domain.entities import ChatSession, ConversationHistory
from hydra_router.domain.exceptions import (
    SessionNotFoundError,
    UnknownModelError,
    ValidationError,
)
from hydra_router.domain.value_objects import (
    Attachment,
    ConversationTurn,
    StreamChunk,
    ToolDeclaration,
)
from hydra_router.shared.providers.gateway import ResilientGenerationGateway

logger = structlog.get_logger(__name__)


class ChatSessionService:
    """In-memory session registry in front of the generation gateway."""

    def __init__(
        self,
        gateway: ResilientGenerationGateway,
        *,
        history_limit: int = 16,
    ) -> None:
        self._gateway = gateway
        self._history_limit = history_limit
        self._sessions: dict[str, ChatSession] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    # ── Lifecycle ────────────────────────────────────────────
    def create_session(
        self,
        model_id: str | None = None,
        tools: Sequence[ToolDeclaration] = (),
        system_instruction: str | None = None,
    ) -> ChatSession:
        model = self._gateway.catalog.resolve(model_id)
        names = [t.name for t in tools]
        if len(names) != len(set(names)):
            raise ValidationError("Tool names must be unique within a session")

        session = ChatSession(
            model_id=model.model_id,
            history=ConversationHistory(self._history_limit),
            tools=tuple(tools),
            system_instruction=system_instruction,
        )
        self._sessions[session.id] = session
        self._locks[session.id] = asyncio.Lock()
        logger.info(
            "session_created",
            session_id=session.id,
            model=session.model_id,
            tools=len(session.tools),
        )
        return session

    def get_session(self, session_id: str) -> ChatSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def close_session(self, session_id: str) -> None:
        self.get_session(session_id)
        del self._sessions[session_id]
        self._locks.pop(session_id, None)
        logger.info("session_closed", session_id=session_id)

    def switch_model(self, session_id: str, model_id: str) -> ChatSession:
        session = self.get_session(session_id)
        if model_id not in self._gateway.catalog:
            raise UnknownModelError(model_id)
        session.switch_model(model_id)
        return session

    def history(self, session_id: str) -> tuple[ConversationTurn, ...]:
        return self.get_session(session_id).history.snapshot()

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    # ── Turns ────────────────────────────────────────────────
    def send_message(
        self,
        session_id: str,
        text: str,
        attachment: Attachment | None = None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Run one generation for the session, streaming its chunks.

        Input is validated eagerly; the returned iterator does the work.
        """
        if not text or not text.strip():
            raise ValidationError("Message text must not be empty")
        session = self.get_session(session_id)
        return self._run_turn(session, text, attachment, cancel)

    def submit_tool_result(
        self,
        session_id: str,
        tool_name: str,
        result: Any,
        *,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Feed an executed tool's result back as the next message."""
        session = self.get_session(session_id)
        if tool_name not in {t.name for t in session.tools}:
            raise ValidationError(f"Tool {tool_name!r} is not declared for this session")

        payload = result if isinstance(result, str) else json.dumps(result, default=str)
        message = f"Result of tool `{tool_name}`:\n{payload}"
        return self._run_turn(session, message, None, cancel)

    async def _run_turn(
        self,
        session: ChatSession,
        text: str,
        attachment: Attachment | None,
        cancel: asyncio.Event | None,
    ) -> AsyncIterator[StreamChunk]:
        lock = self._locks.get(session.id)
        if lock is None:
            raise SessionNotFoundError(session.id)

        async with lock:
            session.touch()
            log = logger.bind(session_id=session.id, model=session.model_id)
            log.info("session_turn_started", attachment=attachment is not None)
            async for chunk in self._gateway.stream(
                text,
                session.model_id,
                session.history,
                session.tools,
                attachment=attachment,
                system_instruction=session.system_instruction,
                cancel=cancel,
            ):
                yield chunk
            log.info("session_turn_finished", turns=len(session.history))
