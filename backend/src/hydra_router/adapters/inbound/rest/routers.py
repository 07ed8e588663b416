"""Health, Models, Providers, Sessions — REST routers."""

from __future__ import annotations

from typing import AsyncIterator

import orjson
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from hydra_router.application.dtos import (
    CreateSessionRequest,
    ErrorResponse,
    HealthResponse,
    HistoryResponse,
    ModelResponse,
    ProviderHealthResponse,
    ReloadRequest,
    ReloadResponse,
    SendMessageRequest,
    SessionResponse,
    SwitchModelRequest,
    ToolResultRequest,
    TurnResponse,
)
from hydra_router.application.services import ChatSessionService
from hydra_router.dependencies import Engine, get_engine, get_session_service
from hydra_router.domain.entities import ChatSession
from hydra_router.domain.enums import HealthStatus, ProviderId
from hydra_router.domain.value_objects import StreamChunk
from hydra_router.shared.providers.catalog import ModelDescriptor


def _parse_provider(provider_id: str) -> ProviderId:
    try:
        return ProviderId(provider_id.upper())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown provider: {provider_id}",
        ) from None


async def _sse(chunks: AsyncIterator[StreamChunk]) -> AsyncIterator[bytes]:
    async for chunk in chunks:
        yield b"data: " + orjson.dumps(chunk.to_dict()) + b"\n\n"


def _event_stream(chunks: AsyncIterator[StreamChunk]) -> StreamingResponse:
    return StreamingResponse(
        _sse(chunks),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


def _is_servable(engine: Engine, model: ModelDescriptor) -> bool:
    # A race entry is servable while any of its candidates is.
    members = [engine.catalog.get(c) for c in model.race_candidates] or [model]
    return any(m is not None and engine.monitor.is_healthy(m.provider) for m in members)


def _session_response(session: ChatSession) -> SessionResponse:
    return SessionResponse(
        session_id=session.id,
        model_id=session.model_id,
        tools=[t.name for t in session.tools],
        created_at=session.created_at,
    )


# ═══════════════════════════════════════════════════════════════
#  Health
# ═══════════════════════════════════════════════════════════════
health_router = APIRouter(tags=["Health"])


@health_router.get("/health", response_model=HealthResponse)
async def health_check(engine: Engine = Depends(get_engine)) -> HealthResponse:
    online = sum(1 for s in engine.monitor.snapshot() if s.status is HealthStatus.HEALTHY)
    return HealthResponse(
        status="ok" if online else "degraded",
        environment=engine.settings.app_env.value,
        providers_online=online,
    )


@health_router.get("/metrics")
async def prometheus_metrics() -> Response:
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )


# ═══════════════════════════════════════════════════════════════
#  Models
# ═══════════════════════════════════════════════════════════════
models_router = APIRouter(prefix="/models", tags=["Models"])


@models_router.get("", response_model=list[ModelResponse])
async def list_models(engine: Engine = Depends(get_engine)) -> list[ModelResponse]:
    return [
        ModelResponse(
            model_id=m.model_id,
            provider=m.provider.value,
            name=m.name,
            supports_tools=m.supports_tools,
            supports_thinking_budget=m.supports_thinking_budget,
            supports_vision=m.supports_vision,
            fallbacks=list(m.fallbacks),
            race_candidates=list(m.race_candidates),
            available=_is_servable(engine, m),
        )
        for m in engine.catalog.models()
    ]


# ═══════════════════════════════════════════════════════════════
#  Provider health
# ═══════════════════════════════════════════════════════════════
providers_router = APIRouter(prefix="/providers", tags=["Provider Health"])


@providers_router.get("/health", response_model=list[ProviderHealthResponse])
async def provider_health(engine: Engine = Depends(get_engine)) -> list[ProviderHealthResponse]:
    """Get health snapshots for every known provider."""
    return [ProviderHealthResponse(**s.to_dict()) for s in engine.monitor.snapshot()]


@providers_router.post("/reload", response_model=ReloadResponse)
async def reload_credentials(
    body: ReloadRequest | None = None,
    engine: Engine = Depends(get_engine),
) -> ReloadResponse:
    """Rescan credentials, optionally with operator override keys."""
    extra = {_parse_provider(name): keys for name, keys in (body.overrides if body else {}).items()}
    counts = engine.reload_credentials(extra)
    return ReloadResponse(credential_counts={p.value: n for p, n in counts.items()})


@providers_router.post("/{provider_id}/reset")
async def reset_provider(provider_id: str, engine: Engine = Depends(get_engine)) -> dict:
    """Admin: clear the cooldown and failure counters of a provider."""
    provider = _parse_provider(provider_id)
    engine.monitor.reset(provider)
    return {"status": "reset", "provider_id": provider.value}


# ═══════════════════════════════════════════════════════════════
#  Sessions
# ═══════════════════════════════════════════════════════════════
sessions_router = APIRouter(
    prefix="/sessions",
    tags=["Sessions"],
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)


@sessions_router.post("", status_code=201, response_model=SessionResponse)
async def create_session(
    body: CreateSessionRequest,
    service: ChatSessionService = Depends(get_session_service),
) -> SessionResponse:
    try:
        tools = [t.to_domain() for t in body.tools]
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    session = service.create_session(body.model_id, tools, body.system_instruction)
    return _session_response(session)


@sessions_router.post("/{session_id}/messages")
async def send_message(
    session_id: str,
    body: SendMessageRequest,
    service: ChatSessionService = Depends(get_session_service),
) -> StreamingResponse:
    """Stream a generation as server-sent events, one chunk per event."""
    attachment = body.attachment.to_domain() if body.attachment else None
    return _event_stream(service.send_message(session_id, body.text, attachment))


@sessions_router.post("/{session_id}/tool-results")
async def submit_tool_result(
    session_id: str,
    body: ToolResultRequest,
    service: ChatSessionService = Depends(get_session_service),
) -> StreamingResponse:
    return _event_stream(service.submit_tool_result(session_id, body.tool_name, body.result))


@sessions_router.put("/{session_id}/model", response_model=SessionResponse)
async def switch_model(
    session_id: str,
    body: SwitchModelRequest,
    service: ChatSessionService = Depends(get_session_service),
) -> SessionResponse:
    return _session_response(service.switch_model(session_id, body.model_id))


@sessions_router.get("/{session_id}/history", response_model=HistoryResponse)
async def get_history(
    session_id: str,
    service: ChatSessionService = Depends(get_session_service),
) -> HistoryResponse:
    session = service.get_session(session_id)
    return HistoryResponse(
        session_id=session.id,
        model_id=session.model_id,
        limit=session.history.limit,
        turns=[TurnResponse(role=t.role.value, content=t.content) for t in service.history(session_id)],
    )


@sessions_router.delete("/{session_id}", status_code=204)
async def close_session(
    session_id: str,
    service: ChatSessionService = Depends(get_session_service),
) -> Response:
    service.close_session(session_id)
    return Response(status_code=204)
