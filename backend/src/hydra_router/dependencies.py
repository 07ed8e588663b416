"""Dependency injection container — wires adapters to ports.

``build_engine`` is the composition root; the FastAPI app stores the result
on ``app.state`` and route handlers receive its parts through ``Depends()``.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Mapping

import httpx
from fastapi import Request

from hydra_router.adapters.outbound.llm import build_adapters
from hydra_router.application.services import ChatSessionService
from hydra_router.config import Settings, get_settings
from hydra_router.domain.enums import ProviderId
from hydra_router.ports.outbound import ProviderAdapter
from hydra_router.shared.observability.metrics import PROVIDER_CREDENTIALS
from hydra_router.shared.providers import (
    CredentialPool,
    HealthMonitor,
    HealthThresholds,
    ModelCatalog,
    ResilientGenerationGateway,
    environment_source,
)
from hydra_router.shared.providers.credentials import CredentialSource


# ── Settings ─────────────────────────────────────────────────
@lru_cache(maxsize=1)
def get_cached_settings() -> Settings:
    return get_settings()


# ── Engine ───────────────────────────────────────────────────
@dataclass
class Engine:
    """Every long-lived component of the router."""

    settings: Settings
    pool: CredentialPool
    monitor: HealthMonitor
    catalog: ModelCatalog
    gateway: ResilientGenerationGateway
    sessions: ChatSessionService
    client: httpx.AsyncClient | None = None

    def reload_credentials(
        self, extra: Mapping[ProviderId, list[str]] | None = None
    ) -> dict[ProviderId, int]:
        counts = self.pool.reload(extra)
        for provider, count in counts.items():
            PROVIDER_CREDENTIALS.labels(provider=provider.value).set(count)
        return counts

    async def aclose(self) -> None:
        if self.client is not None:
            await self.client.aclose()


def build_engine(
    settings: Settings,
    *,
    credential_source: CredentialSource | None = None,
    adapters: Mapping[ProviderId, ProviderAdapter] | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> Engine:
    """Assemble pool, monitor, catalog, gateway and sessions from settings.

    ``adapters`` replaces the HTTP adapters (tests inject fakes); when it is
    omitted a shared ``httpx.AsyncClient`` is created and owned by the engine.
    """
    pool = CredentialPool(
        credential_source or environment_source(settings.credentials_env_file),
        policy=settings.selection_policy,
    )
    monitor = HealthMonitor(
        pool,
        thresholds=HealthThresholds(
            failure_threshold=settings.failure_threshold,
            kill_switch_s=settings.kill_switch_seconds,
            rate_limit_cooldown_s=settings.rate_limit_cooldown_seconds,
            transient_cooldown_s=settings.transient_cooldown_seconds,
            emergency_revive_s=settings.emergency_revive_seconds,
        ),
        clock=clock,
    )
    catalog = ModelCatalog(default_model_id=settings.default_model)

    client: httpx.AsyncClient | None = None
    if adapters is None:
        client = httpx.AsyncClient(timeout=httpx.Timeout(settings.provider_timeout_seconds))
        adapters = build_adapters(settings, client)

    gateway = ResilientGenerationGateway(
        catalog=catalog,
        monitor=monitor,
        adapters=adapters,
        max_attempts=settings.max_attempts,
        provider_timeout_s=settings.provider_timeout_seconds,
        temperature=settings.temperature,
        thinking_budget=settings.thinking_budget,
        default_system_instruction=settings.system_instruction,
        clock=clock,
    )
    engine = Engine(
        settings=settings,
        pool=pool,
        monitor=monitor,
        catalog=catalog,
        gateway=gateway,
        sessions=ChatSessionService(gateway, history_limit=settings.history_limit),
        client=client,
    )
    engine.reload_credentials()
    return engine


# ── Request-scoped accessors ─────────────────────────────────
def get_engine(request: Request) -> Engine:
    return request.app.state.engine  # type: ignore[no-any-return]


def get_session_service(request: Request) -> ChatSessionService:
    return get_engine(request).sessions
