"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Callable, Iterable, Mapping

import pytest

from hydra_router.domain.enums import ProviderId
from hydra_router.domain.value_objects import GenerationRequest, StreamChunk
from hydra_router.ports.outbound import ProviderAdapter
from hydra_router.shared.providers import (
    CredentialPool,
    HealthMonitor,
    HealthThresholds,
    ModelCatalog,
    ResilientGenerationGateway,
)


# ═══════════════════════════════════════════════════════════════
#  Test doubles
# ═══════════════════════════════════════════════════════════════
class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


_HANG = object()  # step item: block until cancelled


class ScriptedAdapter(ProviderAdapter):
    """Adapter that replays a script, one step per call.

    A step is either an exception (raised before any chunk) or an iterable
    of items: strings become text chunks, ``StreamChunk`` passes through,
    exceptions are raised mid-stream and the ``hang`` sentinel blocks until cancelled.
    """

    def __init__(
        self,
        provider: ProviderId,
        script: Iterable[Any] = (),
        default: Any = ("ok",),
    ) -> None:
        self.provider = provider
        self.script = list(script)
        self.default = default
        self.calls: list[tuple[GenerationRequest, str]] = []
        self.closed_streams = 0

    async def stream(self, request: GenerationRequest, api_key: str) -> AsyncIterator[StreamChunk]:
        self.calls.append((request, api_key))
        step = self.script.pop(0) if self.script else self.default
        try:
            if isinstance(step, BaseException):
                raise step
            for item in step:
                if item is _HANG:
                    await asyncio.Event().wait()
                elif isinstance(item, BaseException):
                    raise item
                elif isinstance(item, StreamChunk):
                    yield item
                else:
                    yield StreamChunk(text=item)
        finally:
            self.closed_streams += 1


_ALL_KEYS: dict[str, str] = {
    "GEMINI_API_KEY": "gem-1,gem-2",
    "GROQ_API_KEY": "groq-1",
    "OPENAI_API_KEY": "oai-1",
    "DEEPSEEK_API_KEY": "ds-1",
    "MISTRAL_API_KEY": "mis-1",
    "OPENROUTER_API_KEY": "or-1",
}


def static_source(env: Mapping[str, str]) -> Callable[[], Mapping[str, str]]:
    return lambda: dict(env)


# ═══════════════════════════════════════════════════════════════
#  Fixtures
# ═══════════════════════════════════════════════════════════════
@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def adapters() -> dict[ProviderId, ScriptedAdapter]:
    return {p: ScriptedAdapter(p) for p in ProviderId}


@pytest.fixture
def make_gateway(clock: FakeClock, adapters: dict[ProviderId, ScriptedAdapter]):
    """Factory building a gateway over scripted adapters.

    Returns ``(gateway, monitor, pool)``.
    """

    def _make(
        env: Mapping[str, str] = _ALL_KEYS,
        *,
        thresholds: HealthThresholds | None = None,
        **gateway_kwargs: Any,
    ) -> tuple[ResilientGenerationGateway, HealthMonitor, CredentialPool]:
        pool = CredentialPool(static_source(env))
        pool.reload()
        monitor = HealthMonitor(pool, thresholds=thresholds, clock=clock)
        gateway = ResilientGenerationGateway(
            catalog=ModelCatalog(),
            monitor=monitor,
            adapters=adapters,
            clock=clock,
            **gateway_kwargs,
        )
        return gateway, monitor, pool

    return _make


@pytest.fixture
def hang() -> object:
    """Script item that blocks the stream until it is cancelled."""
    return _HANG


@pytest.fixture
def scripted_adapter() -> type[ScriptedAdapter]:
    return ScriptedAdapter


@pytest.fixture
def credential_env() -> dict[str, str]:
    """One or more keys for every provider."""
    return dict(_ALL_KEYS)
