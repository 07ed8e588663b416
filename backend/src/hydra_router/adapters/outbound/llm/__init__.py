"""Model provider adapters.

Each adapter is a thin streaming HTTP client for one wire format.  The
gateway handles credential rotation, failover and health tracking; adapters
only translate requests and raise on failure.
"""

from __future__ import annotations

import httpx

from hydra_router.adapters.outbound.llm.gemini import GEMINI_BASE_URL, GeminiAdapter
from hydra_router.adapters.outbound.llm.openai_compat import (
    DEFAULT_BASE_URLS,
    OpenAICompatibleAdapter,
)
from hydra_router.config import Settings
from hydra_router.domain.enums import ProviderId
from hydra_router.ports.outbound import ProviderAdapter


def build_adapters(settings: Settings, client: httpx.AsyncClient) -> dict[ProviderId, ProviderAdapter]:
    """One adapter per provider, sharing a single connection pool."""
    overrides = settings.provider_base_urls
    adapters: dict[ProviderId, ProviderAdapter] = {
        ProviderId.GEMINI: GeminiAdapter(
            client, base_url=overrides.get(ProviderId.GEMINI.value, GEMINI_BASE_URL)
        ),
    }
    for provider, default_url in DEFAULT_BASE_URLS.items():
        headers: dict[str, str] = {}
        if provider is ProviderId.OPENROUTER:
            headers = {
                "HTTP-Referer": settings.openrouter_referer,
                "X-Title": settings.openrouter_title,
            }
        adapters[provider] = OpenAICompatibleAdapter(
            provider,
            client,
            base_url=overrides.get(provider.value, default_url),
            extra_headers=headers,
        )
    return adapters


__all__ = [
    "GeminiAdapter",
    "OpenAICompatibleAdapter",
    "build_adapters",
]
