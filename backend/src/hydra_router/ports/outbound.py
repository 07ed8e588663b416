"""Outbound ports — interfaces that infrastructure adapters must implement.

These are the *driven* ports in hexagonal architecture.  The gateway depends
only on these abstractions, never on a concrete vendor client.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator

from hydra_router.domain.enums import ProviderId
from hydra_router.domain.value_objects import GenerationRequest, StreamChunk


# ═══════════════════════════════════════════════════════════════
#  Provider adapter port
# ═══════════════════════════════════════════════════════════════
class ProviderAdapter(ABC):
    """Streams one generation attempt from a single vendor.

    Implementations raise on any failure (HTTP error, safety block, malformed
    stream); they never emit metadata chunks.  Routing and retries belong to
    the caller.
    """

    provider: ProviderId

    @abstractmethod
    def stream(self, request: GenerationRequest, api_key: str) -> AsyncIterator[StreamChunk]:
        """Yield normalized chunks for ``request`` using ``api_key``."""
        ...
