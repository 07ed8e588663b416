"""Core types for the multi-provider routing framework."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from hydra_router.domain.enums import (
    BreakerState,
    ChunkKind,
    ErrorCategory,
    HealthStatus,
    ProviderId,
)
from hydra_router.domain.value_objects import ChunkMetadata, ToolCall


@dataclass(slots=True)
class Credential:
    """One API key in a provider's pool.

    Only ``usage_count`` changes after the pool is built.
    """

    value: str
    provider: ProviderId
    usage_count: int = 0

    @property
    def masked(self) -> str:
        """Key rendered safe for logs (last four characters only)."""
        return f"...{self.value[-4:]}" if len(self.value) > 4 else "****"


@dataclass(frozen=True, slots=True)
class HealthThresholds:
    """Penalty configuration for the health monitor.

    Attributes:
        failure_threshold:      Consecutive transient failures before cooldown.
        kill_switch_s:          Cooldown for exhausted quotas.
        rate_limit_cooldown_s:  Cooldown for rate-limit responses.
        transient_cooldown_s:   Cooldown after the failure threshold is hit.
        emergency_revive_s:     Max remaining cooldown a provider may have to be
                                force-revived when nothing else is usable.
    """

    failure_threshold: int = 3
    kill_switch_s: float = 86_400.0
    rate_limit_cooldown_s: float = 60.0
    transient_cooldown_s: float = 60.0
    emergency_revive_s: float = 5.0


@dataclass(slots=True)
class ProviderHealth:
    """Mutable breaker state of one provider (held by the monitor)."""

    provider: ProviderId
    state: BreakerState = BreakerState.ACTIVE
    consecutive_failures: int = 0
    cooldown_until: float = 0.0
    cooldown_reason: ErrorCategory | None = None
    last_error_category: ErrorCategory | None = None


@dataclass(frozen=True, slots=True)
class ProviderHealthSnapshot:
    """Read-only view of a provider for diagnostics."""

    provider_id: ProviderId
    status: HealthStatus
    credential_count: int
    cooldown_remaining_minutes: int = 0
    consecutive_failures: int = 0
    last_error_category: ErrorCategory | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider_id": self.provider_id.value,
            "status": self.status.value,
            "credential_count": self.credential_count,
            "cooldown_remaining_minutes": self.cooldown_remaining_minutes,
            "consecutive_failures": self.consecutive_failures,
            "last_error_category": (
                self.last_error_category.value if self.last_error_category else None
            ),
        }


@dataclass(frozen=True, slots=True)
class ClassifiedError:
    category: ErrorCategory
    status_code: int | None = None
    detail: str = ""


@dataclass(slots=True)
class GenerationResult:
    """A fully drained stream, for non-streaming callers."""

    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    grounding: list[dict[str, Any]] = field(default_factory=list)
    metadata: ChunkMetadata | None = None
    reroutes: list[ChunkMetadata] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.metadata is not None and self.metadata.kind is ChunkKind.COMPLETED
