"""Domain enumerations for the generation router."""

from __future__ import annotations

import enum


class ProviderId(str, enum.Enum):
    """Upstream model vendors, keyed by their canonical credential name."""

    GEMINI = "GEMINI"
    GROQ = "GROQ"
    OPENAI = "OPENAI"
    DEEPSEEK = "DEEPSEEK"
    MISTRAL = "MISTRAL"
    OPENROUTER = "OPENROUTER"


class Role(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ErrorCategory(str, enum.Enum):
    """Semantic failure classes used for penalties and user messages."""

    QUOTA_EXHAUSTED = "QUOTA_EXHAUSTED"
    RATE_LIMITED = "RATE_LIMITED"
    NETWORK_UNAVAILABLE = "NETWORK_UNAVAILABLE"
    AUTH_REJECTED = "AUTH_REJECTED"
    CONTENT_BLOCKED = "CONTENT_BLOCKED"
    UNKNOWN = "UNKNOWN"


class BreakerState(str, enum.Enum):
    """Internal breaker state of one provider."""

    ACTIVE = "ACTIVE"
    COOLDOWN = "COOLDOWN"


class HealthStatus(str, enum.Enum):
    """Externally reported availability of a provider."""

    HEALTHY = "HEALTHY"
    COOLDOWN = "COOLDOWN"
    OFFLINE = "OFFLINE"  # no credentials configured


class SelectionPolicy(str, enum.Enum):
    """How a credential is picked from a provider's pool."""

    ROUND_ROBIN = "round_robin"
    RANDOM = "random"


class ChunkKind(str, enum.Enum):
    """Kind of metadata carried by a stream chunk."""

    REROUTE = "REROUTE"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self is not ChunkKind.REROUTE
