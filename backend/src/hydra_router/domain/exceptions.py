"""Domain-specific exception hierarchy.

All exceptions inherit from ``DomainError`` so callers can catch the entire
family in one clause while still discriminating on subclass.
"""

from __future__ import annotations


class DomainError(Exception):
    """Base class for all domain-layer errors."""

    def __init__(self, message: str, *, code: str = "DOMAIN_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(message)


# ── Validation ───────────────────────────────────────────────
class ValidationError(DomainError):
    """Input failed domain validation rules."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="VALIDATION_ERROR")


class UnknownModelError(DomainError):
    def __init__(self, model_id: str) -> None:
        super().__init__(f"Model {model_id!r} is not in the catalog", code="UNKNOWN_MODEL")


class SessionNotFoundError(DomainError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session {session_id!r} not found", code="SESSION_NOT_FOUND")


# ── Provider calls ──────────────────────────────────────────
class ProviderCallError(DomainError):
    """An upstream provider rejected or failed a generation call.

    ``message`` keeps the raw vendor text for operators; it is never shown
    to end users.
    """

    def __init__(
        self,
        provider: str,
        message: str,
        *,
        status_code: int | None = None,
        code: str = "PROVIDER_ERROR",
    ) -> None:
        self.provider = provider
        self.status_code = status_code
        prefix = f"[{provider}]" if status_code is None else f"[{provider}] HTTP {status_code}"
        super().__init__(f"{prefix}: {message}", code=code)


class ProviderTimeoutError(ProviderCallError):
    def __init__(self, provider: str, timeout_s: float) -> None:
        super().__init__(provider, f"Timeout after {timeout_s}s", code="PROVIDER_TIMEOUT")


class ContentBlockedError(ProviderCallError):
    def __init__(self, provider: str, reason: str) -> None:
        super().__init__(provider, f"Content blocked: {reason}", code="CONTENT_BLOCKED")
