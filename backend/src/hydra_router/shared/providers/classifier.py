"""Map raw provider failures onto semantic error categories.

Vendors report the same condition in many shapes (HTTP status, SDK error
names, free-text bodies), so classification looks at the status code, the
exception type and the lower-cased message together.  Checks run from most
to least severe: a quota message that also mentions "429" is a quota problem.

Only an explicit exhaustion signal (a zero limit, `insufficient_quota`, an
empty credit balance) counts as QUOTA_EXHAUSTED.  Gemini words its ordinary
per-minute throttle as "exceeded your current quota ... billing details ...
limit: 15"; that is a rate limit and clears in seconds.
"""

from __future__ import annotations

import re

import httpx

from hydra_router.domain.enums import ErrorCategory
from hydra_router.domain.exceptions import ContentBlockedError, ProviderTimeoutError
from hydra_router.shared.providers.types import ClassifiedError

_QUOTA_PATTERNS = (
    re.compile(r"limit:\s*0\b"),
    re.compile(r"insufficient[_ ]quota"),
    re.compile(r"credit balance"),
)
_RATE_LIMIT_PATTERNS = (
    re.compile(r"\b429\b"),
    re.compile(r"resource[_ ]exhausted"),
    re.compile(r"rate[_ ]?limit"),
    re.compile(r"too many requests"),
    re.compile(r"quota"),
)
_AUTH_PATTERNS = (
    re.compile(r"invalid[_ ]api[_ ]key"),
    re.compile(r"api key not valid"),
    re.compile(r"unauthori[sz]ed"),
    re.compile(r"permission[_ ]denied"),
    re.compile(r"incorrect api key"),
)
_CONTENT_PATTERNS = (
    re.compile(r"safety"),
    re.compile(r"content[_ ]filter"),
    re.compile(r"\bblocked\b"),
)
_NETWORK_PATTERNS = (
    re.compile(r"fetch failed"),
    re.compile(r"timed? ?out"),
    re.compile(r"connection (reset|refused|error)"),
    re.compile(r"unavailable"),
    re.compile(r"overloaded"),
)

_USER_MESSAGES: dict[ErrorCategory, str] = {
    ErrorCategory.QUOTA_EXHAUSTED: "The selected model's quota is used up. Trying again later or switching models may help.",
    ErrorCategory.RATE_LIMITED: "The model is receiving too many requests right now. Please try again shortly.",
    ErrorCategory.NETWORK_UNAVAILABLE: "The model service could not be reached. Please check your connection and try again.",
    ErrorCategory.AUTH_REJECTED: "The model service rejected the configured credentials.",
    ErrorCategory.CONTENT_BLOCKED: "The request was blocked by the provider's content policy.",
    ErrorCategory.UNKNOWN: "Something went wrong while generating a response.",
}

NO_RESOURCES_MESSAGE = "No model is currently available. All providers are cooling down or unconfigured."
EXHAUSTED_RETRIES_MESSAGE = "Every attempt to generate a response failed. Please try again in a moment."


def sanitized_message(category: ErrorCategory) -> str:
    """Fixed, non-technical message for end users."""
    return _USER_MESSAGES[category]


def _matches(patterns: tuple[re.Pattern[str], ...], text: str) -> bool:
    return any(p.search(text) for p in patterns)


class ErrorClassifier:
    """Stateless classifier; safe to share."""

    def classify(self, exc: BaseException) -> ClassifiedError:
        status = _status_code(exc)
        text = f"{type(exc).__name__} {exc}".lower()
        detail = str(exc)[:500]

        if _matches(_QUOTA_PATTERNS, text):
            category = ErrorCategory.QUOTA_EXHAUSTED
        elif status == 429 or _matches(_RATE_LIMIT_PATTERNS, text):
            category = ErrorCategory.RATE_LIMITED
        elif status in (401, 403) or _matches(_AUTH_PATTERNS, text):
            category = ErrorCategory.AUTH_REJECTED
        elif isinstance(exc, ContentBlockedError) or _matches(_CONTENT_PATTERNS, text):
            category = ErrorCategory.CONTENT_BLOCKED
        elif (
            isinstance(exc, (httpx.TransportError, ProviderTimeoutError, TimeoutError))
            or (status is not None and status >= 500)
            or _matches(_NETWORK_PATTERNS, text)
        ):
            category = ErrorCategory.NETWORK_UNAVAILABLE
        else:
            category = ErrorCategory.UNKNOWN

        return ClassifiedError(category=category, status_code=status, detail=detail)


def _status_code(exc: BaseException) -> int | None:
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    return None
