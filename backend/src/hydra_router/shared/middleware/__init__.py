"""FastAPI middleware stack — request ID, access logging, metrics.

Generation endpoints answer with server-sent event streams whose body outlives
``call_next``; access logs and latency metrics for those are recorded when the
stream closes, not when the headers are sent.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from hydra_router.shared.observability.metrics import HTTP_REQUEST_DURATION, HTTP_REQUESTS_TOTAL

logger = structlog.get_logger(__name__)

_EVENT_STREAM = "text/event-stream"

CallNext = Callable[[Request], Awaitable[Response]]


def _is_event_stream(response: Response) -> bool:
    return response.headers.get("content-type", "").startswith(_EVENT_STREAM)


def _route_label(request: Request) -> str:
    # Template path keeps session ids out of the label set
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


def _on_stream_close(response: Response, callback: Callable[[int], None]) -> None:
    """Wrap the streaming body so ``callback(events)`` runs once it ends."""
    body: AsyncIterator[bytes] = response.body_iterator  # type: ignore[attr-defined]

    async def wrapped() -> AsyncIterator[bytes]:
        events = 0
        try:
            async for part in body:
                events += part.count(b"\n\n")
                yield part
        finally:
            callback(events)

    response.body_iterator = wrapped()  # type: ignore[attr-defined]


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Propagates X-Request-ID and binds it to the structlog context."""

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.request_id = request_id
        structlog.contextvars.bind_contextvars(request_id=request_id)
        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")
        response.headers["X-Request-ID"] = request_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """One access-log line per request; event streams log on close."""

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        start = time.monotonic()
        response = await call_next(request)
        log = logger.bind(
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            client=request.client.host if request.client else "unknown",
            request_id=getattr(request.state, "request_id", None),
        )

        if _is_event_stream(response):
            _on_stream_close(
                response,
                lambda events: log.info(
                    "http_stream_closed",
                    events=events,
                    duration_ms=round((time.monotonic() - start) * 1000, 2),
                ),
            )
        else:
            log.info("http_request", duration_ms=round((time.monotonic() - start) * 1000, 2))
        return response


class MetricsMiddleware(BaseHTTPMiddleware):
    """Prometheus request counters and latency, keyed by route template."""

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        start = time.monotonic()
        response = await call_next(request)
        endpoint = _route_label(request)

        def record(_events: int = 0) -> None:
            HTTP_REQUESTS_TOTAL.labels(
                method=request.method,
                endpoint=endpoint,
                status_code=response.status_code,
            ).inc()
            HTTP_REQUEST_DURATION.labels(method=request.method, endpoint=endpoint).observe(
                time.monotonic() - start
            )

        if _is_event_stream(response):
            _on_stream_close(response, record)
        else:
            record()
        return response
