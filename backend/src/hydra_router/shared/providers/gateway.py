"""Resilient generation gateway — the main entry-point for model calls.

Composes the model catalog, fallback resolver, health monitor and error
classifier into a single streaming call.  Callers hand in a message and a
preferred model; the gateway picks a (model, credential) pair, streams the
provider's chunks through, and moves the conversation to another model on
its own when a provider is unavailable or fails.

Asking for a race entry starts the entry's candidates on different providers
at once.  The first to produce a chunk is streamed; the others are cancelled.
If no entrant answers, routing continues through the entry's fallbacks.

Every stream ends with exactly one terminal metadata chunk
(``COMPLETED``, ``FAILED`` or ``CANCELLED``).
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import time
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Mapping, Sequence

import structlog

from hydra_router.domain.entities import ConversationHistory
from hydra_router.domain.enums import ChunkKind, ErrorCategory, ProviderId
from hydra_router.domain.exceptions import ProviderTimeoutError
from hydra_router.domain.value_objects import (
    Attachment,
    ChunkMetadata,
    GenerationRequest,
    StreamChunk,
    ToolCall,
    ToolDeclaration,
)
from hydra_router.ports.outbound import ProviderAdapter
from hydra_router.shared.observability.metrics import (
    GENERATIONS_TOTAL,
    PROVIDER_CALLS_TOTAL,
    PROVIDER_FAILURES,
    PROVIDER_LATENCY,
    RACE_WINS_TOTAL,
    REROUTES_TOTAL,
)
from hydra_router.shared.providers.catalog import (
    ModelCatalog,
    ModelDescriptor,
    PriorityChainResolver,
)
from hydra_router.shared.providers.classifier import (
    EXHAUSTED_RETRIES_MESSAGE,
    NO_RESOURCES_MESSAGE,
    ErrorClassifier,
    sanitized_message,
)
from hydra_router.shared.providers.health import HealthMonitor
from hydra_router.shared.providers.types import ClassifiedError, Credential, GenerationResult

logger = structlog.get_logger(__name__)

# Sentinels returned by a guarded read
_END = object()
_CANCELLED = object()
_UNREAD = object()


@dataclass(frozen=True, slots=True)
class _Turn:
    """Everything one request carries, whichever model ends up serving it."""

    message: str
    history: ConversationHistory | None
    tools: tuple[ToolDeclaration, ...]
    attachment: Attachment | None
    system_instruction: str | None
    cancel: asyncio.Event | None

    @property
    def cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.is_set()


@dataclass(slots=True)
class _Route:
    """Routing state shared by the race and the sequential attempts."""

    current: ModelDescriptor
    needs_vision: bool
    unavailable: set[str] = field(default_factory=set)
    attempts: int = 0
    failure: ClassifiedError | None = None


class ResilientGenerationGateway:
    """Autonomous routing layer over every configured provider adapter.

    Usage::

        gateway = ResilientGenerationGateway(
            catalog=catalog, monitor=monitor, adapters=adapters,
        )

        async for chunk in gateway.stream("hello", "gemini-2.0-flash-exp", history):
            ...
    """

    def __init__(
        self,
        *,
        catalog: ModelCatalog,
        monitor: HealthMonitor,
        adapters: Mapping[ProviderId, ProviderAdapter],
        classifier: ErrorClassifier | None = None,
        max_attempts: int = 4,
        provider_timeout_s: float = 60.0,
        temperature: float | None = 0.7,
        thinking_budget: int | None = 4096,
        default_system_instruction: str | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._catalog = catalog
        self._monitor = monitor
        self._adapters = dict(adapters)
        self._classifier = classifier or ErrorClassifier()
        self._resolver = PriorityChainResolver(catalog, monitor.is_healthy)
        self._max_attempts = max_attempts
        self._timeout = provider_timeout_s
        self._temperature = temperature
        self._thinking_budget = thinking_budget
        self._default_system = default_system_instruction
        self._clock = clock

    @property
    def catalog(self) -> ModelCatalog:
        return self._catalog

    @property
    def monitor(self) -> HealthMonitor:
        return self._monitor

    # ── Main entry-point ─────────────────────────────────────
    async def stream(
        self,
        message: str,
        preferred_model_id: str | None,
        history: ConversationHistory | None = None,
        tools: Sequence[ToolDeclaration] = (),
        *,
        attachment: Attachment | None = None,
        system_instruction: str | None = None,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Stream a response, rerouting across models on failure.

        Args:
            message: The new user message.
            preferred_model_id: Model to try first; unknown ids fall back to
                the catalog default.  A race entry races its candidates.
            history: Conversation window; extended only on success.
            tools: Declarations forwarded to tool-capable models.
            attachment: Optional image; restricts routing to vision models.
            system_instruction: Overrides the configured default.
            cancel: Set to stop the request at the next chunk boundary.
        """
        turn = _Turn(message, history, tuple(tools), attachment, system_instruction, cancel)
        route = _Route(self._catalog.resolve(preferred_model_id), needs_vision=attachment is not None)
        log = logger.bind(requested_model=preferred_model_id)

        if route.current.is_race:
            async with contextlib.aclosing(self._race(route, turn, log)) as race:
                async for chunk in race:
                    yield chunk
                    if chunk.is_terminal:
                        return

        while route.attempts < self._max_attempts:
            if turn.cancelled:
                yield self._terminal(ChunkKind.CANCELLED)
                return

            current = route.current
            credential = None
            if self._is_eligible(current, route.needs_vision):
                credential = self._monitor.acquire(current.provider)

            if credential is None:
                # Unusable before any call was made; not an attempt.
                route.unavailable.add(current.model_id)
                chunk = self._fail_over(route, current, f"{current.name} is unavailable.", None, log)
                yield chunk
                if chunk.is_terminal:
                    return
                continue

            route.attempts += 1
            attempt_log = log.bind(
                provider=current.provider.value,
                model=current.model_id,
                attempt=route.attempts,
                key=credential.masked,
            )
            chunks = self._open(current, credential, turn)
            async with contextlib.aclosing(self._drive(route, current, chunks, turn, attempt_log)) as attempt:
                async for chunk in attempt:
                    yield chunk
                    if chunk.is_terminal:
                        return

            if route.attempts >= self._max_attempts:
                break
            category = route.failure.category if route.failure else ErrorCategory.UNKNOWN
            chunk = self._fail_over(
                route, current, f"{current.name} failed ({category.value.lower()}).", category, log
            )
            yield chunk
            if chunk.is_terminal:
                return

        log.error("generation_retries_exhausted", attempts=route.attempts)
        yield self._terminal(
            ChunkKind.FAILED,
            message=EXHAUSTED_RETRIES_MESSAGE,
            category=ErrorCategory.UNKNOWN,
        )

    async def generate(
        self,
        message: str,
        preferred_model_id: str | None,
        history: ConversationHistory | None = None,
        tools: Sequence[ToolDeclaration] = (),
        *,
        attachment: Attachment | None = None,
        system_instruction: str | None = None,
        cancel: asyncio.Event | None = None,
    ) -> GenerationResult:
        """Drain :meth:`stream` into a single result."""
        result = GenerationResult()
        parts: list[str] = []
        async for chunk in self.stream(
            message,
            preferred_model_id,
            history,
            tools,
            attachment=attachment,
            system_instruction=system_instruction,
            cancel=cancel,
        ):
            if chunk.text:
                parts.append(chunk.text)
            if chunk.tool_call is not None:
                result.tool_calls.append(chunk.tool_call)
            if chunk.grounding:
                result.grounding.extend(chunk.grounding)
            if chunk.metadata is not None:
                if chunk.metadata.is_terminal:
                    result.metadata = chunk.metadata
                else:
                    result.reroutes.append(chunk.metadata)
        result.text = "".join(parts)
        return result

    # ── One attempt ──────────────────────────────────────────
    async def _drive(
        self,
        route: _Route,
        model: ModelDescriptor,
        chunks: AsyncIterator[StreamChunk],
        turn: _Turn,
        log: structlog.stdlib.BoundLogger,
        *,
        first: object = _UNREAD,
        started: float | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Stream one provider call to its end.

        Yields the provider's chunks and then ``COMPLETED`` or ``CANCELLED``.
        A failure ends the iterator without a terminal chunk and leaves the
        classified error on ``route.failure``.
        """
        started = self._clock() if started is None else started
        text_parts: list[str] = []
        tool_calls: list[ToolCall] = []
        cancelled = False

        try:
            async with contextlib.aclosing(chunks) as stream_:
                chunk = first
                while True:
                    if chunk is _UNREAD:
                        chunk = await self._next_chunk(stream_, turn.cancel, model.provider)
                    if chunk is _END:
                        break
                    if chunk is _CANCELLED:
                        cancelled = True
                        break
                    if chunk.text:
                        text_parts.append(chunk.text)
                    if chunk.tool_call is not None:
                        tool_calls.append(chunk.tool_call)
                    yield chunk
                    chunk = _UNREAD
        except asyncio.CancelledError:
            log.info("generation_task_cancelled")
            GENERATIONS_TOTAL.labels(outcome=ChunkKind.CANCELLED.value).inc()
            raise
        except Exception as exc:
            route.failure = self._record_failure(model, exc, log)
            return

        if cancelled:
            log.info("generation_cancelled")
            yield self._terminal(ChunkKind.CANCELLED)
            return

        latency_ms = (self._clock() - started) * 1000
        if turn.history is not None:
            turn.history.append_exchange(turn.message, _assistant_record(text_parts, tool_calls))
        self._monitor.report_success(model.provider)
        PROVIDER_CALLS_TOTAL.labels(provider=model.provider.value, status="success").inc()
        PROVIDER_LATENCY.labels(provider=model.provider.value).observe(latency_ms / 1000)
        log.info("generation_completed", latency_ms=float(f"{latency_ms:.1f}"))
        yield self._terminal(
            ChunkKind.COMPLETED,
            provider=model.provider.value,
            model=model.model_id,
            latency_ms=float(f"{latency_ms:.1f}"),
        )

    def _record_failure(
        self,
        model: ModelDescriptor,
        exc: BaseException,
        log: structlog.stdlib.BoundLogger,
    ) -> ClassifiedError:
        classified = self._classifier.classify(exc)
        self._monitor.report_failure(model.provider, classified)
        PROVIDER_CALLS_TOTAL.labels(provider=model.provider.value, status="error").inc()
        PROVIDER_FAILURES.labels(
            provider=model.provider.value, category=classified.category.value
        ).inc()
        log.warning(
            "provider_attempt_failed",
            model=model.model_id,
            category=classified.category.value,
            status_code=classified.status_code,
            error=f"{type(exc).__name__}: {exc}",
        )
        return classified

    # ── Race ─────────────────────────────────────────────────
    async def _race(
        self,
        route: _Route,
        turn: _Turn,
        log: structlog.stdlib.BoundLogger,
    ) -> AsyncIterator[StreamChunk]:
        """Start every healthy candidate of a race entry and keep the fastest.

        The whole race is one attempt.  Without a terminal chunk the race
        has handed over: ``route.current`` is the model to try next.
        """
        entry = route.current
        entrants = self._race_entrants(entry, route.needs_vision)
        if not entrants:
            log.warning("race_without_entrants", race=entry.model_id)
            yield self._fail_over(route, entry, f"{entry.name} has no healthy entrants.", None, log)
            return

        route.attempts += 1
        race_log = log.bind(race=entry.model_id, attempt=route.attempts)
        started = self._clock()
        streams: dict[asyncio.Future[object], tuple[ModelDescriptor, AsyncIterator[StreamChunk]]] = {}
        for model, credential in entrants:
            chunks = self._open(model, credential, turn)
            streams[asyncio.ensure_future(_pull(chunks))] = (model, chunks)
        race_log.info("race_started", entrants=[m.model_id for m, _ in entrants])

        winner = None
        try:
            winner = await self._first_to_answer(route, streams, turn.cancel, race_log)
        finally:
            for task, (_, chunks) in streams.items():
                if task is not winner:
                    await _discard(task)
                    await _close(chunks)

        if winner is None:
            if turn.cancelled:
                race_log.info("generation_cancelled")
                yield self._terminal(ChunkKind.CANCELLED)
                return
            race_log.warning("race_lost_by_all", entrants=len(streams))
            if route.attempts >= self._max_attempts:
                return
            category = route.failure.category if route.failure else ErrorCategory.UNKNOWN
            yield self._fail_over(
                route, entry, f"{entry.name} found no responsive provider.", category, log
            )
            return

        model, chunks = streams[winner]
        RACE_WINS_TOTAL.labels(provider=model.provider.value).inc()
        race_log.info("race_won", provider=model.provider.value, model=model.model_id)
        route.current = model
        winner_log = race_log.bind(provider=model.provider.value, model=model.model_id)
        async with contextlib.aclosing(
            self._drive(route, model, chunks, turn, winner_log, first=winner.result(), started=started)
        ) as attempt:
            async for chunk in attempt:
                yield chunk
                if chunk.is_terminal:
                    return

        if route.attempts >= self._max_attempts:
            return
        category = route.failure.category if route.failure else ErrorCategory.UNKNOWN
        yield self._fail_over(
            route, model, f"{model.name} failed ({category.value.lower()}).", category, log
        )

    def _race_entrants(
        self, entry: ModelDescriptor, needs_vision: bool
    ) -> list[tuple[ModelDescriptor, Credential]]:
        # One entrant per provider so no provider races itself.
        entrants: list[tuple[ModelDescriptor, Credential]] = []
        taken: set[ProviderId] = set()
        for model_id in entry.race_candidates:
            model = self._catalog.get(model_id)
            if model is None or model.provider in taken or not self._is_eligible(model, needs_vision):
                continue
            credential = self._monitor.acquire(model.provider)
            if credential is None:
                continue
            taken.add(model.provider)
            entrants.append((model, credential))
        return entrants

    async def _first_to_answer(
        self,
        route: _Route,
        streams: Mapping[asyncio.Future[object], tuple[ModelDescriptor, AsyncIterator[StreamChunk]]],
        cancel: asyncio.Event | None,
        log: structlog.stdlib.BoundLogger,
    ) -> asyncio.Future[object] | None:
        """The first read to succeed, or ``None`` once all failed or cancel is set."""
        pending = set(streams)
        stopper = asyncio.ensure_future(cancel.wait()) if cancel is not None else None
        try:
            while pending:
                waiters = pending | {stopper} if stopper is not None else set(pending)
                done, _ = await asyncio.wait(
                    waiters, timeout=self._timeout, return_when=asyncio.FIRST_COMPLETED
                )
                if stopper is not None and stopper in done:
                    return None
                if not done:
                    for task in pending:
                        model, _ = streams[task]
                        timeout = ProviderTimeoutError(model.provider.value, self._timeout)
                        route.failure = self._record_failure(model, timeout, log)
                    return None

                answered = None
                # Entrant order breaks ties between reads that land together.
                for task in streams:
                    if task not in done:
                        continue
                    pending.discard(task)
                    exc = task.exception()
                    if exc is not None:
                        route.failure = self._record_failure(streams[task][0], exc, log)
                    elif answered is None:
                        answered = task
                if answered is not None:
                    return answered
            return None
        finally:
            if stopper is not None:
                await _discard(stopper)

    # ── Routing helpers ──────────────────────────────────────
    def _is_eligible(self, model: ModelDescriptor, needs_vision: bool) -> bool:
        if needs_vision and not model.supports_vision:
            return False
        return model.provider in self._adapters

    def _fail_over(
        self,
        route: _Route,
        source: ModelDescriptor,
        reason: str,
        category: ErrorCategory | None,
        log: structlog.stdlib.BoundLogger,
    ) -> StreamChunk:
        """Move ``route`` off ``source``: a REROUTE notice, or FAILED if nothing is left.

        ``category`` is ``None`` when ``source`` was never called.
        """
        target = self._reroute_target(source, route.unavailable, route.needs_vision)
        if target is None:
            if category is None:
                log.error("no_provider_available", model=source.model_id)
                return self._terminal(
                    ChunkKind.FAILED,
                    message=NO_RESOURCES_MESSAGE,
                    category=ErrorCategory.UNKNOWN,
                )
            return self._terminal(
                ChunkKind.FAILED,
                message=sanitized_message(category),
                category=category,
            )
        route.current = target
        return self._reroute(source, target, reason, category=category)

    def _reroute_target(
        self,
        current: ModelDescriptor,
        unavailable: set[str],
        needs_vision: bool,
    ) -> ModelDescriptor | None:
        candidate = self._resolver.next_candidate(
            current, exclude=unavailable, require_vision=needs_vision
        )
        if candidate is not None:
            return candidate

        revived = self._monitor.emergency_revive(self._catalog.providers())
        if revived is None:
            return None
        # Models of the revived provider become routable again.
        unavailable.difference_update(m.model_id for m in self._catalog.for_provider(revived))
        return self._resolver.next_candidate(
            current, exclude=unavailable, require_vision=needs_vision
        )

    def _open(
        self, model: ModelDescriptor, credential: Credential, turn: _Turn
    ) -> AsyncIterator[StreamChunk]:
        request = GenerationRequest(
            model_id=model.model_id,
            message=turn.message,
            history=turn.history.snapshot() if turn.history is not None else (),
            tools=turn.tools if model.supports_tools else (),
            attachment=turn.attachment,
            system_instruction=turn.system_instruction or self._default_system,
            temperature=self._temperature,
            thinking_budget=self._thinking_budget if model.supports_thinking_budget else None,
        )
        return self._adapters[model.provider].stream(request, credential.value)

    # ── Guarded reads ────────────────────────────────────────
    async def _next_chunk(
        self,
        chunks: AsyncIterator[StreamChunk],
        cancel: asyncio.Event | None,
        provider: ProviderId,
    ) -> object:
        """Next chunk, racing the cancel event and the per-read timeout."""
        read = asyncio.ensure_future(_pull(chunks))
        waiters: set[asyncio.Future[object]] = {read}
        stopper = None
        if cancel is not None:
            stopper = asyncio.ensure_future(cancel.wait())
            waiters.add(stopper)

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=self._timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in waiters:
                await _discard(task)

        if stopper is not None and stopper in done:
            return _CANCELLED
        if read in done:
            return read.result()
        raise ProviderTimeoutError(provider.value, self._timeout)

    # ── Chunk factories ──────────────────────────────────────
    def _reroute(
        self,
        source: ModelDescriptor,
        target: ModelDescriptor,
        reason: str,
        *,
        category: ErrorCategory | None = None,
    ) -> StreamChunk:
        REROUTES_TOTAL.labels(
            from_provider=source.provider.value, to_provider=target.provider.value
        ).inc()
        logger.info(
            "generation_rerouted",
            from_model=source.model_id,
            to_model=target.model_id,
            category=category.value if category else None,
        )
        return StreamChunk(
            metadata=ChunkMetadata(
                kind=ChunkKind.REROUTE,
                notice=f"{reason} Switching to {target.name}.",
                category=category,
                from_model=source.model_id,
                to_model=target.model_id,
            )
        )

    @staticmethod
    def _terminal(kind: ChunkKind, **fields: object) -> StreamChunk:
        GENERATIONS_TOTAL.labels(outcome=kind.value).inc()
        return StreamChunk(metadata=ChunkMetadata(kind=kind, **fields))  # type: ignore[arg-type]


def _assistant_record(text_parts: list[str], tool_calls: list[ToolCall]) -> str:
    """History text for an answer; a tool-only answer names the calls it made."""
    text = "".join(text_parts)
    if text or not tool_calls:
        return text
    return "\n".join(
        f"Called tool `{call.name}` with {json.dumps(call.arguments, default=str)}"
        for call in tool_calls
    )


async def _pull(chunks: AsyncIterator[StreamChunk]) -> object:
    try:
        return await chunks.__anext__()
    except StopAsyncIteration:
        return _END


async def _close(chunks: AsyncIterator[StreamChunk]) -> None:
    aclose = getattr(chunks, "aclose", None)
    if aclose is not None:
        await aclose()


async def _discard(task: asyncio.Future[object]) -> None:
    """Cancel ``task`` if pending and wait for it to unwind."""
    if not task.done():
        task.cancel()
        await asyncio.wait({task})
    if not task.cancelled():
        # Mark the exception as retrieved; the caller reads ``result()`` itself.
        task.exception()
