"""Provider health monitor — per-provider breaker with penalty windows.

State machine (per provider):
    ACTIVE   → (quota exhausted)                  → COOLDOWN (kill-switch)
    ACTIVE   → (rate limited)                     → COOLDOWN (short)
    ACTIVE   → (N consecutive transient failures) → COOLDOWN (transient)
    COOLDOWN → (clock passes cooldown_until)      → ACTIVE

Expiry is evaluated lazily on every read; no background timers run.
"""

from __future__ import annotations

import math
import threading
import time
from typing import Callable, Iterable

import structlog

from hydra_router.domain.enums import BreakerState, ErrorCategory, HealthStatus, ProviderId
from hydra_router.shared.observability.metrics import COOLDOWNS_TOTAL
from hydra_router.shared.providers.credentials import CredentialPool
from hydra_router.shared.providers.types import (
    ClassifiedError,
    Credential,
    HealthThresholds,
    ProviderHealth,
    ProviderHealthSnapshot,
)

logger = structlog.get_logger(__name__)

Clock = Callable[[], float]


class HealthMonitor:
    """Thread-safe availability tracker for every provider."""

    def __init__(
        self,
        pool: CredentialPool,
        *,
        thresholds: HealthThresholds | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self._pool = pool
        self._thresholds = thresholds or HealthThresholds()
        self._clock = clock
        self._lock = threading.Lock()
        self._health: dict[ProviderId, ProviderHealth] = {
            p: ProviderHealth(provider=p) for p in ProviderId
        }

    @property
    def thresholds(self) -> HealthThresholds:
        return self._thresholds

    # ── Gate ─────────────────────────────────────────────────
    def is_healthy(self, provider: ProviderId) -> bool:
        if self._pool.credential_count(provider) < 1:
            return False
        with self._lock:
            return self._refresh(self._health[provider]) is BreakerState.ACTIVE

    def acquire(self, provider: ProviderId) -> Credential | None:
        """Check out a credential, or ``None`` if the provider is unusable."""
        if not self.is_healthy(provider):
            return None
        return self._pool.checkout(provider)

    # ── Reporting ────────────────────────────────────────────
    def report_success(self, provider: ProviderId) -> None:
        with self._lock:
            self._health[provider].consecutive_failures = 0

    def report_failure(self, provider: ProviderId, error: ClassifiedError) -> None:
        """Apply the penalty for a classified failure."""
        t = self._thresholds
        with self._lock:
            health = self._health[provider]
            health.last_error_category = error.category

            if error.category is ErrorCategory.CONTENT_BLOCKED:
                return
            if error.category is ErrorCategory.QUOTA_EXHAUSTED:
                self._trip(health, t.kill_switch_s, error.category)
                return
            if error.category is ErrorCategory.RATE_LIMITED:
                self._trip(health, t.rate_limit_cooldown_s, error.category)
                return

            health.consecutive_failures += 1
            if health.consecutive_failures >= t.failure_threshold:
                self._trip(health, t.transient_cooldown_s, error.category)
            else:
                logger.info(
                    "provider_failure_recorded",
                    provider=provider.value,
                    category=error.category.value,
                    failures=health.consecutive_failures,
                )

    # ── Overrides ────────────────────────────────────────────
    def emergency_revive(self, providers: Iterable[ProviderId]) -> ProviderId | None:
        """Force the provider closest to recovery back to ACTIVE.

        Only providers with credentials whose remaining cooldown is below the
        revive window are eligible.  A window of 0 disables revival.
        """
        window = self._thresholds.emergency_revive_s
        if window <= 0:
            return None
        candidates = [p for p in providers if self._pool.credential_count(p) > 0]

        with self._lock:
            now = self._clock()
            cooling = [
                self._health[p]
                for p in candidates
                if self._refresh(self._health[p]) is BreakerState.COOLDOWN
            ]
            if not cooling:
                return None
            soonest = min(cooling, key=lambda h: h.cooldown_until)
            remaining = soonest.cooldown_until - now
            if remaining >= window:
                return None
            self._activate(soonest)

        logger.warning(
            "provider_emergency_revived",
            provider=soonest.provider.value,
            remaining_s=round(remaining, 2),
        )
        return soonest.provider

    def reset(self, provider: ProviderId) -> None:
        """Admin override — clear cooldown and failure counters."""
        with self._lock:
            health = self._health[provider]
            self._activate(health)
            health.last_error_category = None
        logger.info("provider_admin_reset", provider=provider.value)

    # ── Observation ──────────────────────────────────────────
    def status(self, provider: ProviderId) -> HealthStatus:
        if self._pool.credential_count(provider) < 1:
            return HealthStatus.OFFLINE
        with self._lock:
            state = self._refresh(self._health[provider])
        return HealthStatus.HEALTHY if state is BreakerState.ACTIVE else HealthStatus.COOLDOWN

    def snapshot(self) -> list[ProviderHealthSnapshot]:
        counts = {p: self._pool.credential_count(p) for p in ProviderId}
        result: list[ProviderHealthSnapshot] = []
        with self._lock:
            now = self._clock()
            for provider in ProviderId:
                health = self._health[provider]
                state = self._refresh(health)
                if counts[provider] < 1:
                    status = HealthStatus.OFFLINE
                elif state is BreakerState.COOLDOWN:
                    status = HealthStatus.COOLDOWN
                else:
                    status = HealthStatus.HEALTHY
                remaining = max(0.0, health.cooldown_until - now)
                result.append(
                    ProviderHealthSnapshot(
                        provider_id=provider,
                        status=status,
                        credential_count=counts[provider],
                        cooldown_remaining_minutes=(
                            math.ceil(remaining / 60) if state is BreakerState.COOLDOWN else 0
                        ),
                        consecutive_failures=health.consecutive_failures,
                        last_error_category=health.last_error_category,
                    )
                )
        return result

    def cooldown_until(self, provider: ProviderId) -> float:
        with self._lock:
            return self._health[provider].cooldown_until

    # ── Internals (caller holds lock) ────────────────────────
    def _refresh(self, health: ProviderHealth) -> BreakerState:
        if health.state is BreakerState.COOLDOWN and self._clock() >= health.cooldown_until:
            health.state = BreakerState.ACTIVE
            health.cooldown_reason = None
            logger.info("provider_cooldown_expired", provider=health.provider.value)
        return health.state

    def _trip(self, health: ProviderHealth, seconds: float, reason: ErrorCategory) -> None:
        # Never shorten an existing, longer penalty.
        until = max(health.cooldown_until, self._clock() + seconds)
        health.state = BreakerState.COOLDOWN
        health.cooldown_until = until
        health.cooldown_reason = reason
        health.consecutive_failures = 0
        COOLDOWNS_TOTAL.labels(provider=health.provider.value, reason=reason.value).inc()
        logger.warning(
            "provider_cooldown_started",
            provider=health.provider.value,
            reason=reason.value,
            cooldown_s=seconds,
        )

    def _activate(self, health: ProviderHealth) -> None:
        health.state = BreakerState.ACTIVE
        health.cooldown_until = 0.0
        health.cooldown_reason = None
        health.consecutive_failures = 0
