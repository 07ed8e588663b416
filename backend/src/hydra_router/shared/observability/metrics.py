"""Prometheus metrics for the generation router."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram


# ── HTTP metrics ─────────────────────────────────────────────
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

HTTP_REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Generation metrics ───────────────────────────────────────
GENERATIONS_TOTAL = Counter(
    "generations_total",
    "Generation requests by terminal outcome",
    ["outcome"],  # COMPLETED / FAILED / CANCELLED
)

PROVIDER_CALLS_TOTAL = Counter(
    "provider_calls_total",
    "Upstream provider calls",
    ["provider", "status"],
)

PROVIDER_FAILURES = Counter(
    "provider_failures_total",
    "Upstream failures by classified category",
    ["provider", "category"],
)

PROVIDER_LATENCY = Histogram(
    "provider_latency_seconds",
    "Latency of successful provider streams",
    ["provider"],
    buckets=(0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0),
)

REROUTES_TOTAL = Counter(
    "reroutes_total",
    "Model migrations during a request",
    ["from_provider", "to_provider"],
)

RACE_WINS_TOTAL = Counter(
    "race_wins_total",
    "Races decided, by the provider that answered first",
    ["provider"],
)

# ── Health metrics ───────────────────────────────────────────
COOLDOWNS_TOTAL = Counter(
    "provider_cooldowns_total",
    "Cooldowns applied to providers",
    ["provider", "reason"],
)

PROVIDER_CREDENTIALS = Gauge(
    "provider_credentials",
    "Credentials currently loaded per provider",
    ["provider"],
)
