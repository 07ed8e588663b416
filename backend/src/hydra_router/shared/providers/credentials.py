"""Credential pool — per-provider API key rotation.

Credentials are discovered from the environment (and the ``.env`` file):
any variable whose name contains a provider's canonical name holds one key
or a comma-separated list of keys.  ``HYDRA_``-prefixed variables are
service settings and never treated as credentials.
"""

from __future__ import annotations

import os
import random
import threading
from typing import Callable, Iterable, Mapping, Sequence

import structlog
from dotenv import dotenv_values

from hydra_router.domain.enums import ProviderId, SelectionPolicy
from hydra_router.shared.providers.types import Credential

logger = structlog.get_logger(__name__)

CredentialSource = Callable[[], Mapping[str, str]]


def split_keys(raw: str | None) -> list[str]:
    """Split a comma-separated key list, dropping blanks."""
    if not raw:
        return []
    return [k.strip() for k in raw.split(",") if k.strip()]


def scan_credentials(
    environ: Mapping[str, str | None],
    *,
    prefix: str = "HYDRA_",
) -> dict[ProviderId, list[str]]:
    """Group credential values by provider.

    Keys are matched on the upper-cased variable name; the longest provider
    name wins so ``OPENROUTER_API_KEY`` is not mistaken for an OpenAI key.
    """
    found: dict[ProviderId, list[str]] = {p: [] for p in ProviderId}
    by_length = sorted(ProviderId, key=lambda p: len(p.value), reverse=True)

    for name, value in environ.items():
        upper = name.upper()
        if prefix and upper.startswith(prefix.upper()):
            continue
        provider = next((p for p in by_length if p.value in upper), None)
        if provider is None:
            continue
        for key in split_keys(value):
            if key not in found[provider]:
                found[provider].append(key)
    return found


def environment_source(env_file: str | None = ".env") -> CredentialSource:
    """Build a source that merges the ``.env`` file with ``os.environ``.

    Process environment wins over the file.
    """

    def _load() -> Mapping[str, str]:
        merged: dict[str, str] = {}
        if env_file and os.path.exists(env_file):
            merged.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
        merged.update(os.environ)
        return merged

    return _load


class CredentialPool:
    """Thread-safe registry of credentials for every provider."""

    def __init__(
        self,
        source: CredentialSource,
        *,
        policy: SelectionPolicy = SelectionPolicy.ROUND_ROBIN,
        prefix: str = "HYDRA_",
        rng: random.Random | None = None,
    ) -> None:
        self._source = source
        self._policy = policy
        self._prefix = prefix
        self._rng = rng or random.Random()
        self._lock = threading.Lock()
        self._pool: dict[ProviderId, list[Credential]] = {p: [] for p in ProviderId}
        self._cursors: dict[ProviderId, int] = {p: 0 for p in ProviderId}

    @property
    def policy(self) -> SelectionPolicy:
        return self._policy

    # ── Loading ──────────────────────────────────────────────
    def reload(self, extra: Mapping[ProviderId, Iterable[str]] | None = None) -> dict[ProviderId, int]:
        """Rescan the source and swap every provider's pool in one step.

        ``extra`` holds operator override keys; they are placed ahead of the
        scanned keys.  Returns the credential count per provider.
        """
        overrides = {ProviderId(p): list(keys) for p, keys in (extra or {}).items()}
        scanned = scan_credentials(self._source(), prefix=self._prefix)
        fresh: dict[ProviderId, list[Credential]] = {}
        for provider in ProviderId:
            values: list[str] = []
            for key in [*overrides.get(provider, ()), *scanned[provider]]:
                key = key.strip()
                if key and key not in values:
                    values.append(key)
            fresh[provider] = [Credential(value=v, provider=provider) for v in values]

        with self._lock:
            self._pool = fresh
            self._cursors = {p: 0 for p in ProviderId}

        counts = {p: len(creds) for p, creds in fresh.items()}
        logger.info(
            "credential_pool_reloaded",
            counts={p.value: n for p, n in counts.items() if n},
            overrides=sum(len(v) for v in overrides.values()),
        )
        return counts

    # ── Selection ────────────────────────────────────────────
    def checkout(self, provider: ProviderId) -> Credential | None:
        """Pick a credential for ``provider`` and bump its usage counter."""
        with self._lock:
            creds = self._pool.get(provider) or []
            if not creds:
                return None

            if self._policy is SelectionPolicy.RANDOM:
                chosen = self._pick_random(creds)
            else:
                chosen = self._pick_round_robin(provider, creds)

            chosen.usage_count += 1
            return chosen

    def _pick_round_robin(self, provider: ProviderId, creds: Sequence[Credential]) -> Credential:
        """Least-used credential, ties broken in cursor order (caller holds lock)."""
        count = len(creds)
        start = self._cursors[provider] % count
        order = [(start + i) % count for i in range(count)]
        idx = min(order, key=lambda i: creds[i].usage_count)
        self._cursors[provider] = (idx + 1) % count
        return creds[idx]

    def _pick_random(self, creds: Sequence[Credential]) -> Credential:
        lowest = min(c.usage_count for c in creds)
        return self._rng.choice([c for c in creds if c.usage_count == lowest])

    # ── Introspection ────────────────────────────────────────
    def credential_count(self, provider: ProviderId) -> int:
        with self._lock:
            return len(self._pool.get(provider) or [])

    def providers(self) -> list[ProviderId]:
        """Providers with at least one credential."""
        with self._lock:
            return [p for p, creds in self._pool.items() if creds]

    def usage(self, provider: ProviderId) -> list[int]:
        with self._lock:
            return [c.usage_count for c in self._pool.get(provider) or []]
