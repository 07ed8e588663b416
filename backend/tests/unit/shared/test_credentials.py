"""Tests for credential discovery and the per-provider key pool."""

from __future__ import annotations

import random

import pytest

from hydra_router.domain.enums import ProviderId, SelectionPolicy
from hydra_router.shared.providers.credentials import (
    CredentialPool,
    environment_source,
    scan_credentials,
    split_keys,
)


# ═══════════════════════════════════════════════════════════════
#  Discovery
# ═══════════════════════════════════════════════════════════════
class TestScanCredentials:
    def test_split_keys_strips_and_drops_blanks(self) -> None:
        assert split_keys(" a , b,,c ") == ["a", "b", "c"]
        assert split_keys("") == []
        assert split_keys(None) == []

    def test_any_name_containing_provider_counts(self) -> None:
        found = scan_credentials(
            {
                "GEMINI_API_KEY": "g1",
                "MY_GEMINI_BACKUP": "g2",
                "groq_key": "q1",
                "UNRELATED": "x",
            }
        )
        assert found[ProviderId.GEMINI] == ["g1", "g2"]
        assert found[ProviderId.GROQ] == ["q1"]
        assert all(found[p] == [] for p in (ProviderId.OPENAI, ProviderId.MISTRAL))

    def test_comma_separated_values_and_dedupe(self) -> None:
        found = scan_credentials({"OPENAI_API_KEY": "a, b", "OPENAI_KEYS": "b,c"})
        assert found[ProviderId.OPENAI] == ["a", "b", "c"]

    def test_openrouter_not_mistaken_for_openai(self) -> None:
        found = scan_credentials({"OPENROUTER_API_KEY": "or-1"})
        assert found[ProviderId.OPENROUTER] == ["or-1"]
        assert found[ProviderId.OPENAI] == []

    def test_settings_prefix_is_ignored(self) -> None:
        found = scan_credentials({"HYDRA_GEMINI_TIMEOUT": "30", "GEMINI_API_KEY": "g1"})
        assert found[ProviderId.GEMINI] == ["g1"]

    def test_environment_source_merges_dotenv(self, tmp_path, monkeypatch) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text("GROQ_API_KEY=from-file\nMISTRAL_API_KEY=m-file\n")
        monkeypatch.setenv("GROQ_API_KEY", "from-env")
        monkeypatch.delenv("MISTRAL_API_KEY", raising=False)

        merged = environment_source(str(env_file))()
        assert merged["GROQ_API_KEY"] == "from-env"
        assert merged["MISTRAL_API_KEY"] == "m-file"


# ═══════════════════════════════════════════════════════════════
#  CredentialPool
# ═══════════════════════════════════════════════════════════════
def _pool(env: dict[str, str], **kwargs) -> CredentialPool:
    pool = CredentialPool(lambda: env, **kwargs)
    pool.reload()
    return pool


class TestCredentialPool:
    def test_empty_provider_yields_none(self) -> None:
        pool = _pool({})
        assert pool.checkout(ProviderId.GEMINI) is None
        assert pool.credential_count(ProviderId.GEMINI) == 0
        assert pool.providers() == []

    def test_round_robin_rotation(self) -> None:
        pool = _pool({"GEMINI_API_KEY": "k1,k2,k3"})
        picked = [pool.checkout(ProviderId.GEMINI).value for _ in range(6)]
        assert picked == ["k1", "k2", "k3", "k1", "k2", "k3"]

    def test_checkout_increments_usage(self) -> None:
        pool = _pool({"GEMINI_API_KEY": "k1,k2"})
        pool.checkout(ProviderId.GEMINI)
        pool.checkout(ProviderId.GEMINI)
        pool.checkout(ProviderId.GEMINI)
        assert pool.usage(ProviderId.GEMINI) == [2, 1]

    def test_random_policy_prefers_least_used(self) -> None:
        pool = _pool(
            {"GROQ_API_KEY": "a,b,c"},
            policy=SelectionPolicy.RANDOM,
            rng=random.Random(7),
        )
        first_round = {pool.checkout(ProviderId.GROQ).value for _ in range(3)}
        assert first_round == {"a", "b", "c"}
        assert pool.usage(ProviderId.GROQ) == [1, 1, 1]

    def test_overrides_come_first(self) -> None:
        pool = CredentialPool(lambda: {"OPENAI_API_KEY": "env-key"})
        counts = pool.reload({ProviderId.OPENAI: ["user-key", "env-key"]})
        assert counts[ProviderId.OPENAI] == 2
        assert pool.checkout(ProviderId.OPENAI).value == "user-key"

    def test_reload_replaces_pool(self) -> None:
        env = {"DEEPSEEK_API_KEY": "d1,d2"}
        pool = _pool(env)
        pool.checkout(ProviderId.DEEPSEEK)

        env["DEEPSEEK_API_KEY"] = "d3"
        pool.reload()
        assert pool.credential_count(ProviderId.DEEPSEEK) == 1
        assert pool.usage(ProviderId.DEEPSEEK) == [0]
        assert pool.checkout(ProviderId.DEEPSEEK).value == "d3"

    def test_masked_key(self) -> None:
        pool = _pool({"MISTRAL_API_KEY": "sk-abcdef1234"})
        assert pool.checkout(ProviderId.MISTRAL).masked == "...1234"

    @pytest.mark.parametrize("provider", list(ProviderId))
    def test_every_provider_is_discoverable(self, provider: ProviderId) -> None:
        pool = _pool({f"{provider.value}_API_KEY": "k"})
        assert pool.providers() == [provider]
