"""Model catalog and priority fallback chains.

Every model declares an ordered list of fallbacks.  When a model cannot be
served, the resolver walks that list first and only then scans the whole
catalog in declaration order.

A race entry (``auto-best``) is not a model of its own: it names candidate
models that the gateway starts concurrently, keeping whichever answers first.
The resolver never routes to a race entry.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable

import structlog

from hydra_router.domain.enums import ProviderId

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ModelDescriptor:
    """Static description of one servable model.

    Attributes:
        model_id:                 Identifier sent to the provider.
        provider:                 Vendor hosting the model.
        name:                     Human-readable label.
        supports_tools:           Whether tool declarations may be forwarded.
        supports_thinking_budget: Whether a reasoning budget may be requested.
        supports_vision:          Whether image attachments are accepted.
        fallbacks:                Ordered model ids to try when this one fails.
        race_candidates:          Models started together for a race entry;
                                  empty for ordinary models.
    """

    model_id: str
    provider: ProviderId
    name: str
    supports_tools: bool = True
    supports_thinking_budget: bool = False
    supports_vision: bool = False
    fallbacks: tuple[str, ...] = ()
    race_candidates: tuple[str, ...] = ()

    @property
    def is_race(self) -> bool:
        return bool(self.race_candidates)


GEMINI_FLASH = "gemini-2.0-flash-exp"
GEMINI_THINKING = "gemini-2.0-flash-thinking-exp-01-21"
GROQ_LLAMA = "llama-3.3-70b-versatile"
GROQ_R1_DISTILL = "deepseek-r1-distill-llama-70b"
DEEPSEEK_CHAT = "deepseek-chat"
DEEPSEEK_REASONER = "deepseek-reasoner"
OPENAI_MINI = "gpt-4o-mini"
MISTRAL_SMALL = "mistral-small-latest"
OPENROUTER_LLAMA = "meta-llama/llama-3.3-70b-instruct"
AUTO_BEST = "auto-best"

DEFAULT_MODELS: tuple[ModelDescriptor, ...] = (
    ModelDescriptor(
        GEMINI_FLASH, ProviderId.GEMINI, "Gemini 2.0 Flash",
        supports_vision=True,
        fallbacks=(GROQ_LLAMA, OPENAI_MINI, DEEPSEEK_CHAT),
    ),
    ModelDescriptor(
        GEMINI_THINKING, ProviderId.GEMINI, "Gemini 2.0 Flash Thinking",
        supports_tools=False, supports_thinking_budget=True, supports_vision=True,
        fallbacks=(GEMINI_FLASH, DEEPSEEK_REASONER, GROQ_R1_DISTILL),
    ),
    ModelDescriptor(
        GROQ_LLAMA, ProviderId.GROQ, "Llama 3.3 70B (Groq)",
        fallbacks=(GEMINI_FLASH, OPENAI_MINI, MISTRAL_SMALL),
    ),
    ModelDescriptor(
        GROQ_R1_DISTILL, ProviderId.GROQ, "DeepSeek R1 Distill (Groq)",
        supports_tools=False,
        fallbacks=(DEEPSEEK_REASONER, GEMINI_THINKING, GROQ_LLAMA),
    ),
    ModelDescriptor(
        DEEPSEEK_CHAT, ProviderId.DEEPSEEK, "DeepSeek V3",
        fallbacks=(GROQ_LLAMA, OPENAI_MINI, GEMINI_FLASH),
    ),
    ModelDescriptor(
        DEEPSEEK_REASONER, ProviderId.DEEPSEEK, "DeepSeek R1",
        supports_tools=False,
        fallbacks=(GROQ_R1_DISTILL, GEMINI_THINKING, DEEPSEEK_CHAT),
    ),
    ModelDescriptor(
        OPENAI_MINI, ProviderId.OPENAI, "GPT-4o mini",
        supports_vision=True,
        fallbacks=(GEMINI_FLASH, GROQ_LLAMA, MISTRAL_SMALL),
    ),
    ModelDescriptor(
        MISTRAL_SMALL, ProviderId.MISTRAL, "Mistral Small",
        fallbacks=(OPENAI_MINI, GROQ_LLAMA, GEMINI_FLASH),
    ),
    ModelDescriptor(
        OPENROUTER_LLAMA, ProviderId.OPENROUTER, "Llama 3.3 70B (OpenRouter)",
        fallbacks=(GROQ_LLAMA, GEMINI_FLASH),
    ),
    ModelDescriptor(
        AUTO_BEST, ProviderId.GEMINI, "Hydra Omni-Race",
        supports_vision=True,
        fallbacks=(GEMINI_FLASH, GROQ_LLAMA, OPENAI_MINI, MISTRAL_SMALL),
        race_candidates=(GEMINI_FLASH, GROQ_LLAMA, OPENAI_MINI, MISTRAL_SMALL),
    ),
)


class ModelCatalog:
    """Immutable lookup of models in declaration order."""

    def __init__(
        self,
        models: Iterable[ModelDescriptor] = DEFAULT_MODELS,
        *,
        default_model_id: str = GEMINI_FLASH,
    ) -> None:
        self._models: dict[str, ModelDescriptor] = {}
        for m in models:
            if m.model_id in self._models:
                raise ValueError(f"Duplicate model id: {m.model_id}")
            self._models[m.model_id] = m
        for m in self._models.values():
            for candidate_id in m.race_candidates:
                candidate = self._models.get(candidate_id)
                if candidate is None or candidate.is_race:
                    raise ValueError(
                        f"Race entry {m.model_id!r} names unusable model {candidate_id!r}"
                    )
        if default_model_id not in self._models:
            raise ValueError(f"Default model {default_model_id!r} is not in the catalog")
        self._default = default_model_id

    @property
    def default(self) -> ModelDescriptor:
        return self._models[self._default]

    def get(self, model_id: str) -> ModelDescriptor | None:
        return self._models.get(model_id)

    def resolve(self, model_id: str | None) -> ModelDescriptor:
        """Look up ``model_id``, substituting the default for unknown ids."""
        if model_id and model_id in self._models:
            return self._models[model_id]
        if model_id:
            logger.warning(
                "unknown_model_requested",
                model=model_id,
                substitute=self._default,
            )
        return self.default

    def models(self) -> list[ModelDescriptor]:
        return list(self._models.values())

    def providers(self) -> list[ProviderId]:
        seen: list[ProviderId] = []
        for m in self._models.values():
            if m.provider not in seen:
                seen.append(m.provider)
        return seen

    def for_provider(self, provider: ProviderId) -> list[ModelDescriptor]:
        return [m for m in self._models.values() if m.provider is provider]

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._models

    def __len__(self) -> int:
        return len(self._models)


class PriorityChainResolver:
    """Pick the next model to try after ``current`` becomes unusable."""

    def __init__(
        self,
        catalog: ModelCatalog,
        is_healthy: Callable[[ProviderId], bool],
    ) -> None:
        self._catalog = catalog
        self._is_healthy = is_healthy

    def next_candidate(
        self,
        current: ModelDescriptor,
        *,
        exclude: Iterable[str] = (),
        require_vision: bool = False,
    ) -> ModelDescriptor | None:
        skipped = {current.model_id, *exclude}

        def eligible(model: ModelDescriptor | None) -> bool:
            return (
                model is not None
                and not model.is_race
                and model.model_id not in skipped
                and (model.supports_vision or not require_vision)
                and self._is_healthy(model.provider)
            )

        for model_id in current.fallbacks:
            candidate = self._catalog.get(model_id)
            if eligible(candidate):
                return candidate

        # Last resort: whole catalog, declaration order.
        for candidate in self._catalog.models():
            if eligible(candidate):
                logger.info(
                    "fallback_chain_exhausted",
                    model=current.model_id,
                    last_resort=candidate.model_id,
                )
                return candidate
        return None
