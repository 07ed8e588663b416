"""OpenAI-compatible adapter — chat completions streaming.

Serves OpenAI, Groq, DeepSeek, Mistral and OpenRouter, which share the
``/chat/completions`` wire format and differ only in base URL, headers and
a few per-model restrictions.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

import httpx
import structlog

from hydra_router.adapters.outbound.llm.sse import (
    extract_error_message,
    iter_sse_data,
    raise_for_provider_status,
)
from hydra_router.domain.enums import ProviderId, Role
from hydra_router.domain.exceptions import ContentBlockedError, ProviderCallError
from hydra_router.domain.value_objects import GenerationRequest, StreamChunk, ToolCall
from hydra_router.ports.outbound import ProviderAdapter

logger = structlog.get_logger(__name__)

DEFAULT_BASE_URLS: dict[ProviderId, str] = {
    ProviderId.OPENAI: "https://api.openai.com/v1",
    ProviderId.GROQ: "https://api.groq.com/openai/v1",
    ProviderId.DEEPSEEK: "https://api.deepseek.com",
    ProviderId.MISTRAL: "https://api.mistral.ai/v1",
    ProviderId.OPENROUTER: "https://openrouter.ai/api/v1",
}

# Reasoning models reject sampling parameters and tool declarations.
_NO_SAMPLING_MODELS = frozenset({"deepseek-reasoner"})

# DeepSeek caps completion length.
_MAX_TOKENS_CAP: dict[ProviderId, int] = {ProviderId.DEEPSEEK: 4000}


@dataclass
class _PendingToolCall:
    call_id: str | None = None
    name: str = ""
    arguments: list[str] = field(default_factory=list)


class OpenAICompatibleAdapter(ProviderAdapter):
    def __init__(
        self,
        provider: ProviderId,
        client: httpx.AsyncClient,
        *,
        base_url: str | None = None,
        extra_headers: dict[str, str] | None = None,
    ) -> None:
        if provider is ProviderId.GEMINI:
            raise ValueError("Gemini is not served by the OpenAI-compatible adapter")
        self.provider = provider
        self._client = client
        self._base_url = (base_url or DEFAULT_BASE_URLS[provider]).rstrip("/")
        self._extra_headers = dict(extra_headers or {})

    async def stream(self, request: GenerationRequest, api_key: str) -> AsyncIterator[StreamChunk]:
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            **self._extra_headers,
        }
        pending: dict[int, _PendingToolCall] = {}

        async with self._client.stream(
            "POST",
            f"{self._base_url}/chat/completions",
            headers=headers,
            json=self.build_body(request),
        ) as response:
            await raise_for_provider_status(self.provider.value, response)
            async for payload in iter_sse_data(response):
                if payload.strip() == "[DONE]":
                    break
                for chunk in self._parse_event(json.loads(payload), pending):
                    yield chunk

        for chunk in _flush_tool_calls(pending):
            yield chunk

    # ── Request body ─────────────────────────────────────────
    def build_body(self, request: GenerationRequest) -> dict[str, Any]:
        messages: list[dict[str, Any]] = []
        if request.system_instruction:
            messages.append({"role": "system", "content": request.system_instruction})
        messages.extend(
            {"role": "assistant" if t.role is Role.ASSISTANT else "user", "content": t.content}
            for t in request.history
            if t.content
        )
        if request.attachment is not None:
            messages.append(
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": request.message},
                        {"type": "image_url", "image_url": {"url": request.attachment.data_uri}},
                    ],
                }
            )
        else:
            messages.append({"role": "user", "content": request.message})

        body: dict[str, Any] = {
            "model": request.model_id,
            "messages": messages,
            "stream": True,
        }
        restricted = request.model_id in _NO_SAMPLING_MODELS
        if request.temperature is not None and not restricted:
            body["temperature"] = request.temperature
        if request.tools and not restricted:
            body["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.json_schema(),
                    },
                }
                for t in request.tools
            ]

        max_tokens = request.max_tokens
        cap = _MAX_TOKENS_CAP.get(self.provider)
        if cap is not None:
            max_tokens = min(max_tokens or cap, cap)
        if max_tokens:
            body["max_tokens"] = max_tokens
        return body

    # ── Response parsing ─────────────────────────────────────
    def _parse_event(
        self, data: dict[str, Any], pending: dict[int, _PendingToolCall]
    ) -> list[StreamChunk]:
        if "error" in data:
            error = data["error"]
            code = error.get("code") if isinstance(error, dict) else None
            raise ProviderCallError(
                self.provider.value,
                extract_error_message(json.dumps(data)),
                status_code=code if isinstance(code, int) else None,
            )

        chunks: list[StreamChunk] = []
        for choice in data.get("choices") or []:
            delta = choice.get("delta") or {}
            if delta.get("content"):
                chunks.append(StreamChunk(text=delta["content"]))
            for call in delta.get("tool_calls") or []:
                slot = pending.setdefault(call.get("index", 0), _PendingToolCall())
                if call.get("id"):
                    slot.call_id = call["id"]
                function = call.get("function") or {}
                if function.get("name"):
                    slot.name = function["name"]
                if function.get("arguments"):
                    slot.arguments.append(function["arguments"])
            if choice.get("finish_reason") == "content_filter":
                raise ContentBlockedError(self.provider.value, "content_filter")
        return chunks


def _flush_tool_calls(pending: dict[int, _PendingToolCall]) -> list[StreamChunk]:
    """Emit accumulated tool calls in index order."""
    chunks: list[StreamChunk] = []
    for index in sorted(pending):
        slot = pending[index]
        raw = "".join(slot.arguments)
        try:
            arguments = json.loads(raw) if raw else {}
        except json.JSONDecodeError:
            logger.warning("tool_call_arguments_unparseable", tool=slot.name, raw=raw[:200])
            arguments = {}
        chunks.append(
            StreamChunk(tool_call=ToolCall(name=slot.name, arguments=arguments, call_id=slot.call_id))
        )
    pending.clear()
    return chunks
