"""Gemini adapter — ``streamGenerateContent`` over server-sent events."""

from __future__ import annotations

import json
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
from hydra_router.domain.value_objects import (
    GenerationRequest,
    StreamChunk,
    ToolCall,
    ToolDeclaration,
)
from hydra_router.ports.outbound import ProviderAdapter

logger = structlog.get_logger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

_BLOCKING_FINISH_REASONS = frozenset({"SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII"})


class GeminiAdapter(ProviderAdapter):
    provider = ProviderId.GEMINI

    def __init__(self, client: httpx.AsyncClient, *, base_url: str = GEMINI_BASE_URL) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")

    async def stream(self, request: GenerationRequest, api_key: str) -> AsyncIterator[StreamChunk]:
        url = f"{self._base_url}/models/{request.model_id}:streamGenerateContent"
        async with self._client.stream(
            "POST",
            url,
            params={"alt": "sse"},
            headers={"x-goog-api-key": api_key, "Content-Type": "application/json"},
            json=build_body(request),
        ) as response:
            await raise_for_provider_status(self.provider.value, response)
            async for payload in iter_sse_data(response):
                for chunk in parse_event(json.loads(payload)):
                    yield chunk


# ── Request body ─────────────────────────────────────────────
def build_body(request: GenerationRequest) -> dict[str, Any]:
    contents: list[dict[str, Any]] = [
        {
            "role": "model" if turn.role is Role.ASSISTANT else "user",
            "parts": [{"text": turn.content}],
        }
        for turn in request.history
        if turn.content
    ]
    user_parts: list[dict[str, Any]] = [{"text": request.message}]
    if request.attachment is not None:
        user_parts.append(
            {
                "inlineData": {
                    "mimeType": request.attachment.mime_type,
                    "data": request.attachment.data,
                }
            }
        )
    contents.append({"role": "user", "parts": user_parts})

    generation_config: dict[str, Any] = {}
    if request.temperature is not None:
        generation_config["temperature"] = request.temperature
    if request.max_tokens:
        generation_config["maxOutputTokens"] = request.max_tokens
    if request.thinking_budget is not None:
        generation_config["thinkingConfig"] = {"thinkingBudget": request.thinking_budget}

    body: dict[str, Any] = {"contents": contents}
    if generation_config:
        body["generationConfig"] = generation_config
    if request.system_instruction:
        body["systemInstruction"] = {"parts": [{"text": request.system_instruction}]}
    if request.tools:
        body["tools"] = [{"functionDeclarations": [_declaration(t) for t in request.tools]}]
    return body


def _declaration(tool: ToolDeclaration) -> dict[str, Any]:
    decl: dict[str, Any] = {"name": tool.name, "description": tool.description}
    if tool.parameters:
        decl["parameters"] = _upper_types(tool.json_schema())
    return decl


def _upper_types(schema: dict[str, Any]) -> dict[str, Any]:
    """Gemini expects OpenAPI type names in upper case."""
    out: dict[str, Any] = {}
    for key, value in schema.items():
        if key == "type" and isinstance(value, str):
            out[key] = value.upper()
        elif key == "properties" and isinstance(value, dict):
            out[key] = {name: _upper_types(prop) for name, prop in value.items()}
        elif key == "items" and isinstance(value, dict):
            out[key] = _upper_types(value)
        else:
            out[key] = value
    return out


# ── Response parsing ─────────────────────────────────────────
def parse_event(data: dict[str, Any]) -> list[StreamChunk]:
    """Convert one streamed ``GenerateContentResponse`` into chunks."""
    if "error" in data:
        error = data["error"]
        status = error.get("code") if isinstance(error, dict) else None
        raise ProviderCallError(
            ProviderId.GEMINI.value,
            extract_error_message(json.dumps(data)),
            status_code=status if isinstance(status, int) else None,
        )

    feedback = data.get("promptFeedback") or {}
    if feedback.get("blockReason"):
        raise ContentBlockedError(ProviderId.GEMINI.value, feedback["blockReason"])

    chunks: list[StreamChunk] = []
    candidates = data.get("candidates") or []
    if not candidates:
        return chunks
    candidate = candidates[0]

    for part in (candidate.get("content") or {}).get("parts") or []:
        if part.get("thought"):
            continue
        if part.get("text"):
            chunks.append(StreamChunk(text=part["text"]))
        elif "functionCall" in part:
            call = part["functionCall"]
            chunks.append(
                StreamChunk(
                    tool_call=ToolCall(
                        name=call.get("name", ""),
                        arguments=dict(call.get("args") or {}),
                        call_id=call.get("id"),
                    )
                )
            )

    grounding = (candidate.get("groundingMetadata") or {}).get("groundingChunks")
    if grounding:
        chunks.append(StreamChunk(grounding=tuple(grounding)))

    finish = candidate.get("finishReason")
    if finish in _BLOCKING_FINISH_REASONS:
        raise ContentBlockedError(ProviderId.GEMINI.value, finish)
    return chunks
