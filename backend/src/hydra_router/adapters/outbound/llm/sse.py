"""Shared HTTP helpers for streaming provider adapters."""

from __future__ import annotations

import json
from typing import AsyncIterator

import httpx

from hydra_router.domain.exceptions import ProviderCallError


async def iter_sse_data(response: httpx.Response) -> AsyncIterator[str]:
    """Yield the ``data:`` payload of each server-sent event.

    Multi-line events are joined with newlines; comments and other fields
    are ignored.
    """
    buffer: list[str] = []
    async for line in response.aiter_lines():
        if not line:
            if buffer:
                yield "\n".join(buffer)
                buffer = []
            continue
        if line.startswith(":"):
            continue
        if line.startswith("data:"):
            buffer.append(line[5:].lstrip())
    if buffer:
        yield "\n".join(buffer)


async def raise_for_provider_status(provider: str, response: httpx.Response) -> None:
    """Raise ``ProviderCallError`` with the vendor's message on non-2xx."""
    if response.is_success:
        return
    body = (await response.aread()).decode("utf-8", errors="replace")
    raise ProviderCallError(
        provider,
        extract_error_message(body) or response.reason_phrase,
        status_code=response.status_code,
    )


def extract_error_message(body: str) -> str:
    """Pull ``error.message`` (and ``error.status``) from a JSON error body."""
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        return body.strip()[:500]
    if isinstance(data, list) and data:
        data = data[0]
    if not isinstance(data, dict):
        return body.strip()[:500]
    error = data.get("error", data)
    if isinstance(error, str):
        return error
    if isinstance(error, dict):
        parts = [str(error.get(k)) for k in ("status", "type", "code", "message") if error.get(k)]
        return " ".join(parts) or body.strip()[:500]
    return body.strip()[:500]
