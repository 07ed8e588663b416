"""Data Transfer Objects — Pydantic models for API boundaries.

DTOs handle serialisation, validation, and documentation.  They live in the
application layer because they are *not* domain objects — they adapt between
the external world and the domain.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from hydra_router.domain.value_objects import (
    Attachment,
    ToolDeclaration,
    ToolParameter,
)


# ═══════════════════════════════════════════════════════════════
#  Common
# ═══════════════════════════════════════════════════════════════
class ErrorResponse(BaseModel):
    code: str
    message: str


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1.0"
    environment: str = "development"
    providers_online: int = 0


# ═══════════════════════════════════════════════════════════════
#  Models & providers
# ═══════════════════════════════════════════════════════════════
class ModelResponse(BaseModel):
    model_id: str
    provider: str
    name: str
    supports_tools: bool
    supports_thinking_budget: bool
    supports_vision: bool
    fallbacks: list[str]
    race_candidates: list[str] = []
    available: bool


class ProviderHealthResponse(BaseModel):
    provider_id: str
    status: str
    credential_count: int
    cooldown_remaining_minutes: int
    consecutive_failures: int
    last_error_category: str | None = None


class ReloadRequest(BaseModel):
    """Operator override keys, placed ahead of scanned credentials."""

    overrides: dict[str, list[str]] = Field(default_factory=dict)


class ReloadResponse(BaseModel):
    credential_counts: dict[str, int]


# ═══════════════════════════════════════════════════════════════
#  Sessions
# ═══════════════════════════════════════════════════════════════
class ToolParameterDTO(BaseModel):
    name: str = Field(..., min_length=1, max_length=64)
    type: str = "string"
    description: str = ""
    required: bool = False
    enum: list[str] = Field(default_factory=list)


class ToolDeclarationDTO(BaseModel):
    name: str = Field(..., min_length=1, max_length=64)
    description: str = ""
    parameters: list[ToolParameterDTO] = Field(default_factory=list)

    def to_domain(self) -> ToolDeclaration:
        return ToolDeclaration(
            name=self.name,
            description=self.description,
            parameters=tuple(
                ToolParameter(
                    name=p.name,
                    type=p.type,
                    description=p.description,
                    required=p.required,
                    enum=tuple(p.enum),
                )
                for p in self.parameters
            ),
        )


class CreateSessionRequest(BaseModel):
    model_id: str | None = None
    system_instruction: str | None = Field(None, max_length=20_000)
    tools: list[ToolDeclarationDTO] = Field(default_factory=list)


class SessionResponse(BaseModel):
    session_id: str
    model_id: str
    tools: list[str]
    created_at: datetime


class AttachmentDTO(BaseModel):
    data: str = Field(..., min_length=1)
    mime_type: str = Field(..., pattern=r"^[\w.+-]+/[\w.+-]+$")

    def to_domain(self) -> Attachment:
        return Attachment(data=self.data, mime_type=self.mime_type)


class SendMessageRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=100_000)
    attachment: AttachmentDTO | None = None


class ToolResultRequest(BaseModel):
    tool_name: str = Field(..., min_length=1, max_length=64)
    result: Any = None


class SwitchModelRequest(BaseModel):
    model_id: str = Field(..., min_length=1)


class TurnResponse(BaseModel):
    role: str
    content: str


class HistoryResponse(BaseModel):
    session_id: str
    model_id: str
    limit: int
    turns: list[TurnResponse]
