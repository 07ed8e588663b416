"""Domain value objects — immutable, self-validating types.

Value objects have *no identity*; two instances with equal fields are equal.
They enforce invariants at construction time so the rest of the domain can
trust their contents without re-checking.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from hydra_router.domain.enums import ChunkKind, ErrorCategory, Role


# ═══════════════════════════════════════════════════════════════
#  Conversation
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True, slots=True)
class ConversationTurn:
    """One message in a conversation window."""

    role: Role
    content: str

    def __post_init__(self) -> None:
        if not isinstance(self.role, Role):
            object.__setattr__(self, "role", Role(self.role))


@dataclass(frozen=True, slots=True)
class Attachment:
    """Inline binary payload (image) sent alongside a user message."""

    data: str  # base64
    mime_type: str

    def __post_init__(self) -> None:
        if not self.data:
            raise ValueError("Attachment data must not be empty")
        if "/" not in self.mime_type:
            raise ValueError(f"Invalid MIME type: {self.mime_type!r}")

    @property
    def data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


# ═══════════════════════════════════════════════════════════════
#  Tools
# ═══════════════════════════════════════════════════════════════
_JSON_TYPES = frozenset({"string", "number", "integer", "boolean", "array", "object"})


@dataclass(frozen=True, slots=True)
class ToolParameter:
    name: str
    type: str = "string"
    description: str = ""
    required: bool = False
    enum: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.type not in _JSON_TYPES:
            raise ValueError(f"Unsupported parameter type: {self.type!r}")


@dataclass(frozen=True, slots=True)
class ToolDeclaration:
    """Function a provider may ask the caller to execute."""

    name: str
    description: str = ""
    parameters: tuple[ToolParameter, ...] = ()

    def __post_init__(self) -> None:
        if not self.name or not self.name.replace("_", "").replace("-", "").isalnum():
            raise ValueError(f"Invalid tool name: {self.name!r}")

    def json_schema(self) -> dict[str, Any]:
        """Parameter list rendered as a JSON-schema object."""
        properties: dict[str, Any] = {}
        for p in self.parameters:
            prop: dict[str, Any] = {"type": p.type}
            if p.description:
                prop["description"] = p.description
            if p.enum:
                prop["enum"] = list(p.enum)
            properties[p.name] = prop
        return {
            "type": "object",
            "properties": properties,
            "required": [p.name for p in self.parameters if p.required],
        }


@dataclass(frozen=True, slots=True)
class ToolCall:
    """A provider's request to execute a declared tool."""

    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    call_id: str | None = None


# ═══════════════════════════════════════════════════════════════
#  Stream output
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True, slots=True)
class ChunkMetadata:
    """Routing information attached to a chunk.

    ``REROUTE`` is informational; every other kind marks the end of a request.
    """

    kind: ChunkKind
    provider: str | None = None
    model: str | None = None
    latency_ms: float | None = None
    notice: str | None = None
    message: str | None = None
    category: ErrorCategory | None = None
    from_model: str | None = None
    to_model: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.kind.is_terminal

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": self.kind.value}
        for key in ("provider", "model", "latency_ms", "notice", "message", "from_model", "to_model"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        if self.category is not None:
            data["category"] = self.category.value
        return data


@dataclass(frozen=True, slots=True)
class StreamChunk:
    """Normalized unit of a streamed generation."""

    text: str | None = None
    tool_call: ToolCall | None = None
    grounding: tuple[dict[str, Any], ...] | None = None
    metadata: ChunkMetadata | None = None

    @property
    def is_terminal(self) -> bool:
        return self.metadata is not None and self.metadata.is_terminal

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.text is not None:
            data["text"] = self.text
        if self.tool_call is not None:
            data["tool_call"] = {
                "name": self.tool_call.name,
                "arguments": self.tool_call.arguments,
                "call_id": self.tool_call.call_id,
            }
        if self.grounding is not None:
            data["grounding"] = list(self.grounding)
        if self.metadata is not None:
            data["metadata"] = self.metadata.to_dict()
        return data


# ═══════════════════════════════════════════════════════════════
#  Provider request
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True, slots=True)
class GenerationRequest:
    """Provider-neutral input handed to an adapter for one attempt.

    ``tools`` and ``thinking_budget`` are already filtered against the
    target model's capabilities.
    """

    model_id: str
    message: str
    history: tuple[ConversationTurn, ...] = ()
    tools: tuple[ToolDeclaration, ...] = ()
    attachment: Attachment | None = None
    system_instruction: str | None = None
    temperature: float | None = 0.7
    thinking_budget: int | None = None
    max_tokens: int | None = None
