# models.py
# Data contracts for the tool relay: capability catalogue, result envelopes,
# and the conversation exchanged with the oracle.
# No business logic lives here, only schema and validation.

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _WireModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Capabilities and envelopes
# ---------------------------------------------------------------------------


class TextContent(_WireModel):
    """A single content segment. Text is the only kind handlers produce."""

    kind: Literal["text"] = "text"
    payload: str


class Envelope(_WireModel):
    """Uniform success/error wrapper returned by every capability invocation."""

    content: list[TextContent] = Field(default_factory=list)
    is_error: bool = False

    @classmethod
    def text(cls, payload: str, is_error: bool = False) -> "Envelope":
        return cls(content=[TextContent(payload=payload)], is_error=is_error)

    @classmethod
    def error(cls, payload: str) -> "Envelope":
        return cls.text(payload, is_error=True)

    def joined_text(self) -> str:
        return "\n".join(segment.payload for segment in self.content)


class CapabilityDescriptor(_WireModel):
    """Name, description and JSON-Schema of one registered capability."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    name: str = Field(..., description="Unique within the registry.")
    description: str = Field(..., description="Human-readable, shown to the oracle.")
    input_schema: dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------


class ToolInvocationRequest(BaseModel):
    """A tool call emitted by the oracle. Immutable once emitted."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["tool_request"] = "tool_request"
    id: str = Field(..., description="Opaque, oracle-assigned, unique within a turn.")
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    raw_arguments: str | None = Field(
        None, description="Set only when the oracle's argument text was not a JSON object."
    )


class ToolResult(BaseModel):
    """Outcome of one ToolInvocationRequest; `id` equals the request id."""

    id: str
    content: list[TextContent] = Field(default_factory=list)
    is_error: bool = False

    def joined_text(self) -> str:
        return "\n".join(segment.payload for segment in self.content)


Segment = Annotated[Union[TextContent, ToolInvocationRequest], Field(discriminator="kind")]


class UserText(BaseModel):
    role: Literal["user"] = "user"
    text: str


class AssistantTurn(BaseModel):
    """Raw oracle output for a tool-requesting turn, text and requests interleaved."""

    role: Literal["assistant"] = "assistant"
    segments: list[Segment] = Field(default_factory=list)

    def requests(self) -> list[ToolInvocationRequest]:
        return [s for s in self.segments if isinstance(s, ToolInvocationRequest)]


class ToolResults(BaseModel):
    """One result per request of the preceding AssistantTurn, same order."""

    role: Literal["tool_results"] = "tool_results"
    results: list[ToolResult] = Field(default_factory=list)


Message = Annotated[Union[UserText, AssistantTurn, ToolResults], Field(discriminator="role")]


# ---------------------------------------------------------------------------
# Oracle responses
# ---------------------------------------------------------------------------


class StopCondition(str, Enum):
    END = "end"
    TOOL_REQUESTS = "tool_requests"
    OTHER = "other"


class OracleResponse(BaseModel):
    """What the oracle returned for one call: why it stopped and what it said."""

    stop: StopCondition
    segments: list[Segment] = Field(default_factory=list)

    def text(self) -> str:
        return "\n".join(s.payload for s in self.segments if isinstance(s, TextContent))

    def requests(self) -> list[ToolInvocationRequest]:
        return [s for s in self.segments if isinstance(s, ToolInvocationRequest)]
