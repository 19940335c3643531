"""Pydantic models for conversation state, stream chunks and validation outcomes."""

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
    """Message roles."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL_RESULT = "tool-result"


class RequestCommand(str, Enum):
    """Slash commands a user request may carry."""
    ITERATE = "iterate"
    UML = "uml"
    SEQUENCE = "sequence"
    OUTLINE = "outline"


class ToolCallRequest(BaseModel):
    """A tool invocation requested by the model."""
    call_id: str = Field(..., description="Identifier unique within a round")
    name: str = Field(..., description="Registered tool name")
    arguments: Union[dict[str, Any], str] = Field(default_factory=dict)


class ToolCallResult(BaseModel):
    """Outcome of one tool invocation, keyed by the request's call_id."""
    call_id: str
    tool_name: str
    content: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def as_text(self) -> str:
        if self.error is not None:
            return f"ERROR: {self.error}"
        return self.content or ""


class Message(BaseModel):
    """A message in the conversation."""
    role: Role
    content: str = ""
    tool_calls: list[ToolCallRequest] = Field(default_factory=list)
    tool_call_id: Optional[str] = None
    tool_name: Optional[str] = None

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: Optional[list[ToolCallRequest]] = None) -> "Message":
        return cls(role=Role.ASSISTANT, content=content, tool_calls=tool_calls or [])

    @classmethod
    def tool_result(cls, result: ToolCallResult) -> "Message":
        return cls(
            role=Role.TOOL_RESULT,
            content=result.as_text(),
            tool_call_id=result.call_id,
            tool_name=result.tool_name,
        )


class ToolCallRound(BaseModel):
    """Prose and tool calls of one model response."""
    response: str = ""
    tool_calls: list[ToolCallRequest] = Field(default_factory=list)


class ToolSpec(BaseModel):
    """Tool manifest entry sent to the model."""
    name: str
    description: str
    parameters: dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# Stream chunks
# ============================================================================

class TextChunk(BaseModel):
    kind: Literal["text"] = "text"
    text: str


class ToolCallChunk(BaseModel):
    kind: Literal["tool_call"] = "tool_call"
    call: ToolCallRequest


StreamChunk = Annotated[Union[TextChunk, ToolCallChunk], Field(discriminator="kind")]


# ============================================================================
# Diagram candidates and validation
# ============================================================================

class DiagramCandidate(BaseModel):
    """One extracted diagram, tagged with the nonce its validation result must carry."""
    model_config = ConfigDict(frozen=True)

    raw: str = Field(..., description="Text captured from the model stream")
    body: str = Field(..., description="Captured text with one fence pair stripped")
    source: str = Field(..., description="Normalized diagram source")
    nonce: str
    language: str = "mermaid"


class ValidationSuccess(BaseModel):
    status: Literal["success"] = "success"
    nonce: str
    diagram_type: Optional[str] = None


class ValidationFailure(BaseModel):
    status: Literal["failure"] = "failure"
    nonce: str
    error: str
    hint: Optional[str] = None


class MalformedExtraction(BaseModel):
    status: Literal["malformed"] = "malformed"
    nonce: str
    error: str


ValidationOutcome = Annotated[
    Union[ValidationSuccess, ValidationFailure, MalformedExtraction],
    Field(discriminator="status"),
]


class PresentationResult(BaseModel):
    success: bool
    error: Optional[str] = None


# ============================================================================
# Turn results
# ============================================================================

class TurnState(str, Enum):
    """States of the conversation loop."""
    BUILD_PROMPT = "build_prompt"
    STREAM_RESPONSE = "stream_response"
    TOOLS_PENDING = "tools_pending"
    DIAGRAM_READY = "diagram_ready"
    VALIDATE = "validate"
    RETRY = "retry"
    ACCEPTED = "accepted"
    ABANDONED = "abandoned"
    CANCELLED = "cancelled"


class TurnResult(BaseModel):
    """How a turn ended and what it produced."""
    state: TurnState
    diagram: Optional[str] = Field(default=None, description="Accepted diagram source")
    diagram_type: Optional[str] = None
    message: Optional[str] = Field(default=None, description="Explanation shown to the user")
    last_error: Optional[str] = None
    last_diagram: Optional[str] = Field(default=None, description="Last raw diagram attempt")
    retries: int = 0
    model_calls: int = 0
    rounds: list[ToolCallRound] = Field(default_factory=list)
    prose: str = ""

    @property
    def accepted(self) -> bool:
        return self.state == TurnState.ACCEPTED
