"""Event vocabulary streamed by the agent runtime for one assistant message."""

from __future__ import annotations

from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field

from thread_core.models.chat_models import PermissionType


class ContentEvent(BaseModel):
    """Incremental answer text."""

    type: Literal["content"] = "content"
    text: str


class ReasoningEvent(BaseModel):
    """Incremental reasoning text."""

    type: Literal["reasoning"] = "reasoning"
    text: str


class ToolCallStartEvent(BaseModel):
    """The agent started running a tool."""

    type: Literal["tool_call_start"] = "tool_call_start"
    id: str
    name: str
    server_name: Optional[str] = None
    params: Dict[str, Any] = Field(default_factory=dict)


class ToolCallEndEvent(BaseModel):
    """A tool finished; ``is_error`` marks a failed call."""

    type: Literal["tool_call_end"] = "tool_call_end"
    id: str
    response: str = ""
    is_error: bool = False


class PermissionRequiredEvent(BaseModel):
    """A tool needs a user decision before it may run."""

    type: Literal["permission_required"] = "permission_required"
    id: str
    name: Optional[str] = None
    server_name: Optional[str] = None
    permission_type: PermissionType = "execute"
    description: str = ""


class UsageEvent(BaseModel):
    """Token usage reported by the provider."""

    type: Literal["usage"] = "usage"
    prompt_tokens: int = 0
    completion_tokens: int = 0


class ErrorEvent(BaseModel):
    """A runtime error surfaced inside the stream."""

    type: Literal["error"] = "error"
    message: str


class EndEvent(BaseModel):
    """Terminal event of one sub-stream."""

    type: Literal["end"] = "end"
    user_stop: bool = False


AgentEvent = Annotated[
    Union[
        ContentEvent,
        ReasoningEvent,
        ToolCallStartEvent,
        ToolCallEndEvent,
        PermissionRequiredEvent,
        UsageEvent,
        ErrorEvent,
        EndEvent,
    ],
    Field(discriminator="type"),
]
