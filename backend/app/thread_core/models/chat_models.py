"""Domain models for conversation messages and their content blocks.

Assistant message content is an ordered list of typed blocks. Each block carries
a ``type`` discriminant so the list round-trips through JSON without guessing.
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

MessageRole = Literal["user", "assistant"]
MessageStatus = Literal["pending", "sent", "error"]
BlockStatus = Literal["loading", "success", "error"]
ToolCallStatus = Literal["pending", "granted", "denied", "running", "success", "error"]
PermissionStatus = Literal["pending", "granted", "denied"]
PermissionType = Literal["read", "write", "execute"]


def now_ms() -> int:
    """Return the current wall-clock time in milliseconds."""
    return int(time.time() * 1000)


class ContentBlock(BaseModel):
    """Plain/markdown text produced by the model."""

    type: Literal["content"] = "content"
    text: str = ""
    status: BlockStatus = "loading"
    timestamp: int = Field(default_factory=now_ms)


class ReasoningBlock(BaseModel):
    """Model "thinking" trace, timed separately from the answer."""

    type: Literal["reasoning"] = "reasoning"
    text: str = ""
    status: BlockStatus = "loading"
    timestamp: int = Field(default_factory=now_ms)
    reasoning_start: Optional[int] = None
    reasoning_end: Optional[int] = None


class ToolCallBlock(BaseModel):
    """A tool invocation requested by the model."""

    type: Literal["tool_call"] = "tool_call"
    id: str
    name: str
    server_name: Optional[str] = None
    params: Dict[str, Any] = Field(default_factory=dict)
    status: ToolCallStatus = "running"
    response: Optional[str] = None
    timestamp: int = Field(default_factory=now_ms)


class PermissionBlock(BaseModel):
    """Gate block; while pending it blocks finalization of the message."""

    type: Literal["tool_call_permission"] = "tool_call_permission"
    tool_call_id: str
    tool_name: Optional[str] = None
    permission_type: PermissionType = "execute"
    server_name: Optional[str] = None
    description: str = ""
    status: PermissionStatus = "pending"
    timestamp: int = Field(default_factory=now_ms)


class ErrorBlock(BaseModel):
    """Diagnostic error attached to a message."""

    type: Literal["error"] = "error"
    message: str
    status: Literal["error"] = "error"
    timestamp: int = Field(default_factory=now_ms)


class ImageBlock(BaseModel):
    """Inline image returned by providers that support image output."""

    type: Literal["image"] = "image"
    data: str
    mime_type: str = "image/png"
    timestamp: int = Field(default_factory=now_ms)


AssistantBlock = Annotated[
    Union[
        ContentBlock,
        ReasoningBlock,
        ToolCallBlock,
        PermissionBlock,
        ErrorBlock,
        ImageBlock,
    ],
    Field(discriminator="type"),
]

BLOCKS_ADAPTER: TypeAdapter[List[AssistantBlock]] = TypeAdapter(List[AssistantBlock])


class MessageFile(BaseModel):
    """A file attached to a user message."""

    name: str
    path: str = ""
    content: str = ""
    mime_type: str = "text/plain"
    token: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)


class UserMessageContent(BaseModel):
    """Structured payload of a user message; toggles are read once at send time."""

    text: str
    files: List[MessageFile] = Field(default_factory=list)
    search: bool = False
    think: bool = False


class MessageMetadata(BaseModel):
    """Usage and timing figures recorded when a generation finalizes."""

    total_tokens: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    generation_time: int = 0
    first_token_time: int = 0
    tokens_per_second: float = 0.0
    context_usage: float = 0.0
    model: Optional[str] = None
    provider: Optional[str] = None
    reasoning_start_time: Optional[int] = None
    reasoning_end_time: Optional[int] = None


class Message(BaseModel):
    """A hydrated conversation message."""

    id: str
    conversation_id: str
    role: MessageRole
    content: Union[UserMessageContent, List[AssistantBlock]]
    timestamp: datetime
    status: MessageStatus = "pending"
    usage: MessageMetadata = Field(default_factory=MessageMetadata)
    parent_id: Optional[str] = None
    order_seq: int
    is_context_edge: bool = False
    is_variant: bool = False

    @property
    def blocks(self) -> List[Any]:
        """Return the block list of an assistant message (empty for users)."""
        if isinstance(self.content, list):
            return self.content
        return []

    @property
    def text(self) -> str:
        """Return the user text, or the concatenated content blocks."""
        if isinstance(self.content, UserMessageContent):
            return self.content.text
        return "".join(b.text for b in self.blocks if isinstance(b, ContentBlock))

    def pending_permissions(self) -> List[PermissionBlock]:
        """Return the permission blocks still awaiting a decision."""
        return [
            b
            for b in self.blocks
            if isinstance(b, PermissionBlock) and b.status == "pending"
        ]

    def find_tool_call(self, tool_call_id: str) -> Optional[ToolCallBlock]:
        """Return the latest tool call block with the given id."""
        for block in reversed(self.blocks):
            if isinstance(block, ToolCallBlock) and block.id == tool_call_id:
                return block
        return None

    def find_permission(self, tool_call_id: str) -> Optional[PermissionBlock]:
        """Return the latest permission block gating the given tool call."""
        for block in reversed(self.blocks):
            if isinstance(block, PermissionBlock) and block.tool_call_id == tool_call_id:
                return block
        return None


class SearchResult(BaseModel):
    """A single web search hit."""

    title: str
    url: str
    content: str = ""
    description: str = ""
    icon: str = ""
    rank: int = 0


class ThreadPage(BaseModel):
    """A page of a conversation thread."""

    messages: List[Message]
    total: int
