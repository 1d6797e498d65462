"""Request and response bodies of the HTTP controllers."""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from thread_core.models.chat_models import Message, PermissionType, UserMessageContent
from thread_core.repositories.threads.schemas.conversations_schema import Conversation


class ConversationCreateRequest(BaseModel):
    """Body of the create conversation endpoint."""

    title: str = Field(..., description="Title of the conversation.")
    settings: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Partial generation settings merged over the defaults.",
    )
    force_new: bool = Field(
        default=False,
        description="Create a new conversation even if the latest one is empty.",
    )


class ConversationRenameRequest(BaseModel):
    title: str = Field(..., description="New title.")


class ConversationPinRequest(BaseModel):
    is_pinned: bool = Field(..., description="Whether the conversation is pinned.")


class ConversationForkRequest(BaseModel):
    message_id: str = Field(..., description="Last message copied into the fork.")
    title: Optional[str] = Field(default=None, description="Title of the fork.")


class ConversationPage(BaseModel):
    """A page of the conversation list."""

    conversations: List[Conversation]
    total: int


class SendMessageRequest(BaseModel):
    """Body of the send message endpoint."""

    content: Union[UserMessageContent, List[Dict[str, Any]], str] = Field(
        ..., description="User payload, or assistant blocks for other roles."
    )
    role: str = Field(default="user", description="Role of the message author.")


class SendMessageResponse(BaseModel):
    message: Optional[Message] = Field(
        default=None, description="Pending assistant reply, when one was started."
    )


class EditMessageRequest(BaseModel):
    content: Union[UserMessageContent, List[Dict[str, Any]], str]


class ContextEdgeRequest(BaseModel):
    is_edge: bool = True


class PermissionResponseRequest(BaseModel):
    """User decision on a pending tool permission."""

    tool_call_id: str = Field(..., description="Tool call gated by the permission.")
    granted: bool = Field(..., description="Whether the tool may run.")
    permission_type: Optional[PermissionType] = Field(
        default=None, description="Permission level granted; defaults to the requested one."
    )
    remember: bool = Field(
        default=False, description="Persist the grant for future sessions."
    )


class StopResponse(BaseModel):
    stopped: List[str] = Field(..., description="Ids of the stopped messages.")


class TitleResponse(BaseModel):
    title: str


class StatusResponse(BaseModel):
    status: str = Field(..., description="Status of the operation (success).")
