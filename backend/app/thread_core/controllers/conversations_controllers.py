"""Conversation endpoints."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, status

from thread_core.controllers.errors import to_http_error
from thread_core.models.api_models import (
    ConversationCreateRequest,
    ConversationForkRequest,
    ConversationPage,
    ConversationPinRequest,
    ConversationRenameRequest,
    StatusResponse,
    StopResponse,
    TitleResponse,
)
from thread_core.models.chat_models import Message, ThreadPage
from thread_core.repositories.threads.schemas.conversations_schema import Conversation
from thread_core.services.threads.thread_service import ThreadService, get_thread_service

conversations_router = APIRouter(prefix="/conversations", tags=["Conversations"])


@conversations_router.post("", status_code=status.HTTP_201_CREATED)
def create_conversation(
    data: ConversationCreateRequest,
    service: ThreadService = Depends(get_thread_service),
) -> Conversation:
    """
    Create a conversation.

    Args:
        data (ConversationCreateRequest): Title, partial settings and the
        force_new flag.

    Returns:
        Conversation: The created (or reused empty) conversation.
    """
    try:
        return service.create_conversation(data.title, data.settings, data.force_new)
    except Exception as e:
        raise to_http_error(e)


@conversations_router.get("")
def list_conversations(
    page: int = 1,
    page_size: int = 20,
    service: ThreadService = Depends(get_thread_service),
) -> ConversationPage:
    try:
        conversations, total = service.list_conversations(page, page_size)
        return ConversationPage(conversations=conversations, total=total)
    except Exception as e:
        raise to_http_error(e)


@conversations_router.get("/{conversation_id}")
def get_conversation(
    conversation_id: str, service: ThreadService = Depends(get_thread_service)
) -> Conversation:
    try:
        return service.get_conversation(conversation_id)
    except Exception as e:
        raise to_http_error(e)


@conversations_router.patch("/{conversation_id}/title")
def rename_conversation(
    conversation_id: str,
    data: ConversationRenameRequest,
    service: ThreadService = Depends(get_thread_service),
) -> Conversation:
    try:
        return service.rename_conversation(conversation_id, data.title)
    except Exception as e:
        raise to_http_error(e)


@conversations_router.patch("/{conversation_id}/settings")
def update_conversation_settings(
    conversation_id: str,
    data: Dict[str, Any],
    service: ThreadService = Depends(get_thread_service),
) -> Conversation:
    """Merge a partial settings object into the conversation settings."""
    try:
        return service.update_conversation_settings(conversation_id, data)
    except Exception as e:
        raise to_http_error(e)


@conversations_router.patch("/{conversation_id}/pin")
def toggle_pinned(
    conversation_id: str,
    data: ConversationPinRequest,
    service: ThreadService = Depends(get_thread_service),
) -> Conversation:
    try:
        return service.toggle_pinned(conversation_id, data.is_pinned)
    except Exception as e:
        raise to_http_error(e)


@conversations_router.post("/{conversation_id}/activate")
def set_active_conversation(
    conversation_id: str, service: ThreadService = Depends(get_thread_service)
) -> Conversation:
    try:
        return service.set_active_conversation(conversation_id)
    except Exception as e:
        raise to_http_error(e)


@conversations_router.delete("/{conversation_id}")
async def delete_conversation(
    conversation_id: str, service: ThreadService = Depends(get_thread_service)
) -> StatusResponse:
    """Stop running generations of the conversation, then delete it."""
    try:
        await service.delete_conversation(conversation_id)
        return StatusResponse(status="success")
    except Exception as e:
        raise to_http_error(e)


@conversations_router.post("/{conversation_id}/fork", status_code=status.HTTP_201_CREATED)
async def fork_conversation(
    conversation_id: str,
    data: ConversationForkRequest,
    service: ThreadService = Depends(get_thread_service),
) -> Conversation:
    try:
        return await service.fork_conversation(conversation_id, data.message_id, data.title)
    except Exception as e:
        raise to_http_error(e)


@conversations_router.post("/{conversation_id}/summarize_title")
async def summarize_title(
    conversation_id: str, service: ThreadService = Depends(get_thread_service)
) -> TitleResponse:
    try:
        return TitleResponse(title=await service.summarize_title(conversation_id))
    except Exception as e:
        raise to_http_error(e)


@conversations_router.get("/{conversation_id}/messages")
def get_thread(
    conversation_id: str,
    page: int = 1,
    page_size: int = 100,
    service: ThreadService = Depends(get_thread_service),
) -> ThreadPage:
    try:
        return service.get_thread(conversation_id, page, page_size)
    except Exception as e:
        raise to_http_error(e)


@conversations_router.post("/{conversation_id}/clear_context")
def clear_context(
    conversation_id: str, service: ThreadService = Depends(get_thread_service)
) -> Optional[Message]:
    """Mark the latest message as context edge; null for an empty conversation."""
    try:
        return service.clear_context(conversation_id)
    except Exception as e:
        raise to_http_error(e)


@conversations_router.delete("/{conversation_id}/messages")
async def clear_all_messages(
    conversation_id: str, service: ThreadService = Depends(get_thread_service)
) -> StatusResponse:
    try:
        await service.clear_all_messages(conversation_id)
        return StatusResponse(status="success")
    except Exception as e:
        raise to_http_error(e)


@conversations_router.post("/{conversation_id}/stop")
async def stop_conversation_generation(
    conversation_id: str, service: ThreadService = Depends(get_thread_service)
) -> StopResponse:
    try:
        stopped = await service.stop_conversation_generation(conversation_id)
        return StopResponse(stopped=stopped)
    except Exception as e:
        raise to_http_error(e)
