"""Message endpoints: sending, variants, permissions and cancellation."""

from typing import List

from fastapi import APIRouter, Depends

from thread_core.controllers.errors import to_http_error
from thread_core.models.api_models import (
    ContextEdgeRequest,
    EditMessageRequest,
    PermissionResponseRequest,
    SendMessageRequest,
    SendMessageResponse,
    StatusResponse,
    StopResponse,
)
from thread_core.models.chat_models import Message
from thread_core.services.threads.thread_service import ThreadService, get_thread_service

messages_router = APIRouter(tags=["Messages"])


@messages_router.post(
    "/conversations/{conversation_id}/messages",
    responses={
        200: {"model": SendMessageResponse, "description": "Successful Response"},
    },
)
async def send_message(
    conversation_id: str,
    data: SendMessageRequest,
    service: ThreadService = Depends(get_thread_service),
) -> SendMessageResponse:
    """
    Store a message in a conversation.

    Args:
        conversation_id (str): Target conversation.
        data (SendMessageRequest): Message content and author role.

    Returns:
        SendMessageResponse: Holds the pending assistant reply when the
        message was sent by the user.
    """
    try:
        message = await service.send_message(conversation_id, data.content, data.role)
        return SendMessageResponse(message=message)
    except Exception as e:
        raise to_http_error(e)


@messages_router.get("/messages/{message_id}")
def get_message(
    message_id: str, service: ThreadService = Depends(get_thread_service)
) -> Message:
    try:
        return service.get_message(message_id)
    except Exception as e:
        raise to_http_error(e)


@messages_router.patch("/messages/{message_id}")
def edit_message(
    message_id: str,
    data: EditMessageRequest,
    service: ThreadService = Depends(get_thread_service),
) -> Message:
    try:
        return service.edit_message(message_id, data.content)
    except Exception as e:
        raise to_http_error(e)


@messages_router.delete("/messages/{message_id}")
async def delete_message(
    message_id: str, service: ThreadService = Depends(get_thread_service)
) -> StatusResponse:
    try:
        await service.delete_message(message_id)
        return StatusResponse(status="success")
    except Exception as e:
        raise to_http_error(e)


@messages_router.post("/messages/{message_id}/retry")
async def retry_message(
    message_id: str, service: ThreadService = Depends(get_thread_service)
) -> Message:
    """Start a new variant of an assistant message."""
    try:
        return await service.retry_message(message_id)
    except Exception as e:
        raise to_http_error(e)


@messages_router.get("/messages/{message_id}/variants")
def get_message_variants(
    message_id: str, service: ThreadService = Depends(get_thread_service)
) -> List[Message]:
    try:
        return service.get_message_variants(message_id)
    except Exception as e:
        raise to_http_error(e)


@messages_router.get("/messages/{message_id}/main")
def get_main_message(
    message_id: str, service: ThreadService = Depends(get_thread_service)
) -> Message:
    try:
        return service.get_main_message(message_id)
    except Exception as e:
        raise to_http_error(e)


@messages_router.patch("/messages/{message_id}/context_edge")
def mark_context_edge(
    message_id: str,
    data: ContextEdgeRequest,
    service: ThreadService = Depends(get_thread_service),
) -> Message:
    try:
        return service.mark_context_edge(message_id, data.is_edge)
    except Exception as e:
        raise to_http_error(e)


@messages_router.post("/messages/{message_id}/permission")
async def handle_permission_response(
    message_id: str,
    data: PermissionResponseRequest,
    service: ThreadService = Depends(get_thread_service),
) -> Message:
    """
    Resolve a pending tool permission of an assistant message.

    Returns 404 when no permission block gates the tool call and 409 when the
    block was already resolved.
    """
    try:
        return await service.handle_permission_response(
            message_id,
            data.tool_call_id,
            data.granted,
            data.permission_type,
            data.remember,
        )
    except Exception as e:
        raise to_http_error(e)


@messages_router.post("/messages/{message_id}/stop")
async def stop_message_generation(
    message_id: str, service: ThreadService = Depends(get_thread_service)
) -> StopResponse:
    try:
        stopped = await service.stop_message_generation(message_id)
        return StopResponse(stopped=[message_id] if stopped else [])
    except Exception as e:
        raise to_http_error(e)
