"""Resolution of tool-call permission blocks on parked generations."""

import logging
from typing import Optional

from thread_core.agents.lib_agent.tool import ToolRuntime
from thread_core.models.chat_models import PermissionType
from thread_core.models.errors import AlreadyResolved, BlockNotFound
from thread_core.services.threads.generation_orchestrator import (
    GenerationOrchestrator,
    has_unexecuted_grants,
)
from thread_core.services.threads.generation_registry import GenerationPhase
from thread_core.services.threads.message_manager import MessageManager

logger = logging.getLogger(__name__)

DENIED_RESPONSE = "Permission denied by user"


class PermissionGate:
    """
    Apply a user's grant or denial to a pending permission block.

    Once no block of the message is pending, a parked generation resumes when
    some granted call still has to run, and is finalized otherwise.
    """

    def __init__(
        self,
        orchestrator: GenerationOrchestrator,
        message_manager: MessageManager,
        tool_runtime: ToolRuntime,
    ) -> None:
        self.orchestrator = orchestrator
        self.registry = orchestrator.registry
        self.message_manager = message_manager
        self.tool_runtime = tool_runtime

    async def resolve(
        self,
        message_id: str,
        tool_call_id: str,
        granted: bool,
        permission_type: Optional[PermissionType] = None,
        remember: bool = False,
    ) -> None:
        """
        Resolve the permission block gating ``tool_call_id`` on ``message_id``.

        Raises:
            NotFound: The message does not exist.
            BlockNotFound: No permission block for the tool call, or the
                message is no longer awaiting a decision.
            AlreadyResolved: The block was already granted or denied.
        """
        async with self.registry.lock(message_id):
            state = self.registry.get(message_id)
            message = state.message if state else self.message_manager.get_message(message_id)

            block = message.find_permission(tool_call_id)
            if block is None:
                raise BlockNotFound(
                    f"No permission block for tool call {tool_call_id} on message {message_id}"
                )
            if block.status != "pending":
                raise AlreadyResolved(
                    f"Permission for tool call {tool_call_id} is already {block.status}"
                )
            if state is None:
                raise BlockNotFound(f"Message {message_id} is not awaiting permission")

            tool_call = message.find_tool_call(tool_call_id)
            if granted:
                block.status = "granted"
                if tool_call is not None:
                    tool_call.status = "granted"
                self.tool_runtime.grant_permission(
                    block.server_name or "unknown",
                    permission_type or block.permission_type,
                    remember,
                )
            else:
                block.status = "denied"
                if tool_call is not None:
                    tool_call.status = "denied"
                    tool_call.response = DENIED_RESPONSE
            logger.info(
                "Permission for %s on message %s %s",
                tool_call_id,
                message_id,
                "granted" if granted else "denied",
            )
            self.orchestrator.flush(state)

            # A generation still streaming decides at its own end event.
            if state.phase is not GenerationPhase.PARKED or message.pending_permissions():
                return
            if has_unexecuted_grants(message):
                await self.orchestrator.resume_locked(state)
            else:
                await self.orchestrator.finalize_locked(state)
