"""Stopping generations for one message or a whole conversation."""

import asyncio
import logging
from typing import List, Optional

from thread_core.models.chat_models import ErrorBlock, ToolCallBlock
from thread_core.models.errors import NotFound, PersistenceFailure
from thread_core.services.events.event_bus import STREAM_END, EventBus
from thread_core.services.search.search_manager import SearchManager
from thread_core.services.threads.generation_orchestrator import GenerationOrchestrator
from thread_core.services.threads.message_manager import MessageManager

logger = logging.getLogger(__name__)

STOPPED_BY_USER = "Generation stopped by user"


class CancellationController:
    """
    Stop in-flight generations.

    Cleanup order: the conversation's search, then the agent stream and its
    consumer task, then the terminal status write, then the in-memory state.
    """

    def __init__(
        self,
        orchestrator: GenerationOrchestrator,
        message_manager: MessageManager,
        event_bus: EventBus,
        search_manager: Optional[SearchManager] = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.registry = orchestrator.registry
        self.stream_provider = orchestrator.stream_provider
        self.message_manager = message_manager
        self.event_bus = event_bus
        self.search_manager = search_manager

    async def stop_message(self, message_id: str) -> bool:
        """
        Stop the generation of ``message_id``.

        Returns:
            bool: False when no generation was running (a no-op).
        """
        state = self.registry.get(message_id)
        if state is None:
            return False

        if state.is_searching and self.search_manager is not None:
            self.search_manager.stop_search(state.conversation_id)
        self.stream_provider.stop(message_id)
        task = self.registry.get_task(message_id)
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

        async with self.registry.lock(message_id):
            state = self.registry.get(message_id)
            if state is None:
                return False
            message = state.message
            for block in message.blocks:
                if getattr(block, "status", None) == "loading":
                    block.status = "error"
                elif isinstance(block, ToolCallBlock) and block.status == "running":
                    block.status = "error"
            message.blocks.append(ErrorBlock(message=STOPPED_BY_USER))
            message.status = "error"
            try:
                self.message_manager.update_blocks(message_id, message.blocks)
                self.message_manager.update_status(message_id, "error")
            except (NotFound, PersistenceFailure) as exc:
                logger.error("Could not persist stop of %s: %s", message_id, exc.message)
            self.registry.release(message_id)

        self.event_bus.emit(
            STREAM_END,
            {
                "conversation_id": state.conversation_id,
                "message_id": message_id,
                "status": "error",
                "user_stop": True,
            },
        )
        logger.info("Generation %s stopped by user", message_id)
        return True

    async def stop_conversation(self, conversation_id: str) -> List[str]:
        """Stop every generation of a conversation and return the stopped ids."""
        stopped = []
        for state in self.registry.for_conversation(conversation_id):
            if await self.stop_message(state.message_id):
                stopped.append(state.message_id)
        return stopped
