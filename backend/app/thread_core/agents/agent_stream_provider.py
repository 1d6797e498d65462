"""Agent-event stream provider consumed by the generation orchestrator."""

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from thread_core.agents.lib_agent.agent import Agent
from thread_core.models.agent_events import AgentEvent
from thread_core.repositories.threads.schemas.conversations_schema import (
    ConversationSettings,
)

logger = logging.getLogger(__name__)


class AgentStreamProvider:
    """Open one agent stream per assistant message and cancel it on request."""

    def __init__(self, agent: Agent) -> None:
        self.agent = agent
        self._cancel_events: Dict[str, asyncio.Event] = {}

    def open_stream(
        self,
        conversation_id: str,
        message_id: str,
        context_messages: List[Dict[str, Any]],
        tools: Optional[List[str]] = None,
        settings: Optional[ConversationSettings] = None,
        think: bool = False,
    ) -> AsyncIterator[AgentEvent]:
        """Return the event stream for ``message_id``."""
        cancel_event = asyncio.Event()
        self._cancel_events[message_id] = cancel_event
        logger.debug("Opening agent stream for %s/%s", conversation_id, message_id)
        return self._stream(message_id, context_messages, tools, settings, think, cancel_event)

    async def _stream(
        self,
        message_id: str,
        context_messages: List[Dict[str, Any]],
        tools: Optional[List[str]],
        settings: Optional[ConversationSettings],
        think: bool,
        cancel_event: asyncio.Event,
    ) -> AsyncIterator[AgentEvent]:
        try:
            async for event in self.agent.stream(
                context_messages,
                tool_names=tools,
                temperature=settings.temperature if settings else None,
                max_tokens=settings.max_tokens if settings else None,
                model=settings.model_id if settings else None,
                think=think,
                cancel_event=cancel_event,
            ):
                yield event
        finally:
            if self._cancel_events.get(message_id) is cancel_event:
                self._cancel_events.pop(message_id, None)

    def stop(self, message_id: str) -> None:
        """Signal the stream of ``message_id`` to end; unknown ids are ignored."""
        cancel_event = self._cancel_events.get(message_id)
        if cancel_event is not None:
            cancel_event.set()
            logger.info("Stop requested for agent stream %s", message_id)
