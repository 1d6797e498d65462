"""Conversation-level API wiring the message, generation and permission services."""

import logging
from functools import lru_cache
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import sessionmaker

from thread_core.agents.agent_stream_provider import AgentStreamProvider
from thread_core.agents.lib_agent.agent import Agent
from thread_core.agents.lib_agent.base_llm import BaseLLM, EchoLLM
from thread_core.agents.lib_agent.tool import ToolRuntime
from thread_core.agents.lib_agent.utils.db_permission_store import DBPermissionStore
from thread_core.agents.lib_agent.utils.openai_llm import OpenAILLM
from thread_core.agents.tools.filesystem import FILESYSTEM_TOOLS
from thread_core.configs import settings
from thread_core.models.chat_models import (
    Message,
    PermissionType,
    ThreadPage,
)
from thread_core.models.errors import NotFound
from thread_core.repositories.threads.database import SessionLocal, engine
from thread_core.repositories.threads.schemas.conversations_schema import Conversation
from thread_core.services.events.event_bus import (
    CONVERSATION_ACTIVATED,
    CONVERSATION_LIST_UPDATED,
    EventBus,
    build_event_bus,
)
from thread_core.services.search.search_manager import SearchManager
from thread_core.services.threads.cancellation_controller import CancellationController
from thread_core.services.threads.conversation_service import ConversationService
from thread_core.services.threads.generation_orchestrator import GenerationOrchestrator
from thread_core.services.threads.message_manager import MessageContent, MessageManager
from thread_core.services.threads.permission_gate import PermissionGate
from thread_core.services.threads.utils import strip_think_tags

logger = logging.getLogger(__name__)

TITLE_PROMPT = (
    "Summarize the conversation below as a short title of at most 10 words, "
    "in the language of the conversation. Reply with the title only."
)
PAGE_SIZE = 200


class ThreadService:
    """Facade exposing every conversation and message operation."""

    def __init__(
        self,
        message_manager: MessageManager,
        conversation_service: ConversationService,
        orchestrator: GenerationOrchestrator,
        permission_gate: PermissionGate,
        cancellation: CancellationController,
        event_bus: EventBus,
        llm: Optional[BaseLLM] = None,
    ) -> None:
        self.message_manager = message_manager
        self.conversation_service = conversation_service
        self.orchestrator = orchestrator
        self.permission_gate = permission_gate
        self.cancellation = cancellation
        self.event_bus = event_bus
        self.llm = llm or EchoLLM()
        self.active_conversation_id: Optional[str] = None

    # ---- conversations ----

    def create_conversation(
        self,
        title: str,
        settings: Optional[Dict[str, Any]] = None,
        force_new: bool = False,
    ) -> Conversation:
        conversation = self.conversation_service.create(title, settings, force_new)
        self.event_bus.emit(CONVERSATION_LIST_UPDATED, {"conversation_id": conversation.id})
        return conversation

    def get_conversation(self, conversation_id: str) -> Conversation:
        return self.conversation_service.get(conversation_id)

    def list_conversations(
        self, page: int = 1, page_size: int = 20
    ) -> Tuple[List[Conversation], int]:
        return self.conversation_service.list(page, page_size)

    def rename_conversation(self, conversation_id: str, title: str) -> Conversation:
        conversation = self.conversation_service.rename(conversation_id, title)
        self.event_bus.emit(CONVERSATION_LIST_UPDATED, {"conversation_id": conversation_id})
        return conversation

    def update_conversation_settings(
        self, conversation_id: str, settings: Dict[str, Any]
    ) -> Conversation:
        return self.conversation_service.update_settings(conversation_id, settings)

    def toggle_pinned(self, conversation_id: str, is_pinned: bool) -> Conversation:
        conversation = self.conversation_service.toggle_pinned(conversation_id, is_pinned)
        self.event_bus.emit(CONVERSATION_LIST_UPDATED, {"conversation_id": conversation_id})
        return conversation

    def set_active_conversation(self, conversation_id: str) -> Conversation:
        """Mark a conversation as the one shown by the UI."""
        conversation = self.conversation_service.get(conversation_id)
        self.active_conversation_id = conversation_id
        self.event_bus.emit(CONVERSATION_ACTIVATED, {"conversation_id": conversation_id})
        return conversation

    async def delete_conversation(self, conversation_id: str) -> None:
        """Stop the conversation's generations, then delete it."""
        await self.cancellation.stop_conversation(conversation_id)
        self.conversation_service.delete(conversation_id)
        if self.active_conversation_id == conversation_id:
            self.active_conversation_id = None
        self.event_bus.emit(CONVERSATION_LIST_UPDATED, {"conversation_id": conversation_id})

    async def fork_conversation(
        self, conversation_id: str, message_id: str, title: Optional[str] = None
    ) -> Conversation:
        """
        Copy a conversation up to and including ``message_id``.

        Only sent, non-variant messages are copied; parent links are remapped.
        """
        source = self.conversation_service.get(conversation_id)
        target = self.message_manager.get_message(message_id)
        if target.conversation_id != conversation_id:
            raise NotFound(f"Message {message_id} not found in conversation {conversation_id}")

        fork = self.conversation_service.create(
            title or source.title,
            source.settings.model_dump(),
            force_new=True,
        )
        id_map: Dict[str, str] = {}
        for message in self._all_messages(conversation_id):
            if message.order_seq > target.order_seq:
                break
            if message.status != "sent" or message.is_variant:
                continue
            copy = self.message_manager.send(
                fork.id,
                message.content,
                message.role,
                parent_id=id_map.get(message.parent_id) if message.parent_id else None,
                metadata=message.usage,
            )
            if message.role == "assistant":
                self.message_manager.update_status(copy.id, "sent")
            id_map[message.id] = copy.id
        self.event_bus.emit(CONVERSATION_LIST_UPDATED, {"conversation_id": fork.id})
        return self.conversation_service.get(fork.id)

    def _all_messages(self, conversation_id: str) -> List[Message]:
        messages: List[Message] = []
        page = 1
        while True:
            batch = self.message_manager.get_thread(conversation_id, page, PAGE_SIZE)
            messages.extend(batch.messages)
            if len(messages) >= batch.total or not batch.messages:
                return messages
            page += 1

    async def summarize_title(self, conversation_id: str) -> str:
        """Ask the LLM for a short title and store it."""
        conversation = self.conversation_service.get(conversation_id)
        context = self.message_manager.get_context_messages(
            conversation_id, conversation.settings.context_length
        )
        transcript = "\n".join(f"{m.role}: {m.text}" for m in context)
        reply = await self.llm.complete(
            [
                {"role": "system", "content": TITLE_PROMPT},
                {"role": "user", "content": transcript},
            ]
        )
        title = strip_think_tags(reply).strip().strip("\"'")
        if not title:
            return conversation.title
        self.rename_conversation(conversation_id, title)
        return title

    # ---- messages ----

    async def send_message(
        self, conversation_id: str, content: MessageContent, role: str = "user"
    ) -> Optional[Message]:
        """
        Store a message; a user message also starts the assistant reply.

        Returns:
            Optional[Message]: The pending assistant message for user messages.
        """
        if role != "user":
            message = self.message_manager.send(conversation_id, content, role)
            if role == "assistant":
                self.message_manager.update_status(message.id, "sent")
            return None
        user_message = self.message_manager.send(conversation_id, content, "user")
        return await self.orchestrator.start_generation(conversation_id, user_message)

    async def retry_message(self, message_id: str) -> Message:
        """Generate a new variant next to an assistant message."""
        variant = self.message_manager.retry(message_id)
        user_message = (
            self.message_manager.find_message(variant.parent_id) if variant.parent_id else None
        )
        await self.orchestrator.attach_generation(variant, user_message)
        return variant

    def edit_message(self, message_id: str, content: MessageContent) -> Message:
        return self.message_manager.edit(message_id, content)

    async def delete_message(self, message_id: str) -> None:
        await self.cancellation.stop_message(message_id)
        self.message_manager.delete(message_id)

    def get_message(self, message_id: str) -> Message:
        return self.message_manager.get_message(message_id)

    def get_thread(self, conversation_id: str, page: int = 1, page_size: int = 100) -> ThreadPage:
        self.conversation_service.get(conversation_id)
        return self.message_manager.get_thread(conversation_id, page, page_size)

    def get_message_variants(self, message_id: str) -> List[Message]:
        return self.message_manager.get_variants(message_id)

    def get_main_message(self, message_id: str) -> Message:
        """Return the non-variant reply among the siblings of ``message_id``."""
        message = self.message_manager.get_message(message_id)
        if message.parent_id is None:
            return message
        main = self.message_manager.get_main_message_by_parent_id(message.parent_id)
        if main is None:
            raise NotFound(f"No main reply for message {message_id}")
        return main

    def mark_context_edge(self, message_id: str, is_edge: bool = True) -> Message:
        return self.message_manager.mark_context_edge(message_id, is_edge)

    def clear_context(self, conversation_id: str) -> Optional[Message]:
        """Exclude the whole current history from the next prompt."""
        latest = self.message_manager.get_latest_message(conversation_id)
        if latest is None:
            return None
        return self.message_manager.mark_context_edge(latest.id, True)

    async def clear_all_messages(self, conversation_id: str) -> int:
        await self.cancellation.stop_conversation(conversation_id)
        return self.message_manager.clear_all(conversation_id)

    # ---- generation control ----

    async def handle_permission_response(
        self,
        message_id: str,
        tool_call_id: str,
        granted: bool,
        permission_type: Optional[PermissionType] = None,
        remember: bool = False,
    ) -> Message:
        await self.permission_gate.resolve(
            message_id, tool_call_id, granted, permission_type, remember
        )
        return self.message_manager.get_message(message_id)

    async def stop_message_generation(self, message_id: str) -> bool:
        return await self.cancellation.stop_message(message_id)

    async def stop_conversation_generation(self, conversation_id: str) -> List[str]:
        return await self.cancellation.stop_conversation(conversation_id)

    def initialize(self) -> List[str]:
        """Recover assistant messages left pending by a previous process."""
        recovered = self.message_manager.initialize_unfinished_messages()
        if recovered:
            logger.info("Recovered %d unfinished messages", len(recovered))
        return recovered


def build_thread_service(
    session_factory: sessionmaker = SessionLocal,
    llm: Optional[BaseLLM] = None,
    tool_runtime: Optional[ToolRuntime] = None,
    search_manager: Optional[SearchManager] = None,
    event_bus: Optional[EventBus] = None,
    stream_provider: Optional[Any] = None,
) -> ThreadService:
    """Wire a ThreadService and its collaborators."""
    event_bus = event_bus or build_event_bus()
    tool_runtime = tool_runtime or ToolRuntime(
        FILESYSTEM_TOOLS,
        permission_store=DBPermissionStore(session_factory.kw.get("bind") or engine),
    )
    if llm is None:
        llm = OpenAILLM() if settings.OPENAI_API_KEY else EchoLLM()
    search_manager = search_manager or SearchManager()
    stream_provider = stream_provider or AgentStreamProvider(Agent(tool_runtime, llm))

    message_manager = MessageManager(session_factory)
    conversation_service = ConversationService(session_factory)
    orchestrator = GenerationOrchestrator(
        message_manager,
        conversation_service,
        stream_provider,
        event_bus,
        search_manager=search_manager,
    )
    return ThreadService(
        message_manager=message_manager,
        conversation_service=conversation_service,
        orchestrator=orchestrator,
        permission_gate=PermissionGate(orchestrator, message_manager, tool_runtime),
        cancellation=CancellationController(
            orchestrator, message_manager, event_bus, search_manager
        ),
        event_bus=event_bus,
        llm=llm,
    )


# Dependency Injection for FastAPI
@lru_cache
def get_thread_service() -> ThreadService:
    """Return the process-wide ThreadService."""
    return build_thread_service(SessionLocal)
