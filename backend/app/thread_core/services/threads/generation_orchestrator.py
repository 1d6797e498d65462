"""State machine driving assistant messages from agent events.

A generation moves Generating -> Finalized, or Generating -> Parked when the
stream ends while a permission block is still pending. Resolving the last
pending block either resumes the agent loop on the same message id or
finalizes the message.

Blocks are checkpointed to the store before any notification describing them
is emitted. Streamed text extending the trailing block is checkpointed at most
once per ``flush_interval_ms``; any new block or status change is written
immediately.
"""

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Set, Type, Union

from thread_core.configs import settings
from thread_core.models.agent_events import (
    AgentEvent,
    ContentEvent,
    EndEvent,
    ErrorEvent,
    PermissionRequiredEvent,
    ReasoningEvent,
    ToolCallEndEvent,
    ToolCallStartEvent,
    UsageEvent,
)
from thread_core.models.chat_models import (
    BLOCKS_ADAPTER,
    ContentBlock,
    ErrorBlock,
    Message,
    MessageMetadata,
    PermissionBlock,
    ReasoningBlock,
    SearchResult,
    ToolCallBlock,
    UserMessageContent,
    now_ms,
)
from thread_core.models.errors import NotFound, PersistenceFailure, UpstreamStreamFailure
from thread_core.services.events.event_bus import (
    CONVERSATION_LIST_UPDATED,
    MESSAGE_PARKED,
    SEARCH_FINISHED,
    SEARCH_STARTED,
    STREAM_END,
    STREAM_ERROR,
    STREAM_RESPONSE,
    EventBus,
)
from thread_core.services.search.search_manager import SearchManager
from thread_core.services.threads.conversation_service import ConversationService
from thread_core.services.threads.generation_registry import (
    GenerationPhase,
    GenerationRegistry,
    GenerationState,
)
from thread_core.services.threads.message_manager import MessageManager
from thread_core.services.threads.prompt_builder import PromptBuilder
from thread_core.services.threads.utils import approximate_tokens

logger = logging.getLogger(__name__)

TextBlock = Union[ContentBlock, ReasoningBlock]


def unexecuted_grants(message: Message) -> Set[str]:
    """Return the ids of granted tool calls that have not run yet."""
    return {
        b.id
        for b in message.blocks
        if isinstance(b, ToolCallBlock) and b.status == "granted" and b.response is None
    }


def has_unexecuted_grants(message: Message) -> bool:
    return bool(unexecuted_grants(message))


class GenerationOrchestrator:
    """Owns the generation lifecycle of assistant messages."""

    def __init__(
        self,
        message_manager: MessageManager,
        conversation_service: ConversationService,
        stream_provider: Any,
        event_bus: EventBus,
        search_manager: Optional[SearchManager] = None,
        prompt_builder: Optional[PromptBuilder] = None,
        registry: Optional[GenerationRegistry] = None,
        retry_attempts: int = settings.PERSIST_RETRY_ATTEMPTS,
        retry_delay: float = settings.PERSIST_RETRY_DELAY_SECONDS,
        flush_interval_ms: int = settings.CONTENT_FLUSH_INTERVAL_MS,
    ) -> None:
        self.message_manager = message_manager
        self.conversation_service = conversation_service
        self.stream_provider = stream_provider
        self.event_bus = event_bus
        self.search_manager = search_manager
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.registry = registry or GenerationRegistry()
        self.retry_attempts = max(retry_attempts, 1)
        self.retry_delay = retry_delay
        self.flush_interval_ms = flush_interval_ms

    # ---- lifecycle ----

    async def start_generation(self, conversation_id: str, user_message: Message) -> Message:
        """Create the pending assistant reply to ``user_message`` and start generating it."""
        assistant = self.message_manager.send(
            conversation_id, [], "assistant", parent_id=user_message.id
        )
        await self.attach_generation(assistant, user_message)
        return assistant

    async def attach_generation(
        self, message: Message, user_message: Optional[Message] = None
    ) -> GenerationState:
        """
        Start generating an existing pending assistant message.

        Raises:
            GenerationInProgress: A generation is already attached to the message id.
        """
        conversation = self.conversation_service.get(message.conversation_id)
        think = isinstance(getattr(user_message, "content", None), UserMessageContent) and (
            user_message.content.think
        )
        state = GenerationState(
            message=message,
            conversation_id=message.conversation_id,
            start_time=now_ms(),
            think=bool(think),
            context_cutoff=user_message.order_seq if user_message else message.order_seq,
            context_length=conversation.settings.context_length,
            model_id=conversation.settings.model_id,
            provider_id=conversation.settings.provider_id,
        )
        self.registry.attach(state)
        logger.info(
            "Generation started for message %s in conversation %s",
            message.id,
            message.conversation_id,
        )
        task = asyncio.create_task(self._run(state, user_message))
        self.registry.set_task(message.id, task)
        return state

    def _context(
        self, state: GenerationState, user_message: Optional[Message] = None
    ) -> List[Message]:
        context = self.message_manager.get_context_messages(
            state.conversation_id, state.context_length, state.context_cutoff
        )
        # the message being answered is never cut from its own prompt
        if user_message is not None and all(m.id != user_message.id for m in context):
            context.append(user_message)
        return context

    async def _search(self, state: GenerationState, user_message: Message) -> List[SearchResult]:
        assert self.search_manager is not None
        payload = {"conversation_id": state.conversation_id, "message_id": state.message_id}
        state.is_searching = True
        self.event_bus.emit(SEARCH_STARTED, payload)
        try:
            results = await self.search_manager.search(
                state.conversation_id, user_message.text
            )
        finally:
            state.is_searching = False
        self.event_bus.emit(
            SEARCH_FINISHED,
            {**payload, "results": [r.model_dump() for r in results]},
        )
        return results

    async def _run(self, state: GenerationState, user_message: Optional[Message]) -> None:
        message_id = state.message_id
        try:
            conversation = self.conversation_service.get(state.conversation_id)
            results: List[SearchResult] = []
            if (
                user_message is not None
                and isinstance(user_message.content, UserMessageContent)
                and user_message.content.search
                and self.search_manager is not None
            ):
                results = await self._search(state, user_message)
            context = self._context(state, user_message)
            prompt = self.prompt_builder.build_messages(
                conversation.settings, context, user_message, results
            )
            state.prompt_tokens = self.prompt_builder.count_tokens(prompt)
            stream = self.stream_provider.open_stream(
                state.conversation_id,
                message_id,
                prompt,
                conversation.settings.enabled_tool_ids,
                settings=conversation.settings,
                think=state.think,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Could not open the agent stream for %s", message_id)
            await self._abort(message_id, f"Failed to start generation: {exc}")
            return
        await self._consume(message_id, stream)

    async def _consume(self, message_id: str, stream: AsyncIterator[AgentEvent]) -> None:
        """Apply every event of one sub-stream; abnormal termination is synthesized."""
        ended = False
        try:
            async for event in stream:
                ended = await self.handle_event(message_id, event)
                if ended:
                    break
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            failure = UpstreamStreamFailure(f"Upstream stream failed: {exc}")
            logger.warning("%s (message %s)", failure.message, message_id)
            await self._abort(message_id, failure.message)
            return
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        if not ended:
            logger.warning("Agent stream of %s ended without an end event", message_id)
            await self._abort(message_id, "Upstream stream ended unexpectedly")

    async def _abort(self, message_id: str, error_text: str) -> None:
        await self.handle_event(message_id, ErrorEvent(message=error_text))
        await self.handle_event(message_id, EndEvent(user_stop=False))

    # ---- event application ----

    async def handle_event(self, message_id: str, event: AgentEvent) -> bool:
        """
        Apply one agent event to the generation of ``message_id``.

        Returns:
            bool: True when the event terminated the sub-stream.
        """
        async with self.registry.lock(message_id):
            state = self.registry.get(message_id)
            if state is None or state.phase is not GenerationPhase.GENERATING:
                logger.debug("Dropping %s event for inactive generation %s", event.type, message_id)
                return isinstance(event, EndEvent)

            if isinstance(event, ContentEvent):
                self._on_text(state, ContentBlock, event.text)
            elif isinstance(event, ReasoningEvent):
                self._on_text(state, ReasoningBlock, event.text)
            elif isinstance(event, ToolCallStartEvent):
                self._on_tool_call_start(state, event)
            elif isinstance(event, ToolCallEndEvent):
                self._on_tool_call_end(state, event)
            elif isinstance(event, PermissionRequiredEvent):
                self._on_permission_required(state, event)
            elif isinstance(event, UsageEvent):
                state.prompt_tokens = event.prompt_tokens or state.prompt_tokens
                state.completion_tokens += event.completion_tokens
            elif isinstance(event, ErrorEvent):
                self.append_error(state, event.message)
            elif isinstance(event, EndEvent):
                await self._on_end(state, event.user_stop)
                return True
            return False

    def _close_text_blocks(self, state: GenerationState, status: str = "success") -> None:
        now = now_ms()
        for block in state.message.blocks:
            if isinstance(block, (ContentBlock, ReasoningBlock)) and block.status == "loading":
                block.status = status
                if isinstance(block, ReasoningBlock):
                    block.reasoning_end = now
                    state.reasoning_end_time = now

    def _on_text(self, state: GenerationState, block_type: Type[TextBlock], text: str) -> None:
        now = now_ms()
        if state.first_token_time is None:
            state.first_token_time = now
        if block_type is ReasoningBlock:
            if state.reasoning_start_time is None:
                state.reasoning_start_time = now
            state.last_reasoning_time = now

        blocks = state.message.blocks
        last = blocks[-1] if blocks else None
        if isinstance(last, block_type) and last.status == "loading":
            last.text += text
            state.dirty = True
            if now - state.last_flush >= self.flush_interval_ms:
                self.flush(state)
            return

        self._close_text_blocks(state)
        if block_type is ReasoningBlock:
            blocks.append(ReasoningBlock(text=text, reasoning_start=now))
        else:
            blocks.append(ContentBlock(text=text))
        self.flush(state)

    def _on_tool_call_start(self, state: GenerationState, event: ToolCallStartEvent) -> None:
        self._close_text_blocks(state)
        block = state.message.find_tool_call(event.id)
        if block is not None:
            block.name = event.name
            block.server_name = event.server_name or block.server_name
            block.params = event.params or block.params
            block.status = "running"
        else:
            state.message.blocks.append(
                ToolCallBlock(
                    id=event.id,
                    name=event.name,
                    server_name=event.server_name,
                    params=event.params,
                    status="running",
                )
            )
        self.flush(state)

    def _on_tool_call_end(self, state: GenerationState, event: ToolCallEndEvent) -> None:
        block = state.message.find_tool_call(event.id)
        if block is None:
            logger.warning("tool_call_end for unknown call %s on %s", event.id, state.message_id)
            return
        block.status = "error" if event.is_error else "success"
        block.response = event.response
        self.flush(state)

    def _on_permission_required(
        self, state: GenerationState, event: PermissionRequiredEvent
    ) -> None:
        self._close_text_blocks(state)
        tool_call = state.message.find_tool_call(event.id)
        if tool_call is not None:
            tool_call.status = "pending"
        state.message.blocks.append(
            PermissionBlock(
                tool_call_id=event.id,
                tool_name=event.name or (tool_call.name if tool_call else None),
                permission_type=event.permission_type,
                server_name=event.server_name or (tool_call.server_name if tool_call else None),
                description=event.description,
            )
        )
        self.flush(state)

    def append_error(self, state: GenerationState, error_text: str) -> None:
        """Append an error block and checkpoint it."""
        self._close_text_blocks(state, status="error")
        state.message.blocks.append(ErrorBlock(message=error_text))
        state.had_error = True
        if self.flush(state):
            self.event_bus.emit(
                STREAM_ERROR,
                {**self._payload(state), "error": error_text},
            )

    async def _on_end(self, state: GenerationState, user_stop: bool) -> None:
        self._close_text_blocks(state)
        if state.message.pending_permissions():
            state.phase = GenerationPhase.PARKED
            if self.flush(state):
                self.event_bus.emit(MESSAGE_PARKED, self._payload(state))
            logger.info("Generation %s parked awaiting permission", state.message_id)
            return
        # a call already handed to a resumed stream is not retried
        if not state.had_error and unexecuted_grants(state.message) - state.resumed_calls:
            await self.resume_locked(state)
            return
        await self.finalize_locked(state, user_stop=user_stop)

    # ---- checkpoints ----

    def _payload(self, state: GenerationState) -> Dict[str, Any]:
        return {
            "conversation_id": state.conversation_id,
            "message_id": state.message_id,
            "status": state.message.status,
            "blocks": BLOCKS_ADAPTER.dump_python(state.message.blocks, mode="json"),
        }

    def flush(self, state: GenerationState) -> bool:
        """
        Write the block list to the store, then notify listeners.

        Returns:
            bool: False when the write failed; nothing is emitted in that case.
        """
        try:
            self.message_manager.update_blocks(state.message_id, state.message.blocks)
        except (PersistenceFailure, NotFound) as exc:
            logger.warning("Checkpoint of %s failed: %s", state.message_id, exc.message)
            state.dirty = True
            return False
        state.dirty = False
        state.last_flush = now_ms()
        self.event_bus.emit(STREAM_RESPONSE, self._payload(state))
        return True

    def _metadata(self, state: GenerationState) -> MessageMetadata:
        now = now_ms()
        output_tokens = state.completion_tokens or approximate_tokens(
            "".join(
                b.text
                for b in state.message.blocks
                if isinstance(b, (ContentBlock, ReasoningBlock))
            )
        )
        total_tokens = state.prompt_tokens + output_tokens
        generation_time = now - state.start_time
        return MessageMetadata(
            total_tokens=total_tokens,
            input_tokens=state.prompt_tokens,
            output_tokens=output_tokens,
            generation_time=generation_time,
            first_token_time=(
                state.first_token_time - state.start_time if state.first_token_time else 0
            ),
            tokens_per_second=(
                output_tokens / (generation_time / 1000) if generation_time > 0 else 0.0
            ),
            context_usage=(
                total_tokens / state.context_length if state.context_length > 0 else 0.0
            ),
            model=state.model_id,
            provider=state.provider_id,
            reasoning_start_time=state.reasoning_start_time,
            reasoning_end_time=state.reasoning_end_time or state.last_reasoning_time,
        )

    async def _persist_terminal(self, state: GenerationState) -> bool:
        """Write blocks, metadata and status, retrying store failures."""
        message = state.message
        for attempt in range(1, self.retry_attempts + 1):
            try:
                self.message_manager.update_blocks(message.id, message.blocks)
                self.message_manager.update_metadata(message.id, message.usage)
                self.message_manager.update_status(message.id, message.status)
                return True
            except NotFound:
                logger.error("Message %s vanished before it could be finalized", message.id)
                return False
            except PersistenceFailure as exc:
                logger.warning(
                    "Persisting final state of %s failed (attempt %s/%s): %s",
                    message.id,
                    attempt,
                    self.retry_attempts,
                    exc.message,
                )
                if attempt < self.retry_attempts:
                    await asyncio.sleep(self.retry_delay)

        logger.error("Giving up persisting final state of %s", message.id)
        message.blocks.append(
            ErrorBlock(message="Failed to save the final state of this message")
        )
        message.status = "error"
        return False

    async def finalize_locked(self, state: GenerationState, user_stop: bool = False) -> None:
        """Compute metrics, persist the terminal status and drop the generation."""
        self._close_text_blocks(state, status="error" if state.had_error else "success")
        state.message.usage = self._metadata(state)
        state.message.status = "error" if state.had_error else "sent"

        persisted = await self._persist_terminal(state)
        self.registry.release(state.message_id)
        payload = {**self._payload(state), "user_stop": user_stop}
        if persisted:
            self.event_bus.emit(STREAM_END, payload)
        else:
            self.event_bus.emit(STREAM_ERROR, payload)
        logger.info(
            "Generation %s finalized with status %s", state.message_id, state.message.status
        )

        if persisted and state.message.status == "sent":
            self._clear_new_flag(state.conversation_id)

    def _clear_new_flag(self, conversation_id: str) -> None:
        try:
            conversation = self.conversation_service.get(conversation_id)
            if conversation.is_new:
                self.conversation_service.mark_not_new(conversation_id)
                self.event_bus.emit(CONVERSATION_LIST_UPDATED, {"conversation_id": conversation_id})
        except (NotFound, PersistenceFailure) as exc:
            logger.warning("Could not clear is_new on %s: %s", conversation_id, exc.message)

    async def resume_locked(self, state: GenerationState) -> None:
        """Re-open the agent stream for a parked message, reusing its id."""
        try:
            conversation = self.conversation_service.get(state.conversation_id)
            prompt = self.prompt_builder.build_resume_messages(
                conversation.settings, self._context(state), state.message
            )
            state.phase = GenerationPhase.GENERATING
            state.resumed_calls |= unexecuted_grants(state.message)
            stream = self.stream_provider.open_stream(
                state.conversation_id,
                state.message_id,
                prompt,
                conversation.settings.enabled_tool_ids,
                settings=conversation.settings,
                think=state.think,
            )
        except Exception as exc:
            logger.exception("Could not resume generation %s", state.message_id)
            state.phase = GenerationPhase.GENERATING
            self.append_error(state, f"Failed to resume generation: {exc}")
            await self.finalize_locked(state)
            return

        logger.info("Resuming generation %s", state.message_id)
        task = asyncio.create_task(self._consume(state.message_id, stream))
        self.registry.set_task(state.message_id, task)
