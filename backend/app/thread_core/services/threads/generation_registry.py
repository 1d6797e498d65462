"""In-memory arena of in-flight generations keyed by assistant message id.

Each id owns an ``asyncio.Lock``; every mutation of a generation happens while
holding it, so events of one message are applied one at a time while other
messages proceed independently.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from thread_core.models.chat_models import Message
from thread_core.models.errors import GenerationInProgress

logger = logging.getLogger(__name__)


class GenerationPhase(str, enum.Enum):
    GENERATING = "generating"
    PARKED = "parked"


@dataclass
class GenerationState:
    """Transient record of one in-flight assistant reply. Times are epoch ms."""

    message: Message
    conversation_id: str
    start_time: int
    first_token_time: Optional[int] = None
    prompt_tokens: int = 0
    completion_tokens: int = 0
    reasoning_start_time: Optional[int] = None
    reasoning_end_time: Optional[int] = None
    last_reasoning_time: Optional[int] = None
    is_searching: bool = False
    think: bool = False
    context_cutoff: Optional[int] = None
    context_length: int = 0
    model_id: Optional[str] = None
    provider_id: Optional[str] = None
    phase: GenerationPhase = GenerationPhase.GENERATING
    had_error: bool = False
    last_flush: int = 0
    dirty: bool = False
    resumed_calls: Set[str] = field(default_factory=set)

    @property
    def message_id(self) -> str:
        return self.message.id


class GenerationRegistry:
    """Owns generation states, their locks and their consumer tasks."""

    def __init__(self) -> None:
        self._states: Dict[str, GenerationState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    def attach(self, state: GenerationState) -> None:
        """Register a new generation; a second one for the same id is rejected."""
        if state.message_id in self._states:
            raise GenerationInProgress(
                f"A generation is already running for message {state.message_id}"
            )
        self._states[state.message_id] = state

    def get(self, message_id: str) -> Optional[GenerationState]:
        return self._states.get(message_id)

    def __contains__(self, message_id: str) -> bool:
        return message_id in self._states

    def __len__(self) -> int:
        return len(self._states)

    def lock(self, message_id: str) -> asyncio.Lock:
        """Return the lock serializing work on ``message_id``."""
        if message_id not in self._locks:
            self._locks[message_id] = asyncio.Lock()
        return self._locks[message_id]

    def release(self, message_id: str) -> Optional[GenerationState]:
        """Forget a generation. The caller must hold its lock."""
        self._locks.pop(message_id, None)
        return self._states.pop(message_id, None)

    def set_task(self, message_id: str, task: asyncio.Task) -> None:
        """Track the consumer task of a generation until it completes."""
        self._tasks[message_id] = task
        task.add_done_callback(lambda t: self._discard_task(message_id, t))

    def _discard_task(self, message_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(message_id) is task:
            self._tasks.pop(message_id, None)

    def get_task(self, message_id: str) -> Optional[asyncio.Task]:
        return self._tasks.get(message_id)

    def for_conversation(self, conversation_id: str) -> List[GenerationState]:
        """Snapshot of the generations belonging to a conversation."""
        return [s for s in self._states.values() if s.conversation_id == conversation_id]
