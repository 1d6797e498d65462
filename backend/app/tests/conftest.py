"""Shared fixtures: in-memory store, scripted agent streams and a wired orchestrator."""

import asyncio
from typing import Any, Dict, List, Optional, Union

import pytest
from sqlalchemy.orm import sessionmaker

from thread_core.agents.lib_agent.base_permission_store import PermissionStore
from thread_core.agents.lib_agent.tool import ToolRuntime, tool
from thread_core.agents.lib_agent.utils import db_permission_models  # noqa: F401
from thread_core.models.agent_events import AgentEvent
from thread_core.repositories.threads.database import Base, build_engine
from thread_core.repositories.threads.models import (  # noqa: F401
    conversations_model,
    messages_model,
)
from thread_core.services.events.event_bus import EventBus
from thread_core.services.threads.cancellation_controller import CancellationController
from thread_core.services.threads.conversation_service import ConversationService
from thread_core.services.threads.generation_orchestrator import GenerationOrchestrator
from thread_core.services.threads.message_manager import MessageManager
from thread_core.services.threads.permission_gate import PermissionGate


class Hang:
    """Script step that blocks the stream until ``release`` is set."""

    def __init__(self) -> None:
        self.release = asyncio.Event()


ScriptStep = Union[AgentEvent, Hang, Exception]


class ScriptedStreamProvider:
    """
    Stream provider replaying queued scripts, one per ``open_stream`` call.

    An ``Exception`` step is raised from the stream; a ``Hang`` step waits.
    """

    def __init__(self) -> None:
        self.scripts: List[List[ScriptStep]] = []
        self.opened: List[Dict[str, Any]] = []
        self.stopped: List[str] = []

    def queue(self, *steps: ScriptStep) -> None:
        self.scripts.append(list(steps))

    def open_stream(
        self,
        conversation_id: str,
        message_id: str,
        context_messages: List[Dict[str, Any]],
        tools: Optional[List[str]] = None,
        settings: Any = None,
        think: bool = False,
    ):
        self.opened.append(
            {
                "conversation_id": conversation_id,
                "message_id": message_id,
                "messages": context_messages,
                "tools": tools,
                "think": think,
            }
        )
        steps = self.scripts.pop(0) if self.scripts else []
        return self._replay(steps)

    async def _replay(self, steps: List[ScriptStep]):
        for step in steps:
            if isinstance(step, Hang):
                await step.release.wait()
            elif isinstance(step, Exception):
                raise step
            else:
                yield step

    def stop(self, message_id: str) -> None:
        self.stopped.append(message_id)


class RecordingBus(EventBus):
    """EventBus that also keeps every emitted ``(topic, payload)``."""

    def __init__(self) -> None:
        super().__init__()
        self.events: List[tuple] = []

    def emit(self, topic: str, payload: Dict[str, Any]) -> None:
        self.events.append((topic, payload))
        super().emit(topic, payload)

    def topics(self) -> List[str]:
        return [topic for topic, _ in self.events]


@tool(
    name="delete_file",
    description="Delete a file.",
    server_name="files",
    permission_type="write",
)
def delete_file(args: Dict[str, Any]) -> str:
    return "deleted"


async def drain(orchestrator: GenerationOrchestrator, message_id: str) -> None:
    """Wait until the consumer tasks of ``message_id`` are done."""
    for _ in range(100):
        task = orchestrator.registry.get_task(message_id)
        if task is None:
            return
        await asyncio.wait([task])


@pytest.fixture()
def engine():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def message_manager(session_factory) -> MessageManager:
    return MessageManager(session_factory)


@pytest.fixture()
def conversation_service(session_factory) -> ConversationService:
    return ConversationService(session_factory)


@pytest.fixture()
def conversation(conversation_service):
    return conversation_service.create("Test conversation", force_new=True)


@pytest.fixture()
def stream_provider() -> ScriptedStreamProvider:
    return ScriptedStreamProvider()


@pytest.fixture()
def event_bus() -> RecordingBus:
    return RecordingBus()


@pytest.fixture()
def tool_runtime() -> ToolRuntime:
    return ToolRuntime([delete_file], auto_approved=["read"], permission_store=PermissionStore())


@pytest.fixture()
def orchestrator(message_manager, conversation_service, stream_provider, event_bus):
    return GenerationOrchestrator(
        message_manager,
        conversation_service,
        stream_provider,
        event_bus,
        retry_attempts=2,
        retry_delay=0,
        flush_interval_ms=0,
    )


@pytest.fixture()
def permission_gate(orchestrator, message_manager, tool_runtime) -> PermissionGate:
    return PermissionGate(orchestrator, message_manager, tool_runtime)


@pytest.fixture()
def cancellation(orchestrator, message_manager, event_bus) -> CancellationController:
    return CancellationController(orchestrator, message_manager, event_bus)
