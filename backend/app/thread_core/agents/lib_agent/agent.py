"""Agent runs the LLM + tools function-calling loop as a stream of agent events."""

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

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

from .base_llm import BaseLLM, EchoLLM
from .tool import ToolRuntime

logger = logging.getLogger(__name__)


def parse_arguments(args_json: str) -> Tuple[Dict[str, Any], Optional[str]]:
    """Decode tool-call arguments, returning an error text when they are invalid."""
    try:
        args = json.loads(args_json or "{}")
    except json.JSONDecodeError:
        return {}, "Could not decode JSON arguments."
    if not isinstance(args, dict):
        return {}, "Tool arguments must be a JSON object."
    return args, None


class Agent:
    """
    Streams one assistant turn, running tools between LLM rounds.

    Tools whose permission is missing are announced with a ``tool_call_start``
    and a ``permission_required`` event, and the stream ends so the caller can
    park the message. When the stream is reopened after a grant, tool calls in
    the history that have no result yet are executed first.
    """

    def __init__(
        self,
        runtime: ToolRuntime,
        llm: Optional[BaseLLM] = None,
        max_rounds: int = settings.MAX_TOOL_ROUNDS,
    ) -> None:
        self.runtime = runtime
        self.llm = llm or EchoLLM()
        self.max_rounds = max_rounds

    async def _execute(
        self, call_id: str, name: str, params: Dict[str, Any]
    ) -> AsyncIterator[AgentEvent]:
        spec = self.runtime.get_spec(name)
        server_name = spec.server_name if spec else "unknown"
        yield ToolCallStartEvent(id=call_id, name=name, server_name=server_name, params=params)
        response, is_error = await asyncio.to_thread(
            self.runtime.call_tool, server_name, name, params
        )
        yield ToolCallEndEvent(id=call_id, response=response, is_error=is_error)

    async def _answer_pending_calls(
        self, messages: List[Dict[str, Any]]
    ) -> AsyncIterator[AgentEvent]:
        """Run history tool calls without a result, inserting their tool turns."""
        answered = {m.get("tool_call_id") for m in messages if m.get("role") == "tool"}
        rebuilt: List[Dict[str, Any]] = []
        for message in messages:
            rebuilt.append(message)
            for call in message.get("tool_calls") or []:
                if call["id"] in answered:
                    continue
                name = call["function"]["name"]
                params, error = parse_arguments(call["function"]["arguments"])
                spec = self.runtime.get_spec(name)
                if error is None and spec and not self.runtime.has_permission(
                    spec.server_name, spec.permission_type
                ):
                    error = f"Permission {spec.permission_type} on {spec.server_name} was not granted."
                if error is not None:
                    yield ToolCallStartEvent(id=call["id"], name=name, params=params)
                    yield ToolCallEndEvent(id=call["id"], response=error, is_error=True)
                    response = error
                else:
                    response = ""
                    async for event in self._execute(call["id"], name, params):
                        if isinstance(event, ToolCallEndEvent):
                            response = event.response
                        yield event
                rebuilt.append({"role": "tool", "tool_call_id": call["id"], "content": response})
        messages[:] = rebuilt

    async def stream(
        self,
        messages: List[Dict[str, Any]],
        tool_names: Optional[List[str]] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        model: Optional[str] = None,
        think: bool = False,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[AgentEvent]:
        """Yield the agent events of one assistant turn, always ending with ``end``."""
        msgs = list(messages)
        tools = self.runtime.tool_definitions(tool_names) or None

        async for event in self._answer_pending_calls(msgs):
            yield event

        for _ in range(self.max_rounds):
            text = ""
            calls: List[Dict[str, Any]] = []
            async for chunk in self.llm.stream(
                msgs,
                tools=tools,
                temperature=temperature,
                max_tokens=max_tokens,
                model=model,
                think=think,
            ):
                if cancel_event is not None and cancel_event.is_set():
                    yield EndEvent(user_stop=True)
                    return
                if chunk["type"] == "content":
                    text += chunk["text"]
                    yield ContentEvent(text=chunk["text"])
                elif chunk["type"] == "reasoning":
                    yield ReasoningEvent(text=chunk["text"])
                elif chunk["type"] == "usage":
                    yield UsageEvent(
                        prompt_tokens=chunk["prompt_tokens"],
                        completion_tokens=chunk["completion_tokens"],
                    )
                elif chunk["type"] == "tool_calls":
                    calls = chunk["tool_calls"]

            if not calls:
                yield EndEvent()
                return

            msgs.append({"role": "assistant", "content": text or None, "tool_calls": calls})
            blocked = False
            for call in calls:
                name = call["function"]["name"]
                params, error = parse_arguments(call["function"]["arguments"])
                spec = self.runtime.get_spec(name)
                if error is None and spec is not None and not self.runtime.has_permission(
                    spec.server_name, spec.permission_type
                ):
                    yield ToolCallStartEvent(
                        id=call["id"], name=name, server_name=spec.server_name, params=params
                    )
                    yield PermissionRequiredEvent(
                        id=call["id"],
                        name=name,
                        server_name=spec.server_name,
                        permission_type=spec.permission_type,
                        description=f"{name} needs {spec.permission_type} access on {spec.server_name}",
                    )
                    blocked = True
                    continue
                if error is not None:
                    yield ToolCallStartEvent(id=call["id"], name=name, params=params)
                    yield ToolCallEndEvent(id=call["id"], response=error, is_error=True)
                    msgs.append({"role": "tool", "tool_call_id": call["id"], "content": error})
                    continue
                async for event in self._execute(call["id"], name, params):
                    if isinstance(event, ToolCallEndEvent):
                        msgs.append(
                            {"role": "tool", "tool_call_id": call["id"], "content": event.response}
                        )
                    yield event

            if blocked:
                yield EndEvent()
                return

        logger.warning("Agent stopped after %s tool rounds", self.max_rounds)
        yield ErrorEvent(message=f"Stopped after {self.max_rounds} tool rounds")
        yield EndEvent()
