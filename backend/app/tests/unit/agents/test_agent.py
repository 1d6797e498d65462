"""Test the tool-calling agent loop, the tool runtime and the filesystem tools."""

import asyncio
import json

import pytest

from thread_core.agents.agent_stream_provider import AgentStreamProvider
from thread_core.agents.lib_agent.agent import Agent, parse_arguments
from thread_core.agents.lib_agent.base_llm import BaseLLM, EchoLLM
from thread_core.agents.lib_agent.base_permission_store import PermissionStore
from thread_core.agents.lib_agent.tool import ToolRuntime, tool
from thread_core.agents.lib_agent.utils.db_permission_store import DBPermissionStore
from thread_core.agents.tools.filesystem import FILESYSTEM_TOOLS, resolve_in_workspace
from thread_core.configs import settings
from thread_core.models.agent_events import (
    ContentEvent,
    EndEvent,
    ErrorEvent,
    PermissionRequiredEvent,
    ToolCallEndEvent,
    ToolCallStartEvent,
    UsageEvent,
)


def call(call_id, name, arguments):
    return {
        "id": call_id,
        "type": "function",
        "function": {"name": name, "arguments": json.dumps(arguments)},
    }


class ScriptedLLM(BaseLLM):
    """Replays one list of chunks per round and records the prompts it saw."""

    def __init__(self, *rounds):
        self.rounds = list(rounds)
        self.prompts = []

    async def stream(self, messages, tools=None, **kwargs):
        self.prompts.append([dict(m) for m in messages])
        for chunk in self.rounds.pop(0):
            yield chunk


@tool(name="boom", description="Always fails", server_name="misc", permission_type="execute")
def boom(args):
    raise RuntimeError("kaput")


def collect(agent, messages, **kwargs):
    async def run():
        return [event async for event in agent.stream(messages, **kwargs)]

    return asyncio.run(run())


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "WORKSPACE_ROOT", str(tmp_path))
    (tmp_path / "notes.txt").write_text("remember the milk", encoding="utf-8")
    return tmp_path


@pytest.fixture
def runtime():
    return ToolRuntime(FILESYSTEM_TOOLS + [boom], auto_approved=["read"])


class TestAgent:
    """Test cases for Agent."""

    def test_plain_reply(self, runtime) -> None:
        llm = ScriptedLLM(
            [
                {"type": "content", "text": "Hel"},
                {"type": "content", "text": "lo"},
                {"type": "usage", "prompt_tokens": 3, "completion_tokens": 2},
            ]
        )

        events = collect(Agent(runtime, llm), [{"role": "user", "content": "hi"}])

        assert [e.type for e in events] == ["content", "content", "usage", "end"]
        assert events[2] == UsageEvent(prompt_tokens=3, completion_tokens=2)

    def test_allowed_tool_runs_between_rounds(self, runtime, workspace) -> None:
        llm = ScriptedLLM(
            [{"type": "tool_calls", "tool_calls": [call("t1", "read_file", {"path": "notes.txt"})]}],
            [{"type": "content", "text": "It says milk"}],
        )

        events = collect(Agent(runtime, llm), [{"role": "user", "content": "read notes"}])

        assert isinstance(events[0], ToolCallStartEvent)
        assert events[0].server_name == "filesystem"
        assert events[1] == ToolCallEndEvent(id="t1", response="remember the milk")
        assert events[2] == ContentEvent(text="It says milk")
        assert isinstance(events[-1], EndEvent)
        second_prompt = llm.prompts[1]
        assert second_prompt[-2]["tool_calls"][0]["id"] == "t1"
        assert second_prompt[-1] == {
            "role": "tool",
            "tool_call_id": "t1",
            "content": "remember the milk",
        }

    def test_missing_permission_parks_the_turn(self, runtime, workspace) -> None:
        llm = ScriptedLLM(
            [
                {
                    "type": "tool_calls",
                    "tool_calls": [call("t1", "write_file", {"path": "a.txt", "content": "x"})],
                }
            ]
        )

        events = collect(Agent(runtime, llm), [{"role": "user", "content": "write"}])

        assert [e.type for e in events] == ["tool_call_start", "permission_required", "end"]
        assert isinstance(events[1], PermissionRequiredEvent)
        assert events[1].permission_type == "write"
        assert not (workspace / "a.txt").exists()

    def test_granted_pending_call_runs_on_resume(self, runtime, workspace) -> None:
        runtime.grant_permission("filesystem", "write")
        history = [
            {"role": "user", "content": "write"},
            {
                "role": "assistant",
                "content": None,
                "tool_calls": [call("t1", "write_file", {"path": "a.txt", "content": "x"})],
            },
        ]
        llm = ScriptedLLM([{"type": "content", "text": "Done"}])

        events = collect(Agent(runtime, llm), history)

        assert [e.type for e in events] == ["tool_call_start", "tool_call_end", "content", "end"]
        assert (workspace / "a.txt").read_text(encoding="utf-8") == "x"
        assert llm.prompts[0][-1]["role"] == "tool"

    def test_ungranted_pending_call_is_answered_with_error(self, runtime) -> None:
        history = [
            {"role": "user", "content": "write"},
            {"role": "assistant", "content": None, "tool_calls": [call("t1", "write_file", {})]},
        ]
        llm = ScriptedLLM([{"type": "content", "text": "Could not"}])

        events = collect(Agent(runtime, llm), history)

        assert events[1].is_error is True
        assert "was not granted" in events[1].response

    def test_invalid_arguments_and_failing_tool(self, runtime) -> None:
        bad_json = {"id": "t1", "type": "function", "function": {"name": "boom", "arguments": "{"}}
        runtime.grant_permission("misc", "execute")
        llm = ScriptedLLM(
            [{"type": "tool_calls", "tool_calls": [bad_json, call("t2", "boom", {})]}],
            [{"type": "content", "text": "sorry"}],
        )

        events = collect(Agent(runtime, llm), [{"role": "user", "content": "go"}])

        ends = [e for e in events if isinstance(e, ToolCallEndEvent)]
        assert ends[0].response == "Could not decode JSON arguments."
        assert ends[1].response == "Error calling tool: kaput"
        assert all(e.is_error for e in ends)

    def test_stops_after_max_rounds(self, runtime, workspace) -> None:
        looping = [{"type": "tool_calls", "tool_calls": [call("t", "list_directory", {})]}]
        llm = ScriptedLLM(looping, looping)

        events = collect(Agent(runtime, llm, max_rounds=2), [{"role": "user", "content": "ls"}])

        assert isinstance(events[-2], ErrorEvent)
        assert events[-2].message == "Stopped after 2 tool rounds"
        assert isinstance(events[-1], EndEvent)

    def test_cancel_event_ends_with_user_stop(self, runtime) -> None:
        cancel = asyncio.Event()
        cancel.set()
        llm = ScriptedLLM([{"type": "content", "text": "never shown"}])

        events = collect(
            Agent(runtime, llm), [{"role": "user", "content": "hi"}], cancel_event=cancel
        )

        assert events == [EndEvent(user_stop=True)]

    def test_echo_llm_default(self, runtime) -> None:
        events = collect(Agent(runtime), [{"role": "user", "content": "ping"}])

        assert events[0] == ContentEvent(text="[EchoLLM] You said: ping")
        assert asyncio.run(EchoLLM().complete([{"role": "user", "content": "x"}])) == (
            "[EchoLLM] You said: x"
        )

    def test_parse_arguments(self) -> None:
        assert parse_arguments('{"a": 1}') == ({"a": 1}, None)
        assert parse_arguments("") == ({}, None)
        assert parse_arguments("[1]")[1] == "Tool arguments must be a JSON object."


class TestToolRuntime:
    """Test cases for ToolRuntime."""

    def test_tool_definitions_filter_and_stopped_servers(self, runtime) -> None:
        names = [d["function"]["name"] for d in runtime.tool_definitions(["read_file", "boom"])]
        assert names == ["read_file", "boom"]

        runtime.stop_server("misc")
        assert "boom" not in [d["function"]["name"] for d in runtime.tool_definitions()]
        assert runtime.call_tool("misc", "boom", {}) == ("Error: server misc is not running.", True)

        runtime.start_server("misc")
        assert runtime.is_server_running("misc") is True

    def test_tool_definition_uses_schema(self, runtime) -> None:
        definition = runtime.tool_definitions(["write_file"])[0]["function"]

        assert set(definition["parameters"]["properties"]) == {"path", "content"}

    def test_duplicate_and_undecorated_tools_are_rejected(self, runtime) -> None:
        with pytest.raises(ValueError):
            runtime.add_tool(boom)
        with pytest.raises(ValueError):
            runtime.add_tool(lambda args: "x")

    def test_call_tool_errors(self, runtime, workspace) -> None:
        assert runtime.call_tool("misc", "missing", {})[1] is True
        assert runtime.call_tool("misc", "read_file", {"path": "notes.txt"})[1] is True

        response, is_error = runtime.call_tool("filesystem", "write_file", {"path": "a"})
        assert is_error is True
        assert response.startswith("Invalid arguments")

    def test_grant_remember_saves_to_store(self) -> None:
        store = PermissionStore()
        runtime = ToolRuntime(FILESYSTEM_TOOLS, auto_approved=[], permission_store=store)

        assert runtime.has_permission("filesystem", "read") is False
        runtime.grant_permission("filesystem", "read")
        runtime.grant_permission("filesystem", "write", remember=True)

        assert runtime.has_permission("filesystem", "read") is True
        assert store.all() == [("filesystem", "write")]
        fresh = ToolRuntime(FILESYSTEM_TOOLS, auto_approved=[], permission_store=store)
        assert fresh.has_permission("filesystem", "write") is True
        assert fresh.has_permission("filesystem", "read") is False

    def test_db_permission_store_survives_restart(self, engine) -> None:
        DBPermissionStore(engine).save("filesystem", "write")
        DBPermissionStore(engine).save("filesystem", "write")

        store = DBPermissionStore(engine)
        assert store.has("filesystem", "write") is True
        assert store.all() == [("filesystem", "write")]


class TestFilesystemTools:
    """Test cases for the sandboxed filesystem tools."""

    def test_list_directory(self, runtime, workspace) -> None:
        (workspace / "sub").mkdir()

        response, is_error = runtime.call_tool("filesystem", "list_directory", {})

        assert is_error is False
        assert json.loads(response)["entries"] == [
            {"name": "notes.txt", "type": "file"},
            {"name": "sub", "type": "directory"},
        ]

    def test_paths_outside_workspace_are_refused(self, runtime, workspace) -> None:
        with pytest.raises(ValueError):
            resolve_in_workspace("../secret")

        response, is_error = runtime.call_tool("filesystem", "read_file", {"path": "../x"})
        assert is_error is True
        assert "outside the workspace" in response


class TestAgentStreamProvider:
    """Test cases for AgentStreamProvider."""

    def test_stop_sets_cancel_flag(self, runtime) -> None:
        provider = AgentStreamProvider(Agent(runtime, ScriptedLLM([{"type": "content", "text": "a"}])))

        async def run():
            stream = provider.open_stream("c1", "m1", [{"role": "user", "content": "hi"}])
            provider.stop("m1")
            provider.stop("unknown")
            return [event async for event in stream]

        assert asyncio.run(run()) == [EndEvent(user_stop=True)]
        assert provider._cancel_events == {}

    def test_stream_passes_settings(self, runtime) -> None:
        llm = ScriptedLLM([{"type": "content", "text": "ok"}])
        provider = AgentStreamProvider(Agent(runtime, llm))

        async def run():
            stream = provider.open_stream("c1", "m1", [{"role": "user", "content": "hi"}])
            return [event async for event in stream]

        events = asyncio.run(run())

        assert [e.type for e in events] == ["content", "end"]
