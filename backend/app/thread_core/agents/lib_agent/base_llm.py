"""Base streaming LLM interface used by the Agent, with an Echo implementation."""

from typing import Any, AsyncIterator, Dict, List, Optional

LLMChunk = Dict[str, Any]


class BaseLLM:
    """Abstract base class for chat-completion compatible LLMs."""

    async def stream(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        model: Optional[str] = None,
        think: bool = False,
    ) -> AsyncIterator[LLMChunk]:
        """
        Stream a reply for a chat history.

        Args:
            messages (List[Dict[str, Any]]): Chat history in the OpenAI format
                [{"role": "system"|"user"|"assistant"|"tool", "content": "..."}].
            tools (Optional[List[Dict[str, Any]]]): OpenAI style tool definitions.
            temperature (Optional[float]): Sampling temperature.
            max_tokens (Optional[int]): Completion token cap.
            model (Optional[str]): Model override.
            think (bool): Ask for extended reasoning when the model supports it.

        Yields:
            LLMChunk: One of
                {"type": "content", "text": str},
                {"type": "reasoning", "text": str},
                {"type": "tool_calls", "tool_calls": [{"id", "type", "function": {"name", "arguments"}}]},
                {"type": "usage", "prompt_tokens": int, "completion_tokens": int}.
        """
        raise NotImplementedError
        yield {}

    async def complete(self, messages: List[Dict[str, Any]]) -> str:
        """Return the full text of a reply without tools."""
        parts: List[str] = []
        async for chunk in self.stream(messages):
            if chunk["type"] == "content":
                parts.append(chunk["text"])
        return "".join(parts)


class EchoLLM(BaseLLM):
    """Offline LLM used in development and tests (calls no API)."""

    async def stream(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        model: Optional[str] = None,
        think: bool = False,
    ) -> AsyncIterator[LLMChunk]:
        """Echo the last user message to simulate an LLM response."""
        last_user = next(
            (m["content"] for m in reversed(messages) if m["role"] == "user"), ""
        )
        yield {"type": "content", "text": f"[EchoLLM] You said: {last_user}"}
