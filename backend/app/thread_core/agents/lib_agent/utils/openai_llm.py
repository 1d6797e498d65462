"""OpenAI streaming chat-completion client with tool-call support."""

from typing import Any, AsyncIterator, Dict, List, Optional, cast

from openai import NOT_GIVEN, AsyncOpenAI

from thread_core.agents.lib_agent.base_llm import BaseLLM, LLMChunk
from thread_core.configs import settings


class OpenAILLM(BaseLLM):
    """Wrapper around ``AsyncOpenAI`` normalizing stream deltas into LLM chunks."""

    def __init__(
        self,
        model: str = settings.DEFAULT_MODEL_ID,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
    ) -> None:
        """Initialize client with model name and credentials from settings by default."""
        self.model = model
        self.client = AsyncOpenAI(
            api_key=api_key or settings.OPENAI_API_KEY,
            base_url=base_url or settings.OPENAI_BASE_URL,
        )

    async def stream(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        model: Optional[str] = None,
        think: bool = False,
    ) -> AsyncIterator[LLMChunk]:
        """Call streamed chat completions and accumulate tool-call deltas."""
        response = await self.client.chat.completions.create(
            model=model or self.model,
            messages=cast(Any, messages),
            tools=cast(Any, tools) if tools else NOT_GIVEN,
            temperature=temperature if temperature is not None else NOT_GIVEN,
            max_tokens=max_tokens if max_tokens is not None else NOT_GIVEN,
            stream=True,
            stream_options={"include_usage": True},
        )

        pending_calls: Dict[int, Dict[str, Any]] = {}
        async for chunk in response:
            if chunk.usage is not None:
                yield {
                    "type": "usage",
                    "prompt_tokens": chunk.usage.prompt_tokens,
                    "completion_tokens": chunk.usage.completion_tokens,
                }
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta

            # DeepSeek style reasoning models send the trace out of band
            reasoning = getattr(delta, "reasoning_content", None)
            if reasoning:
                yield {"type": "reasoning", "text": reasoning}
            if delta.content:
                yield {"type": "content", "text": delta.content}

            for call in delta.tool_calls or []:
                entry = pending_calls.setdefault(
                    call.index,
                    {"id": "", "type": "function", "function": {"name": "", "arguments": ""}},
                )
                if call.id:
                    entry["id"] = call.id
                if call.function and call.function.name:
                    entry["function"]["name"] += call.function.name
                if call.function and call.function.arguments:
                    entry["function"]["arguments"] += call.function.arguments

        if pending_calls:
            yield {
                "type": "tool_calls",
                "tool_calls": [pending_calls[i] for i in sorted(pending_calls)],
            }
