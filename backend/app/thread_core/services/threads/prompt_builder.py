"""Assemble chat-completion prompts from conversation history.

Produces OpenAI style message dicts: the optional system turn, the context
window, and for resumed generations the tool calls already recorded on the
parked assistant message.
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from thread_core.agents.lib_agent.agent_prompt_loader import AgentPromptLoader
from thread_core.models.chat_models import (
    ContentBlock,
    Message,
    MessageFile,
    SearchResult,
    ToolCallBlock,
    UserMessageContent,
)
from thread_core.repositories.threads.schemas.conversations_schema import (
    ConversationSettings,
)
from thread_core.services.threads.utils import approximate_tokens

logger = logging.getLogger(__name__)

PromptMessage = Dict[str, Any]


def get_file_context(files: List[MessageFile]) -> str:
    """Render attached files as an XML-ish block; images carry no content."""
    if not files:
        return ""
    parts = []
    for f in files:
        content = "" if f.mime_type.startswith("image") else f.content
        size = f.metadata.get("fileSize", len(f.content))
        parts.append(
            "<file>"
            f"<name>{f.name}</name>"
            f"<mimeType>{f.mime_type}</mimeType>"
            f"<size>{size}</size>"
            f"<path>{f.path}</path>"
            f"<content>{content}</content>"
            "</file>"
        )
    return "<files>" + "".join(parts) + "</files>"


def format_search_results(results: List[SearchResult]) -> str:
    """Render search results as numbered ``[webpage N begin]`` sections."""
    return "\n\n".join(
        f"[webpage {i} begin]title: {r.title}\nURL: {r.url}\ncontent：{r.content}[webpage {i} end]"
        for i, r in enumerate(results, start=1)
    )


def generate_search_prompt(
    query: str,
    results: List[SearchResult],
    artifacts: bool = False,
    loader: Optional[AgentPromptLoader] = None,
    today: Optional[datetime] = None,
) -> str:
    """
    Fill the search prompt template for a query.

    Without results the query is returned unchanged.
    """
    if not results:
        return query
    loader = loader or AgentPromptLoader()
    template = loader.get_template("search_artifacts" if artifacts else "search")
    cur_date = (today or datetime.now()).strftime("%Y-%m-%d")
    return (
        template.replace("{{SEARCH_RESULTS}}", format_search_results(results))
        .replace("{{USER_QUERY}}", query)
        .replace("{{CUR_DATE}}", cur_date)
    )


class PromptBuilder:
    """Turns stored messages into the prompt handed to the agent stream provider."""

    def __init__(self, loader: Optional[AgentPromptLoader] = None) -> None:
        self.loader = loader or AgentPromptLoader()

    def user_text(
        self,
        content: UserMessageContent,
        search_results: Optional[List[SearchResult]] = None,
        artifacts: bool = False,
    ) -> str:
        """Return the prompt text of a user message, with search and file context."""
        text = content.text
        if search_results:
            text = generate_search_prompt(text, search_results, artifacts, self.loader)
        file_context = get_file_context(content.files)
        return f"{text}\n{file_context}" if file_context else text

    def assistant_turns(self, message: Message) -> List[PromptMessage]:
        """
        Replay an assistant message as chat turns.

        Each tool call becomes an assistant ``tool_calls`` turn followed by its
        ``tool`` result; calls without a response get no result turn.
        """
        turns: List[PromptMessage] = []
        text = ""
        for block in message.blocks:
            if isinstance(block, ContentBlock):
                text += block.text
            elif isinstance(block, ToolCallBlock):
                turns.append(
                    {
                        "role": "assistant",
                        "content": text or None,
                        "tool_calls": [
                            {
                                "id": block.id,
                                "type": "function",
                                "function": {
                                    "name": block.name,
                                    "arguments": json.dumps(block.params),
                                },
                            }
                        ],
                    }
                )
                text = ""
                if block.response is not None:
                    turns.append(
                        {"role": "tool", "tool_call_id": block.id, "content": block.response}
                    )
        if text:
            turns.append({"role": "assistant", "content": text})
        return turns

    def build_messages(
        self,
        settings: ConversationSettings,
        context: List[Message],
        user_message: Optional[Message] = None,
        search_results: Optional[List[SearchResult]] = None,
    ) -> List[PromptMessage]:
        """
        Build the prompt for a new generation.

        ``search_results`` augment the triggering ``user_message`` only.
        """
        messages: List[PromptMessage] = []
        if settings.system_prompt:
            messages.append({"role": "system", "content": settings.system_prompt})
        artifacts = settings.artifacts_mode == 1
        for message in context:
            if isinstance(message.content, UserMessageContent):
                results = (
                    search_results
                    if user_message is not None and message.id == user_message.id
                    else None
                )
                messages.append(
                    {
                        "role": "user",
                        "content": self.user_text(message.content, results, artifacts),
                    }
                )
            else:
                messages.extend(self.assistant_turns(message))
        return messages

    def build_resume_messages(
        self,
        settings: ConversationSettings,
        context: List[Message],
        parked: Message,
    ) -> List[PromptMessage]:
        """Build the prompt that continues a parked message's tool chain."""
        messages = self.build_messages(settings, context)
        messages.extend(self.assistant_turns(parked))
        return messages

    @staticmethod
    def count_tokens(messages: List[PromptMessage]) -> int:
        """Approximate the token size of a prompt."""
        total = 0
        for message in messages:
            total += approximate_tokens(message.get("content") or "")
            for call in message.get("tool_calls", []):
                total += approximate_tokens(call["function"]["arguments"])
        return total
