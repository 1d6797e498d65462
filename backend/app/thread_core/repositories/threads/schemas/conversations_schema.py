"""
Pydantic models for conversation data.

Includes the per-conversation generation settings and the create/response models.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from thread_core.configs import settings


class ConversationSettings(BaseModel):
    """
    Generation settings attached to a conversation.

    Attributes:
        system_prompt (str): Prepended as the system turn.
        temperature (float): Sampling temperature.
        context_length (int): Token budget of the prompt window.
        max_tokens (int): Completion token cap.
        provider_id (str): LLM provider identifier.
        model_id (str): LLM model identifier.
        artifacts_mode (int): 1 enables the artifacts flavoured search prompt.
        enabled_tool_ids (List[str]): Tool names offered to the model.
    """

    system_prompt: str = ""
    temperature: float = settings.DEFAULT_TEMPERATURE
    context_length: int = settings.DEFAULT_CONTEXT_LENGTH
    max_tokens: int = settings.DEFAULT_MAX_TOKENS
    provider_id: str = settings.DEFAULT_PROVIDER_ID
    model_id: str = settings.DEFAULT_MODEL_ID
    artifacts_mode: int = 0
    enabled_tool_ids: List[str] = Field(default_factory=list)


class ConversationCreate(BaseModel):
    """Data required to create a new conversation."""

    id: str
    title: str
    settings: ConversationSettings
    created_at: datetime
    updated_at: datetime
    is_new: bool = True
    is_pinned: bool = False


class Conversation(BaseModel):
    """A hydrated conversation."""

    id: str
    title: str
    created_at: datetime
    updated_at: datetime
    is_new: bool
    is_pinned: bool
    settings: ConversationSettings


class ConversationUpdate(BaseModel):
    """Partial update of a conversation; unset fields are left untouched."""

    title: Optional[str] = None
    is_new: Optional[bool] = None
    is_pinned: Optional[bool] = None
    settings: Optional[ConversationSettings] = None
