"""
Pydantic models for message rows.

Content and metadata travel as JSON text; hydration into the domain
``Message`` happens in the message manager.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class MessagesCreate(BaseModel):
    """
    Data required to insert a message row.

    The store allocates ``order_seq`` itself.
    """

    id: str
    conversation_id: str
    role: str
    content: str
    status: str = "pending"
    message_metadata: str = "{}"
    parent_id: Optional[str] = None
    token_count: int = 0
    is_context_edge: bool = False
    is_variant: bool = False
    created_at: datetime
