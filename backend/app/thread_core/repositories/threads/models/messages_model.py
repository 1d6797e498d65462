"""This module defines the Messages model for storing thread messages in the database."""

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    String,
    TIMESTAMP,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from thread_core.repositories.threads.database import Base


class Messages(Base):  # type: ignore
    """
    Represents a message of a conversation thread.

    Attributes:
        id (str): uuid of the message.
        conversation_id (str): ID of the owning conversation.
        parent_id (str): User message an assistant reply answers (or its prior sibling).
        role (str): "user" or "assistant".
        content (str): JSON encoded user payload or assistant block list.
        status (str): "pending", "sent" or "error".
        message_metadata (str): JSON encoded usage metrics (column ``metadata``).
        order_seq (int): Per conversation position, unique and gap tolerant.
        token_count (int): Approximate token size of the content.
        is_context_edge (bool): Boundary of the prompt window.
        is_variant (bool): Alternate regenerated reply.
        created_at (timestamp): When the message was inserted.
    """

    __tablename__ = "messages"

    id = Column(String(36), primary_key=True)
    conversation_id = Column(
        String(36), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    parent_id = Column(String(36), nullable=True)
    role = Column(String(16), nullable=False)
    content = Column(Text, nullable=False)
    status = Column(String(16), nullable=False, default="pending")
    message_metadata = Column("metadata", Text, nullable=False, default="{}")
    order_seq = Column(Integer, nullable=False)
    token_count = Column(Integer, nullable=False, default=0)
    is_context_edge = Column(Boolean, nullable=False, default=False)
    is_variant = Column(Boolean, nullable=False, default=False)
    created_at = Column(TIMESTAMP(timezone=False), server_default=func.now())

    conversation = relationship("Conversations", back_populates="messages")

    __table_args__ = (
        UniqueConstraint("conversation_id", "order_seq", name="uq_conversation_order"),
    )
