"""This module defines the Conversations model for storing conversations in the database."""

from sqlalchemy import Boolean, Column, String, TIMESTAMP, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from thread_core.repositories.threads.database import Base


class Conversations(Base):  # type: ignore
    """
    Represents a conversation thread.

    Attributes:
        id (str): uuid of the conversation.
        title (str): Display title.
        created_at (timestamp): When the conversation was created.
        updated_at (timestamp): Last time a message was added or the settings changed.
        is_new (bool): True until the first assistant reply is sent.
        is_pinned (bool): Pinned conversations are listed first.
        settings (str): JSON encoded ConversationSettings.
    """

    __tablename__ = "conversations"

    id = Column(String(36), primary_key=True)
    title = Column(String(255), nullable=False)
    created_at = Column(TIMESTAMP(timezone=False), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=False), server_default=func.now())
    is_new = Column(Boolean, nullable=False, default=True)
    is_pinned = Column(Boolean, nullable=False, default=False)
    settings = Column(Text, nullable=False)

    messages = relationship(
        "Messages", back_populates="conversation", cascade="all, delete"
    )
