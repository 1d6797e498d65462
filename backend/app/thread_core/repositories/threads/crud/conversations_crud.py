"""
CRUD operations for managing conversations in the database.

This module provides a `CRUDConversations` class with methods to:
- Retrieve a conversation by id, the newest one, or a page of them.
- Create, update and delete a conversation.
"""

from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import desc
from sqlalchemy.orm import Session

from thread_core.repositories.threads.models.conversations_model import Conversations
from thread_core.repositories.threads.models.messages_model import Messages
from thread_core.repositories.threads.schemas.conversations_schema import (
    ConversationCreate,
    ConversationUpdate,
)


class CRUDConversations:
    """Repository class for handling database operations related to conversations."""

    def get(self, db: Session, conversation_id: str) -> Optional[Conversations]:
        """
        Retrieve a conversation by its ID.

        Args:
            db (Session): The database session.
            conversation_id (str): The ID of the conversation.

        Returns:
            Optional[Conversations]: The conversation if found, otherwise None.
        """
        return (
            db.query(Conversations).filter(Conversations.id == conversation_id).first()
        )

    def get_latest(self, db: Session) -> Optional[Conversations]:
        """Return the most recently created conversation."""
        return db.query(Conversations).order_by(desc(Conversations.created_at)).first()

    def get_page(
        self, db: Session, page: int = 1, page_size: int = 20
    ) -> Tuple[List[Conversations], int]:
        """
        Retrieve a page of conversations, pinned first then most recently updated.

        Args:
            db (Session): The database session.
            page (int): 1-based page number.
            page_size (int): Number of conversations per page.

        Returns:
            Tuple[List[Conversations], int]: The page and the total count.
        """
        query = db.query(Conversations)
        total = query.count()
        rows = (
            query.order_by(desc(Conversations.is_pinned), desc(Conversations.updated_at))
            .offset(max(page - 1, 0) * page_size)
            .limit(page_size)
            .all()
        )
        return rows, total

    def count_messages(self, db: Session, conversation_id: str) -> int:
        """Return how many messages a conversation holds."""
        return (
            db.query(Messages).filter(Messages.conversation_id == conversation_id).count()
        )

    def create(self, db: Session, conversation_in: ConversationCreate) -> Conversations:
        """
        Create a new conversation in the database.

        Args:
            db (Session): The database session.
            conversation_in (ConversationCreate): The conversation data to insert.

        Returns:
            Conversations: The newly created conversation.
        """
        data = conversation_in.model_dump(exclude={"settings"})
        db_conversation = Conversations(
            **data, settings=conversation_in.settings.model_dump_json()
        )
        db.add(db_conversation)
        db.commit()
        db.refresh(db_conversation)
        return db_conversation

    def update(
        self, db: Session, conversation_id: str, conversation_in: ConversationUpdate
    ) -> Optional[Conversations]:
        """
        Apply a partial update and bump ``updated_at``.

        Returns:
            Optional[Conversations]: The updated conversation, or None if absent.
        """
        conversation = self.get(db, conversation_id)
        if not conversation:
            return None
        changes = conversation_in.model_dump(exclude_unset=True, exclude={"settings"})
        for field, value in changes.items():
            setattr(conversation, field, value)
        if conversation_in.settings is not None:
            conversation.settings = conversation_in.settings.model_dump_json()
        conversation.updated_at = datetime.now()
        db.commit()
        db.refresh(conversation)
        return conversation

    def touch(self, db: Session, conversation_id: str) -> None:
        """Bump ``updated_at`` of a conversation."""
        conversation = self.get(db, conversation_id)
        if conversation:
            conversation.updated_at = datetime.now()
            db.commit()

    def delete(self, db: Session, conversation_id: str) -> Optional[Conversations]:
        """
        Delete a conversation and its messages.

        Returns:
            Optional[Conversations]: The deleted conversation, or None if absent.
        """
        conversation = self.get(db, conversation_id)
        if conversation:
            db.delete(conversation)
            db.commit()
            return conversation
        return None
