"""
CRUD operations for managing thread messages in the database.

This module provides a `CRUDMessages` class with methods to:
- Insert a message at the next order position of its conversation.
- Update content, status, metadata and the context edge flag.
- Query threads, context windows, variants and unfinished replies.
- Delete one message or every message of a conversation.
"""

from typing import List, Optional, Tuple

from sqlalchemy import desc, func, or_, select
from sqlalchemy.orm import Session, aliased

from thread_core.repositories.threads.models.messages_model import Messages
from thread_core.repositories.threads.schemas.messages_schema import MessagesCreate


class CRUDMessages:
    """Repository class for handling database operations related to messages."""

    def get(self, db: Session, message_id: str) -> Optional[Messages]:
        """
        Retrieve a message by its ID.

        Args:
            db (Session): The database session.
            message_id (str): The ID of the message to retrieve.

        Returns:
            Optional[Messages]: The message if found, otherwise None.
        """
        return db.query(Messages).filter(Messages.id == message_id).first()

    def get_max_order_seq(self, db: Session, conversation_id: str) -> int:
        """Return the highest ``order_seq`` of a conversation, 0 when it is empty."""
        value = (
            db.query(func.max(Messages.order_seq))
            .filter(Messages.conversation_id == conversation_id)
            .scalar()
        )
        return value or 0

    def create(self, db: Session, message_in: MessagesCreate) -> Messages:
        """
        Insert a message at ``max(order_seq) + 1`` of its conversation.

        Args:
            db (Session): The database session.
            message_in (MessagesCreate): The message data to be inserted.

        Returns:
            Messages: The newly created message.
        """
        order_seq = self.get_max_order_seq(db, message_in.conversation_id) + 1
        db_message = Messages(**message_in.model_dump(), order_seq=order_seq)
        db.add(db_message)
        db.commit()
        db.refresh(db_message)
        return db_message

    def update_content(
        self, db: Session, message_id: str, content: str, token_count: int
    ) -> Optional[Messages]:
        """Replace the JSON content of a message."""
        message = self.get(db, message_id)
        if not message:
            return None
        message.content = content
        message.token_count = token_count
        db.commit()
        db.refresh(message)
        return message

    def update_status(
        self, db: Session, message_id: str, status: str
    ) -> Optional[Messages]:
        """Set the status of a message."""
        message = self.get(db, message_id)
        if not message:
            return None
        message.status = status
        db.commit()
        db.refresh(message)
        return message

    def update_metadata(
        self, db: Session, message_id: str, metadata: str
    ) -> Optional[Messages]:
        """Replace the JSON usage metadata of a message."""
        message = self.get(db, message_id)
        if not message:
            return None
        message.message_metadata = metadata
        db.commit()
        db.refresh(message)
        return message

    def mark_context_edge(
        self, db: Session, message_id: str, is_edge: bool
    ) -> Optional[Messages]:
        """Set or clear the context edge flag of a message."""
        message = self.get(db, message_id)
        if not message:
            return None
        message.is_context_edge = is_edge
        db.commit()
        db.refresh(message)
        return message

    def delete(self, db: Session, message_id: str) -> Optional[Messages]:
        """
        Hard delete a message; children keep their dangling ``parent_id``.

        Returns:
            Optional[Messages]: The deleted message if found, otherwise None.
        """
        message = self.get(db, message_id)
        if message:
            db.delete(message)
            db.commit()
            return message
        return None

    def clear_all(self, db: Session, conversation_id: str) -> int:
        """Delete every message of a conversation and return how many were removed."""
        deleted = (
            db.query(Messages)
            .filter(Messages.conversation_id == conversation_id)
            .delete(synchronize_session=False)
        )
        db.commit()
        return deleted

    def get_thread(
        self, db: Session, conversation_id: str, page: int = 1, page_size: int = 100
    ) -> Tuple[List[Messages], int]:
        """
        Retrieve a page of a conversation in ascending ``order_seq``.

        Messages whose parent was deleted are left out.

        Args:
            db (Session): The database session.
            conversation_id (str): The conversation to read.
            page (int): 1-based page number.
            page_size (int): Number of messages per page.

        Returns:
            Tuple[List[Messages], int]: The page and the total visible count.
        """
        parent = aliased(Messages)
        existing_parents = select(parent.id).where(
            parent.conversation_id == conversation_id
        )
        query = db.query(Messages).filter(
            Messages.conversation_id == conversation_id,
            or_(Messages.parent_id.is_(None), Messages.parent_id.in_(existing_parents)),
        )
        total = query.count()
        rows = (
            query.order_by(Messages.order_seq)
            .offset(max(page - 1, 0) * page_size)
            .limit(page_size)
            .all()
        )
        return rows, total

    def get_last_context_edge(
        self, db: Session, conversation_id: str
    ) -> Optional[Messages]:
        """Return the most recent context edge of a conversation."""
        return (
            db.query(Messages)
            .filter(
                Messages.conversation_id == conversation_id,
                Messages.is_context_edge.is_(True),
            )
            .order_by(desc(Messages.order_seq))
            .first()
        )

    def get_context_messages(
        self,
        db: Session,
        conversation_id: str,
        max_tokens: int,
        up_to_order_seq: Optional[int] = None,
    ) -> List[Messages]:
        """
        Return the prompt window of a conversation, oldest first.

        Only sent, non-variant messages after the latest context edge qualify.
        The walk goes newest to oldest and stops before the first message that
        would exceed ``max_tokens``; the newest message is always kept.
        Messages after ``up_to_order_seq`` are left out before the walk.
        """
        query = db.query(Messages).filter(
            Messages.conversation_id == conversation_id,
            Messages.status == "sent",
            Messages.is_variant.is_(False),
        )
        edge = self.get_last_context_edge(db, conversation_id)
        if edge is not None:
            query = query.filter(Messages.order_seq > edge.order_seq)
        if up_to_order_seq is not None:
            query = query.filter(Messages.order_seq <= up_to_order_seq)

        window: List[Messages] = []
        used = 0
        for message in query.order_by(desc(Messages.order_seq)).all():
            if window and used + message.token_count > max_tokens:
                break
            window.append(message)
            used += message.token_count
        window.reverse()
        return window

    def get_unfinished(self, db: Session) -> List[Messages]:
        """Return every assistant message still marked pending."""
        return (
            db.query(Messages)
            .filter(Messages.role == "assistant", Messages.status == "pending")
            .all()
        )

    def get_variants(self, db: Session, parent_id: str) -> List[Messages]:
        """Return every assistant reply to a parent, oldest first."""
        return (
            db.query(Messages)
            .filter(Messages.parent_id == parent_id, Messages.role == "assistant")
            .order_by(Messages.order_seq)
            .all()
        )

    def get_main_message_by_parent_id(
        self, db: Session, parent_id: str
    ) -> Optional[Messages]:
        """Return the first non-variant reply to a parent."""
        return (
            db.query(Messages)
            .filter(Messages.parent_id == parent_id, Messages.is_variant.is_(False))
            .order_by(Messages.order_seq)
            .first()
        )

    def get_last_user_message(
        self, db: Session, conversation_id: str
    ) -> Optional[Messages]:
        """Return the newest user message of a conversation."""
        return (
            db.query(Messages)
            .filter(
                Messages.conversation_id == conversation_id, Messages.role == "user"
            )
            .order_by(desc(Messages.order_seq))
            .first()
        )

    def get_latest(self, db: Session, conversation_id: str) -> Optional[Messages]:
        """Return the newest message of a conversation."""
        return (
            db.query(Messages)
            .filter(Messages.conversation_id == conversation_id)
            .order_by(desc(Messages.order_seq))
            .first()
        )
