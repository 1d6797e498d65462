"""This module provides the ConversationService class for managing conversations."""

import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from thread_core.models.errors import NotFound, PersistenceFailure
from thread_core.repositories.threads.crud.conversations_crud import CRUDConversations
from thread_core.repositories.threads.models.conversations_model import Conversations
from thread_core.repositories.threads.schemas.conversations_schema import (
    Conversation,
    ConversationCreate,
    ConversationSettings,
    ConversationUpdate,
)


def to_conversation(row: Conversations) -> Conversation:
    """Hydrate a conversation row into the response model."""
    return Conversation(
        id=row.id,
        title=row.title,
        created_at=row.created_at,
        updated_at=row.updated_at,
        is_new=bool(row.is_new),
        is_pinned=bool(row.is_pinned),
        settings=ConversationSettings.model_validate_json(row.settings),
    )


def merge_settings(
    base: ConversationSettings, overrides: Optional[Dict[str, Any]]
) -> ConversationSettings:
    """Return ``base`` with the non-null ``overrides`` applied."""
    if not overrides:
        return base
    values = base.model_dump()
    values.update({k: v for k, v in overrides.items() if v is not None})
    return ConversationSettings.model_validate(values)


class ConversationService:
    """Service layer for conversation related operations."""

    def __init__(
        self,
        session_factory: sessionmaker,
        conversations_repository: Optional[CRUDConversations] = None,
    ) -> None:
        """
        Initialize the ConversationService.

        Args:
            session_factory (sessionmaker): Factory opening one session per call.
            conversations_repository (Optional[CRUDConversations]): Repository
                for conversation database operations.
        """
        self.session_factory = session_factory
        self.conversations_repository = conversations_repository or CRUDConversations()

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceFailure(f"Conversation store error: {e}") from e
        finally:
            db.close()

    def create(
        self,
        title: str,
        settings: Optional[Dict[str, Any]] = None,
        force_new: bool = False,
    ) -> Conversation:
        """
        Create a conversation, or reuse the newest one while it is still empty.

        Args:
            title (str): Display title.
            settings (Optional[Dict[str, Any]]): Partial settings merged over the defaults.
            force_new (bool): Always insert a new conversation.

        Returns:
            Conversation: The created or reused conversation.
        """
        merged = merge_settings(ConversationSettings(), settings)
        with self._session() as db:
            if not force_new:
                latest = self.conversations_repository.get_latest(db)
                if (
                    latest is not None
                    and self.conversations_repository.count_messages(db, latest.id) == 0
                ):
                    row = self.conversations_repository.update(
                        db, latest.id, ConversationUpdate(title=title, settings=merged)
                    )
                    return to_conversation(row)

            now = datetime.now()
            row = self.conversations_repository.create(
                db,
                ConversationCreate(
                    id=str(uuid.uuid4()),
                    title=title,
                    settings=merged,
                    created_at=now,
                    updated_at=now,
                ),
            )
            return to_conversation(row)

    def get(self, conversation_id: str) -> Conversation:
        """Return a conversation or raise ``NotFound``."""
        with self._session() as db:
            row = self.conversations_repository.get(db, conversation_id)
            if row is None:
                raise NotFound(f"Conversation {conversation_id} not found")
            return to_conversation(row)

    def exists(self, conversation_id: str) -> bool:
        with self._session() as db:
            return self.conversations_repository.get(db, conversation_id) is not None

    def list(self, page: int = 1, page_size: int = 20) -> Tuple[List[Conversation], int]:
        """Return a page of conversations and the total count."""
        with self._session() as db:
            rows, total = self.conversations_repository.get_page(db, page, page_size)
            return [to_conversation(r) for r in rows], total

    def update(self, conversation_id: str, update: ConversationUpdate) -> Conversation:
        """Apply a partial update or raise ``NotFound``."""
        with self._session() as db:
            row = self.conversations_repository.update(db, conversation_id, update)
            if row is None:
                raise NotFound(f"Conversation {conversation_id} not found")
            return to_conversation(row)

    def rename(self, conversation_id: str, title: str) -> Conversation:
        return self.update(conversation_id, ConversationUpdate(title=title))

    def update_settings(
        self, conversation_id: str, settings: Dict[str, Any]
    ) -> Conversation:
        """Merge partial settings into the stored ones."""
        current = self.get(conversation_id)
        merged = merge_settings(current.settings, settings)
        return self.update(conversation_id, ConversationUpdate(settings=merged))

    def toggle_pinned(self, conversation_id: str, is_pinned: bool) -> Conversation:
        return self.update(conversation_id, ConversationUpdate(is_pinned=is_pinned))

    def mark_not_new(self, conversation_id: str) -> None:
        """Clear the ``is_new`` flag once the first reply has been sent."""
        self.update(conversation_id, ConversationUpdate(is_new=False))

    def delete(self, conversation_id: str) -> None:
        """Delete a conversation and its messages or raise ``NotFound``."""
        with self._session() as db:
            if self.conversations_repository.delete(db, conversation_id) is None:
                raise NotFound(f"Conversation {conversation_id} not found")
