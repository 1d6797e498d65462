"""Domain operations over the message store.

Every public method opens its own session from the injected factory so the
manager can be shared by concurrent generations. Store failures surface as
``PersistenceFailure``.
"""

import json
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from thread_core.models.chat_models import (
    BLOCKS_ADAPTER,
    ContentBlock,
    ErrorBlock,
    Message,
    MessageMetadata,
    MessageStatus,
    ReasoningBlock,
    ThreadPage,
    ToolCallBlock,
    UserMessageContent,
)
from thread_core.models.errors import InvalidRole, NotFound, PersistenceFailure
from thread_core.repositories.threads.crud.conversations_crud import CRUDConversations
from thread_core.repositories.threads.crud.messages_crud import CRUDMessages
from thread_core.repositories.threads.models.messages_model import Messages
from thread_core.repositories.threads.schemas.messages_schema import MessagesCreate
from thread_core.services.threads.utils import approximate_tokens

logger = logging.getLogger(__name__)

MessageContent = Union[UserMessageContent, List[Any], str]


def to_message(row: Messages) -> Message:
    """Hydrate a message row into the domain model."""
    if row.role == "user":
        content: Any = UserMessageContent.model_validate_json(row.content)
    else:
        content = BLOCKS_ADAPTER.validate_json(row.content)
    return Message(
        id=row.id,
        conversation_id=row.conversation_id,
        role=row.role,
        content=content,
        timestamp=row.created_at,
        status=row.status,
        usage=MessageMetadata.model_validate_json(row.message_metadata or "{}"),
        parent_id=row.parent_id,
        order_seq=row.order_seq,
        is_context_edge=bool(row.is_context_edge),
        is_variant=bool(row.is_variant),
    )


def parse_content(role: str, content: MessageContent) -> Any:
    """
    Validate message content for a role.

    Assistant content given as a JSON string is decoded into the block list;
    malformed JSON raises ``pydantic.ValidationError``.
    """
    if role == "user":
        if isinstance(content, UserMessageContent):
            return content
        if isinstance(content, str):
            return UserMessageContent(text=content)
        return UserMessageContent.model_validate(content)
    if isinstance(content, str):
        return BLOCKS_ADAPTER.validate_json(content)
    return BLOCKS_ADAPTER.validate_python(content)


def dump_content(content: Any) -> str:
    """Serialize validated content back to JSON text."""
    if isinstance(content, UserMessageContent):
        return content.model_dump_json()
    return BLOCKS_ADAPTER.dump_json(content).decode("utf-8")


def content_tokens(content: Any) -> int:
    """Approximate the token size of validated content."""
    if isinstance(content, UserMessageContent):
        text = content.text + "".join(f.content for f in content.files)
        return approximate_tokens(text)
    text = ""
    for block in content:
        if isinstance(block, (ContentBlock, ReasoningBlock)):
            text += block.text
        elif isinstance(block, ToolCallBlock):
            text += json.dumps(block.params) + (block.response or "")
    return approximate_tokens(text)


class MessageManager:
    """Send, edit, delete, retry and recover conversation messages."""

    def __init__(
        self,
        session_factory: sessionmaker,
        messages_repository: Optional[CRUDMessages] = None,
        conversations_repository: Optional[CRUDConversations] = None,
    ) -> None:
        self.session_factory = session_factory
        self.messages_repository = messages_repository or CRUDMessages()
        self.conversations_repository = conversations_repository or CRUDConversations()

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceFailure(f"Message store error: {e}") from e
        finally:
            db.close()

    def _get_row(self, db: Session, message_id: str) -> Messages:
        row = self.messages_repository.get(db, message_id)
        if row is None:
            raise NotFound(f"Message {message_id} not found")
        return row

    def send(
        self,
        conversation_id: str,
        content: MessageContent,
        role: str,
        parent_id: Optional[str] = None,
        is_variant: bool = False,
        metadata: Optional[MessageMetadata] = None,
    ) -> Message:
        """
        Append a message to a conversation.

        User messages are stored as ``sent``; assistant messages start ``pending``.

        Args:
            conversation_id (str): Target conversation.
            content: User payload, or assistant blocks (list or JSON text).
            role (str): "user" or "assistant".
            parent_id (Optional[str]): Message this one answers.
            is_variant (bool): Marks an alternate regenerated reply.
            metadata (Optional[MessageMetadata]): Initial usage metadata.

        Returns:
            Message: The stored message.
        """
        parsed = parse_content(role, content)
        with self._session() as db:
            if self.conversations_repository.get(db, conversation_id) is None:
                raise NotFound(f"Conversation {conversation_id} not found")
            row = self.messages_repository.create(
                db,
                MessagesCreate(
                    id=str(uuid.uuid4()),
                    conversation_id=conversation_id,
                    role=role,
                    content=dump_content(parsed),
                    status="sent" if role == "user" else "pending",
                    message_metadata=(metadata or MessageMetadata()).model_dump_json(),
                    parent_id=parent_id,
                    token_count=content_tokens(parsed),
                    is_variant=is_variant,
                    created_at=datetime.now(),
                ),
            )
            self.conversations_repository.touch(db, conversation_id)
            return to_message(row)

    def edit(self, message_id: str, content: MessageContent) -> Message:
        """Replace the content of a message without touching its status."""
        with self._session() as db:
            row = self._get_row(db, message_id)
            parsed = parse_content(row.role, content)
            row = self.messages_repository.update_content(
                db, message_id, dump_content(parsed), content_tokens(parsed)
            )
            return to_message(row)

    def delete(self, message_id: str) -> None:
        """Hard delete a message; its children are left in place."""
        with self._session() as db:
            self._get_row(db, message_id)
            self.messages_repository.delete(db, message_id)

    def retry(
        self, message_id: str, metadata: Optional[MessageMetadata] = None
    ) -> Message:
        """
        Create a new assistant reply next to an existing one.

        The original message is left untouched; the new one shares its parent
        and is a variant when the parent already has replies.
        """
        with self._session() as db:
            row = self._get_row(db, message_id)
            if row.role != "assistant":
                raise InvalidRole("Only assistant messages can be retried")
            conversation_id = row.conversation_id
            parent_id = row.parent_id
            siblings = (
                self.messages_repository.get_variants(db, parent_id)
                if parent_id
                else [row]
            )
        return self.send(
            conversation_id,
            [],
            "assistant",
            parent_id=parent_id,
            is_variant=len(siblings) > 0,
            metadata=metadata,
        )

    def get_message(self, message_id: str) -> Message:
        with self._session() as db:
            return to_message(self._get_row(db, message_id))

    def find_message(self, message_id: str) -> Optional[Message]:
        """Return the message, or None when it does not exist."""
        with self._session() as db:
            row = self.messages_repository.get(db, message_id)
            return to_message(row) if row else None

    def get_thread(
        self, conversation_id: str, page: int = 1, page_size: int = 100
    ) -> ThreadPage:
        """Return a page of the conversation ordered by ``order_seq``."""
        with self._session() as db:
            rows, total = self.messages_repository.get_thread(
                db, conversation_id, page, page_size
            )
            return ThreadPage(messages=[to_message(r) for r in rows], total=total)

    def get_context_messages(
        self, conversation_id: str, max_tokens: int, up_to_order_seq: Optional[int] = None
    ) -> List[Message]:
        """
        Return the prompt window of a conversation, oldest first.

        With ``up_to_order_seq`` the window ends at that message, so a retried
        reply sees the history of its own question.
        """
        with self._session() as db:
            rows = self.messages_repository.get_context_messages(
                db, conversation_id, max_tokens, up_to_order_seq
            )
            return [to_message(r) for r in rows]

    def get_last_user_message(self, conversation_id: str) -> Optional[Message]:
        with self._session() as db:
            row = self.messages_repository.get_last_user_message(db, conversation_id)
            return to_message(row) if row else None

    def get_latest_message(self, conversation_id: str) -> Optional[Message]:
        with self._session() as db:
            row = self.messages_repository.get_latest(db, conversation_id)
            return to_message(row) if row else None

    def get_variants(self, message_id: str) -> List[Message]:
        """Return every reply sharing the parent of ``message_id``."""
        with self._session() as db:
            row = self._get_row(db, message_id)
            if not row.parent_id:
                return [to_message(row)]
            rows = self.messages_repository.get_variants(db, row.parent_id)
            return [to_message(r) for r in rows]

    def get_main_message_by_parent_id(self, parent_id: str) -> Optional[Message]:
        with self._session() as db:
            row = self.messages_repository.get_main_message_by_parent_id(db, parent_id)
            return to_message(row) if row else None

    def update_status(self, message_id: str, status: MessageStatus) -> None:
        with self._session() as db:
            self._get_row(db, message_id)
            self.messages_repository.update_status(db, message_id, status)

    def update_metadata(self, message_id: str, metadata: MessageMetadata) -> None:
        with self._session() as db:
            self._get_row(db, message_id)
            self.messages_repository.update_metadata(
                db, message_id, metadata.model_dump_json()
            )

    def update_blocks(self, message_id: str, blocks: List[Any]) -> None:
        """Persist the block list of an assistant message."""
        payload = BLOCKS_ADAPTER.dump_json(blocks).decode("utf-8")
        with self._session() as db:
            self._get_row(db, message_id)
            self.messages_repository.update_content(
                db, message_id, payload, content_tokens(blocks)
            )

    def mark_context_edge(self, message_id: str, is_edge: bool = True) -> Message:
        with self._session() as db:
            self._get_row(db, message_id)
            row = self.messages_repository.mark_context_edge(db, message_id, is_edge)
            return to_message(row)

    def handle_error(self, message_id: str, error_text: str) -> Message:
        """
        Append an error block and set the message status to ``error``.

        Loading text blocks and running tool calls are closed as errors too.
        Calling it twice appends two error blocks.
        """
        message = self.get_message(message_id)
        blocks = list(message.blocks)
        for block in blocks:
            if isinstance(block, (ContentBlock, ReasoningBlock)) and block.status == "loading":
                block.status = "error"
            elif isinstance(block, ToolCallBlock) and block.status == "running":
                block.status = "error"
        blocks.append(ErrorBlock(message=error_text))
        self.update_blocks(message_id, blocks)
        self.update_status(message_id, "error")
        message.content = blocks
        message.status = "error"
        return message

    def clear_all(self, conversation_id: str) -> int:
        """Delete every message of a conversation."""
        with self._session() as db:
            return self.messages_repository.clear_all(db, conversation_id)

    def initialize_unfinished_messages(self) -> List[str]:
        """
        Close assistant messages left pending by a previous process.

        Returns:
            List[str]: Ids of the recovered messages.
        """
        with self._session() as db:
            ids = [row.id for row in self.messages_repository.get_unfinished(db)]
        for message_id in ids:
            logger.warning("Recovering unfinished message %s", message_id)
            self.handle_error(message_id, "Generation interrupted by a restart")
        return ids
