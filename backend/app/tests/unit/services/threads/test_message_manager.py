"""Test MessageManager."""

from unittest.mock import MagicMock

import pytest
from pydantic import ValidationError
from sqlalchemy.exc import OperationalError

from thread_core.models.chat_models import (
    ContentBlock,
    ErrorBlock,
    ToolCallBlock,
    UserMessageContent,
)
from thread_core.models.errors import InvalidRole, NotFound, PersistenceFailure
from thread_core.services.threads.message_manager import MessageManager


class TestMessageManager:
    """Test cases for MessageManager."""

    @pytest.fixture(autouse=True)
    def setup(self, message_manager, conversation) -> None:
        self.manager = message_manager
        self.conversation_id = conversation.id

    def test_send_user_message_is_sent(self) -> None:
        message = self.manager.send(
            self.conversation_id, UserMessageContent(text="hello", search=True), "user"
        )

        assert message.status == "sent"
        assert message.role == "user"
        assert message.content.text == "hello"
        assert message.content.search is True
        assert message.order_seq == 1

    def test_send_assistant_message_is_pending(self) -> None:
        message = self.manager.send(
            self.conversation_id, [ContentBlock(text="hi")], "assistant"
        )

        assert message.status == "pending"
        assert message.text == "hi"

    def test_send_to_missing_conversation_raises(self) -> None:
        with pytest.raises(NotFound):
            self.manager.send("missing", "hello", "user")

    def test_malformed_block_json_fails_fast(self) -> None:
        with pytest.raises(ValidationError):
            self.manager.send(self.conversation_id, '[{"type": "nope"}]', "assistant")

    def test_edit_keeps_status(self) -> None:
        message = self.manager.send(self.conversation_id, "hello", "user")

        edited = self.manager.edit(message.id, "bye")

        assert edited.content.text == "bye"
        assert edited.status == "sent"

    def test_delete_missing_raises(self) -> None:
        with pytest.raises(NotFound):
            self.manager.delete("missing")

    def test_delete_leaves_children_out_of_thread(self) -> None:
        user = self.manager.send(self.conversation_id, "hello", "user")
        self.manager.send(self.conversation_id, [], "assistant", parent_id=user.id)

        self.manager.delete(user.id)

        assert self.manager.get_thread(self.conversation_id).total == 0

    def test_retry_creates_variant_and_keeps_original(self) -> None:
        user = self.manager.send(self.conversation_id, "hello", "user")
        original = self.manager.send(
            self.conversation_id, [ContentBlock(text="v1", status="success")], "assistant",
            parent_id=user.id,
        )
        self.manager.update_status(original.id, "sent")

        variant = self.manager.retry(original.id)

        assert variant.id != original.id
        assert variant.parent_id == user.id
        assert variant.is_variant is True
        assert variant.status == "pending"
        assert self.manager.get_message(original.id).text == "v1"
        assert [m.id for m in self.manager.get_variants(original.id)] == [
            original.id,
            variant.id,
        ]

    def test_retry_user_message_raises(self) -> None:
        user = self.manager.send(self.conversation_id, "hello", "user")

        with pytest.raises(InvalidRole, match="Only assistant messages can be retried"):
            self.manager.retry(user.id)

    def test_handle_error_closes_blocks(self) -> None:
        message = self.manager.send(
            self.conversation_id,
            [
                ContentBlock(text="partial"),
                ToolCallBlock(id="t1", name="read_file"),
            ],
            "assistant",
        )

        result = self.manager.handle_error(message.id, "boom")
        stored = self.manager.get_message(message.id)

        assert result.status == stored.status == "error"
        assert [b.status for b in stored.blocks] == ["error", "error", "error"]
        assert isinstance(stored.blocks[-1], ErrorBlock)
        assert stored.blocks[-1].message == "boom"

    def test_initialize_unfinished_messages(self) -> None:
        pending = self.manager.send(self.conversation_id, [], "assistant")
        done = self.manager.send(self.conversation_id, [], "assistant")
        self.manager.update_status(done.id, "sent")

        recovered = self.manager.initialize_unfinished_messages()

        assert recovered == [pending.id]
        assert self.manager.get_message(pending.id).status == "error"
        assert self.manager.get_message(done.id).status == "sent"
        assert self.manager.initialize_unfinished_messages() == []

    def test_store_errors_become_persistence_failures(self) -> None:
        session = MagicMock()
        repository = MagicMock()
        repository.get.side_effect = OperationalError("SELECT", {}, Exception("locked"))
        manager = MessageManager(lambda: session, messages_repository=repository)

        with pytest.raises(PersistenceFailure):
            manager.get_message("m1")
        session.rollback.assert_called_once()
        session.close.assert_called_once()

    def test_context_edge_and_latest(self) -> None:
        first = self.manager.send(self.conversation_id, "one", "user")
        second = self.manager.send(self.conversation_id, "two", "user")

        self.manager.mark_context_edge(first.id)

        context = self.manager.get_context_messages(self.conversation_id, 1000)
        assert [m.id for m in context] == [second.id]
        assert self.manager.get_latest_message(self.conversation_id).id == second.id
        assert self.manager.get_last_user_message(self.conversation_id).id == second.id
