"""Test the message and conversation repositories against in-memory SQLite."""

from datetime import datetime
import uuid

import pytest

from thread_core.repositories.threads.crud.conversations_crud import CRUDConversations
from thread_core.repositories.threads.crud.messages_crud import CRUDMessages
from thread_core.repositories.threads.schemas.conversations_schema import (
    ConversationCreate,
    ConversationSettings,
    ConversationUpdate,
)
from thread_core.repositories.threads.schemas.messages_schema import MessagesCreate


def make_message(conversation_id, role="user", status="sent", tokens=10, **kwargs):
    return MessagesCreate(
        id=kwargs.pop("id", str(uuid.uuid4())),
        conversation_id=conversation_id,
        role=role,
        content="{}",
        status=status,
        message_metadata="{}",
        token_count=tokens,
        created_at=datetime.now(),
        **kwargs,
    )


class TestCRUDMessages:
    """Test cases for CRUDMessages."""

    @pytest.fixture(autouse=True)
    def setup(self, session_factory) -> None:
        self.db = session_factory()
        self.conversations = CRUDConversations()
        self.messages = CRUDMessages()
        now = datetime.now()
        self.conversation = self.conversations.create(
            self.db,
            ConversationCreate(
                id="c1",
                title="Chat",
                settings=ConversationSettings(),
                created_at=now,
                updated_at=now,
            ),
        )
        yield
        self.db.close()

    def test_create_assigns_increasing_order_seq(self) -> None:
        first = self.messages.create(self.db, make_message("c1"))
        second = self.messages.create(self.db, make_message("c1", role="assistant"))

        assert first.order_seq == 1
        assert second.order_seq == 2
        assert self.messages.get_max_order_seq(self.db, "c1") == 2

    def test_get_thread_orders_and_excludes_orphans(self) -> None:
        parent = self.messages.create(self.db, make_message("c1"))
        child = self.messages.create(
            self.db, make_message("c1", role="assistant", parent_id=parent.id)
        )
        self.messages.create(
            self.db, make_message("c1", role="assistant", parent_id="deleted-id")
        )

        rows, total = self.messages.get_thread(self.db, "c1")

        assert [r.id for r in rows] == [parent.id, child.id]
        assert total == 2

    def test_get_thread_pages(self) -> None:
        created = [self.messages.create(self.db, make_message("c1")) for _ in range(5)]

        rows, total = self.messages.get_thread(self.db, "c1", page=2, page_size=2)

        assert total == 5
        assert [r.id for r in rows] == [created[2].id, created[3].id]

    def test_context_window_stops_at_budget_and_keeps_newest(self) -> None:
        self.messages.create(self.db, make_message("c1", tokens=60))
        middle = self.messages.create(self.db, make_message("c1", tokens=30))
        newest = self.messages.create(self.db, make_message("c1", tokens=50))

        rows = self.messages.get_context_messages(self.db, "c1", max_tokens=100)
        assert [r.id for r in rows] == [middle.id, newest.id]

        rows = self.messages.get_context_messages(self.db, "c1", max_tokens=10)
        assert [r.id for r in rows] == [newest.id]

    def test_context_window_ends_at_cutoff(self) -> None:
        first = self.messages.create(self.db, make_message("c1", tokens=10))
        cutoff = self.messages.create(self.db, make_message("c1", tokens=10))
        self.messages.create(self.db, make_message("c1", tokens=900))

        rows = self.messages.get_context_messages(
            self.db, "c1", max_tokens=100, up_to_order_seq=cutoff.order_seq
        )

        assert [r.id for r in rows] == [first.id, cutoff.id]

    def test_context_window_skips_pending_variants_and_edges(self) -> None:
        self.messages.create(self.db, make_message("c1"))
        edge = self.messages.create(self.db, make_message("c1"))
        self.messages.mark_context_edge(self.db, edge.id, True)
        after = self.messages.create(self.db, make_message("c1"))
        self.messages.create(self.db, make_message("c1", role="assistant", status="pending"))
        self.messages.create(self.db, make_message("c1", role="assistant", is_variant=True))

        rows = self.messages.get_context_messages(self.db, "c1", max_tokens=1000)

        assert [r.id for r in rows] == [after.id]

    def test_variants_and_main_message(self) -> None:
        user = self.messages.create(self.db, make_message("c1"))
        main = self.messages.create(
            self.db, make_message("c1", role="assistant", parent_id=user.id)
        )
        variant = self.messages.create(
            self.db,
            make_message("c1", role="assistant", parent_id=user.id, is_variant=True),
        )

        variants = self.messages.get_variants(self.db, user.id)

        assert [v.id for v in variants] == [main.id, variant.id]
        assert self.messages.get_main_message_by_parent_id(self.db, user.id).id == main.id

    def test_unfinished_and_last_user_message(self) -> None:
        self.messages.create(self.db, make_message("c1"))
        last_user = self.messages.create(self.db, make_message("c1"))
        pending = self.messages.create(
            self.db, make_message("c1", role="assistant", status="pending")
        )

        assert [m.id for m in self.messages.get_unfinished(self.db)] == [pending.id]
        assert self.messages.get_last_user_message(self.db, "c1").id == last_user.id
        assert self.messages.get_latest(self.db, "c1").id == pending.id

    def test_updates_and_delete(self) -> None:
        message = self.messages.create(self.db, make_message("c1", role="assistant"))

        self.messages.update_content(self.db, message.id, "[]", 3)
        self.messages.update_status(self.db, message.id, "error")
        self.messages.update_metadata(self.db, message.id, '{"total_tokens": 4}')
        stored = self.messages.get(self.db, message.id)

        assert (stored.content, stored.token_count, stored.status) == ("[]", 3, "error")
        assert stored.message_metadata == '{"total_tokens": 4}'
        assert self.messages.delete(self.db, message.id) is not None
        assert self.messages.get(self.db, message.id) is None
        assert self.messages.update_status(self.db, message.id, "sent") is None

    def test_clear_all_returns_deleted_count(self) -> None:
        for _ in range(3):
            self.messages.create(self.db, make_message("c1"))

        assert self.messages.clear_all(self.db, "c1") == 3
        assert self.messages.get_thread(self.db, "c1") == ([], 0)


class TestCRUDConversations:
    """Test cases for CRUDConversations."""

    @pytest.fixture(autouse=True)
    def setup(self, session_factory) -> None:
        self.db = session_factory()
        self.conversations = CRUDConversations()
        yield
        self.db.close()

    def _create(self, conversation_id, title="Chat", **kwargs):
        now = datetime.now()
        return self.conversations.create(
            self.db,
            ConversationCreate(
                id=conversation_id,
                title=title,
                settings=ConversationSettings(),
                created_at=now,
                updated_at=now,
                **kwargs,
            ),
        )

    def test_page_lists_pinned_first(self) -> None:
        self._create("a")
        self._create("b", is_pinned=True)
        self._create("c")

        rows, total = self.conversations.get_page(self.db, 1, 10)

        assert total == 3
        assert rows[0].id == "b"

    def test_update_is_partial(self) -> None:
        self._create("a", title="Old")

        row = self.conversations.update(self.db, "a", ConversationUpdate(is_pinned=True))

        assert row.title == "Old"
        assert row.is_pinned is True
        assert self.conversations.update(self.db, "missing", ConversationUpdate()) is None

    def test_delete(self) -> None:
        self._create("a")

        assert self.conversations.delete(self.db, "a").id == "a"
        assert self.conversations.get(self.db, "a") is None
        assert self.conversations.delete(self.db, "a") is None
