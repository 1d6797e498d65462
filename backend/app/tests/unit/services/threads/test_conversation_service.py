import pytest

from thread_core.models.errors import NotFound
from thread_core.services.threads.conversation_service import merge_settings
from thread_core.repositories.threads.schemas.conversations_schema import (
    ConversationSettings,
)


def test_merge_settings_ignores_nulls():
    merged = merge_settings(ConversationSettings(), {"temperature": 0.2, "model_id": None})

    assert merged.temperature == 0.2
    assert merged.model_id == ConversationSettings().model_id


def test_create_applies_defaults(conversation_service):
    conversation = conversation_service.create("Chat", {"system_prompt": "Be brief"})

    assert conversation.is_new is True
    assert conversation.settings.system_prompt == "Be brief"
    assert conversation.settings.context_length == 1000
    assert conversation.settings.provider_id == "deepseek"


def test_create_reuses_latest_empty_conversation(conversation_service, message_manager):
    first = conversation_service.create("First")
    reused = conversation_service.create("Second")

    assert reused.id == first.id
    assert reused.title == "Second"

    message_manager.send(first.id, "hello", "user")
    fresh = conversation_service.create("Third")
    forced = conversation_service.create("Fourth", force_new=True)

    assert fresh.id != first.id
    assert forced.id != fresh.id


def test_update_settings_merges(conversation_service, conversation):
    updated = conversation_service.update_settings(conversation.id, {"max_tokens": 10})

    assert updated.settings.max_tokens == 10
    assert updated.settings.temperature == conversation.settings.temperature


def test_pin_rename_and_list(conversation_service, conversation):
    other = conversation_service.create("Other", force_new=True)
    conversation_service.toggle_pinned(conversation.id, True)
    conversation_service.rename(conversation.id, "Renamed")

    conversations, total = conversation_service.list()

    assert total == 2
    assert conversations[0].id == conversation.id
    assert conversations[0].title == "Renamed"
    assert conversations[1].id == other.id


def test_missing_conversation_raises(conversation_service):
    with pytest.raises(NotFound):
        conversation_service.get("missing")
    with pytest.raises(NotFound):
        conversation_service.delete("missing")
    assert conversation_service.exists("missing") is False


def test_delete_removes_messages(conversation_service, message_manager, conversation):
    message = message_manager.send(conversation.id, "hello", "user")

    conversation_service.delete(conversation.id)

    assert conversation_service.exists(conversation.id) is False
    assert message_manager.find_message(message.id) is None
