"""Tests for the chat history store."""

from __future__ import annotations

import pytest
from helpers import ALICE_ID, BOB_ID

from energy_assistant.storage.history import ChatHistoryStore


@pytest.fixture
def store(sqlite_engine):
    return ChatHistoryStore(sqlite_engine)


def test_conversation_is_oldest_first_and_scoped(store):
    store.save_message("s1", "user", "hi", ALICE_ID)
    store.save_message("s1", "assistant", "hello", ALICE_ID)
    store.save_message("s2", "user", "other session", ALICE_ID)
    store.save_message("s1", "user", "not alice", BOB_ID)

    messages = store.get_conversation("s1", ALICE_ID)
    assert [(m.role, m.content) for m in messages] == [
        ("user", "hi"),
        ("assistant", "hello"),
    ]


def test_invalid_role_rejected(store):
    with pytest.raises(ValueError):
        store.save_message("s1", "tool", "x", ALICE_ID)


def test_user_history_pages_newest_first(store):
    for i in range(3):
        store.save_message("s1", "user", f"m{i}", ALICE_ID)

    page, has_more = store.get_user_history(ALICE_ID, limit=2)
    assert [m.content for m in page] == ["m2", "m1"]
    assert has_more is True

    older, has_more = store.get_user_history(
        ALICE_ID, limit=2, before=page[-1].created_at
    )
    assert [m.content for m in older] == ["m0"]
    assert has_more is False
    assert older[0].to_dict()["createdAt"].endswith("Z")
