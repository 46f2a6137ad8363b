"""Test suite for key-value storage and the conversation store."""

import json

import pytest

from health_chat.domain.errors import StoreError
from health_chat.domain.models import ConversationLog, Message, Sender
from health_chat.repositories.conversation import ConversationStore, storage_key
from health_chat.repositories.memory import InMemoryKeyValueStore
from health_chat.repositories.sqlite import SQLiteKeyValueStore

from fakes import FlakyKeyValueStore


def make_log(user_id: str, *texts: str) -> ConversationLog:
    log = ConversationLog(user_id=user_id)
    for i, text in enumerate(texts):
        sender = Sender.USER if i % 2 == 0 else Sender.ASSISTANT
        log = log.append(Message.create(sender, text))
    return log


@pytest.mark.asyncio
async def test_load_missing_log_is_empty():
    """Test loading a user with no stored history."""
    store = ConversationStore(InMemoryKeyValueStore())
    log = await store.load("alice")
    assert log.user_id == "alice"
    assert log.messages == []


@pytest.mark.asyncio
async def test_save_then_load_round_trip():
    """Test that a saved log loads back unchanged."""
    store = ConversationStore(InMemoryKeyValueStore())
    log = make_log("alice", "hello", "hi there", "how are you?")
    await store.save("alice", log)

    loaded = await store.load("alice")
    assert loaded == log
    assert [m.sender for m in loaded.messages] == [Sender.USER, Sender.ASSISTANT, Sender.USER]


@pytest.mark.asyncio
async def test_save_replaces_whole_log():
    """Test last-writer-wins replacement."""
    store = ConversationStore(InMemoryKeyValueStore())
    await store.save("alice", make_log("alice", "one", "two", "three"))
    await store.save("alice", make_log("alice", "only"))

    loaded = await store.load("alice")
    assert [m.text for m in loaded.messages] == ["only"]


@pytest.mark.asyncio
async def test_clear_then_load_is_empty():
    """Test clearing a log."""
    store = ConversationStore(InMemoryKeyValueStore())
    await store.save("alice", make_log("alice", "hello", "hi"))
    await store.clear("alice")
    assert (await store.load("alice")).messages == []

    # Clearing an absent log is harmless
    await store.clear("nobody")
    assert (await store.load("nobody")).messages == []


@pytest.mark.asyncio
async def test_logs_are_scoped_per_user():
    """Test that users never see each other's logs."""
    backend = InMemoryKeyValueStore()
    store = ConversationStore(backend)
    await store.save("alice", make_log("alice", "alice's question"))
    await store.save("bob", make_log("bob", "bob's question"))
    await store.clear("alice")

    assert (await store.load("alice")).messages == []
    assert (await store.load("bob")).messages[0].text == "bob's question"
    assert storage_key("bob") == "chat_bob"
    assert "chat_bob" in backend


@pytest.mark.asyncio
async def test_persisted_format_is_json_array():
    """Test the on-device value layout."""
    backend = InMemoryKeyValueStore()
    store = ConversationStore(backend)
    await store.save("alice", make_log("alice", "hello", "hi there"))

    raw = json.loads(await backend.get_item("chat_alice"))
    assert isinstance(raw, list)
    assert [item["sender"] for item in raw] == ["User", "AI"]
    assert set(raw[0]) == {"id", "sender", "text", "timestamp"}


@pytest.mark.asyncio
async def test_unreadable_log_degrades_to_empty():
    """Test corrupt values are treated as no history."""
    backend = InMemoryKeyValueStore()
    store = ConversationStore(backend)

    for corrupt in ("not json", "{}", '[{"id": 1}]'):
        await backend.set_item("chat_alice", corrupt)
        assert (await store.load("alice")).messages == []


@pytest.mark.asyncio
async def test_legacy_sender_values_are_accepted():
    """Test loading logs written with older sender spellings."""
    backend = InMemoryKeyValueStore()
    await backend.set_item(
        "chat_alice",
        json.dumps(
            [
                {"id": "1_a", "sender": "User ", "text": "hello", "timestamp": "2024-01-01T00:00:00.000Z"},
                {"id": "2_AI_b", "sender": "Assistant", "text": "hi", "timestamp": "2024-01-01T00:00:01.000Z"},
            ]
        ),
    )
    loaded = await ConversationStore(backend).load("alice")
    assert [m.sender for m in loaded.messages] == [Sender.USER, Sender.ASSISTANT]


@pytest.mark.asyncio
async def test_read_failure_degrades_to_empty():
    """Test load never raises on storage errors."""
    backend = FlakyKeyValueStore()
    store = ConversationStore(backend)
    await store.save("alice", make_log("alice", "hello"))
    backend.fail_reads = True
    assert (await store.load("alice")).messages == []


@pytest.mark.asyncio
async def test_write_failures_raise_store_error():
    """Test save and clear surface storage failures."""
    backend = FlakyKeyValueStore()
    store = ConversationStore(backend)
    backend.fail_writes = True
    with pytest.raises(StoreError):
        await store.save("alice", make_log("alice", "hello"))

    backend.fail_removes = True
    with pytest.raises(StoreError):
        await store.clear("alice")


@pytest.mark.asyncio
async def test_sqlite_store_persists_across_instances(tmp_path):
    """Test the durable backend keeps logs between connections."""
    path = tmp_path / "device" / "chat.sqlite3"
    first = SQLiteKeyValueStore(path)
    await ConversationStore(first).save("alice", make_log("alice", "hello", "hi there"))
    first.close()

    second = SQLiteKeyValueStore(path)
    loaded = await ConversationStore(second).load("alice")
    assert [m.text for m in loaded.messages] == ["hello", "hi there"]

    await ConversationStore(second).clear("alice")
    assert (await ConversationStore(second).load("alice")).messages == []
    second.close()


@pytest.mark.asyncio
async def test_sqlite_failed_write_keeps_previous_value(tmp_path):
    """Test a rejected write leaves the earlier value in place."""
    backend = SQLiteKeyValueStore(tmp_path / "chat.sqlite3")
    await backend.set_item("chat_alice", "[]")

    # NOT NULL constraint on value makes this write fail inside its transaction
    with pytest.raises(StoreError):
        await backend.set_item("chat_alice", None)

    assert await backend.get_item("chat_alice") == "[]"
    backend.close()


@pytest.mark.asyncio
async def test_sqlite_closed_connection_raises_store_error():
    """Test sqlite errors are translated."""
    backend = SQLiteKeyValueStore()
    backend.close()
    with pytest.raises(StoreError):
        await backend.get_item("chat_alice")
