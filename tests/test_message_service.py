from datetime import timedelta

import pytest
import pytest_asyncio

from chatsync.errors import NotFoundError, TransientStoreError, ValidationError


@pytest_asyncio.fixture
async def conversation(conversation_service):
    return await conversation_service.find_or_create("alice", "bob")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "kwargs",
    [
        {"text": ""},
        {"text": "   \n"},
        {},
        {"text": "hi", "voice_note": {"url": "https://cdn.example.com/v.m4a", "duration_seconds": 4}},
        {"voice_note": {"url": "https://cdn.example.com/v.m4a", "duration_seconds": 0.4}},
        {"voice_note": {"url": "", "duration_seconds": 4}},
    ],
)
async def test_invalid_payload_writes_nothing(message_service, message_repo, conversation_repo, conversation, kwargs):
    with pytest.raises(ValidationError):
        await message_service.append(conversation.id, "alice", **kwargs)
    assert message_repo.docs == {}
    assert conversation_repo.update_calls == 0


@pytest.mark.asyncio
async def test_append_text_updates_summary(message_service, conversation_repo, conversation):
    message = await message_service.send_text(conversation.id, "alice", "  hello bob ")

    assert message.text == "hello bob"
    assert message.seen_by == {}
    doc = conversation_repo.docs[conversation.id]
    assert doc["last_message"] == "hello bob"
    assert doc["last_message_time"] == message.timestamp
    assert doc["last_message_sender_id"] == "alice"


@pytest.mark.asyncio
async def test_append_voice_note_preview(message_service, conversation_repo, conversation):
    message = await message_service.send_voice_note(conversation.id, "bob", "https://cdn.example.com/v.m4a", 2.5)

    assert message.is_voice_note
    assert message.text is None
    assert message.voice_note.duration_seconds == 2.5
    assert conversation_repo.docs[conversation.id]["last_message"] == "🎤 Voice note"


@pytest.mark.asyncio
async def test_append_rejects_outsiders(message_service, message_repo, conversation):
    with pytest.raises(ValidationError):
        await message_service.send_text(conversation.id, "carol", "let me in")
    assert message_repo.docs == {}


@pytest.mark.asyncio
async def test_append_to_unknown_conversation(message_service):
    with pytest.raises(NotFoundError):
        await message_service.send_text("missing", "alice", "hello?")


@pytest.mark.asyncio
async def test_reply_keeps_snapshot_of_original(message_service, message_repo, conversation):
    original = await message_service.send_text(conversation.id, "bob", "lunch at noon?")
    reply = await message_service.send_text(conversation.id, "alice", "sure", reply_to_id=original.id)

    assert reply.reply_to.id == original.id
    assert reply.reply_to.text == "lunch at noon?"
    assert reply.reply_to.sender_id == "bob"

    # later changes to the stored original do not leak into the reply
    message_repo.docs[original.id]["text"] = "lunch at one?"
    stored = await message_service.get_message(conversation.id, reply.id)
    assert stored.reply_to.text == "lunch at noon?"


@pytest.mark.asyncio
async def test_reply_to_voice_note(message_service, conversation):
    original = await message_service.send_voice_note(conversation.id, "bob", "https://cdn.example.com/v.m4a", 3)
    reply = await message_service.send_text(conversation.id, "alice", "nice", reply_to_id=original.id)

    assert reply.reply_to.text is None
    assert reply.reply_to.voice_note.url == "https://cdn.example.com/v.m4a"


@pytest.mark.asyncio
async def test_reply_target_must_belong_to_conversation(message_service, conversation_service, conversation):
    other = await conversation_service.find_or_create("alice", "carol")
    elsewhere = await message_service.send_text(other.id, "carol", "hey")

    with pytest.raises(ValidationError):
        await message_service.send_text(conversation.id, "alice", "re", reply_to_id=elsewhere.id)


@pytest.mark.asyncio
async def test_failed_insert_returns_draft(message_service, message_repo, conversation_repo, conversation):
    message_repo.fail_insert = True

    with pytest.raises(TransientStoreError) as excinfo:
        await message_service.send_text(conversation.id, "alice", " don't lose me ")

    assert excinfo.value.draft == "don't lose me"
    assert conversation_repo.update_calls == 0


@pytest.mark.asyncio
async def test_summary_failure_does_not_fail_the_send(message_service, message_repo, conversation_repo, conversation):
    conversation_repo.fail_updates = 100

    first = await message_service.send_text(conversation.id, "alice", "first")

    assert first.id in message_repo.docs
    assert conversation_repo.docs[conversation.id]["last_message"] is None
    assert conversation_repo.update_calls == 3

    # the next successful append brings the summary back in line
    conversation_repo.fail_updates = 0
    await message_service.send_text(conversation.id, "bob", "second")
    assert conversation_repo.docs[conversation.id]["last_message"] == "second"


@pytest.mark.asyncio
async def test_summary_update_retries_transient_failures(message_service, conversation_repo, conversation):
    conversation_repo.fail_updates = 2

    await message_service.send_text(conversation.id, "alice", "eventually")

    assert conversation_repo.docs[conversation.id]["last_message"] == "eventually"
    assert conversation_repo.update_calls == 3


@pytest.mark.asyncio
async def test_history_is_ordered_by_store_time(message_service, clock, conversation):
    first = await message_service.send_text(conversation.id, "alice", "one")
    second = await message_service.send_text(conversation.id, "bob", "two")
    # a message whose server timestamp lands before the others
    clock.now = first.timestamp - timedelta(minutes=5)
    early = await message_service.send_text(conversation.id, "bob", "zero")

    history = await message_service.history(conversation.id)

    assert [m.id for m in history] == [early.id, first.id, second.id]


@pytest.mark.asyncio
async def test_history_page_walks_backwards(message_service, conversation):
    sent = [await message_service.send_text(conversation.id, "alice", f"m{i}") for i in range(5)]

    page, cursor = await message_service.history_page(conversation.id, limit=2)
    assert [m.text for m in page] == ["m3", "m4"]

    page, cursor = await message_service.history_page(conversation.id, limit=2, cursor=cursor)
    assert [m.text for m in page] == ["m1", "m2"]

    page, cursor = await message_service.history_page(conversation.id, limit=2, cursor=cursor)
    assert [m.id for m in page] == [sent[0].id]
    assert cursor is None


@pytest.mark.asyncio
async def test_history_page_rejects_bad_cursor(message_service, conversation):
    with pytest.raises(ValidationError):
        await message_service.history_page(conversation.id, cursor="not-a-cursor")


@pytest.mark.asyncio
async def test_get_message_not_found(message_service, conversation):
    with pytest.raises(NotFoundError):
        await message_service.get_message(conversation.id, "nope")


@pytest.mark.asyncio
async def test_blank_text_beside_voice_note_is_dropped(message_service, message_repo, conversation):
    message = await message_service.append(
        conversation.id,
        "alice",
        text="   ",
        voice_note={"url": "https://cdn.example.com/v.m4a", "duration_seconds": 3},
    )

    assert message.text is None
    assert message.is_voice_note
    assert "text" not in message_repo.docs[message.id]
