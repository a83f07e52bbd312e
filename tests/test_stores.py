import json

from src.log.HelperLog import get_logs_async
from src.messaging.messaging_service import (
    delete_message,
    get_message,
    get_messages_in_thread,
    store_message,
    user_has_messages_in_thread,
)
from src.models import MessageContent, MessageInput, MessageType, Permissions, ThreadType, UploadedFile
from src.roles.rbac_manager import (
    can_moderate,
    get_user_permissions_in_channel,
    get_user_permissions_in_community,
    get_users_permissions_in_communities,
    set_user_permissions_in_community,
)
from src.threads.participants import (
    create_participant_in_thread,
    create_participant_without_notifications_in_thread,
    delete_participant_in_thread,
    get_participant,
    get_participants_in_thread,
)
from src.threads.thread_service import get_thread, get_threads
from src.users.user_manager import create_user
from tests.conftest import CHANNEL_ID, COMMUNITY_ID


def text(thread_id, body="hello"):
    return MessageInput(thread_id=thread_id, thread_type=ThreadType.STORY, message_type="text", content=MessageContent(body=body))


# --- Users ---

async def test_duplicate_usernames_are_refused(db, alice):
    assert await create_user("Alice", conn=db) is None
    assert await create_user("   ", conn=db) is None


# --- Threads ---

async def test_thread_lookups(db, story_thread, dm_thread):
    assert (await get_thread(story_thread.id, conn=db)).community_id == COMMUNITY_ID
    assert await get_thread(dm_thread.id, conn=db) is None

    found = await get_threads([story_thread.id, "missing", story_thread.id], conn=db)
    assert list(found) == [story_thread.id]
    assert found[story_thread.id].channel_id == CHANNEL_ID


# --- Participants ---

async def test_existing_participant_keeps_notification_flag(db, alice, story_thread):
    await create_participant_without_notifications_in_thread(story_thread.id, alice.id, conn=db)
    await create_participant_in_thread(story_thread.id, alice.id, conn=db)

    participant = await get_participant(story_thread.id, alice.id, conn=db)
    assert participant.receive_notifications is False
    assert len(await get_participants_in_thread(story_thread.id, conn=db)) == 1


async def test_participant_removal_is_audited(db, alice, story_thread):
    await create_participant_in_thread(story_thread.id, alice.id, conn=db)

    assert await delete_participant_in_thread(story_thread.id, alice.id, conn=db) is True
    assert await delete_participant_in_thread(story_thread.id, alice.id, conn=db) is False

    logs = await get_logs_async(conn=db, event_type="thread_participant_removed")
    assert len(logs) == 1


# --- Roles ---

async def test_permissions_round_trip_and_batch_lookup(db, alice, bob):
    await set_user_permissions_in_community(COMMUNITY_ID, alice.id, Permissions(is_moderator=True, reputation=7), conn=db)

    single = await get_user_permissions_in_community(COMMUNITY_ID, alice.id, conn=db)
    assert single.is_moderator is True
    assert single.reputation == 7
    assert await get_user_permissions_in_channel(CHANNEL_ID, alice.id, conn=db) is None

    batch = await get_users_permissions_in_communities([(alice.id, COMMUNITY_ID), (bob.id, COMMUNITY_ID)], conn=db)
    assert set(batch) == {(alice.id, COMMUNITY_ID)}


def test_can_moderate_treats_missing_records_as_no_role():
    assert can_moderate(None, None) is False
    assert can_moderate(Permissions(is_member=True), None) is False
    assert can_moderate(None, Permissions(is_owner=True)) is True


# --- Messages ---

async def test_store_and_read_back(db, alice, story_thread):
    stored = await store_message(text(story_thread.id), alice.id, conn=db)

    fetched = await get_message(stored.id, conn=db)
    assert fetched == stored
    assert fetched.message_type == MessageType.TEXT
    assert fetched.file is None

    logs = await get_logs_async(conn=db, event_type="message_created", target_id=stored.id)
    assert logs[0]["details"]["thread_id"] == story_thread.id


async def test_file_metadata_is_stored_without_data(db, alice, story_thread):
    message = MessageInput(
        thread_id=story_thread.id, thread_type=ThreadType.STORY, message_type="media",
        content=MessageContent(body="/uploads/threads/x/y.png"),
        file=UploadedFile(name="y.png", size=3, type="image/png", data=b"abc"),
    )

    stored = await store_message(message, alice.id, conn=db)

    assert stored.file.model_dump() == {"name": "y.png", "size": 3, "type": "image/png"}


async def test_soft_delete_hides_message(db, alice, bob, story_thread):
    stored = await store_message(text(story_thread.id), alice.id, conn=db)

    assert await delete_message(bob.id, stored.id, conn=db) is True
    assert await get_message(stored.id, conn=db) is None
    assert await user_has_messages_in_thread(story_thread.id, alice.id, conn=db) is False
    assert await delete_message(bob.id, stored.id, conn=db) is False

    async with db.execute("SELECT deleted_by FROM messages WHERE id = ?", (stored.id,)) as cursor:
        row = await cursor.fetchone()
    assert row["deleted_by"] == bob.id


async def test_thread_messages_are_oldest_first(db, alice, story_thread):
    for body in ("one", "two", "three"):
        await store_message(text(story_thread.id, body), alice.id, conn=db)

    messages = await get_messages_in_thread(story_thread.id, conn=db)
    assert [m.content.body for m in messages] == ["one", "two", "three"]
    assert [m.content.body for m in await get_messages_in_thread(story_thread.id, limit=1, offset=1, conn=db)] == ["two"]
