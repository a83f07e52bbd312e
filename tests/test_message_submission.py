import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.messaging.errors import InvalidMessageContent, Unauthenticated, UnknownMessageType, UpstreamFailure
from src.messaging.message_lifecycle import add_message
from src.messaging.messaging_service import get_messages_in_thread
from src.messaging.uploads import UploadError
from src.models import EnrichedMessage, MessageContent, MessageInput, MessageType, Permissions, StoredMessage, ThreadType, UploadedFile
from src.threads.participants import get_participant
from src.threads.thread_service import get_direct_message_thread, get_user_last_seen_in_direct_message_thread
from tests.conftest import COMMUNITY_ID

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def text_message(thread_id, thread_type=ThreadType.STORY, body="hello"):
    return MessageInput(thread_id=thread_id, thread_type=thread_type, message_type="text", content=MessageContent(body=body))


def draft_message(thread_id, blocks):
    body = json.dumps({"blocks": blocks, "entityMap": {}})
    return MessageInput(thread_id=thread_id, thread_type=ThreadType.STORY, message_type="draftjs", content=MessageContent(body=body))


def media_message(thread_id, data=PNG_BYTES, content_type="image/png"):
    file = UploadedFile(name="cat.png", size=len(data), type=content_type, data=data)
    return MessageInput(thread_id=thread_id, thread_type=ThreadType.STORY, message_type="media", file=file)


CODE_BLOCKS = [
    {"key": "a1", "type": "code-block", "text": "def add(a, b):", "data": {}},
    {"key": "a2", "type": "code-block", "text": "    return a + b", "data": {}},
]


# --- Authentication ---

async def test_anonymous_sender_is_rejected_before_anything_is_stored(db, make_context, story_thread):
    result = await add_message(text_message(story_thread.id), make_context(None))

    assert isinstance(result, Unauthenticated)
    assert result.message == "You must be signed in to send a message."
    assert await get_messages_in_thread(story_thread.id, conn=db) == []
    assert await get_participant(story_thread.id, 1, conn=db) is None


# --- Story threads ---

async def test_text_message_in_story_thread_is_enriched_with_default_permissions(db, make_context, alice, story_thread):
    result = await add_message(text_message(story_thread.id), make_context(alice))

    assert isinstance(result, EnrichedMessage)
    assert result.message_type == MessageType.TEXT
    assert result.content.body == "hello"
    assert result.sender_id == alice.id
    assert result.context_permissions.reputation == 0
    assert result.context_permissions.is_moderator is False
    assert result.context_permissions.is_owner is False
    assert result.context_permissions.community_id is None


async def test_sender_standing_in_community_is_projected(db, make_context, grant, alice, story_thread):
    await grant(alice, community=Permissions(is_owner=True, is_member=True, reputation=42))

    result = await add_message(text_message(story_thread.id), make_context(alice))

    assert result.context_permissions.reputation == 42
    assert result.context_permissions.is_owner is True
    assert result.context_permissions.is_moderator is False


async def test_story_sender_becomes_participant_with_notifications(db, make_context, alice, story_thread):
    await add_message(text_message(story_thread.id), make_context(alice))

    participant = await get_participant(story_thread.id, alice.id, conn=db)
    assert participant is not None
    assert participant.receive_notifications is True


async def test_watercooler_sender_joins_without_notifications(db, make_context, bob, watercooler_thread):
    await add_message(text_message(watercooler_thread.id), make_context(bob))
    await add_message(text_message(watercooler_thread.id, body="again"), make_context(bob))

    participant = await get_participant(watercooler_thread.id, bob.id, conn=db)
    assert participant.receive_notifications is False


async def test_story_message_to_missing_thread_is_still_stored(db, make_context, alice):
    result = await add_message(text_message("no-such-thread"), make_context(alice))

    assert isinstance(result, EnrichedMessage)
    assert result.context_permissions.community_id is None
    assert len(await get_messages_in_thread("no-such-thread", conn=db)) == 1


# --- Direct message threads ---

async def test_direct_message_updates_timestamps_and_is_not_enriched(db, make_context, alice, dm_thread):
    message = text_message(dm_thread.id, thread_type=ThreadType.DIRECT_MESSAGE_THREAD)

    result = await add_message(message, make_context(alice))

    assert type(result) is StoredMessage
    assert result.thread_type == ThreadType.DIRECT_MESSAGE_THREAD
    assert (await get_direct_message_thread(dm_thread.id, conn=db)).last_active is not None
    assert await get_user_last_seen_in_direct_message_thread(dm_thread.id, alice.id, conn=db) is not None
    assert await get_participant(dm_thread.id, alice.id, conn=db) is None


async def test_direct_message_timestamp_failure_is_reported_upstream(db, make_context, alice, dm_thread):
    message = text_message(dm_thread.id, thread_type=ThreadType.DIRECT_MESSAGE_THREAD)
    failing = AsyncMock(side_effect=RuntimeError("thread store offline"))

    with patch("src.messaging.message_lifecycle.set_direct_message_thread_last_active", failing):
        result = await add_message(message, make_context(alice))

    assert isinstance(result, UpstreamFailure)
    assert result.message == "thread store offline"
    assert await get_messages_in_thread(dm_thread.id, conn=db) == []


# --- Rich text ---

async def test_leading_code_block_is_tagged_with_detected_language(db, make_context, alice, story_thread):
    detector = MagicMock(return_value="Python")

    with patch("src.messaging.message_lifecycle.detect_language", detector):
        result = await add_message(draft_message(story_thread.id, CODE_BLOCKS), make_context(alice))

    detector.assert_called_once_with("def add(a, b):\n    return a + b")
    document = json.loads(result.content.body)
    assert document["blocks"][0]["data"] == {"syntax": "python"}
    assert document["blocks"][1]["data"] == {}


async def test_detection_failure_stores_message_unchanged(db, make_context, alice, story_thread):
    message = draft_message(story_thread.id, CODE_BLOCKS)
    detector = MagicMock(side_effect=RuntimeError("detector crashed"))

    with patch("src.messaging.message_lifecycle.detect_language", detector):
        result = await add_message(message, make_context(alice))

    assert isinstance(result, EnrichedMessage)
    assert result.content.body == message.content.body


async def test_unknown_language_leaves_body_untouched(db, make_context, alice, story_thread):
    message = draft_message(story_thread.id, CODE_BLOCKS)

    with patch("src.messaging.message_lifecycle.detect_language", MagicMock(return_value="Unknown")):
        result = await add_message(message, make_context(alice))

    assert result.content.body == message.content.body


async def test_prose_draft_skips_detection(db, make_context, alice, story_thread):
    blocks = [{"key": "b1", "type": "unstyled", "text": "just words", "data": {}}]
    detector = MagicMock(return_value="Python")

    with patch("src.messaging.message_lifecycle.detect_language", detector):
        result = await add_message(draft_message(story_thread.id, blocks), make_context(alice))

    detector.assert_not_called()
    assert result.message_type == MessageType.DRAFTJS


async def test_malformed_draft_document_is_rejected(db, make_context, alice, story_thread):
    message = MessageInput(
        thread_id=story_thread.id, thread_type=ThreadType.STORY, message_type="draftjs",
        content=MessageContent(body="{not json"),
    )

    result = await add_message(message, make_context(alice))

    assert isinstance(result, InvalidMessageContent)


# --- Classification ---

async def test_unknown_message_type_fails_after_side_effects(db, make_context, alice, story_thread):
    message = MessageInput(thread_id=story_thread.id, thread_type=ThreadType.STORY, message_type="sticker")

    result = await add_message(message, make_context(alice))

    assert isinstance(result, UnknownMessageType)
    assert result.message == "Unknown message type"
    assert await get_messages_in_thread(story_thread.id, conn=db) == []
    assert await get_participant(story_thread.id, alice.id, conn=db) is not None


# --- Media ---

async def test_media_message_stores_url_and_file_metadata(db, make_context, alice, story_thread):
    upload = AsyncMock(return_value="/uploads/threads/t/cat.png")

    with patch("src.messaging.message_lifecycle.upload_image", upload):
        result = await add_message(media_message(story_thread.id), make_context(alice))

    uploaded_file, namespace, thread_id = upload.await_args.args
    assert namespace == "threads"
    assert thread_id == story_thread.id
    assert uploaded_file.data == PNG_BYTES
    assert result.content.body == "/uploads/threads/t/cat.png"
    assert result.file.model_dump() == {"name": "cat.png", "size": len(PNG_BYTES), "type": "image/png"}
    assert result.context_permissions.community_id == COMMUNITY_ID


async def test_media_upload_writes_file_under_uploads_dir(db, make_context, alice, story_thread):
    result = await add_message(media_message(story_thread.id), make_context(alice))

    assert isinstance(result, EnrichedMessage)
    assert result.content.body.startswith(f"/uploads/threads/{story_thread.id}/")
    assert result.content.body.endswith("-cat.png")


async def test_upload_failure_becomes_upstream_failure(db, make_context, alice, story_thread):
    upload = AsyncMock(side_effect=UploadError("bucket unavailable"))

    with patch("src.messaging.message_lifecycle.upload_image", upload):
        result = await add_message(media_message(story_thread.id), make_context(alice))

    assert isinstance(result, UpstreamFailure)
    assert result.message == "bucket unavailable"
    assert await get_messages_in_thread(story_thread.id, conn=db) == []


async def test_disallowed_file_type_is_not_stored(db, make_context, alice, story_thread):
    result = await add_message(media_message(story_thread.id, content_type="application/pdf"), make_context(alice))

    assert isinstance(result, UpstreamFailure)
    assert "application/pdf" in result.message


async def test_media_message_without_file_is_rejected(db, make_context, alice, story_thread):
    message = MessageInput(thread_id=story_thread.id, thread_type=ThreadType.STORY, message_type="media")

    result = await add_message(message, make_context(alice))

    assert isinstance(result, InvalidMessageContent)


# --- Store failures ---

async def test_store_failure_is_returned_as_upstream_failure(db, make_context, alice, story_thread):
    with patch("src.messaging.message_lifecycle.store_message", AsyncMock(side_effect=RuntimeError("disk full"))):
        result = await add_message(text_message(story_thread.id), make_context(alice))

    assert isinstance(result, UpstreamFailure)
    assert result.message == "disk full"
    assert result.status_code == 502
