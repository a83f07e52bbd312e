#message_lifecycle.py
"""
Message lifecycle: submission and deletion.

Submission validates the sender, updates thread bookkeeping (direct-message
timestamps, story participation), classifies the message by type, persists
it and returns the stored message enriched for the sender's community.

Deletion checks that the caller is the sender or a moderator, soft-deletes
the message and drops the sender from the thread's participants once they
have nothing left in it.

The core functions raise `UserError`s. `add_message`, `delete_message` and
`get_thread_messages` are the boundary: they return the error instead, and
turn anything unexpected into an `UpstreamFailure`.
"""
import asyncio
from typing import Awaitable, Callable, Dict, List, Union

from ConfigChat import get_config
from src.messaging.content import parse_draft_document, parse_message_type, tag_code_language
from src.messaging.context import RequestContext
from src.messaging.errors import (
    Forbidden,
    InvalidMessageContent,
    NotFound,
    Unauthenticated,
    UpstreamFailure,
    UserError,
)
from src.messaging.language import detect_language
from src.messaging.messaging_service import delete_message as delete_stored_message
from src.messaging.messaging_service import get_message, get_messages_in_thread, store_message, user_has_messages_in_thread
from src.messaging.uploads import UploadError, upload_image
from src.messaging.views import enrich_message
from src.models import (
    EnrichedMessage,
    MessageContent,
    MessageInput,
    MessageType,
    StoredMessage,
    Thread,
    ThreadType,
    UploadedFile,
    UserProfile,
)
from src.roles.rbac_manager import can_moderate, get_user_permissions_in_channel, get_user_permissions_in_community
from src.threads.participants import (
    create_participant_in_thread,
    create_participant_without_notifications_in_thread,
    delete_participant_in_thread,
)
from src.threads.thread_service import (
    get_thread,
    set_direct_message_thread_last_active,
    set_user_last_seen_in_direct_message_thread,
)

config = get_config()

UPLOAD_NAMESPACE = "threads"

MessageView = Union[StoredMessage, EnrichedMessage]


# ==============================================================================
# --- THREAD SIDE-EFFECTS ---
# ==============================================================================

async def _touch_direct_message_thread(message: MessageInput, user: UserProfile, context: RequestContext):
    """Marks the thread active and the sender as having seen it, concurrently."""
    results = await asyncio.gather(
        set_direct_message_thread_last_active(message.thread_id, conn=context.conn),
        set_user_last_seen_in_direct_message_thread(message.thread_id, user.id, conn=context.conn),
        return_exceptions=True,
    )
    for result in results:
        if isinstance(result, Exception):
            raise UpstreamFailure(str(result)) from result


async def _apply_thread_side_effects(message: MessageInput, thread, user: UserProfile, context: RequestContext):
    if message.thread_type == ThreadType.DIRECT_MESSAGE_THREAD:
        await _touch_direct_message_thread(message, user, context)

    if thread is None:
        return

    # A watercooler thread never subscribes the sender to notifications.
    if thread.watercooler:
        context.logger.debug(f"Joining watercooler thread {thread.id} without notifications.")
        await create_participant_without_notifications_in_thread(thread.id, user.id, conn=context.conn)
    elif message.thread_type == ThreadType.STORY:
        await create_participant_in_thread(thread.id, user.id, conn=context.conn)


# ==============================================================================
# --- PREPARERS (one per message type) ---
# ==============================================================================

Preparer = Callable[[MessageInput, RequestContext], Awaitable[MessageInput]]


async def _prepare_text(message: MessageInput, context: RequestContext) -> MessageInput:
    return message


async def _prepare_draftjs(message: MessageInput, context: RequestContext) -> MessageInput:
    if not config.get("LANGUAGE_DETECTION_ENABLED", True):
        parse_draft_document(message.content.body)
        return message

    body = await tag_code_language(message.content.body, detector=detect_language)
    if body == message.content.body:
        return message
    return message.model_copy(update={"content": MessageContent(body=body)})


async def _prepare_media(message: MessageInput, context: RequestContext) -> MessageInput:
    if message.file is None:
        raise InvalidMessageContent("Media messages must include a file.")

    try:
        url = await upload_image(message.file, UPLOAD_NAMESPACE, message.thread_id)
    except UploadError as e:
        context.logger.error(f"Upload for thread {message.thread_id} failed: {e}")
        raise UpstreamFailure(str(e)) from e

    file = message.file
    return message.model_copy(update={
        "content": MessageContent(body=url),
        "file": UploadedFile(name=file.name, size=file.size, type=file.type),
    })


_PREPARERS: Dict[MessageType, Preparer] = {
    MessageType.TEXT: _prepare_text,
    MessageType.DRAFTJS: _prepare_draftjs,
    MessageType.MEDIA: _prepare_media,
}

_missing_preparers = set(MessageType) - set(_PREPARERS)
if _missing_preparers:
    raise RuntimeError(f"No preparer registered for message types: {sorted(t.value for t in _missing_preparers)}")


# ==============================================================================
# --- SUBMISSION ---
# ==============================================================================

async def submit_message(message: MessageInput, context: RequestContext) -> MessageView:
    user = context.user
    if user is None:
        raise Unauthenticated("You must be signed in to send a message.")

    context.logger.debug(f"Submitting {message.message_type} message to {message.thread_type.value} {message.thread_id}.")

    # Direct-message ids never resolve here; a missing thread is tolerated.
    thread = await get_thread(message.thread_id, conn=context.conn)
    if thread is not None:
        context.loaders.thread.prime(thread.id, thread)

    await _apply_thread_side_effects(message, thread, user, context)
    # Bookkeeping stands even if the message is rejected below.
    if context.conn is not None:
        await context.conn.commit()

    message_type = parse_message_type(message.message_type)
    prepared = await _PREPARERS[message_type](message, context)

    stored = await store_message(prepared, user.id, conn=context.conn)
    context.logger.info(f"Message {stored.id} stored in thread {stored.thread_id}.")
    return await enrich_message(stored, context)


# ==============================================================================
# --- DELETION ---
# ==============================================================================

async def _authorize_moderation(message: StoredMessage, user: UserProfile, context: RequestContext):
    if message.thread_type == ThreadType.DIRECT_MESSAGE_THREAD:
        raise Forbidden("You can only delete your own messages.")

    thread: Thread = await get_thread(message.thread_id, conn=context.conn)
    if thread is None:
        raise NotFound("This thread does not exist.")

    community_permissions = await get_user_permissions_in_community(thread.community_id, user.id, conn=context.conn)
    channel_permissions = await get_user_permissions_in_channel(thread.channel_id, user.id, conn=context.conn)
    if not can_moderate(community_permissions, channel_permissions):
        raise Forbidden("You don't have permission to delete this message.")


async def _retract_participation(message: StoredMessage, context: RequestContext):
    """Removes the original sender from a story thread once none of their messages remain."""
    if message.thread_type == ThreadType.DIRECT_MESSAGE_THREAD:
        return
    if await user_has_messages_in_thread(message.thread_id, message.sender_id, conn=context.conn):
        return
    await delete_participant_in_thread(message.thread_id, message.sender_id, conn=context.conn)
    context.logger.debug(f"User {message.sender_id} left thread {message.thread_id} with their last message.")


async def remove_message(message_id: str, context: RequestContext) -> bool:
    user = context.user
    if user is None:
        raise Unauthenticated("You must be signed in to delete a message.")

    message = await get_message(message_id, conn=context.conn)
    if message is None:
        raise NotFound("This message does not exist.")

    if message.sender_id != user.id:
        await _authorize_moderation(message, user, context)

    await delete_stored_message(user.id, message_id, conn=context.conn)
    await _retract_participation(message, context)
    context.logger.info(f"Message {message_id} deleted.")
    return True


# ==============================================================================
# --- READING ---
# ==============================================================================

async def list_thread_messages(thread_id: str, context: RequestContext, limit: int = 50, offset: int = 0) -> List[MessageView]:
    """Messages of a story thread, each enriched through the request's loaders."""
    thread = await context.loaders.thread.load(thread_id)
    if thread is None:
        raise NotFound("This thread does not exist.")
    messages = await get_messages_in_thread(thread_id, limit=limit, offset=offset, conn=context.conn)
    return list(await asyncio.gather(*(enrich_message(m, context) for m in messages)))


# ==============================================================================
# --- BOUNDARY ---
# ==============================================================================

async def _at_boundary(action: str, operation: Awaitable, context: RequestContext):
    try:
        return await operation
    except UserError as e:
        context.logger.info(f"{action} rejected: {e.message}")
        return e
    except Exception as e:
        context.logger.error(f"{action} failed: {e}", exc_info=True)
        return UpstreamFailure(str(e))


async def add_message(message: MessageInput, context: RequestContext) -> Union[MessageView, UserError]:
    return await _at_boundary("addMessage", submit_message(message, context), context)


async def delete_message(message_id: str, context: RequestContext) -> Union[bool, UserError]:
    return await _at_boundary("deleteMessage", remove_message(message_id, context), context)


async def get_thread_messages(
    thread_id: str, context: RequestContext, limit: int = 50, offset: int = 0
) -> Union[List[MessageView], UserError]:
    return await _at_boundary("getThreadMessages", list_thread_messages(thread_id, context, limit, offset), context)
