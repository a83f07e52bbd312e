#messaging_service.py
"""
Message Store

Durable record of the messages posted in story and direct-message threads.

- Identity (uuid) and creation time are assigned here on insert.
- Deletion is soft: the row keeps its content and records who deleted it and
  when. Deleted messages are invisible to every read in this module.
- Creations and deletions are written to the audit log inside the same
  transaction as the change itself.
"""
import json
import uuid
from typing import List, Optional

import aiosqlite
import logging
from src.db_utils import AsyncDBContext, execute_db_query
from src.log.HelperLog import log_event_async
from src.models import MessageContent, MessageFile, MessageInput, StoredMessage


logger = logging.getLogger("MessagingService")
logger.setLevel(logging.DEBUG)

_MESSAGE_COLUMNS = "id, thread_id, thread_type, sender_id, message_type, content, file_name, file_size, file_type, created_at"


# ==============================================================================
# --- DATABASE SETUP (Run once at startup) ---
# ==============================================================================

async def setup_messaging_database(conn: Optional[aiosqlite.Connection] = None):
    async with AsyncDBContext(conn) as db:
        await db.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                id TEXT PRIMARY KEY,
                thread_id TEXT NOT NULL,
                thread_type TEXT NOT NULL CHECK(thread_type IN ('directMessageThread', 'story')),
                sender_id INTEGER NOT NULL,
                message_type TEXT NOT NULL CHECK(message_type IN ('text', 'draftjs', 'media')),
                content TEXT NOT NULL,
                file_name TEXT,
                file_size INTEGER,
                file_type TEXT,
                created_at TIMESTAMP NOT NULL DEFAULT (strftime('%Y-%m-%d %H:%M:%f', 'now')),
                deleted_at TIMESTAMP,
                deleted_by INTEGER
            );
        """)
        await db.execute("CREATE INDEX IF NOT EXISTS idx_messages_thread_sender ON messages (thread_id, sender_id, deleted_at);")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_messages_thread_created ON messages (thread_id, created_at);")
    logger.debug("Messaging database schema is verified.")


# ==============================================================================
# --- PRIVATE HELPER FUNCTIONS ---
# ==============================================================================

def _row_to_message(row: aiosqlite.Row) -> StoredMessage:
    data = dict(row)
    file = None
    if data.get('file_name') is not None:
        file = MessageFile(name=data['file_name'], size=data['file_size'], type=data['file_type'])
    return StoredMessage(
        id=data['id'],
        thread_id=data['thread_id'],
        thread_type=data['thread_type'],
        sender_id=data['sender_id'],
        message_type=data['message_type'],
        content=MessageContent(**json.loads(data['content'])),
        file=file,
        created_at=data['created_at'],
    )


async def _fetch_message(db: aiosqlite.Connection, message_id: str) -> Optional[StoredMessage]:
    row = await execute_db_query(
        db,
        f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ? AND deleted_at IS NULL",
        (message_id,),
        fetch_one=True,
    )
    return _row_to_message(row) if row else None


# ==============================================================================
# --- PUBLIC API ---
# ==============================================================================

async def store_message(message: MessageInput, sender_id: int, conn: Optional[aiosqlite.Connection] = None) -> StoredMessage:
    """Inserts a classified message and returns the stored record."""
    message_id = str(uuid.uuid4())
    file = message.file
    params = (
        message_id,
        message.thread_id,
        message.thread_type.value,
        sender_id,
        message.message_type,
        json.dumps(message.content.model_dump()),
        file.name if file else None,
        file.size if file else None,
        file.type if file else None,
    )
    async with AsyncDBContext(conn) as db:
        await execute_db_query(
            db,
            """
            INSERT INTO messages (id, thread_id, thread_type, sender_id, message_type, content, file_name, file_size, file_type)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            params,
        )
        await log_event_async(
            conn=db,
            event_type="message_created",
            actor_type="user",
            actor_name=str(sender_id),
            target_type="message",
            target_id=message_id,
            details={"thread_id": message.thread_id, "message_type": message.message_type},
        )
        stored = await _fetch_message(db, message_id)

    logger.info(f"Stored {message.message_type} message {message_id} from user {sender_id} in thread {message.thread_id}.")
    return stored


async def get_message(message_id: str, conn: Optional[aiosqlite.Connection] = None) -> Optional[StoredMessage]:
    """Returns the message, or None if it never existed or was deleted."""
    async with AsyncDBContext(conn) as db:
        return await _fetch_message(db, message_id)


async def delete_message(deleting_user_id: int, message_id: str, conn: Optional[aiosqlite.Connection] = None) -> bool:
    """
    Soft-deletes a message, recording who deleted it.
    Authorization is the caller's job; this only records the outcome.
    """
    async with AsyncDBContext(conn) as db:
        original = await _fetch_message(db, message_id)
        if original is None:
            return False

        rows_affected = await execute_db_query(
            db,
            """
            UPDATE messages
            SET deleted_at = strftime('%Y-%m-%d %H:%M:%f', 'now'), deleted_by = ?
            WHERE id = ? AND deleted_at IS NULL
            """,
            (deleting_user_id, message_id),
        )
        if rows_affected > 0:
            await log_event_async(
                conn=db,
                event_type="message_deleted",
                actor_type="user",
                actor_name=str(deleting_user_id),
                target_type="message",
                target_id=message_id,
                details={"thread_id": original.thread_id, "original_sender_id": original.sender_id},
            )
            logger.info(f"User {deleting_user_id} deleted message {message_id}.")
        return rows_affected > 0


async def user_has_messages_in_thread(thread_id: str, user_id: int, conn: Optional[aiosqlite.Connection] = None) -> bool:
    async with AsyncDBContext(conn) as db:
        row = await execute_db_query(
            db,
            "SELECT 1 FROM messages WHERE thread_id = ? AND sender_id = ? AND deleted_at IS NULL LIMIT 1",
            (thread_id, user_id),
            fetch_one=True,
        )
    return row is not None


async def get_messages_in_thread(
    thread_id: str,
    limit: int = 50,
    offset: int = 0,
    conn: Optional[aiosqlite.Connection] = None
) -> List[StoredMessage]:
    """Undeleted messages of a thread, oldest first."""
    async with AsyncDBContext(conn) as db:
        rows = await execute_db_query(
            db,
            f"""
            SELECT {_MESSAGE_COLUMNS} FROM messages
            WHERE thread_id = ? AND deleted_at IS NULL
            ORDER BY created_at ASC, rowid ASC
            LIMIT ? OFFSET ?
            """,
            (thread_id, limit, offset),
            fetch_all=True,
        )
    return [_row_to_message(row) for row in rows or []]
