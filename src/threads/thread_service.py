#thread_service.py
"""
Thread Store

Story threads belong to a community channel and may be flagged as a
"watercooler" (membership without ambient notifications). Direct-message
threads live in their own table and only track activity timestamps: when the
thread last saw a message and when each member last looked at it.

Story and direct-message thread ids come from separate tables, so `get_thread`
only ever resolves story threads and returns None for a direct-message id.
"""
import uuid
from typing import Dict, Iterable, List, Optional

import aiosqlite
import logging
from src.db_utils import AsyncDBContext, execute_db_query
from src.models import DirectMessageThread, Thread


logger = logging.getLogger("ThreadService")
logger.setLevel(logging.DEBUG)


# ==============================================================================
# --- DATABASE SETUP (Run once at startup) ---
# ==============================================================================

async def setup_threads_database(conn: Optional[aiosqlite.Connection] = None):
    async with AsyncDBContext(conn) as db:
        await db.execute("""
            CREATE TABLE IF NOT EXISTS threads (
                id TEXT PRIMARY KEY,
                community_id TEXT NOT NULL,
                channel_id TEXT NOT NULL,
                creator_id INTEGER,
                watercooler INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                last_active TIMESTAMP
            );
        """)
        await db.execute("CREATE INDEX IF NOT EXISTS idx_threads_channel ON threads (channel_id);")

        await db.execute("""
            CREATE TABLE IF NOT EXISTS direct_message_threads (
                id TEXT PRIMARY KEY,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                last_active TIMESTAMP
            );
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS users_direct_message_threads (
                thread_id TEXT NOT NULL,
                user_id INTEGER NOT NULL,
                last_seen TIMESTAMP,
                PRIMARY KEY (thread_id, user_id)
            );
        """)
    logger.debug("Thread schema is verified.")


# ==============================================================================
# --- STORY THREADS ---
# ==============================================================================

async def create_thread(
    community_id: str,
    channel_id: str,
    creator_id: Optional[int] = None,
    watercooler: bool = False,
    conn: Optional[aiosqlite.Connection] = None
) -> Thread:
    thread_id = str(uuid.uuid4())
    async with AsyncDBContext(conn) as db:
        await execute_db_query(
            db,
            "INSERT INTO threads (id, community_id, channel_id, creator_id, watercooler) VALUES (?, ?, ?, ?, ?)",
            (thread_id, community_id, channel_id, creator_id, int(watercooler)),
        )
        logger.info(f"Created thread {thread_id} in channel {channel_id} (watercooler={watercooler}).")
        return await get_thread(thread_id, conn=db)


async def get_thread(thread_id: str, conn: Optional[aiosqlite.Connection] = None) -> Optional[Thread]:
    """Returns the story thread with this id, or None."""
    async with AsyncDBContext(conn) as db:
        row = await execute_db_query(db, "SELECT * FROM threads WHERE id = ?", (thread_id,), fetch_one=True)
    return Thread(**dict(row)) if row else None


async def get_threads(thread_ids: Iterable[str], conn: Optional[aiosqlite.Connection] = None) -> Dict[str, Thread]:
    """Batch lookup keyed by id. Unknown ids are simply absent from the result."""
    ids = list(dict.fromkeys(thread_ids))
    if not ids:
        return {}
    placeholders = ", ".join("?" for _ in ids)
    async with AsyncDBContext(conn) as db:
        rows = await execute_db_query(
            db, f"SELECT * FROM threads WHERE id IN ({placeholders})", tuple(ids), fetch_all=True
        )
    return {row['id']: Thread(**dict(row)) for row in rows or []}


# ==============================================================================
# --- DIRECT MESSAGE THREADS ---
# ==============================================================================

async def create_direct_message_thread(user_ids: List[int], conn: Optional[aiosqlite.Connection] = None) -> DirectMessageThread:
    thread_id = str(uuid.uuid4())
    async with AsyncDBContext(conn) as db:
        await execute_db_query(db, "INSERT INTO direct_message_threads (id) VALUES (?)", (thread_id,))
        await db.executemany(
            "INSERT OR IGNORE INTO users_direct_message_threads (thread_id, user_id) VALUES (?, ?)",
            [(thread_id, user_id) for user_id in user_ids],
        )
        row = await execute_db_query(db, "SELECT * FROM direct_message_threads WHERE id = ?", (thread_id,), fetch_one=True)
    logger.info(f"Created direct message thread {thread_id} for users {user_ids}.")
    return DirectMessageThread(**dict(row))


async def get_direct_message_thread(thread_id: str, conn: Optional[aiosqlite.Connection] = None) -> Optional[DirectMessageThread]:
    async with AsyncDBContext(conn) as db:
        row = await execute_db_query(db, "SELECT * FROM direct_message_threads WHERE id = ?", (thread_id,), fetch_one=True)
    return DirectMessageThread(**dict(row)) if row else None


async def set_direct_message_thread_last_active(thread_id: str, conn: Optional[aiosqlite.Connection] = None) -> bool:
    async with AsyncDBContext(conn) as db:
        rows_affected = await execute_db_query(
            db,
            "UPDATE direct_message_threads SET last_active = strftime('%Y-%m-%d %H:%M:%f', 'now') WHERE id = ?",
            (thread_id,),
        )
    if not rows_affected:
        logger.warning(f"Could not mark direct message thread {thread_id} active: thread not found.")
    return rows_affected > 0


async def set_user_last_seen_in_direct_message_thread(thread_id: str, user_id: int, conn: Optional[aiosqlite.Connection] = None):
    """Upserts the member row, so a sender who was never recorded gets one."""
    async with AsyncDBContext(conn) as db:
        await execute_db_query(
            db,
            """
            INSERT INTO users_direct_message_threads (thread_id, user_id, last_seen)
            VALUES (?, ?, strftime('%Y-%m-%d %H:%M:%f', 'now'))
            ON CONFLICT(thread_id, user_id) DO UPDATE SET last_seen = excluded.last_seen
            """,
            (thread_id, user_id),
        )


async def get_user_last_seen_in_direct_message_thread(thread_id: str, user_id: int, conn: Optional[aiosqlite.Connection] = None) -> Optional[str]:
    async with AsyncDBContext(conn) as db:
        row = await execute_db_query(
            db,
            "SELECT last_seen FROM users_direct_message_threads WHERE thread_id = ? AND user_id = ?",
            (thread_id, user_id),
            fetch_one=True,
        )
    return row['last_seen'] if row else None
