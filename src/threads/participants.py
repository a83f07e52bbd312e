#participants.py
"""
Participant Registry

Records which users take part in which story thread and whether they get
notified about it. Both create calls are idempotent upserts keyed by
(thread_id, user_id); repeating one keeps the notification flag already
stored, so a user who muted a thread stays muted when they post again.
"""
from typing import List, Optional

import aiosqlite
import logging
from src.db_utils import AsyncDBContext, execute_db_query
from src.log.HelperLog import log_event_async
from src.models import Participant


logger = logging.getLogger("ParticipantRegistry")
logger.setLevel(logging.DEBUG)


async def setup_participants_database(conn: Optional[aiosqlite.Connection] = None):
    async with AsyncDBContext(conn) as db:
        await db.execute("""
            CREATE TABLE IF NOT EXISTS users_threads (
                thread_id TEXT NOT NULL,
                user_id INTEGER NOT NULL,
                receive_notifications INTEGER NOT NULL DEFAULT 1,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (thread_id, user_id)
            );
        """)
        await db.execute("CREATE INDEX IF NOT EXISTS idx_users_threads_user ON users_threads (user_id);")
    logger.debug("Participant schema is verified.")


async def _upsert_participant(thread_id: str, user_id: int, receive_notifications: bool, conn: Optional[aiosqlite.Connection]):
    async with AsyncDBContext(conn) as db:
        rows_affected = await execute_db_query(
            db,
            "INSERT OR IGNORE INTO users_threads (thread_id, user_id, receive_notifications) VALUES (?, ?, ?)",
            (thread_id, user_id, int(receive_notifications)),
        )
    if rows_affected:
        logger.info(f"User {user_id} is now a participant of thread {thread_id} (notifications={receive_notifications}).")


async def create_participant_in_thread(thread_id: str, user_id: int, conn: Optional[aiosqlite.Connection] = None):
    await _upsert_participant(thread_id, user_id, True, conn)


async def create_participant_without_notifications_in_thread(thread_id: str, user_id: int, conn: Optional[aiosqlite.Connection] = None):
    await _upsert_participant(thread_id, user_id, False, conn)


async def delete_participant_in_thread(thread_id: str, user_id: int, conn: Optional[aiosqlite.Connection] = None) -> bool:
    async with AsyncDBContext(conn) as db:
        rows_affected = await execute_db_query(
            db,
            "DELETE FROM users_threads WHERE thread_id = ? AND user_id = ?",
            (thread_id, user_id),
        )
        if rows_affected > 0:
            logger.info(f"User {user_id} was removed from thread {thread_id} participants.")
            await log_event_async(
                conn=db,
                event_type="thread_participant_removed",
                actor_type="system",
                actor_name="message_lifecycle",
                target_type="thread",
                target_id=thread_id,
                details={"user_id": user_id},
            )
    return rows_affected > 0


async def get_participant(thread_id: str, user_id: int, conn: Optional[aiosqlite.Connection] = None) -> Optional[Participant]:
    async with AsyncDBContext(conn) as db:
        row = await execute_db_query(
            db,
            "SELECT * FROM users_threads WHERE thread_id = ? AND user_id = ?",
            (thread_id, user_id),
            fetch_one=True,
        )
    return Participant(**dict(row)) if row else None


async def get_participants_in_thread(thread_id: str, conn: Optional[aiosqlite.Connection] = None) -> List[Participant]:
    async with AsyncDBContext(conn) as db:
        rows = await execute_db_query(
            db,
            "SELECT * FROM users_threads WHERE thread_id = ? ORDER BY created_at ASC",
            (thread_id,),
            fetch_all=True,
        )
    return [Participant(**dict(row)) for row in rows or []]
