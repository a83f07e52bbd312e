#user_manager.py

"""
User account helpers (async).

The chat service only needs to know who is sending or deleting a message, so
this module keeps the account record minimal: an id, a unique username and an
active flag. All operations accept an optional connection so they can join a
caller's transaction.
"""
from typing import Optional

import aiosqlite
import logging
from src.db_utils import AsyncDBContext, execute_db_query
from src.log.HelperLog import log_event_async
from src.models import UserProfile

logger = logging.getLogger("UserManager")
logger.setLevel(logging.DEBUG)


async def setup_user_database(conn: Optional[aiosqlite.Connection] = None):
    """Creates the users table."""
    async with AsyncDBContext(conn) as db:
        await execute_db_query(db, """
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                username TEXT NOT NULL UNIQUE,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
        """)
    logger.debug("User schema is verified.")


async def create_user(username: str, conn: Optional[aiosqlite.Connection] = None) -> Optional[int]:
    """Creates a user and returns its id, or None if the name is empty or taken."""
    lower_username = username.strip().lower()
    if not lower_username:
        logger.warning("Refusing to create a user with an empty username.")
        return None

    try:
        async with AsyncDBContext(conn) as db:
            new_user_id = await execute_db_query(
                db, "INSERT INTO users (username) VALUES (?)", (lower_username,), return_last_row_id=True
            )
            await log_event_async(
                conn=db, event_type='user_create', actor_type='system', actor_name='api',
                target_type='user', target_id=new_user_id, details={'username': lower_username}
            )
            logger.info(f"Created user '{lower_username}' with ID {new_user_id}.")
            return new_user_id
    except aiosqlite.IntegrityError:
        logger.warning(f"Failed to create user. Username '{lower_username}' already exists.")
        return None


async def get_user_by_id(user_id: int, conn: Optional[aiosqlite.Connection] = None) -> Optional[UserProfile]:
    async with AsyncDBContext(conn) as db:
        row = await execute_db_query(
            db, "SELECT id, username, is_active FROM users WHERE id = ?", (user_id,), fetch_one=True
        )
    return UserProfile(**dict(row)) if row else None
