

from typing import Optional

import aiosqlite

from src.users.user_manager import setup_user_database


async def setup_users(conn: Optional[aiosqlite.Connection] = None):
    await setup_user_database(conn)
