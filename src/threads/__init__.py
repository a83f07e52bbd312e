

from typing import Optional

import aiosqlite

from src.db_utils import AsyncDBContext
from src.threads.participants import setup_participants_database
from src.threads.thread_service import setup_threads_database


async def setup_thread_databases(conn: Optional[aiosqlite.Connection] = None):
    async with AsyncDBContext(conn) as db:
        await setup_threads_database(db)
        await setup_participants_database(db)
