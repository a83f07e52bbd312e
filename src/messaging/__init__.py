

from typing import Optional

import aiosqlite

from src.messaging.messaging_service import setup_messaging_database


async def setup_messaging(conn: Optional[aiosqlite.Connection] = None):
    await setup_messaging_database(conn)
