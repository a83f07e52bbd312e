

from typing import Optional

import aiosqlite

from src.db_utils import AsyncDBContext
from src.roles.rbac_manager import setup_roles_database

async def start_role_db(conn: Optional[aiosqlite.Connection] = None):
    async with AsyncDBContext(conn) as db:
        await setup_roles_database(db)
