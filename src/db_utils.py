# db_utils.py
from typing import Any, AsyncGenerator, Optional

import aiosqlite
from ConfigChat import get_config
import logging


logger = logging.getLogger("DB_UTILS")
logger.setLevel(logging.DEBUG)
config = get_config()


async def open_connection(db_file: Optional[str] = None) -> aiosqlite.Connection:
    """Opens a connection with dict-like rows and foreign keys enforced."""
    conn = await aiosqlite.connect(db_file or config["DB_FILE"])
    conn.row_factory = aiosqlite.Row
    await conn.execute("PRAGMA foreign_keys = ON;")
    return conn

# --- Async Database Dependency ---

async def get_db_connection() -> AsyncGenerator[aiosqlite.Connection, None]:
    """
    FastAPI dependency yielding one connection per request.
    The request's writes are committed together once the handler returns.
    """
    conn = await open_connection()
    try:
        yield conn
        await conn.commit()
    except aiosqlite.Error as e:
        logger.error(f"Database transaction failed, rolling back. Error: {e}", exc_info=True)
        await conn.rollback()
        raise
    finally:
        await conn.close()

# --- Async Context Manager for DB Operations ---

class AsyncDBContext:
    """
    Uses the caller's connection when one is given, so the work joins the
    caller's transaction. Otherwise opens, commits (or rolls back) and closes
    its own connection.
    """
    def __init__(self, external_conn: Optional[aiosqlite.Connection] = None):
        self._external_conn = external_conn
        self._conn: Optional[aiosqlite.Connection] = None
        self._managed_conn = False

    async def __aenter__(self) -> aiosqlite.Connection:
        if self._external_conn is not None:
            self._conn = self._external_conn
        else:
            logger.debug("Creating new connection within AsyncDBContext.")
            self._conn = await open_connection()
            self._managed_conn = True
        return self._conn

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._managed_conn and self._conn:
            if exc_type:
                await self._conn.rollback()
                logger.debug("Rolled back transaction due to exception.")
            else:
                await self._conn.commit()
            await self._conn.close()
        return False

# --- Core Async DB Execution Function ---

async def execute_db_query(
    conn: aiosqlite.Connection,
    query: str,
    params: tuple = (),
    fetch_one: bool = False,
    fetch_all: bool = False,
    return_last_row_id: bool = False
) -> Any:
    """
    Runs one statement on the given connection.
    Returns the fetched row(s), the last row id, or the affected row count.
    """
    try:
        logger.debug(f"Executing query: {query} with params: {params}")
        async with conn.cursor() as cursor:
            await cursor.execute(query, params)

            if return_last_row_id:
                return cursor.lastrowid
            elif fetch_one:
                return await cursor.fetchone()
            elif fetch_all:
                return await cursor.fetchall()
            else:
                return cursor.rowcount

    except Exception as e:
        logger.error(f"Error executing query '{query}': {e}", exc_info=True)
        raise
