# HelperLog.py
import json
from typing import Any, Dict, List, Optional, Union

import aiosqlite
import logging
from src.db_utils import AsyncDBContext, execute_db_query

logger = logging.getLogger("HelperLog")
logger.setLevel(logging.DEBUG)


async def setup_log_database_async(conn: Optional[aiosqlite.Connection] = None):
    """
    Creates the audit_log table and its indexes.

    Args:
        conn: (Optional) An active aiosqlite connection to run the DDL on.
    """
    try:
        async with AsyncDBContext(conn) as db:
            await db.execute("""
            CREATE TABLE IF NOT EXISTS audit_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                event_type TEXT NOT NULL,
                actor_type TEXT NOT NULL,
                actor_name TEXT NOT NULL,
                target_type TEXT,
                target_id TEXT,
                details TEXT
            );""")
            await db.execute("CREATE INDEX IF NOT EXISTS idx_audit_log_target ON audit_log (target_type, target_id);")
            await db.execute("CREATE INDEX IF NOT EXISTS idx_audit_log_event ON audit_log (event_type, timestamp);")
            logger.debug("Audit log schema is up-to-date.")

    except aiosqlite.Error as e:
        logger.exception(f"Database error during async audit log setup: {e}")
        raise


async def log_event_async(
    event_type: str,
    actor_type: str,
    actor_name: str,
    conn: Optional[aiosqlite.Connection] = None,
    target_type: Optional[str] = None,
    target_id: Optional[Union[int, str]] = None,
    details: Optional[Union[dict, str]] = None
):
    """
    Appends one event to the audit log.

    Args:
        event_type: What happened (e.g. 'message_created', 'message_deleted').
        actor_type: 'user' or 'system'.
        actor_name: The acting user's id, or a system component name.
        conn: (Optional) Connection of the surrounding transaction.
        target_type: (Optional) Kind of entity acted upon ('message', 'thread').
        target_id: (Optional) Id of that entity.
        details: (Optional) Extra context. Dictionaries are stored as JSON.
    """
    details_json = json.dumps(details) if isinstance(details, dict) else details
    target = str(target_id) if target_id is not None else None

    sql = """
        INSERT INTO audit_log (event_type, actor_type, actor_name, target_type, target_id, details)
        VALUES (?, ?, ?, ?, ?, ?)
    """
    params = (event_type, actor_type, actor_name, target_type, target, details_json)

    try:
        async with AsyncDBContext(conn) as db:
            await execute_db_query(db, sql, params)
    except aiosqlite.Error as e:
        logger.exception(f"Failed to write to async audit log: {e}")
        raise


async def get_logs_async(
    conn: Optional[aiosqlite.Connection] = None,
    event_type: Optional[str] = None,
    actor_name: Optional[str] = None,
    target_type: Optional[str] = None,
    target_id: Optional[Union[int, str]] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[Dict[str, Any]]:
    """
    Reads audit entries, newest first. JSON 'details' are decoded back into dicts.
    """
    where_clauses = []
    params: List[Any] = []

    if event_type:
        where_clauses.append("event_type = ?")
        params.append(event_type)
    if actor_name:
        where_clauses.append("actor_name = ?")
        params.append(actor_name)
    if target_type:
        where_clauses.append("target_type = ?")
        params.append(target_type)
    if target_id is not None:
        where_clauses.append("target_id = ?")
        params.append(str(target_id))

    query = "SELECT * FROM audit_log"
    if where_clauses:
        query += " WHERE " + " AND ".join(where_clauses)
    query += " ORDER BY id DESC LIMIT ? OFFSET ?"
    params.extend([limit, offset])

    results = []
    async with AsyncDBContext(conn) as db:
        rows = await execute_db_query(db, query, tuple(params), fetch_all=True)
    for row in rows or []:
        entry = dict(row)
        if isinstance(entry.get('details'), str):
            try:
                entry['details'] = json.loads(entry['details'])
            except (json.JSONDecodeError, TypeError):
                pass
        results.append(entry)
    return results
