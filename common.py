import logging
import aiosqlite
from typing import Optional, Set


from ConfigChat import get_config
from src.db_utils import AsyncDBContext, execute_db_query

config = get_config()

logger = logging.getLogger("ConmonLog")
logger.setLevel(logging.DEBUG)


REQUIRED_TABLES: Set[str] = {
    "audit_log",
    "users",
    "threads",
    "direct_message_threads",
    "users_direct_message_threads",
    "users_threads",
    "users_communities",
    "users_channels",
    "messages",
}


async def setup_databases(conn: Optional[aiosqlite.Connection] = None):
    """Creates every table the chat service needs. Safe to run repeatedly."""
    from src.log.HelperLog import setup_log_database_async
    from src.messaging import setup_messaging
    from src.roles import start_role_db
    from src.threads import setup_thread_databases
    from src.users import setup_users

    await setup_log_database_async(conn)
    await setup_users(conn)
    await setup_thread_databases(conn)
    await start_role_db(conn)
    await setup_messaging(conn)


async def check_database_requirements(
    required_tables: Set[str] = REQUIRED_TABLES,
    conn: Optional[aiosqlite.Connection] = None
) -> bool:
    """
    Checks that the required tables exist. Returns True if all exist, False otherwise.

    Args:
        required_tables: A set of table names to check for (e.g., {'users', 'messages'}).
        conn: (Optional) An active aiosqlite connection to use instead of creating a new one.
    """
    try:
        async with AsyncDBContext(external_conn=conn) as db_conn:
            query = "SELECT name FROM sqlite_master WHERE type='table';"
            rows = await execute_db_query(db_conn, query, fetch_all=True)
            existing_tables = {row['name'] for row in rows}

        missing_tables = required_tables - existing_tables
        if missing_tables:
            logger.critical(
                f"Database is missing required tables: {', '.join(sorted(missing_tables))}."
            )
            return False
        else:
            logger.info(f"Database requirements met for tables: {', '.join(sorted(required_tables))}.")
            return True

    except aiosqlite.Error as e:
        db_file_path = config.get('DB_FILE', 'N/A')
        logger.critical(f"Database error during requirement check for '{db_file_path}': {e}", exc_info=True)
        return False
