#rbac_manager.py
"""
Permission Resolver

Community and channel roles: owner, moderator, member, blocked, plus the
user's reputation in a community. A missing record means the user holds no
role there; lookups return None and callers fall back to `Permissions()`.
"""
from typing import Dict, Iterable, Optional, Tuple

import aiosqlite
import logging
from src.db_utils import AsyncDBContext, execute_db_query
from src.models import Permissions

logger = logging.getLogger("RBAC")
logger.setLevel(logging.DEBUG)

CommunityKey = Tuple[int, str]


async def setup_roles_database(conn: Optional[aiosqlite.Connection] = None):
    async with AsyncDBContext(conn) as db:
        await db.execute("""
            CREATE TABLE IF NOT EXISTS users_communities (
                user_id INTEGER NOT NULL,
                community_id TEXT NOT NULL,
                is_owner INTEGER NOT NULL DEFAULT 0,
                is_moderator INTEGER NOT NULL DEFAULT 0,
                is_member INTEGER NOT NULL DEFAULT 1,
                is_blocked INTEGER NOT NULL DEFAULT 0,
                reputation INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (user_id, community_id)
            );
        """)
        await db.execute("""
            CREATE TABLE IF NOT EXISTS users_channels (
                user_id INTEGER NOT NULL,
                channel_id TEXT NOT NULL,
                is_owner INTEGER NOT NULL DEFAULT 0,
                is_moderator INTEGER NOT NULL DEFAULT 0,
                is_member INTEGER NOT NULL DEFAULT 1,
                is_blocked INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (user_id, channel_id)
            );
        """)
    logger.debug("Role schema is verified.")


def _row_to_permissions(row: aiosqlite.Row) -> Permissions:
    data = dict(row)
    return Permissions(
        is_owner=bool(data['is_owner']),
        is_moderator=bool(data['is_moderator']),
        is_member=bool(data['is_member']),
        is_blocked=bool(data['is_blocked']),
        reputation=data.get('reputation', 0),
    )

# --- Lookups ---

async def get_user_permissions_in_community(community_id: str, user_id: int, conn: Optional[aiosqlite.Connection] = None) -> Optional[Permissions]:
    async with AsyncDBContext(conn) as db:
        row = await execute_db_query(
            db,
            "SELECT * FROM users_communities WHERE community_id = ? AND user_id = ?",
            (community_id, user_id),
            fetch_one=True,
        )
    return _row_to_permissions(row) if row else None


async def get_user_permissions_in_channel(channel_id: str, user_id: int, conn: Optional[aiosqlite.Connection] = None) -> Optional[Permissions]:
    async with AsyncDBContext(conn) as db:
        row = await execute_db_query(
            db,
            "SELECT * FROM users_channels WHERE channel_id = ? AND user_id = ?",
            (channel_id, user_id),
            fetch_one=True,
        )
    return _row_to_permissions(row) if row else None


async def get_users_permissions_in_communities(
    keys: Iterable[CommunityKey],
    conn: Optional[aiosqlite.Connection] = None
) -> Dict[CommunityKey, Permissions]:
    """Batch lookup keyed by (user_id, community_id). Keys without a record are absent."""
    unique_keys = list(dict.fromkeys(keys))
    if not unique_keys:
        return {}
    clauses = " OR ".join("(user_id = ? AND community_id = ?)" for _ in unique_keys)
    params = tuple(value for key in unique_keys for value in key)
    async with AsyncDBContext(conn) as db:
        rows = await execute_db_query(db, f"SELECT * FROM users_communities WHERE {clauses}", params, fetch_all=True)
    return {(row['user_id'], row['community_id']): _row_to_permissions(row) for row in rows or []}

# --- Assignment ---

async def set_user_permissions_in_community(
    community_id: str,
    user_id: int,
    permissions: Permissions,
    conn: Optional[aiosqlite.Connection] = None
):
    async with AsyncDBContext(conn) as db:
        await execute_db_query(
            db,
            """
            INSERT INTO users_communities (user_id, community_id, is_owner, is_moderator, is_member, is_blocked, reputation)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id, community_id) DO UPDATE SET
                is_owner = excluded.is_owner, is_moderator = excluded.is_moderator,
                is_member = excluded.is_member, is_blocked = excluded.is_blocked,
                reputation = excluded.reputation
            """,
            (user_id, community_id, int(permissions.is_owner), int(permissions.is_moderator),
             int(permissions.is_member), int(permissions.is_blocked), permissions.reputation),
        )
    logger.info(f"Set permissions of user {user_id} in community {community_id}: {permissions.model_dump()}")


async def set_user_permissions_in_channel(
    channel_id: str,
    user_id: int,
    permissions: Permissions,
    conn: Optional[aiosqlite.Connection] = None
):
    async with AsyncDBContext(conn) as db:
        await execute_db_query(
            db,
            """
            INSERT INTO users_channels (user_id, channel_id, is_owner, is_moderator, is_member, is_blocked)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id, channel_id) DO UPDATE SET
                is_owner = excluded.is_owner, is_moderator = excluded.is_moderator,
                is_member = excluded.is_member, is_blocked = excluded.is_blocked
            """,
            (user_id, channel_id, int(permissions.is_owner), int(permissions.is_moderator),
             int(permissions.is_member), int(permissions.is_blocked)),
        )
    logger.info(f"Set permissions of user {user_id} in channel {channel_id}: {permissions.model_dump(exclude={'reputation'})}")

# --- Policy ---

def can_moderate(community_permissions: Optional[Permissions], channel_permissions: Optional[Permissions]) -> bool:
    """Owner or moderator of either the channel or its community."""
    community = community_permissions or Permissions()
    channel = channel_permissions or Permissions()
    return channel.is_owner or community.is_owner or channel.is_moderator or community.is_moderator
