import os
import tempfile

# Must be set before any project module reads its configuration.
_TEST_ROOT = tempfile.mkdtemp(prefix="threadchat-tests-")
os.environ.setdefault("CHAT_CONFIG_PATH", os.path.join(_TEST_ROOT, "config", "config.json"))
os.environ.setdefault("CHAT_JWT_SECRET", "test-signing-secret-with-enough-length")

import aiosqlite
import pytest
import pytest_asyncio

from common import setup_databases
from src.messaging.context import RequestContext
from src.models import Permissions
from src.roles.rbac_manager import set_user_permissions_in_channel, set_user_permissions_in_community
from src.threads.thread_service import create_direct_message_thread, create_thread
from src.users.user_manager import get_user_by_id, create_user

COMMUNITY_ID = "community-1"
CHANNEL_ID = "channel-1"


@pytest_asyncio.fixture
async def db():
    conn = await aiosqlite.connect(":memory:")
    conn.row_factory = aiosqlite.Row
    await conn.execute("PRAGMA foreign_keys = ON;")
    await setup_databases(conn)
    yield conn
    await conn.close()


async def _user(db, name):
    user_id = await create_user(name, conn=db)
    return await get_user_by_id(user_id, conn=db)


@pytest_asyncio.fixture
async def alice(db):
    return await _user(db, "alice")


@pytest_asyncio.fixture
async def bob(db):
    return await _user(db, "bob")


@pytest_asyncio.fixture
async def story_thread(db, alice):
    return await create_thread(COMMUNITY_ID, CHANNEL_ID, creator_id=alice.id, conn=db)


@pytest_asyncio.fixture
async def watercooler_thread(db, alice):
    return await create_thread(COMMUNITY_ID, CHANNEL_ID, creator_id=alice.id, watercooler=True, conn=db)


@pytest_asyncio.fixture
async def dm_thread(db, alice, bob):
    return await create_direct_message_thread([alice.id, bob.id], conn=db)


@pytest.fixture
def make_context(db):
    def factory(user):
        return RequestContext(user=user, conn=db)
    return factory


@pytest.fixture
def grant(db):
    """Assigns community or channel roles: await grant(user, community=Permissions(...))."""
    async def assign(user, community=None, channel=None):
        if community is not None:
            await set_user_permissions_in_community(COMMUNITY_ID, user.id, community, conn=db)
        if channel is not None:
            await set_user_permissions_in_channel(CHANNEL_ID, user.id, channel, conn=db)
    return assign


@pytest.fixture
def moderator_permissions():
    return Permissions(is_moderator=True, is_member=True)
