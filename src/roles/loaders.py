#loaders.py
"""
Per-request batching loaders for the read path.

Every `load(key)` issued during the same event-loop turn is collected and
resolved with a single batch query; results are cached for the life of the
loader, so one response never resolves the same thread or permission twice.
A loader belongs to exactly one request and is discarded with it.
"""
import asyncio
from typing import Any, Awaitable, Callable, Dict, Hashable, List, Optional, Set, Tuple

import aiosqlite
import logging
from src.models import Permissions, Thread
from src.roles.rbac_manager import CommunityKey, get_users_permissions_in_communities
from src.threads.thread_service import get_threads

logger = logging.getLogger("Loaders")
logger.setLevel(logging.DEBUG)

BatchFunction = Callable[[List[Hashable]], Awaitable[Dict[Hashable, Any]]]


class BatchLoader:
    """
    Collects keys and resolves them through `batch_fn`, which receives the list
    of pending keys and returns a dict of found values. Missing keys resolve to
    None. If the batch call fails, every waiting key fails with the same error
    and is evicted from the cache so that a later load can retry it.
    """
    def __init__(self, batch_fn: BatchFunction, name: str = "loader"):
        self._batch_fn = batch_fn
        self.name = name
        self._cache: Dict[Hashable, asyncio.Future] = {}
        self._pending: List[Tuple[Hashable, asyncio.Future]] = []
        self._tasks: Set[asyncio.Task] = set()
        self.batch_count = 0

    def load(self, key: Hashable) -> Awaitable[Any]:
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        loop = asyncio.get_running_loop()
        future = loop.create_future()
        self._cache[key] = future
        self._pending.append((key, future))
        if len(self._pending) == 1:
            loop.call_soon(self._schedule_dispatch)
        return future

    def prime(self, key: Hashable, value: Any):
        """Seeds the cache with an already known value."""
        if key in self._cache:
            return
        future = asyncio.get_running_loop().create_future()
        future.set_result(value)
        self._cache[key] = future

    def _schedule_dispatch(self):
        task = asyncio.ensure_future(self._dispatch())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _dispatch(self):
        batch, self._pending = self._pending, []
        keys = [key for key, _ in batch]
        self.batch_count += 1
        logger.debug(f"{self.name}: resolving {len(keys)} key(s) in one batch.")
        try:
            found = await self._batch_fn(keys)
        except Exception as e:
            logger.error(f"{self.name}: batch load failed: {e}")
            for key, future in batch:
                self._cache.pop(key, None)
                if not future.done():
                    future.set_exception(e)
            return
        for key, future in batch:
            if not future.done():
                future.set_result(found.get(key))


class RequestLoaders:
    """The loaders available to one request."""
    def __init__(self, conn: Optional[aiosqlite.Connection] = None):
        self.conn = conn
        self.thread = BatchLoader(self._load_threads, name="thread")
        self.user_permissions_in_community = BatchLoader(
            self._load_permissions_in_communities, name="user_permissions_in_community"
        )

    async def _load_threads(self, thread_ids: List[str]) -> Dict[str, Thread]:
        return await get_threads(thread_ids, conn=self.conn)

    async def _load_permissions_in_communities(self, keys: List[CommunityKey]) -> Dict[CommunityKey, Permissions]:
        return await get_users_permissions_in_communities(keys, conn=self.conn)
