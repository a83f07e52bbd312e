#context.py
import logging
import uuid
from typing import Optional

import aiosqlite
from fastapi import Depends, Request

from src.db_utils import get_db_connection
from src.models import UserProfile
from src.roles.loaders import RequestLoaders
from src.users.auth import get_current_user_optional

_base_logger = logging.getLogger("MessageLifecycle")
_base_logger.setLevel(logging.DEBUG)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestLogger(logging.LoggerAdapter):
    """Prefixes every record with the request id and acting user."""
    def process(self, msg, kwargs):
        return f"[req={self.extra['request_id']} user={self.extra['user_id']}] {msg}", kwargs


class RequestContext:
    """
    Everything one request carries through the message lifecycle: the signed-in
    user (or None), the request's database connection, its batching loaders and
    a logger tagged with the request id. Nothing here outlives the request.
    """
    def __init__(
        self,
        user: Optional[UserProfile],
        conn: Optional[aiosqlite.Connection] = None,
        loaders: Optional[RequestLoaders] = None,
        request_id: Optional[str] = None,
    ):
        self.user = user
        self.conn = conn
        self.loaders = loaders or RequestLoaders(conn)
        self.request_id = request_id or uuid.uuid4().hex[:12]
        self.logger = RequestLogger(
            _base_logger, {"request_id": self.request_id, "user_id": user.id if user else None}
        )


async def get_request_context(
    request: Request,
    current_user: Optional[UserProfile] = Depends(get_current_user_optional),
    conn: aiosqlite.Connection = Depends(get_db_connection),
) -> RequestContext:
    """FastAPI dependency building a fresh context for each request."""
    return RequestContext(
        user=current_user,
        conn=conn,
        request_id=request.headers.get(REQUEST_ID_HEADER),
    )
