# auth.py

from datetime import datetime, timedelta, timezone
from typing import Optional

import aiosqlite
import jwt
from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer

import logging
from src.db_utils import AsyncDBContext
from src.models import UserProfile
from src.users.auth_config import get_access_token_expire_minutes, get_algorithm, get_secret_key
from src.users.user_manager import get_user_by_id


logger = logging.getLogger("Auth")
logger.setLevel(logging.DEBUG)

# Extracts "Bearer <token>" from the Authorization header without failing the request.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token", auto_error=False)

AUTH_COOKIE_NAME = "auth_token"


def create_access_token(user_id: int, expires_delta: Optional[timedelta] = None) -> str:
    """Creates a signed access token whose subject is the user id."""
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=get_access_token_expire_minutes()))
    payload = {"sub": str(user_id), "iat": now, "exp": expire}
    return jwt.encode(payload=payload, key=get_secret_key(), algorithm=get_algorithm())


async def authenticate_user_from_token(token: str, conn: Optional[aiosqlite.Connection] = None) -> UserProfile:
    """
    Decodes the token and loads the user it names.
    Raises jwt.PyJWTError for bad tokens and ValueError for unknown or inactive users.
    """
    try:
        payload = jwt.decode(token, get_secret_key(), algorithms=[get_algorithm()])
        user_id = int(payload.get("sub"))
    except (jwt.PyJWTError, TypeError, ValueError) as e:
        raise jwt.PyJWTError(f"Token decoding or parsing failed: {e}")

    async with AsyncDBContext(conn) as db:
        user = await get_user_by_id(user_id, conn=db)
    if user is None:
        raise ValueError(f"User with ID {user_id} from token not found in database.")
    if not user.is_active:
        raise ValueError(f"User {user_id} is inactive.")
    return user


async def get_token_from_header_or_cookie(
    request: Request,
    token_from_header: Optional[str] = Depends(oauth2_scheme)
) -> Optional[str]:
    """Prefers the Authorization header over the auth cookie."""
    if token_from_header:
        return token_from_header
    return request.cookies.get(AUTH_COOKIE_NAME)


async def get_current_user_optional(
    token: Optional[str] = Depends(get_token_from_header_or_cookie)
) -> Optional[UserProfile]:
    """
    Returns the authenticated user, or None when the token is missing or invalid.
    Never raises: callers decide what an anonymous request may do.
    """
    if not token:
        return None
    try:
        return await authenticate_user_from_token(token)
    except (jwt.PyJWTError, ValueError) as e:
        logger.warning(f"API Token Auth Error: {type(e).__name__} - {e}")
        return None
