#messaging_router.py
"""
API Router for thread messages.

Thin HTTP layer over `message_lifecycle`: it builds the request context,
hands the input to the boundary functions and maps any returned `UserError`
to an HTTP error with the same message.
"""
from typing import List, Union

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from pydantic import BaseModel, Field, ValidationError

import logging
from ConfigChat import get_config
from server import rate_limiter_dependency
from src.messaging.context import RequestContext, get_request_context
from src.messaging.errors import UserError
from src.messaging.message_lifecycle import add_message, delete_message, get_thread_messages
from src.models import EnrichedMessage, MessageContent, MessageInput, StoredMessage, ThreadType, UploadedFile

logger = logging.getLogger("ROUTER_MESSAGES")
logger.setLevel(logging.DEBUG)
config = get_config()

message_rate_limit = rate_limiter_dependency(
    times=config.get("MESSAGE_RATE_LIMIT_COUNT", 30),
    seconds=config.get("MESSAGE_RATE_LIMIT_SECONDS", 60),
)

# ==============================================================================
# --- Request / Response Models ---
# ==============================================================================

class MessageCreateRequest(BaseModel):
    """A text or rich-text message. Media goes through /messages/media."""
    thread_id: str = Field(..., min_length=1)
    thread_type: ThreadType
    message_type: str
    content: MessageContent = Field(default_factory=MessageContent)


class MessageDeleteResponse(BaseModel):
    deleted: bool


MessageResponse = Union[EnrichedMessage, StoredMessage]


def _unwrap(result):
    """Raises the HTTP form of a returned UserError, otherwise passes the result through."""
    if isinstance(result, UserError):
        raise HTTPException(status_code=result.status_code, detail=result.message)
    return result

# ==============================================================================
# --- API Router ---
# ==============================================================================

router = APIRouter(
    prefix="/api",
    tags=["Messages"],
)


@router.post(
    "/messages",
    response_model=MessageResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(message_rate_limit)],
)
async def create_message_route(
    message_data: MessageCreateRequest,
    context: RequestContext = Depends(get_request_context),
):
    """Sends a text or draftjs message to a thread."""
    message = MessageInput(**message_data.model_dump())
    return _unwrap(await add_message(message, context))


@router.post(
    "/messages/media",
    response_model=MessageResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(message_rate_limit)],
)
async def create_media_message_route(
    thread_id: str = Form(...),
    thread_type: ThreadType = Form(...),
    file: UploadFile = File(...),
    context: RequestContext = Depends(get_request_context),
):
    """Sends an image to a thread. The stored message body is the image URL."""
    data = await file.read()
    try:
        uploaded = UploadedFile(
            name=file.filename or "",
            size=len(data),
            type=file.content_type or "application/octet-stream",
            data=data,
        )
        message = MessageInput(thread_id=thread_id, thread_type=thread_type, message_type="media", file=uploaded)
    except ValidationError as e:
        logger.warning(f"Rejected media upload for thread {thread_id}: {e}")
        raise HTTPException(status_code=400, detail="The uploaded file is not valid.")
    return _unwrap(await add_message(message, context))


@router.delete("/messages/{message_id}", response_model=MessageDeleteResponse)
async def delete_message_route(
    message_id: str,
    context: RequestContext = Depends(get_request_context),
):
    """
    Deletes a message. The sender can always delete their own message; in
    story threads community owners and moderators, or channel owners and
    moderators, can delete anyone's.
    """
    deleted = _unwrap(await delete_message(message_id, context))
    return MessageDeleteResponse(deleted=deleted)


@router.get(
    "/threads/{thread_id}/messages",
    response_model=List[MessageResponse],
    response_model_exclude_none=True,
)
async def list_thread_messages_route(
    thread_id: str,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    context: RequestContext = Depends(get_request_context),
):
    """Messages of a story thread, oldest first, with each sender's standing in the community."""
    return _unwrap(await get_thread_messages(thread_id, context, limit=limit, offset=offset))
