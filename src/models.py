# models.py
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ThreadType(str, Enum):
    """Kinds of conversation container a message can live in."""
    DIRECT_MESSAGE_THREAD = "directMessageThread"
    STORY = "story"


class MessageType(str, Enum):
    """Content classification of a message. Decides the shape of `content` and `file`."""
    TEXT = "text"
    DRAFTJS = "draftjs"
    MEDIA = "media"


# ==============================================================================
# Users
# ==============================================================================

class UserProfile(BaseModel):
    id: int
    username: str
    is_active: bool = True

    model_config = ConfigDict(from_attributes=True)


# ==============================================================================
# Threads, participants and roles
# ==============================================================================

class Thread(BaseModel):
    """A channel/community ("story") thread."""
    id: str
    community_id: str
    channel_id: str
    creator_id: Optional[int] = None
    watercooler: bool = False
    created_at: Optional[datetime] = None
    last_active: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class DirectMessageThread(BaseModel):
    id: str
    created_at: Optional[datetime] = None
    last_active: Optional[datetime] = None


class Participant(BaseModel):
    thread_id: str
    user_id: int
    receive_notifications: bool
    created_at: Optional[datetime] = None


class Permissions(BaseModel):
    """A user's role flags in a community or channel."""
    is_owner: bool = False
    is_moderator: bool = False
    is_member: bool = False
    is_blocked: bool = False
    reputation: int = 0


# ==============================================================================
# Messages
# ==============================================================================

class MessageContent(BaseModel):
    body: str = ""


class MessageFile(BaseModel):
    """Metadata kept for the file behind a media message."""
    name: str
    size: int
    type: str


class UploadedFile(BaseModel):
    """A raw file received with a media message. `data` never leaves the service."""
    name: str
    size: int
    type: str
    data: bytes = Field(default=b"", exclude=True, repr=False)

    @field_validator('name')
    def name_must_not_be_empty(cls, value):
        if not value.strip():
            raise ValueError('File name must not be empty')
        return value


class MessageInput(BaseModel):
    """A message as submitted by a client, before classification."""
    thread_id: str = Field(..., min_length=1)
    thread_type: ThreadType
    # Kept as a plain string so unknown types reach the lifecycle and fail there.
    message_type: str
    content: MessageContent = Field(default_factory=MessageContent)
    file: Optional[UploadedFile] = None


class StoredMessage(BaseModel):
    """A persisted message. Immutable once read back from the store."""
    id: str
    thread_id: str
    thread_type: ThreadType
    sender_id: int
    message_type: MessageType
    content: MessageContent
    file: Optional[MessageFile] = None
    created_at: datetime

    model_config = ConfigDict(frozen=True)


class ContextPermissions(BaseModel):
    """The sender's standing in the thread's community, as seen by the viewer."""
    reputation: int = 0
    is_moderator: bool = False
    is_owner: bool = False
    community_id: Optional[str] = None


class EnrichedMessage(StoredMessage):
    context_permissions: ContextPermissions
