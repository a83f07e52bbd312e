#views.py
"""Builds the response view of a stored message for the requesting viewer."""
from typing import Optional, Union

from src.messaging.context import RequestContext
from src.models import ContextPermissions, EnrichedMessage, MessageType, Permissions, StoredMessage, ThreadType


def project_message(
    stored: StoredMessage,
    permissions: Optional[Permissions],
    community_id: Optional[str] = None,
) -> EnrichedMessage:
    """Attaches the sender's community standing. No record means reputation 0 and no roles."""
    permissions = permissions or Permissions()
    context_permissions = ContextPermissions(
        reputation=permissions.reputation,
        is_moderator=permissions.is_moderator,
        is_owner=permissions.is_owner,
        community_id=community_id,
    )
    return EnrichedMessage(**stored.model_dump(), context_permissions=context_permissions)


async def enrich_message(stored: StoredMessage, context: RequestContext) -> Union[StoredMessage, EnrichedMessage]:
    """
    Direct messages are returned as stored. Anything else gets the sender's
    permissions in the thread's community; media messages also name the community.
    """
    if stored.thread_type == ThreadType.DIRECT_MESSAGE_THREAD:
        return stored

    thread = await context.loaders.thread.load(stored.thread_id)
    community_id = thread.community_id if thread else None
    permissions = None
    if community_id is not None:
        permissions = await context.loaders.user_permissions_in_community.load((stored.sender_id, community_id))

    view_community_id = community_id if stored.message_type == MessageType.MEDIA else None
    return project_message(stored, permissions, community_id=view_community_id)
