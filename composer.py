"""Sending messages: recipient resolution, validation and append."""

import logging
import uuid
from typing import Optional

from repository import MessageLog
from schemas import ADMIN_USER_ID, Message, utcnow

logger = logging.getLogger(__name__)


class EmptyMessageError(ValueError):
    """Raised when a message has no visible content."""
    pass


class RecipientResolutionError(ValueError):
    """Raised when an administrator reply has nobody to go to."""
    pass


def resolve_recipient(
    post_owner_id: Optional[str],
    is_admin: bool,
    counterparty_id: Optional[str] = None,
    admin_id: str = ADMIN_USER_ID,
) -> str:
    """Who a new message goes to.

    Students always write to the property office. The office writes to the
    student of the thread it has open, or to the post's reporter when replying
    from the post itself.
    """
    if not is_admin:
        return admin_id

    if counterparty_id:
        if post_owner_id and counterparty_id != post_owner_id:
            logger.info(
                "Admin reply goes to thread counterparty %s, not post owner %s",
                counterparty_id,
                post_owner_id,
            )
        recipient_id = counterparty_id
    elif post_owner_id:
        recipient_id = post_owner_id
    else:
        raise RecipientResolutionError("Admin reply needs a thread counterparty or a post owner")

    # The office only ever writes to a student
    if recipient_id == admin_id:
        raise RecipientResolutionError("Admin reply cannot be addressed to the office itself")
    return recipient_id


def compose_message(
    log: MessageLog,
    post_id: str,
    sender_id: str,
    sender_name: str,
    content: str,
    is_admin: bool,
    recipient_id: str,
) -> Message:
    """Validate and append a new message, returning the stored record.

    Raises:
        EmptyMessageError: content is empty or whitespace only; nothing is appended
    """
    if not content or not content.strip():
        raise EmptyMessageError("Message content cannot be empty")

    message = Message(
        id="m_" + uuid.uuid4().hex,
        post_id=post_id,
        sender_id=sender_id,
        recipient_id=recipient_id,
        sender_name=sender_name,
        content=content,
        is_admin=is_admin,
        timestamp=utcnow(),
    )
    stored = log.append(message)
    logger.info("Message %s on post %s: %s -> %s", stored.id, post_id, sender_id, recipient_id)
    return stored
