"""
Message store for conversations.

Messages are append-only apart from sender deletion. History is paged from
the oldest end: offset 0 is the start of the conversation, and scrolling back
means asking again with a larger offset. Read state lives on the participant
rows (see ``read_tracking``); messages are never updated to record it.
"""

import logging
from typing import List, Optional

from fastapi import UploadFile
from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, aliased

from intranet.core.exceptions import NotFoundError
from intranet.models.chat import ConversationParticipant, Message
from intranet.models.user import User
from intranet.schemas.chat import MessageOut
from intranet.services.attachment_storage import (
    StoredAttachment,
    attachment_exists,
    delete_attachment,
    save_attachment,
)
from intranet.services.conversation_service import require_participant
from intranet.services.read_tracking import mark_read

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


def _read_by_others_column():
    # True once no other participant is behind the message; stays true if they leave.
    behind = aliased(ConversationParticipant)

    others_behind = select(behind.id).where(
        behind.conversation_id == Message.conversation_id,
        behind.user_id != Message.sender_id,
        or_(
            behind.last_read_at.is_(None),
            behind.last_read_at < Message.created_at,
        ),
    ).correlate(Message).exists()

    return (~others_behind).label("is_read_by_others")


def _message_query(db: Session):
    return db.query(
        Message,
        User.first_name,
        User.last_name,
        _read_by_others_column(),
    ).outerjoin(User, User.id == Message.sender_id)


def _to_message_out(row) -> MessageOut:
    message, first_name, last_name, is_read_by_others = row
    return MessageOut(
        id=message.id,
        conversation_id=message.conversation_id,
        sender_id=message.sender_id,
        content=message.content,
        attachment_name=message.attachment_name,
        attachment_path=message.attachment_path,
        created_at=message.created_at,
        sender_first_name=first_name,
        sender_last_name=last_name,
        is_read_by_others=bool(is_read_by_others),
    )


def append_message(
    db: Session,
    conversation_id: int,
    sender_id: int,
    content: Optional[str] = None,
    attachment: Optional[UploadFile] = None,
) -> MessageOut:
    """
    Store a message from a participant.

    Content and attachment are both optional, and a message carrying neither
    is accepted. Sending does not move the sender's own read watermark.
    """
    require_participant(db, conversation_id, sender_id)

    stored: Optional[StoredAttachment] = None
    if attachment is not None and attachment.filename:
        stored = save_attachment(attachment, sender_id)

    message = Message(
        conversation_id=conversation_id,
        sender_id=sender_id,
        content=content if content else None,
        attachment_name=stored.name if stored else None,
        attachment_path=stored.path if stored else None,
    )
    try:
        db.add(message)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "Message insert failed",
            extra={"context": {"operation": "append_message", "conversation_id": conversation_id, "sender_id": sender_id}},
        )
        if stored:
            delete_attachment(stored.path)
        raise

    db.refresh(message)
    return _to_message_out(_message_query(db).filter(Message.id == message.id).one())


def list_messages(
    db: Session,
    conversation_id: int,
    requester_id: int,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
    mark_as_read: bool = False,
) -> List[MessageOut]:
    """
    One page of history, oldest first.

    ``mark_as_read`` advances the requester's watermark before the page is
    built. Background polling must leave it off so that refreshing never
    consumes unread messages.
    """
    require_participant(db, conversation_id, requester_id)

    if mark_as_read:
        mark_read(db, conversation_id, requester_id)

    limit = max(1, min(int(limit), MAX_PAGE_SIZE))
    offset = max(0, int(offset))

    rows = _message_query(db).filter(
        Message.conversation_id == conversation_id
    ).order_by(
        Message.created_at.asc(), Message.id.asc()
    ).offset(offset).limit(limit).all()

    return [_to_message_out(row) for row in rows]


def get_message_attachment(db: Session, message_id: int, requester_id: int) -> StoredAttachment:
    message = db.query(Message).filter(Message.id == message_id).first()
    if not message:
        raise NotFoundError("Message not found", details={"message_id": message_id})

    require_participant(db, message.conversation_id, requester_id)

    if not message.attachment_path or not message.attachment_name:
        raise NotFoundError("No attachment for this message", details={"message_id": message_id})
    if not attachment_exists(message.attachment_path):
        logger.warning(
            "Attachment file missing on disk",
            extra={"context": {"message_id": message_id, "path": message.attachment_path}},
        )
        raise NotFoundError("Attachment file not found", details={"message_id": message_id})

    return StoredAttachment(name=message.attachment_name, path=message.attachment_path)


def delete_message(db: Session, message_id: int, requester_id: int) -> None:
    """Delete a message sent by the requester, removing its file first."""
    message = db.query(Message).filter(
        Message.id == message_id,
        Message.sender_id == requester_id,
    ).first()
    if not message:
        raise NotFoundError("Message not found or not allowed", details={"message_id": message_id})

    conversation_id = message.conversation_id

    if message.attachment_path:
        delete_attachment(message.attachment_path)

    try:
        db.delete(message)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "Message deletion failed",
            extra={"context": {"operation": "delete_message", "message_id": message_id, "user_id": requester_id}},
        )
        raise
    logger.info(
        "Message deleted",
        extra={"context": {"message_id": message_id, "conversation_id": conversation_id}},
    )
