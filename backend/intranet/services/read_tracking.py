from datetime import datetime
from typing import Dict, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from intranet.models.chat import ConversationParticipant, Message, utcnow


def _unread_filter(user_id: int):
    return (
        Message.sender_id != user_id,
        or_(
            ConversationParticipant.last_read_at.is_(None),
            Message.created_at > ConversationParticipant.last_read_at,
        ),
    )


def mark_read(db: Session, conversation_id: int, user_id: int, now: Optional[datetime] = None) -> bool:
    """
    Advance the caller's watermark to ``now``.

    The update only applies when it moves the watermark forward, so a stale
    clock or a replayed request can never un-read messages. Returns whether a
    row changed.
    """
    now = now or utcnow()
    updated = db.query(ConversationParticipant).filter(
        ConversationParticipant.conversation_id == conversation_id,
        ConversationParticipant.user_id == user_id,
        or_(
            ConversationParticipant.last_read_at.is_(None),
            ConversationParticipant.last_read_at < now,
        ),
    ).update({ConversationParticipant.last_read_at: now}, synchronize_session=False)
    db.commit()
    return bool(updated)


def unread_count(db: Session, conversation_id: int, user_id: int) -> int:
    count = db.query(func.count(Message.id)).select_from(Message).join(
        ConversationParticipant,
        ConversationParticipant.conversation_id == Message.conversation_id,
    ).filter(
        Message.conversation_id == conversation_id,
        ConversationParticipant.user_id == user_id,
        *_unread_filter(user_id),
    ).scalar()
    return int(count or 0)


def unread_counts_by_conversation(db: Session, user_id: int) -> Dict[int, int]:
    rows = db.query(Message.conversation_id, func.count(Message.id)).select_from(Message).join(
        ConversationParticipant,
        ConversationParticipant.conversation_id == Message.conversation_id,
    ).filter(
        ConversationParticipant.user_id == user_id,
        *_unread_filter(user_id),
    ).group_by(Message.conversation_id).all()
    return {conversation_id: int(count) for conversation_id, count in rows}


def unread_total(db: Session, user_id: int) -> int:
    return sum(unread_counts_by_conversation(db, user_id).values())
