import logging
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import and_, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from intranet.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from intranet.core.validation import (
    require_active_users,
    require_non_empty_list,
    require_non_empty_text,
    unique_ids,
)
from intranet.models.chat import Conversation, ConversationParticipant, ConversationType, Message
from intranet.models.user import User
from intranet.schemas.chat import ConversationSummaryOut
from intranet.services.attachment_storage import delete_attachment
from intranet.services.read_tracking import unread_counts_by_conversation

logger = logging.getLogger(__name__)


def get_participant(db: Session, conversation_id: int, user_id: int) -> Optional[ConversationParticipant]:
    return db.query(ConversationParticipant).filter(
        ConversationParticipant.conversation_id == conversation_id,
        ConversationParticipant.user_id == user_id,
    ).first()


def require_participant(db: Session, conversation_id: int, user_id: int) -> ConversationParticipant:
    conversation_exists = db.query(Conversation.id).filter(Conversation.id == conversation_id).first()
    if not conversation_exists:
        raise NotFoundError("Conversation not found", details={"conversation_id": conversation_id})

    participant = get_participant(db, conversation_id, user_id)
    if not participant:
        raise ForbiddenError(
            "Not allowed for this conversation",
            details={"conversation_id": conversation_id},
        )
    return participant


def _direct_display_name(db: Session, conversation_id: int, user_id: int) -> str:
    others = db.query(User).join(
        ConversationParticipant, ConversationParticipant.user_id == User.id
    ).filter(
        ConversationParticipant.conversation_id == conversation_id,
        ConversationParticipant.user_id != user_id,
    ).order_by(User.first_name.asc(), User.last_name.asc()).all()
    return ", ".join(other.full_name for other in others)


def _last_message_preview(db: Session, conversation_id: int) -> Optional[str]:
    last_message = db.query(Message.content).filter(
        Message.conversation_id == conversation_id
    ).order_by(Message.created_at.desc(), Message.id.desc()).first()
    return last_message[0] if last_message else None


def list_for_user(db: Session, user_id: int) -> List[ConversationSummaryOut]:
    """
    Conversations the user participates in, with per-user metadata.

    Pinned conversations come first, then the most recently active ones;
    conversations without any message sort last.
    """
    stats = db.query(
        Message.conversation_id.label("conversation_id"),
        func.count(Message.id).label("message_count"),
        func.max(Message.created_at).label("last_message_at"),
    ).group_by(Message.conversation_id).subquery()

    rows = db.query(
        Conversation,
        ConversationParticipant.is_pinned,
        stats.c.message_count,
        stats.c.last_message_at,
    ).select_from(Conversation).join(
        ConversationParticipant,
        and_(
            ConversationParticipant.conversation_id == Conversation.id,
            ConversationParticipant.user_id == user_id,
        ),
    ).outerjoin(
        stats, stats.c.conversation_id == Conversation.id
    ).order_by(
        ConversationParticipant.is_pinned.desc(),
        stats.c.last_message_at.is_(None),
        stats.c.last_message_at.desc(),
        Conversation.id.desc(),
    ).all()

    unread = unread_counts_by_conversation(db, user_id)

    summaries = []
    for conversation, is_pinned, message_count, last_message_at in rows:
        if conversation.type == ConversationType.group.value:
            display_name = conversation.name or "Conversation"
        else:
            display_name = _direct_display_name(db, conversation.id, user_id) or conversation.name or "Conversation"

        summaries.append(
            ConversationSummaryOut(
                id=conversation.id,
                name=conversation.name,
                type=conversation.type,
                created_by=conversation.created_by,
                created_at=conversation.created_at,
                display_name=display_name,
                is_pinned=bool(is_pinned),
                message_count=int(message_count or 0),
                last_message_at=last_message_at,
                last_message=_last_message_preview(db, conversation.id) if message_count else None,
                unread_count=unread.get(conversation.id, 0),
            )
        )
    return summaries


def find_direct_conversation(db: Session, user_id: int, other_user_id: int) -> Optional[Conversation]:
    """Existing direct conversation holding exactly these two users, if any."""
    mine = select(ConversationParticipant.conversation_id).where(ConversationParticipant.user_id == user_id)
    theirs = select(ConversationParticipant.conversation_id).where(ConversationParticipant.user_id == other_user_id)
    participant_count = select(func.count(ConversationParticipant.id)).where(
        ConversationParticipant.conversation_id == Conversation.id
    ).correlate(Conversation).scalar_subquery()

    return db.query(Conversation).filter(
        Conversation.type == ConversationType.direct.value,
        Conversation.id.in_(mine),
        Conversation.id.in_(theirs),
        participant_count == 2,
    ).order_by(Conversation.id.asc()).first()


def create_conversation(
    db: Session,
    creator_id: int,
    kind: str,
    participant_ids: Iterable[int],
    name: Optional[str] = None,
) -> Tuple[Conversation, bool]:
    """
    Create a conversation, or return the existing direct one for the pair.

    Returns ``(conversation, existing)``. The direct lookup is check-then-act:
    two users creating the same pair at the same moment can both miss it and
    end up with two conversations.
    """
    try:
        kind = ConversationType(kind)
    except ValueError:
        raise ValidationError("type must be 'direct' or 'group'", details={"type": kind})

    requested = require_non_empty_list(participant_ids, "participant_ids is required")
    targets = [user_id for user_id in unique_ids(requested) if user_id != creator_id]

    if kind is ConversationType.direct:
        if len(targets) != 1:
            raise ValidationError(
                "A direct conversation needs exactly one other participant",
                details={"participant_ids": requested},
            )
        existing = find_direct_conversation(db, creator_id, targets[0])
        if existing:
            logger.info(
                "Direct conversation already exists",
                extra={"context": {"conversation_id": existing.id, "user_ids": [creator_id, targets[0]]}},
            )
            return existing, True
        name = None
    else:
        name = require_non_empty_text(name, "name")
        if not targets:
            raise ValidationError("A group conversation needs at least one other participant")

    require_active_users(db, targets)

    conversation = Conversation(name=name, type=kind.value, created_by=creator_id)
    try:
        db.add(conversation)
        db.flush()

        db.add(ConversationParticipant(conversation_id=conversation.id, user_id=creator_id))
        for user_id in targets:
            db.add(ConversationParticipant(conversation_id=conversation.id, user_id=user_id))

        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "Conversation creation failed",
            extra={"context": {"operation": "create_conversation", "creator_id": creator_id, "participant_ids": targets}},
        )
        raise

    db.refresh(conversation)
    logger.info(
        "Conversation created",
        extra={"context": {"conversation_id": conversation.id, "type": kind.value, "creator_id": creator_id}},
    )
    return conversation, False


def set_pinned(db: Session, conversation_id: int, user_id: int, pinned: bool) -> ConversationParticipant:
    participant = require_participant(db, conversation_id, user_id)
    participant.is_pinned = bool(pinned)
    db.commit()
    db.refresh(participant)
    return participant


def leave_conversation(db: Session, conversation_id: int, user_id: int) -> None:
    participant = get_participant(db, conversation_id, user_id)
    if not participant:
        raise NotFoundError("Conversation not found", details={"conversation_id": conversation_id})

    db.delete(participant)
    db.commit()
    logger.info(
        "Participant left conversation",
        extra={"context": {"conversation_id": conversation_id, "user_id": user_id}},
    )


def delete_conversation(db: Session, conversation_id: int) -> None:
    conversation = db.query(Conversation).filter(Conversation.id == conversation_id).first()
    if not conversation:
        raise NotFoundError("Conversation not found", details={"conversation_id": conversation_id})

    attachment_paths = [
        path
        for (path,) in db.query(Message.attachment_path).filter(
            Message.conversation_id == conversation_id,
            Message.attachment_path.isnot(None),
        ).all()
    ]

    try:
        db.delete(conversation)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "Conversation deletion failed",
            extra={"context": {"operation": "delete_conversation", "conversation_id": conversation_id}},
        )
        raise

    for path in attachment_paths:
        delete_attachment(path)
    logger.info("Conversation deleted", extra={"context": {"conversation_id": conversation_id}})


def list_contacts(db: Session, user_id: int) -> List[User]:
    return db.query(User).filter(
        User.id != user_id,
        User.is_active == True,  # noqa: E712
    ).order_by(User.first_name.asc(), User.last_name.asc()).all()
