from typing import Optional

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    Query,
    Response,
    UploadFile,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from intranet.core.dependencies import get_current_user
from intranet.core.message_ws_manager import message_ws_manager
from intranet.database.session import get_db
from intranet.models.user import User
from intranet.schemas.chat import (
    ChatUserOut,
    ConversationCreate,
    ConversationCreateOut,
    ConversationListOut,
    ConversationOut,
    ConversationPinOut,
    ConversationPinUpdate,
    MessageCreateOut,
    MessageListOut,
    SuccessOut,
    UnreadConversationCount,
    UnreadSummaryOut,
)
from intranet.services import conversation_service, message_service, read_tracking

router = APIRouter(prefix="/messages", tags=["Messages"])
ws_router = APIRouter(tags=["Messages"])


@router.get("/conversations", response_model=ConversationListOut)
def list_conversations(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return ConversationListOut(conversations=conversation_service.list_for_user(db, current_user.id))


@router.post("/conversations", response_model=ConversationCreateOut, status_code=status.HTTP_201_CREATED)
def create_conversation(
    payload: ConversationCreate,
    response: Response,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    conversation, existing = conversation_service.create_conversation(
        db,
        current_user.id,
        payload.type,
        payload.participant_ids,
        name=payload.name,
    )
    if existing:
        response.status_code = status.HTTP_200_OK
    return ConversationCreateOut(
        conversation=ConversationOut.model_validate(conversation),
        existing=existing,
    )


@router.get("/conversations/{conversation_id}/messages", response_model=MessageListOut)
def get_messages(
    conversation_id: int,
    limit: int = Query(message_service.DEFAULT_PAGE_SIZE, ge=1, le=message_service.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    mark_read: bool = Query(False),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    messages = message_service.list_messages(
        db,
        conversation_id,
        current_user.id,
        limit=limit,
        offset=offset,
        mark_as_read=mark_read,
    )
    return MessageListOut(messages=messages)


@router.put("/conversations/{conversation_id}/read", status_code=status.HTTP_204_NO_CONTENT)
def mark_conversation_read(
    conversation_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    conversation_service.require_participant(db, conversation_id, current_user.id)
    read_tracking.mark_read(db, conversation_id, current_user.id)


@router.put("/conversations/{conversation_id}/pin", response_model=ConversationPinOut)
def pin_conversation(
    conversation_id: int,
    payload: ConversationPinUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    participant = conversation_service.set_pinned(db, conversation_id, current_user.id, payload.is_pinned)
    return ConversationPinOut(success=True, is_pinned=participant.is_pinned)


@router.delete("/conversations/{conversation_id}", response_model=SuccessOut)
def leave_conversation(
    conversation_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    conversation_service.leave_conversation(db, conversation_id, current_user.id)
    return SuccessOut(success=True)


@router.post("/messages", response_model=MessageCreateOut, status_code=status.HTTP_201_CREATED)
def send_message(
    conversation_id: int = Form(...),
    content: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    message = message_service.append_message(
        db,
        conversation_id,
        current_user.id,
        content=content,
        attachment=image,
    )
    return MessageCreateOut(message=message)


@router.get("/messages/{message_id}/image")
def get_message_image(
    message_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    attachment = message_service.get_message_attachment(db, message_id, current_user.id)
    return FileResponse(attachment.path, filename=attachment.name)


@router.delete("/messages/{message_id}", response_model=SuccessOut)
def delete_message(
    message_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    message_service.delete_message(db, message_id, current_user.id)
    return SuccessOut(success=True, message="Message deleted")


@router.get("/users", response_model=list[ChatUserOut])
def list_chat_users(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return conversation_service.list_contacts(db, current_user.id)


@router.get("/unread-count", response_model=UnreadSummaryOut)
def get_unread_count(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    per_conversation = read_tracking.unread_counts_by_conversation(db, current_user.id)
    return UnreadSummaryOut(
        total_unread=read_tracking.unread_total(db, current_user.id),
        conversations=[
            UnreadConversationCount(conversation_id=conversation_id, unread_count=count)
            for conversation_id, count in sorted(per_conversation.items())
        ],
    )


@ws_router.websocket("/ws")
async def message_socket(websocket: WebSocket):
    await message_ws_manager.connect(websocket)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            await message_ws_manager.handle_message(websocket, message)
    except WebSocketDisconnect:
        pass
    finally:
        message_ws_manager.disconnect(websocket)
