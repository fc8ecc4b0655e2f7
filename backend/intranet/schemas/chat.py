from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field


class ChatUserOut(BaseModel):
    id: int
    first_name: str
    last_name: str
    email: str
    role: str
    position: Optional[str] = None

    model_config = {"from_attributes": True}


class ConversationCreate(BaseModel):
    name: Optional[str] = Field(default=None, max_length=120)
    type: Literal["direct", "group"] = "direct"
    participant_ids: list[int] = Field(default_factory=list)


class ConversationOut(BaseModel):
    id: int
    name: Optional[str] = None
    type: str
    created_by: Optional[int] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ConversationCreateOut(BaseModel):
    conversation: ConversationOut
    existing: bool = False


class ConversationSummaryOut(ConversationOut):
    display_name: str
    is_pinned: bool = False
    message_count: int = 0
    last_message_at: Optional[datetime] = None
    last_message: Optional[str] = None
    unread_count: int = 0


class ConversationListOut(BaseModel):
    conversations: list[ConversationSummaryOut] = Field(default_factory=list)


class ConversationPinUpdate(BaseModel):
    is_pinned: bool


class ConversationPinOut(BaseModel):
    success: bool = True
    is_pinned: bool


class MessageOut(BaseModel):
    id: int
    conversation_id: int
    sender_id: int
    content: Optional[str] = None
    attachment_name: Optional[str] = None
    attachment_path: Optional[str] = None
    created_at: datetime
    sender_first_name: Optional[str] = None
    sender_last_name: Optional[str] = None
    is_read_by_others: bool = False


class MessageListOut(BaseModel):
    messages: list[MessageOut] = Field(default_factory=list)


class MessageCreateOut(BaseModel):
    message: MessageOut


class UnreadConversationCount(BaseModel):
    conversation_id: int
    unread_count: int = 0


class UnreadSummaryOut(BaseModel):
    total_unread: int = 0
    conversations: list[UnreadConversationCount] = Field(default_factory=list)


class SuccessOut(BaseModel):
    success: bool = True
    message: Optional[str] = None
