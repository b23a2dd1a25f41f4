from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime
from typing import Optional


class ConversationItem(BaseModel):
    id: UUID
    participant_1_id: UUID
    participant_2_id: UUID
    other_participant_id: UUID
    last_message_at: Optional[datetime] = None
    last_message_preview: Optional[str] = None
    unread_count: int = 0
    created_at: datetime


class MessageCreate(BaseModel):
    sender_id: UUID
    text: Optional[str] = None
    image_url: Optional[str] = Field(None, max_length=2048)


class MessageResponse(BaseModel):
    id: int
    conversation_id: UUID
    sender_id: UUID
    receiver_id: UUID
    text: Optional[str] = None
    message_type: str  # text/image
    image_url: Optional[str] = None
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class MarkReadRequest(BaseModel):
    user_id: UUID


class MarkReadResponse(BaseModel):
    marked_read: int


class UnreadCountResponse(BaseModel):
    user_id: UUID
    unread_count: int
