"""
Covenant — Conversation and Message models.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from covenant.database import Base, utcnow


def pair_key(user_a_id: uuid.UUID | str, user_b_id: uuid.UUID | str) -> str:
    """Deterministic key for an unordered pair of users."""
    low, high = sorted((str(user_a_id), str(user_b_id)))
    return f"{low}:{high}"


class Conversation(Base):
    __tablename__ = "conversations"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    participant_1_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), index=True, nullable=False
    )
    participant_2_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), index=True, nullable=False
    )
    pair_key: Mapped[str] = mapped_column(
        String, unique=True, nullable=False, comment="sorted '<uuid>:<uuid>'"
    )
    last_message_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_message_preview: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    def has_participant(self, user_id: uuid.UUID) -> bool:
        return user_id in (self.participant_1_id, self.participant_2_id)

    def other_participant(self, user_id: uuid.UUID) -> uuid.UUID:
        if user_id == self.participant_1_id:
            return self.participant_2_id
        return self.participant_1_id

    def __repr__(self) -> str:
        return f"<Conversation {self.id} pair={self.pair_key!r}>"


class MessageType:
    TEXT = "text"
    IMAGE = "image"


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_conversation_order", "conversation_id", "created_at", "id"),
        Index("ix_messages_unread", "receiver_id", "is_read"),
    )

    # Autoincrement id doubles as the insertion-order tie-break.
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    receiver_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    text: Mapped[str | None] = mapped_column(Text, nullable=True)
    message_type: Mapped[str] = mapped_column(
        String, nullable=False, default=MessageType.TEXT, comment="text / image"
    )
    image_url: Mapped[str | None] = mapped_column(String, nullable=True)
    is_read: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )
    read_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<Message #{self.id} conv={self.conversation_id} "
            f"type={self.message_type!r} read={self.is_read}>"
        )
