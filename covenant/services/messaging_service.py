"""
Covenant — Conversation & Message Ledger

Append-only message history per conversation plus the read/unread
bookkeeping that feeds the inbox.  A message and the conversation's
last-activity columns are committed together; the realtime event goes out
only after that commit, and a broker failure never fails the append.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, AsyncIterator

import structlog
from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from covenant.config import get_settings
from covenant.database import translate_store_errors, utcnow
from covenant.errors import InvalidParticipant, NotFound, ValidationError
from covenant.models.conversation import Conversation, Message, MessageType
from covenant.models.profile import Profile
from covenant.services.realtime import MessageBroker

logger = structlog.get_logger("covenant.messaging_service")

IMAGE_PREVIEW = "[image]"


@dataclass
class ConversationSummary:
    conversation: Conversation
    other_participant_id: uuid.UUID
    unread_count: int = 0


def message_event(message: Message) -> dict[str, Any]:
    """Wire shape of a message pushed to realtime subscribers."""
    return {
        "id": message.id,
        "conversation_id": str(message.conversation_id),
        "sender_id": str(message.sender_id),
        "receiver_id": str(message.receiver_id),
        "text": message.text,
        "message_type": message.message_type,
        "image_url": message.image_url,
        "created_at": message.created_at.isoformat() if message.created_at else None,
    }


class MessagingService:
    """Message append, history, read receipts and inbox listing."""

    def __init__(self, broker: MessageBroker | None = None) -> None:
        self.broker = broker or MessageBroker()

    # ── Conversations ─────────────────────────────────────────────────────

    async def get_conversation(
        self,
        conversation_id: uuid.UUID,
        db_session: AsyncSession,
        user_id: uuid.UUID | None = None,
    ) -> Conversation:
        """Load a conversation, optionally asserting ``user_id`` takes part."""
        with translate_store_errors("get_conversation"):
            conversation = await db_session.get(Conversation, conversation_id)
        if conversation is None:
            raise NotFound(f"Conversation {conversation_id} not found.")
        if user_id is not None and not conversation.has_participant(user_id):
            raise InvalidParticipant("User is not a participant in this conversation.")
        return conversation

    async def list_conversations(
        self,
        user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> list[ConversationSummary]:
        """Conversations the user takes part in, most recent activity first."""
        stmt = (
            select(Conversation)
            .where(
                or_(
                    Conversation.participant_1_id == user_id,
                    Conversation.participant_2_id == user_id,
                )
            )
            .order_by(
                func.coalesce(Conversation.last_message_at, Conversation.created_at).desc(),
                Conversation.id,
            )
        )
        with translate_store_errors("list_conversations"):
            result = await db_session.execute(stmt)
            conversations = list(result.scalars().all())
            unread = await self._unread_by_conversation(user_id, db_session)

        return [
            ConversationSummary(
                conversation=c,
                other_participant_id=c.other_participant(user_id),
                unread_count=unread.get(c.id, 0),
            )
            for c in conversations
        ]

    async def search_conversations(
        self,
        user_id: uuid.UUID,
        query: str,
        db_session: AsyncSession,
    ) -> list[ConversationSummary]:
        """Conversations whose other participant's name contains ``query``,
        ignoring case."""
        query = (query or "").strip()
        if not query:
            return await self.list_conversations(user_id, db_session)

        other_id = case(
            (Conversation.participant_1_id == user_id, Conversation.participant_2_id),
            else_=Conversation.participant_1_id,
        )
        stmt = (
            select(Conversation)
            .join(Profile, Profile.id == other_id)
            .where(
                or_(
                    Conversation.participant_1_id == user_id,
                    Conversation.participant_2_id == user_id,
                ),
                Profile.full_name.icontains(query, autoescape=True),
            )
            .order_by(
                func.coalesce(Conversation.last_message_at, Conversation.created_at).desc(),
                Conversation.id,
            )
        )
        with translate_store_errors("search_conversations"):
            result = await db_session.execute(stmt)
            conversations = list(result.scalars().all())
            unread = await self._unread_by_conversation(user_id, db_session)

        logger.debug(
            "conversations_searched",
            user_id=str(user_id),
            matches=len(conversations),
        )
        return [
            ConversationSummary(
                conversation=c,
                other_participant_id=c.other_participant(user_id),
                unread_count=unread.get(c.id, 0),
            )
            for c in conversations
        ]

    # ── Messages ──────────────────────────────────────────────────────────

    async def send_message(
        self,
        conversation_id: uuid.UUID,
        sender_id: uuid.UUID,
        db_session: AsyncSession,
        text: str | None = None,
        image_url: str | None = None,
    ) -> Message:
        """Append a message and publish it to live subscribers.

        Parameters
        ----------
        conversation_id:
            Target conversation.
        sender_id:
            Must be one of the two participants; the other becomes the
            receiver.
        db_session:
            Active async session.
        text:
            Message body, stripped.  Required unless ``image_url`` is given.
        image_url:
            Optional attachment URL.

        Returns
        -------
        Message
            The committed row, including its autoincrement id.
        """
        settings = get_settings()
        log = logger.bind(conversation_id=str(conversation_id), sender_id=str(sender_id))

        body = (text or "").strip()
        image_url = (image_url or "").strip() or None
        if not body and image_url is None:
            raise ValidationError("Message needs text or an image.")
        if len(body) > settings.MESSAGE_MAX_LENGTH:
            raise ValidationError(
                f"Message exceeds {settings.MESSAGE_MAX_LENGTH} characters."
            )

        conversation = await self.get_conversation(conversation_id, db_session, sender_id)

        now = utcnow()
        message = Message(
            conversation_id=conversation.id,
            sender_id=sender_id,
            receiver_id=conversation.other_participant(sender_id),
            text=body or None,
            message_type=MessageType.TEXT if body else MessageType.IMAGE,
            image_url=image_url,
            is_read=False,
            created_at=now,
        )
        db_session.add(message)
        conversation.last_message_at = now
        conversation.last_message_preview = (
            body[: settings.MESSAGE_PREVIEW_LENGTH] if body else IMAGE_PREVIEW
        )

        with translate_store_errors("send_message"):
            await db_session.flush()
            await db_session.commit()

        log.info("message_sent", message_id=message.id, message_type=message.message_type)

        try:
            await self.broker.publish(conversation.id, message_event(message))
        except Exception:
            log.exception("message_publish_failed", message_id=message.id)

        return message

    async def get_messages(
        self,
        conversation_id: uuid.UUID,
        db_session: AsyncSession,
        user_id: uuid.UUID | None = None,
    ) -> list[Message]:
        """Full history in (created_at, id) order."""
        await self.get_conversation(conversation_id, db_session, user_id)

        with translate_store_errors("get_messages"):
            result = await db_session.execute(
                select(Message)
                .where(Message.conversation_id == conversation_id)
                .order_by(Message.created_at, Message.id)
            )
        return list(result.scalars().all())

    async def mark_read(
        self,
        conversation_id: uuid.UUID,
        user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> int:
        """Mark every unread message addressed to ``user_id`` as read.

        Returns the number of messages flipped; zero on a repeat call.
        """
        await self.get_conversation(conversation_id, db_session, user_id)

        with translate_store_errors("mark_read"):
            result = await db_session.execute(
                update(Message)
                .where(
                    Message.conversation_id == conversation_id,
                    Message.receiver_id == user_id,
                    Message.is_read.is_(False),
                )
                .values(is_read=True, read_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            await db_session.commit()

        flipped = result.rowcount or 0
        logger.info(
            "messages_marked_read",
            conversation_id=str(conversation_id),
            user_id=str(user_id),
            count=flipped,
        )
        return flipped

    async def get_unread_count(
        self,
        user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> int:
        with translate_store_errors("get_unread_count"):
            result = await db_session.execute(
                select(func.count(Message.id)).where(
                    Message.receiver_id == user_id,
                    Message.is_read.is_(False),
                )
            )
        return int(result.scalar_one())

    # ── Realtime ──────────────────────────────────────────────────────────

    def subscribe(self, conversation_id: uuid.UUID) -> AsyncIterator[dict[str, Any]]:
        """Live message events for one conversation."""
        return self.broker.subscribe(conversation_id)

    # ── Internal helpers ─────────────────────────────────────────────────

    @staticmethod
    async def _unread_by_conversation(
        user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> dict[uuid.UUID, int]:
        result = await db_session.execute(
            select(Message.conversation_id, func.count(Message.id))
            .where(and_(Message.receiver_id == user_id, Message.is_read.is_(False)))
            .group_by(Message.conversation_id)
        )
        return {conversation_id: count for conversation_id, count in result.all()}
