"""
Covenant — Conversations API

Inbox listing, unread counts, name search, message history, sending,
read receipts, and a WebSocket stream of new messages per conversation.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, AsyncGenerator, Optional

import structlog
from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy.ext.asyncio import AsyncSession

from covenant.database import get_db, get_session_factory
from covenant.errors import CovenantError
from covenant.schemas.conversation import (
    ConversationItem,
    MarkReadRequest,
    MarkReadResponse,
    MessageCreate,
    MessageResponse,
    UnreadCountResponse,
)
from covenant.services.messaging_service import ConversationSummary, MessagingService
from covenant.services.realtime import get_broker

logger = structlog.get_logger("covenant.api.conversations")

router = APIRouter()

# ── Service singletons ────────────────────────────────────────────────────────

_messaging_service: MessagingService | None = None


def _get_messaging_service() -> MessagingService:
    global _messaging_service
    if _messaging_service is None:
        _messaging_service = MessagingService(broker=get_broker())
    return _messaging_service


def _to_item(summary: ConversationSummary) -> ConversationItem:
    c = summary.conversation
    return ConversationItem(
        id=c.id,
        participant_1_id=c.participant_1_id,
        participant_2_id=c.participant_2_id,
        other_participant_id=summary.other_participant_id,
        last_message_at=c.last_message_at,
        last_message_preview=c.last_message_preview,
        unread_count=summary.unread_count,
        created_at=c.created_at,
    )


# ──────────────────────────────────────────────────────────────────────────────
# GET /user/{user_id} — Inbox
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/user/{user_id}",
    response_model=list[ConversationItem],
    summary="A user's conversations, most recent first",
)
async def list_conversations(
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> list[ConversationItem]:
    summaries = await _get_messaging_service().list_conversations(user_id, db)
    return [_to_item(s) for s in summaries]


@router.get(
    "/user/{user_id}/unread",
    response_model=UnreadCountResponse,
    summary="Total unread messages for a user",
)
async def unread_count(
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> UnreadCountResponse:
    count = await _get_messaging_service().get_unread_count(user_id, db)
    return UnreadCountResponse(user_id=user_id, unread_count=count)


@router.get(
    "/user/{user_id}/search",
    response_model=list[ConversationItem],
    summary="Search conversations by the other participant's name",
)
async def search_conversations(
    user_id: uuid.UUID,
    q: str = Query("", max_length=200),
    db: AsyncSession = Depends(get_db),
) -> list[ConversationItem]:
    summaries = await _get_messaging_service().search_conversations(user_id, q, db)
    return [_to_item(s) for s in summaries]


# ──────────────────────────────────────────────────────────────────────────────
# /{conversation_id}/messages — History and send
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/{conversation_id}/messages",
    response_model=list[MessageResponse],
    summary="Message history, oldest first",
)
async def get_messages(
    conversation_id: uuid.UUID,
    user_id: Optional[uuid.UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> list[MessageResponse]:
    messages = await _get_messaging_service().get_messages(conversation_id, db, user_id=user_id)
    return [MessageResponse.model_validate(m) for m in messages]


@router.post(
    "/{conversation_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Send a message",
)
async def send_message(
    conversation_id: uuid.UUID,
    payload: MessageCreate,
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    message = await _get_messaging_service().send_message(
        conversation_id,
        payload.sender_id,
        db,
        text=payload.text,
        image_url=payload.image_url,
    )
    return MessageResponse.model_validate(message)


@router.post(
    "/{conversation_id}/read",
    response_model=MarkReadResponse,
    summary="Mark messages addressed to a user as read",
)
async def mark_read(
    conversation_id: uuid.UUID,
    payload: MarkReadRequest,
    db: AsyncSession = Depends(get_db),
) -> MarkReadResponse:
    flipped = await _get_messaging_service().mark_read(conversation_id, payload.user_id, db)
    return MarkReadResponse(marked_read=flipped)


# ──────────────────────────────────────────────────────────────────────────────
# WS /{conversation_id}/stream — Live message events
# ──────────────────────────────────────────────────────────────────────────────

async def relay_until_disconnect(
    websocket: WebSocket,
    events: AsyncGenerator[dict[str, Any], None],
) -> None:
    """Forward ``events`` to the socket until the stream or the client ends.

    The client is watched through ``receive()`` so a disconnect on a quiet
    conversation releases the subscription without waiting for a message.
    """

    async def pump() -> None:
        async for event in events:
            await websocket.send_json(event)

    async def watch() -> None:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                return

    pump_task = asyncio.create_task(pump())
    watch_task = asyncio.create_task(watch())
    try:
        await asyncio.wait({pump_task, watch_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        pump_task.cancel()
        watch_task.cancel()
        # The generator must be idle before it can be closed.
        await asyncio.gather(pump_task, watch_task, return_exceptions=True)
        await events.aclose()

    if not pump_task.cancelled():
        exc = pump_task.exception()
        if exc is not None and not isinstance(exc, WebSocketDisconnect):
            raise exc


@router.websocket("/{conversation_id}/stream")
async def stream_messages(
    websocket: WebSocket,
    conversation_id: uuid.UUID,
    user_id: Optional[uuid.UUID] = None,
) -> None:
    """Push every message appended to the conversation as a JSON event.

    The conversation is checked with a short-lived session so the stream
    does not hold a pooled connection while idle.
    """
    log = logger.bind(conversation_id=str(conversation_id))
    service = _get_messaging_service()

    async with get_session_factory()() as session:
        try:
            await service.get_conversation(conversation_id, session, user_id)
        except CovenantError as exc:
            log.info("stream_rejected", error=exc.code)
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=exc.message)
            return

    await websocket.accept()
    log.info("stream_opened")

    try:
        await relay_until_disconnect(websocket, service.subscribe(conversation_id))
    finally:
        log.info("stream_closed")
