"""
Covenant — Interests API

Send an interest, accept or reject one, and list what a user has sent or
received.  Accepting an interest connects the pair and opens their
conversation.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from covenant.database import get_db
from covenant.schemas.match import (
    InterestCreate,
    InterestResolution,
    InterestRespond,
    InterestResponse,
)
from covenant.services.relationship_service import RelationshipService

logger = structlog.get_logger("covenant.api.interests")

router = APIRouter()

# ── Service singletons ────────────────────────────────────────────────────────

_relationship_service: RelationshipService | None = None


def _get_relationship_service() -> RelationshipService:
    global _relationship_service
    if _relationship_service is None:
        _relationship_service = RelationshipService()
    return _relationship_service


# ──────────────────────────────────────────────────────────────────────────────
# POST — Send an interest
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "",
    response_model=InterestResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Send an interest",
    responses={409: {"description": "Interest already sent"}, 422: {"description": "Invalid target"}},
)
async def send_interest(
    payload: InterestCreate,
    db: AsyncSession = Depends(get_db),
) -> InterestResponse:
    interest = await _get_relationship_service().send_interest(
        payload.sender_id,
        payload.receiver_id,
        db,
        message=payload.message,
    )
    return InterestResponse.model_validate(interest)


# ──────────────────────────────────────────────────────────────────────────────
# POST /{interest_id}/respond — Accept or reject
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/{interest_id}/respond",
    response_model=InterestResolution,
    summary="Accept or reject an interest",
    responses={404: {"description": "Interest not found"}, 409: {"description": "Already resolved"}},
)
async def respond_to_interest(
    interest_id: uuid.UUID,
    payload: InterestRespond,
    db: AsyncSession = Depends(get_db),
) -> InterestResolution:
    """Resolve a pending interest.  On acceptance the response carries the
    id of the pair's conversation."""
    resolution = await _get_relationship_service().respond_to_interest(
        interest_id,
        payload.accept,
        db,
        responder_id=payload.responder_id,
    )
    return InterestResolution(
        interest=InterestResponse.model_validate(resolution.interest),
        conversation_id=resolution.conversation_id,
    )


# ──────────────────────────────────────────────────────────────────────────────
# GET /received/{user_id}, GET /sent/{user_id}
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/received/{user_id}",
    response_model=list[InterestResponse],
    summary="Interests received by a user",
)
async def received_interests(
    user_id: uuid.UUID,
    interest_status: Optional[str] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
) -> list[InterestResponse]:
    interests = await _get_relationship_service().list_interests(
        user_id, db, direction="received", status=interest_status
    )
    return [InterestResponse.model_validate(i) for i in interests]


@router.get(
    "/sent/{user_id}",
    response_model=list[InterestResponse],
    summary="Interests sent by a user",
)
async def sent_interests(
    user_id: uuid.UUID,
    interest_status: Optional[str] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
) -> list[InterestResponse]:
    interests = await _get_relationship_service().list_interests(
        user_id, db, direction="sent", status=interest_status
    )
    return [InterestResponse.model_validate(i) for i in interests]
