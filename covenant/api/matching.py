"""
Covenant — Matching API

Candidate discovery, pair scoring, the viewer's match list, and the
pass / profile-view / block / report actions that shape future discovery.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from covenant.database import get_db
from covenant.schemas.match import (
    BlockRequest,
    BlockResponse,
    CandidateItem,
    MatchListItem,
    MatchResponse,
    PassRequest,
    ProfileViewRequest,
    ProfileViewResponse,
    ReportRequest,
    ReportResponse,
    ScoreResponse,
)
from covenant.schemas.profile import ProfileResponse
from covenant.services.matching_service import CandidateFilters, MatchingService
from covenant.services.relationship_service import RelationshipService

logger = structlog.get_logger("covenant.api.matching")

router = APIRouter()

# ── Service singletons ────────────────────────────────────────────────────────

_matching_service: MatchingService | None = None
_relationship_service: RelationshipService | None = None


def _get_matching_service() -> MatchingService:
    global _matching_service
    if _matching_service is None:
        _matching_service = MatchingService()
    return _matching_service


def _get_relationship_service() -> RelationshipService:
    global _relationship_service
    if _relationship_service is None:
        _relationship_service = RelationshipService()
    return _relationship_service


# ──────────────────────────────────────────────────────────────────────────────
# GET /candidates/{viewer_id} — Ranked candidate list
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/candidates/{viewer_id}",
    response_model=list[CandidateItem],
    summary="Ranked candidates for a viewer",
)
async def get_candidates(
    viewer_id: uuid.UUID,
    age_min: Optional[int] = Query(None, ge=18, le=100),
    age_max: Optional[int] = Query(None, ge=18, le=100),
    denominations: Optional[list[str]] = Query(None),
    latitude: Optional[float] = Query(None, ge=-90, le=90),
    longitude: Optional[float] = Query(None, ge=-180, le=180),
    radius_km: Optional[float] = Query(None, gt=0),
    must_share_denomination: Optional[bool] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
) -> list[CandidateItem]:
    """Eligible candidates sorted by compatibility score, best first.

    Query parameters override the viewer's stored preferences for this
    request only.
    """
    filters = CandidateFilters(
        age_min=age_min,
        age_max=age_max,
        denominations=denominations,
        latitude=latitude,
        longitude=longitude,
        radius_km=radius_km,
        must_share_denomination=must_share_denomination,
        limit=limit,
    )
    candidates = await _get_matching_service().get_candidates(viewer_id, db, filters)
    return [
        CandidateItem(
            profile=ProfileResponse.model_validate(c.profile),
            score=c.score,
        )
        for c in candidates
    ]


# ──────────────────────────────────────────────────────────────────────────────
# GET /score/{user_a_id}/{user_b_id} — Pair score with breakdown
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/score/{user_a_id}/{user_b_id}",
    response_model=ScoreResponse,
    summary="Compatibility score for two profiles",
)
async def score_pair(
    user_a_id: uuid.UUID,
    user_b_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> ScoreResponse:
    result = await _get_matching_service().score_pair(user_a_id, user_b_id, db)
    return ScoreResponse(**result)


# ──────────────────────────────────────────────────────────────────────────────
# GET /list/{user_id} — The user's match rows
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/list/{user_id}",
    response_model=list[MatchListItem],
    summary="List a user's matches",
)
async def list_matches(
    user_id: uuid.UUID,
    match_status: Optional[str] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
) -> list[MatchListItem]:
    """Newest first, optionally restricted to one status."""
    matches = await _get_relationship_service().get_matches(user_id, db, status=match_status)
    return [
        MatchListItem(
            **MatchResponse.model_validate(m).model_dump(),
            matched_user_name=m.matched_user.full_name if m.matched_user else None,
        )
        for m in matches
    ]


# ──────────────────────────────────────────────────────────────────────────────
# POST /pass — Pass on a candidate
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/pass",
    response_model=MatchResponse,
    summary="Pass on a candidate",
)
async def pass_candidate(
    payload: PassRequest,
    db: AsyncSession = Depends(get_db),
) -> MatchResponse:
    match = await _get_relationship_service().pass_match(
        payload.viewer_id, payload.candidate_id, db
    )
    return MatchResponse.model_validate(match)


# ──────────────────────────────────────────────────────────────────────────────
# POST /views — Record a profile view
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/views",
    response_model=ProfileViewResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a profile view",
)
async def record_view(
    payload: ProfileViewRequest,
    db: AsyncSession = Depends(get_db),
) -> ProfileViewResponse:
    view = await _get_relationship_service().record_profile_view(
        payload.viewer_id, payload.viewed_id, db
    )
    return ProfileViewResponse.model_validate(view)


# ──────────────────────────────────────────────────────────────────────────────
# POST /blocks — Block a user
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/blocks",
    response_model=BlockResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Block a user",
)
async def block_user(
    payload: BlockRequest,
    db: AsyncSession = Depends(get_db),
) -> BlockResponse:
    """Blocked users never appear as candidates in either direction and
    cannot exchange interests."""
    block = await _get_relationship_service().block_user(
        payload.blocker_id, payload.blocked_id, db
    )
    return BlockResponse.model_validate(block)


# ──────────────────────────────────────────────────────────────────────────────
# POST /reports — Report a user
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/reports",
    response_model=ReportResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Report a user for moderation",
)
async def report_user(
    payload: ReportRequest,
    db: AsyncSession = Depends(get_db),
) -> ReportResponse:
    report = await _get_relationship_service().report_user(
        payload.reporter_id,
        payload.reported_id,
        payload.reason,
        db,
        description=payload.description,
    )
    return ReportResponse.model_validate(report)
