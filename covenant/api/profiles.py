"""
Covenant — Profiles API

Create, fetch and partially update the profiles the matching engine reads.
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from covenant.database import get_db
from covenant.models.profile import Profile
from covenant.schemas.profile import ProfileCreate, ProfileResponse, ProfileUpdate
from covenant.services.profile_store import ProfileStore

logger = structlog.get_logger("covenant.api.profiles")

router = APIRouter()

# ── Service singletons ────────────────────────────────────────────────────────

_profile_store: ProfileStore | None = None


def _get_profile_store() -> ProfileStore:
    global _profile_store
    if _profile_store is None:
        _profile_store = ProfileStore()
    return _profile_store


# ──────────────────────────────────────────────────────────────────────────────
# POST — Create a profile
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "",
    response_model=ProfileResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a profile",
)
async def create_profile(
    payload: ProfileCreate,
    db: AsyncSession = Depends(get_db),
) -> Profile:
    """Register a new profile.  The email must not already be in use."""
    log = logger.bind(email=payload.email)
    log.info("create_profile_start")

    existing = await db.execute(select(Profile.id).where(Profile.email == payload.email))
    if existing.scalar_one_or_none() is not None:
        log.warning("create_profile_duplicate_email")
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A profile with this email already exists.",
        )

    profile = await _get_profile_store().create_profile(payload.model_dump(), db)
    log.info("create_profile_complete", profile_id=str(profile.id))
    return profile


# ──────────────────────────────────────────────────────────────────────────────
# GET /{profile_id} — Fetch a profile
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/{profile_id}",
    response_model=ProfileResponse,
    summary="Get a profile by ID",
)
async def get_profile(
    profile_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> Profile:
    return await _get_profile_store().get_profile(profile_id, db)


# ──────────────────────────────────────────────────────────────────────────────
# PATCH /{profile_id} — Partial update
# ──────────────────────────────────────────────────────────────────────────────

@router.patch(
    "/{profile_id}",
    response_model=ProfileResponse,
    summary="Update profile fields",
)
async def update_profile(
    profile_id: uuid.UUID,
    payload: ProfileUpdate,
    db: AsyncSession = Depends(get_db),
) -> Profile:
    """Apply only the fields present in the request body."""
    partial = payload.model_dump(exclude_unset=True)
    if not partial:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="No fields to update.",
        )
    return await _get_profile_store().update_profile(profile_id, partial, db)
