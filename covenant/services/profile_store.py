"""
Covenant — Profile Store

Async repository over the ``profiles`` table.  The matching engine treats it
as the source of truth for eligibility and scoring inputs and only reads
from it; writes come from the onboarding/profile endpoints.
"""

from __future__ import annotations

import uuid
from typing import Any, Iterable

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from covenant.database import translate_store_errors
from covenant.errors import NotFound, ValidationError
from covenant.models.profile import Profile

logger = structlog.get_logger("covenant.profile_store")

# Columns a caller may never set through ``update_profile``.
_IMMUTABLE_FIELDS = frozenset({"id", "created_at", "updated_at"})


class ProfileStore:
    """Read-by-id, read-by-filter and update-by-id over ``Profile`` rows."""

    async def find_profile(
        self,
        profile_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> Profile | None:
        with translate_store_errors("find_profile"):
            return await db_session.get(Profile, profile_id)

    async def get_profile(
        self,
        profile_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> Profile:
        """Return the profile or raise ``NotFound``."""
        profile = await self.find_profile(profile_id, db_session)
        if profile is None:
            logger.info("profile_not_found", profile_id=str(profile_id))
            raise NotFound(f"Profile {profile_id} not found.", profile_id=profile_id)
        return profile

    async def query_profiles(
        self,
        db_session: AsyncSession,
        *,
        exclude_ids: Iterable[uuid.UUID] = (),
        genders: Iterable[str] | None = None,
        denominations: Iterable[str] | None = None,
        active_only: bool = True,
        verified_only: bool = True,
    ) -> list[Profile]:
        """Return profiles matching the column-level predicates.

        Predicates that need per-row computation (age, distance, seeking
        reciprocity) are left to the caller.
        """
        stmt = select(Profile)

        if active_only:
            stmt = stmt.where(Profile.is_active.is_(True))
        if verified_only:
            stmt = stmt.where(
                Profile.is_verified.is_(True),
                Profile.is_faith_verified.is_(True),
                Profile.is_marriage_intent_verified.is_(True),
            )

        excluded = list(exclude_ids)
        if excluded:
            stmt = stmt.where(Profile.id.not_in(excluded))
        if genders is not None:
            stmt = stmt.where(Profile.gender.in_(list(genders)))
        if denominations is not None:
            stmt = stmt.where(Profile.denomination.in_(list(denominations)))

        with translate_store_errors("query_profiles"):
            result = await db_session.execute(stmt)
        profiles = list(result.scalars().all())

        logger.debug("profiles_queried", count=len(profiles))
        return profiles

    async def create_profile(
        self,
        data: dict[str, Any],
        db_session: AsyncSession,
    ) -> Profile:
        log = logger.bind(email=data.get("email"))

        profile = Profile(**data)
        db_session.add(profile)
        try:
            with translate_store_errors("create_profile"):
                await db_session.flush()
                await db_session.commit()
        except IntegrityError as exc:
            await db_session.rollback()
            log.warning("create_profile_duplicate_email")
            raise ValidationError("A profile with this email already exists.") from exc

        log.info("profile_created", profile_id=str(profile.id))
        return profile

    async def update_profile(
        self,
        profile_id: uuid.UUID,
        partial: dict[str, Any],
        db_session: AsyncSession,
    ) -> Profile:
        """Apply ``partial`` to the profile and commit."""
        profile = await self.get_profile(profile_id, db_session)

        illegal = set(partial) & _IMMUTABLE_FIELDS
        if illegal:
            raise ValidationError(f"Fields cannot be updated: {sorted(illegal)}")

        columns = Profile.__table__.columns
        for field, value in partial.items():
            if field not in columns:
                raise ValidationError(f"Unknown profile field {field!r}")
            if value is None and not columns[field].nullable:
                raise ValidationError(f"Field {field!r} cannot be null.")

        age_min = partial.get("preferred_age_min", profile.preferred_age_min)
        age_max = partial.get("preferred_age_max", profile.preferred_age_max)
        if age_min is not None and age_max is not None and age_min > age_max:
            raise ValidationError(
                f"preferred_age_min ({age_min}) exceeds preferred_age_max ({age_max})"
            )

        for field, value in partial.items():
            setattr(profile, field, value)

        try:
            with translate_store_errors("update_profile"):
                await db_session.flush()
                await db_session.commit()
        except IntegrityError as exc:
            await db_session.rollback()
            logger.warning("update_profile_rejected", profile_id=str(profile_id), error=str(exc.orig))
            raise ValidationError("Profile update violates a store constraint.") from exc

        logger.info(
            "profile_updated",
            profile_id=str(profile_id),
            fields=sorted(partial),
        )
        return profile
