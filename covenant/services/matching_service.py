"""
Covenant — Candidate Filter & Ranking

Produces the ranked candidate list for a viewer:

  1. Load the viewer and build the exclusion set (every profile the viewer
     already has a Match row with, in any status, plus blocks in either
     direction).
  2. Pull the column-level pool from the Profile Store (active, fully
     verified, sought gender, optional denomination list).
  3. Apply the per-row predicates: reciprocal seeking relation, age window,
     shared denomination and great-circle radius.
  4. Score every survivor and sort by score descending, then by id.

Effective bounds resolve as filter override -> viewer preference -> global
default from ``Settings``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any

import structlog
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from covenant.config import get_settings
from covenant.database import translate_store_errors
from covenant.models.match import Match
from covenant.models.profile import Profile
from covenant.models.safety import Block
from covenant.services.compatibility import (
    calculate_age,
    compatibility_score,
    score_breakdown,
)
from covenant.services.profile_store import ProfileStore
from covenant.utils.geo import Coordinate, within_radius

logger = structlog.get_logger("covenant.matching_service")


@dataclass
class CandidateFilters:
    """Per-request overrides of the viewer's stored preferences."""

    age_min: int | None = None
    age_max: int | None = None
    denominations: list[str] | None = None
    latitude: float | None = None
    longitude: float | None = None
    radius_km: float | None = None
    must_share_denomination: bool | None = None
    limit: int | None = None


@dataclass
class Candidate:
    profile: Profile
    score: int


@dataclass
class _Criteria:
    """Resolved eligibility bounds for one ``get_candidates`` call."""

    age_min: int
    age_max: int
    denominations: list[str] | None = None
    shared_denomination: str | None = None
    origin: Coordinate | None = None
    radius_km: float | None = None
    excluded: set[uuid.UUID] = field(default_factory=set)


class MatchingService:
    """Candidate filtering and compatibility ranking.

    The Profile Store is injected so the service can share a store instance
    with the relationship layer, or be handed a stub in tests.
    """

    def __init__(self, profile_store: ProfileStore | None = None) -> None:
        self.profile_store = profile_store or ProfileStore()

    # ── Public API ────────────────────────────────────────────────────────

    async def get_candidates(
        self,
        viewer_id: uuid.UUID,
        db_session: AsyncSession,
        filters: CandidateFilters | None = None,
        today: date | None = None,
    ) -> list[Candidate]:
        """Return eligible candidates for ``viewer_id``, best first.

        Parameters
        ----------
        viewer_id:
            Profile requesting candidates.
        db_session:
            Active async session.
        filters:
            Optional per-request overrides; ``None`` means stored preferences.
        today:
            Reference date for age computation (defaults to today).

        Returns
        -------
        list[Candidate]
            Sorted by score descending, ties broken by the candidate id's
            string form ascending.  Truncated to ``filters.limit`` if set.

        Raises
        ------
        NotFound
            If the viewer profile does not exist.
        """
        filters = filters or CandidateFilters()
        log = logger.bind(viewer_id=str(viewer_id))

        viewer = await self.profile_store.get_profile(viewer_id, db_session)
        criteria = self._resolve_criteria(viewer, filters)
        criteria.excluded = await self._exclusion_set(viewer.id, db_session)
        criteria.excluded.add(viewer.id)

        pool = await self.profile_store.query_profiles(
            db_session,
            exclude_ids=criteria.excluded,
            genders=viewer.sought_genders,
            denominations=criteria.denominations,
        )

        today = today or date.today()
        ranked = [
            Candidate(profile=candidate, score=compatibility_score(viewer, candidate, today))
            for candidate in pool
            if self._is_eligible(viewer, candidate, criteria, today)
        ]
        ranked.sort(key=lambda c: (-c.score, str(c.profile.id)))

        if filters.limit is not None:
            ranked = ranked[: filters.limit]

        log.info(
            "candidates_ranked",
            pool_size=len(pool),
            returned=len(ranked),
            excluded=len(criteria.excluded) - 1,
            location_filter=criteria.origin is not None,
        )
        return ranked

    async def score_pair(
        self,
        user_a_id: uuid.UUID,
        user_b_id: uuid.UUID,
        db_session: AsyncSession,
        today: date | None = None,
    ) -> dict[str, Any]:
        """Score and per-factor breakdown for two stored profiles."""
        profile_a = await self.profile_store.get_profile(user_a_id, db_session)
        profile_b = await self.profile_store.get_profile(user_b_id, db_session)

        breakdown = score_breakdown(profile_a, profile_b, today)
        return {
            "user_a_id": profile_a.id,
            "user_b_id": profile_b.id,
            "score": compatibility_score(profile_a, profile_b, today),
            "breakdown": breakdown,
        }

    # ── Internal helpers ─────────────────────────────────────────────────

    @staticmethod
    def _resolve_criteria(viewer: Profile, filters: CandidateFilters) -> _Criteria:
        settings = get_settings()

        age_min = _first_set(filters.age_min, viewer.preferred_age_min, settings.DEFAULT_AGE_MIN)
        age_max = _first_set(filters.age_max, viewer.preferred_age_max, settings.DEFAULT_AGE_MAX)
        criteria = _Criteria(age_min=age_min, age_max=age_max)

        if filters.denominations:
            criteria.denominations = list(filters.denominations)
        else:
            must_share = _first_set(filters.must_share_denomination, viewer.must_share_denomination)
            if must_share and viewer.denomination:
                criteria.shared_denomination = viewer.denomination

        if filters.latitude is not None and filters.longitude is not None:
            criteria.origin = (filters.latitude, filters.longitude)
            criteria.radius_km = _first_set(
                filters.radius_km, viewer.preferred_radius_km, settings.DEFAULT_RADIUS_KM
            )
        elif viewer.coordinates is not None and viewer.preferred_radius_km:
            criteria.origin = viewer.coordinates
            criteria.radius_km = _first_set(filters.radius_km, viewer.preferred_radius_km)

        return criteria

    @staticmethod
    def _is_eligible(
        viewer: Profile,
        candidate: Profile,
        criteria: _Criteria,
        today: date,
    ) -> bool:
        if candidate.id in criteria.excluded or not candidate.is_active:
            return False
        if not candidate.is_fully_verified:
            return False

        # Reciprocal seeking relation
        if candidate.gender not in viewer.sought_genders:
            return False
        if viewer.gender not in candidate.sought_genders:
            return False

        if candidate.date_of_birth is None:
            return False
        age = calculate_age(candidate.date_of_birth, today)
        if not criteria.age_min <= age <= criteria.age_max:
            return False

        if criteria.denominations is not None and candidate.denomination not in criteria.denominations:
            return False
        if criteria.shared_denomination and candidate.denomination != criteria.shared_denomination:
            return False

        if criteria.origin is not None:
            return within_radius(criteria.origin, candidate.coordinates, criteria.radius_km)

        return True

    async def _exclusion_set(
        self,
        viewer_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> set[uuid.UUID]:
        with translate_store_errors("exclusion_set"):
            matched = await db_session.execute(
                select(Match.matched_user_id).where(Match.user_id == viewer_id)
            )
            blocks = await db_session.execute(
                select(Block.blocker_id, Block.blocked_id).where(
                    or_(Block.blocker_id == viewer_id, Block.blocked_id == viewer_id)
                )
            )

        excluded = set(matched.scalars().all())
        for blocker_id, blocked_id in blocks.all():
            excluded.add(blocked_id if blocker_id == viewer_id else blocker_id)
        return excluded


def _first_set(*values: Any) -> Any:
    """First argument that is not ``None``."""
    for value in values:
        if value is not None:
            return value
    return None
