"""
Covenant — Deterministic compatibility scorer.

Maps a pair of profiles to an integer in [0, 100].  Seven factors, each
capped, whose maxima sum to exactly 100:

  Denomination          30   equal -> 30, cross-listed in preferences -> 15
  Church attendance     15   equal and both present
  Ministry overlap      10   2 points per shared tag
  Education level       10   equal and both present
  Hobbies overlap       10   2 points per shared tag
  Languages overlap     10   3 points per shared language
  Reciprocal age fit    15   each age inside the other's preferred range

The scorer is total: any missing optional attribute simply contributes 0.
It works on ``Profile`` rows as well as any object exposing the same
attribute names.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Iterable

import structlog

logger = structlog.get_logger("covenant.compatibility")

# ──────────────────────────────────────────────────────────────────────────────
# Weights
# ──────────────────────────────────────────────────────────────────────────────

DENOMINATION_MATCH_POINTS = 30
DENOMINATION_PREFERRED_POINTS = 15
ATTENDANCE_POINTS = 15
MINISTRY_POINTS_PER_TAG, MINISTRY_CAP = 2, 10
EDUCATION_POINTS = 10
HOBBY_POINTS_PER_TAG, HOBBY_CAP = 2, 10
LANGUAGE_POINTS_PER_TAG, LANGUAGE_CAP = 3, 10
AGE_FIT_POINTS = 15

MAX_SCORE = 100

# Bounds assumed when a profile has not stated an age preference.
_OPEN_AGE_MIN = 0
_OPEN_AGE_MAX = 100


def calculate_age(date_of_birth: date, today: date | None = None) -> int:
    """Whole years since ``date_of_birth``, one less if the birthday has not
    come round yet this year."""
    today = today or date.today()
    age = today.year - date_of_birth.year
    if (today.month, today.day) < (date_of_birth.month, date_of_birth.day):
        age -= 1
    return age


def _tags(values: Iterable[str] | None) -> set[str]:
    return {v for v in (values or []) if v}


def _overlap_points(a: Iterable[str] | None, b: Iterable[str] | None, per_tag: int, cap: int) -> int:
    return min(len(_tags(a) & _tags(b)) * per_tag, cap)


def _same_value(a: str | None, b: str | None) -> bool:
    return bool(a) and bool(b) and a == b


def _denomination_points(profile_a: Any, profile_b: Any) -> int:
    denom_a = profile_a.denomination
    denom_b = profile_b.denomination

    if _same_value(denom_a, denom_b):
        return DENOMINATION_MATCH_POINTS

    if (denom_a and denom_a in _tags(profile_b.preferred_denominations)) or (
        denom_b and denom_b in _tags(profile_a.preferred_denominations)
    ):
        return DENOMINATION_PREFERRED_POINTS

    return 0


def _age_in_range(age: int, lower: int | None, upper: int | None) -> bool:
    lower = _OPEN_AGE_MIN if lower is None else lower
    upper = _OPEN_AGE_MAX if upper is None else upper
    return lower <= age <= upper


def _age_fit_points(profile_a: Any, profile_b: Any, today: date | None) -> int:
    if profile_a.date_of_birth is None or profile_b.date_of_birth is None:
        return 0

    age_a = calculate_age(profile_a.date_of_birth, today)
    age_b = calculate_age(profile_b.date_of_birth, today)

    a_fits_b = _age_in_range(age_a, profile_b.preferred_age_min, profile_b.preferred_age_max)
    b_fits_a = _age_in_range(age_b, profile_a.preferred_age_min, profile_a.preferred_age_max)

    return AGE_FIT_POINTS if a_fits_b and b_fits_a else 0


def score_breakdown(profile_a: Any, profile_b: Any, today: date | None = None) -> dict[str, int]:
    """Per-factor points for the pair, keyed by factor name."""
    return {
        "denomination": _denomination_points(profile_a, profile_b),
        "church_attendance": (
            ATTENDANCE_POINTS
            if _same_value(
                profile_a.church_attendance_frequency,
                profile_b.church_attendance_frequency,
            )
            else 0
        ),
        "ministry": _overlap_points(
            profile_a.ministry_involvement,
            profile_b.ministry_involvement,
            MINISTRY_POINTS_PER_TAG,
            MINISTRY_CAP,
        ),
        "education": (
            EDUCATION_POINTS
            if _same_value(profile_a.education_level, profile_b.education_level)
            else 0
        ),
        "hobbies": _overlap_points(
            profile_a.hobbies, profile_b.hobbies, HOBBY_POINTS_PER_TAG, HOBBY_CAP
        ),
        "languages": _overlap_points(
            profile_a.languages_spoken,
            profile_b.languages_spoken,
            LANGUAGE_POINTS_PER_TAG,
            LANGUAGE_CAP,
        ),
        "age_fit": _age_fit_points(profile_a, profile_b, today),
    }


def compatibility_score(profile_a: Any, profile_b: Any, today: date | None = None) -> int:
    """Integer compatibility in [0, 100] for the pair."""
    breakdown = score_breakdown(profile_a, profile_b, today)
    score = max(0, min(MAX_SCORE, sum(breakdown.values())))

    logger.debug(
        "compatibility_scored",
        profile_a=str(getattr(profile_a, "id", "")),
        profile_b=str(getattr(profile_b, "id", "")),
        score=score,
        **breakdown,
    )
    return score
