"""
Covenant — Main API Router

Aggregates all sub-routers under a single prefix so that ``covenant.main``
can mount the entire API surface with one ``include_router`` call.
"""

from fastapi import APIRouter

from covenant.api import conversations, interests, matching, profiles

router = APIRouter()

router.include_router(profiles.router, prefix="/profiles", tags=["Profiles"])
router.include_router(matching.router, prefix="/matching", tags=["Matching"])
router.include_router(interests.router, prefix="/interests", tags=["Interests"])
router.include_router(conversations.router, prefix="/conversations", tags=["Conversations"])
