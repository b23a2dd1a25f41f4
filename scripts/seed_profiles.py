"""Seed a handful of verified demo profiles for local development."""
import asyncio
import sys
from datetime import date

sys.path.insert(0, ".")

from sqlalchemy import select

from covenant.database import get_session_factory
from covenant.models.profile import Profile


_VERIFIED = {
    "is_verified": True,
    "is_faith_verified": True,
    "is_marriage_intent_verified": True,
    "onboarding_completed": True,
}

DEMO_PROFILES = [
    {
        "email": "david@example.com",
        "full_name": "David Okafor",
        "gender": "male",
        "date_of_birth": date(1994, 3, 12),
        "latitude": 6.5244,
        "longitude": 3.3792,
        "denomination": "Baptist",
        "church_attendance_frequency": "weekly",
        "ministry_involvement": ["choir", "youth"],
        "education_level": "bachelors",
        "hobbies": ["reading", "football"],
        "languages_spoken": ["English", "Yoruba"],
        "preferred_age_min": 24,
        "preferred_age_max": 34,
        "preferred_radius_km": 100,
        "preferred_denominations": ["Baptist", "Methodist"],
    },
    {
        "email": "grace@example.com",
        "full_name": "Grace Adeyemi",
        "gender": "female",
        "date_of_birth": date(1997, 8, 2),
        "latitude": 6.4654,
        "longitude": 3.4064,
        "denomination": "Baptist",
        "church_attendance_frequency": "weekly",
        "ministry_involvement": ["choir"],
        "education_level": "masters",
        "hobbies": ["reading", "cooking"],
        "languages_spoken": ["English"],
        "preferred_age_min": 27,
        "preferred_age_max": 38,
        "preferred_denominations": ["Baptist"],
    },
    {
        "email": "ruth@example.com",
        "full_name": "Ruth Mensah",
        "gender": "female",
        "date_of_birth": date(1995, 11, 20),
        "latitude": 5.6037,
        "longitude": -0.1870,
        "denomination": "Methodist",
        "church_attendance_frequency": "monthly",
        "ministry_involvement": ["ushering"],
        "education_level": "bachelors",
        "hobbies": ["travel"],
        "languages_spoken": ["English", "Twi"],
        "preferred_age_min": 26,
        "preferred_age_max": 36,
    },
]


async def seed():
    async with get_session_factory()() as session:
        for data in DEMO_PROFILES:
            existing = await session.execute(
                select(Profile).where(Profile.email == data["email"])
            )
            if existing.scalar_one_or_none() is None:
                session.add(Profile(**data, **_VERIFIED))
                print(f"  Seeded profile {data['email']}")
            else:
                print(f"  Profile {data['email']} already exists, skipping.")
        await session.commit()
    print("Done seeding profiles.")


if __name__ == "__main__":
    asyncio.run(seed())
