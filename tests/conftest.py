"""Shared pytest fixtures for Covenant tests."""
import uuid
from datetime import date
from types import SimpleNamespace

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import covenant.models  # noqa: F401  (registers every table on Base.metadata)
from covenant.database import Base
from covenant.models.profile import Profile

# Fixed reference date so ages never drift with the calendar.
TODAY = date(2026, 6, 1)


def dob_for_age(age: int, today: date = TODAY) -> date:
    """A 1 January birthday, so the age is exact on any later day of the year."""
    return date(today.year - age, 1, 1)


def profile_attrs(**overrides):
    """Scorer-shaped stand-in with every optional attribute unset."""
    attrs = {
        "id": uuid.uuid4(),
        "gender": "male",
        "seeking_genders": None,
        "date_of_birth": None,
        "denomination": None,
        "church_attendance_frequency": None,
        "ministry_involvement": [],
        "education_level": None,
        "hobbies": [],
        "languages_spoken": [],
        "preferred_age_min": None,
        "preferred_age_max": None,
        "preferred_denominations": [],
    }
    attrs.update(overrides)
    return SimpleNamespace(**attrs)


@pytest.fixture
def today():
    return TODAY


@pytest_asyncio.fixture
async def engine():
    """In-memory SQLite shared across every session of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_profile(db):
    """Insert a verified, active profile; keyword arguments override fields.

    ``age`` is accepted as a shortcut for ``date_of_birth``.
    """
    counter = {"n": 0}

    async def _make(age: int | None = 30, **overrides) -> Profile:
        counter["n"] += 1
        data = {
            "email": f"user{counter['n']}_{uuid.uuid4().hex[:6]}@example.com",
            "full_name": f"Test User {counter['n']}",
            "gender": "male",
            "date_of_birth": dob_for_age(age) if age is not None else None,
            "is_verified": True,
            "is_faith_verified": True,
            "is_marriage_intent_verified": True,
            "is_active": True,
        }
        data.update(overrides)
        profile = Profile(**data)
        db.add(profile)
        await db.commit()
        return profile

    return _make


@pytest.fixture
def attrs():
    """Factory for scorer-shaped stand-ins; see ``profile_attrs``."""
    return profile_attrs


@pytest.fixture
def dob():
    """Birth date for a given age on the fixed test date."""
    return dob_for_age
