"""
Covenant — Profile model (identity, faith attributes and partner preferences).
"""

import uuid
from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, Float, Index, Integer, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from covenant.database import Base, JSONList, utcnow

GENDERS: tuple[str, ...] = ("male", "female")


class Profile(Base):
    __tablename__ = "profiles"
    __table_args__ = (
        Index("ix_profiles_discovery", "is_active", "gender", "denomination"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    email: Mapped[str] = mapped_column(
        String, unique=True, index=True, nullable=False
    )
    full_name: Mapped[str] = mapped_column(String, nullable=False)
    gender: Mapped[str] = mapped_column(
        String, nullable=False, comment="male / female"
    )
    seeking_genders: Mapped[list | None] = mapped_column(
        JSONList, nullable=True, comment="Genders sought; NULL = opposite gender"
    )
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)

    # ── Faith ───────────────────────────────────────────────────────
    denomination: Mapped[str | None] = mapped_column(String, nullable=True)
    church_attendance_frequency: Mapped[str | None] = mapped_column(
        String, nullable=True
    )
    ministry_involvement: Mapped[list] = mapped_column(
        JSONList, default=list, nullable=False
    )

    # ── Personal details ────────────────────────────────────────────
    education_level: Mapped[str | None] = mapped_column(String, nullable=True)
    hobbies: Mapped[list] = mapped_column(JSONList, default=list, nullable=False)
    languages_spoken: Mapped[list] = mapped_column(
        JSONList, default=list, nullable=False
    )

    # ── Partner preferences ─────────────────────────────────────────
    preferred_age_min: Mapped[int | None] = mapped_column(Integer, nullable=True)
    preferred_age_max: Mapped[int | None] = mapped_column(Integer, nullable=True)
    preferred_radius_km: Mapped[float | None] = mapped_column(Float, nullable=True)
    preferred_denominations: Mapped[list] = mapped_column(
        JSONList, default=list, nullable=False
    )
    must_share_denomination: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )

    # ── Verification & status ───────────────────────────────────────
    is_verified: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )
    is_faith_verified: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )
    is_marriage_intent_verified: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default="true", nullable=False
    )
    onboarding_completed: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=utcnow, nullable=True
    )

    @property
    def coordinates(self) -> tuple[float, float] | None:
        if self.latitude is None or self.longitude is None:
            return None
        return (self.latitude, self.longitude)

    @property
    def sought_genders(self) -> set[str]:
        """Genders this profile is open to; the opposite one unless set."""
        if self.seeking_genders:
            return set(self.seeking_genders)
        return {g for g in GENDERS if g != self.gender}

    @property
    def is_fully_verified(self) -> bool:
        return bool(
            self.is_verified
            and self.is_faith_verified
            and self.is_marriage_intent_verified
        )

    def __repr__(self) -> str:
        return f"<Profile {self.email!r} id={self.id}>"
