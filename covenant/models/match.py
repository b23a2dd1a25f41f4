"""
Covenant — Match and Interest models.

``Match`` is directional: (user_id -> matched_user_id) and its reverse are
separate rows, kept consistent when a pair becomes connected.  ``Interest``
is the explicit request one user sends another.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from covenant.database import Base, utcnow


class MatchStatus:
    NEW = "new"
    INTERESTED = "interested"
    PASSED = "passed"
    CONNECTED = "connected"

    ALL = (NEW, INTERESTED, PASSED, CONNECTED)


class InterestStatus:
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"

    ALL = (PENDING, ACCEPTED, REJECTED)


class Match(Base):
    __tablename__ = "matches"
    __table_args__ = (
        UniqueConstraint("user_id", "matched_user_id", name="uq_match_direction"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), index=True, nullable=False
    )
    matched_user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    score: Mapped[int] = mapped_column(Integer, nullable=False, comment="0-100")
    status: Mapped[str] = mapped_column(
        String,
        nullable=False,
        default=MatchStatus.NEW,
        comment="new / interested / passed / connected",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=utcnow, nullable=True
    )

    # ── Relationships ──────────────────────────────────────────────
    matched_user: Mapped["Profile"] = relationship(
        "Profile", foreign_keys=[matched_user_id], lazy="selectin"
    )

    def __repr__(self) -> str:
        return (
            f"<Match {self.user_id} -> {self.matched_user_id} "
            f"status={self.status!r} score={self.score}>"
        )


class Interest(Base):
    __tablename__ = "interests"
    __table_args__ = (
        UniqueConstraint("sender_id", "receiver_id", name="uq_interest_pair"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    sender_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), index=True, nullable=False
    )
    receiver_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), index=True, nullable=False
    )
    status: Mapped[str] = mapped_column(
        String,
        nullable=False,
        default=InterestStatus.PENDING,
        comment="pending / accepted / rejected",
    )
    message: Mapped[str | None] = mapped_column(String, nullable=True)
    sent_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    responded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<Interest {self.sender_id} -> {self.receiver_id} "
            f"status={self.status!r}>"
        )
