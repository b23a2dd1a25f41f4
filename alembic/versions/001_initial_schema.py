"""Initial schema — all 8 Covenant tables.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _profile_fk(name: str, index: bool = False) -> sa.Column:
    return sa.Column(
        name,
        postgresql.UUID(as_uuid=True),
        sa.ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=index,
    )


def _created_at(name: str = "created_at") -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def upgrade() -> None:
    # ── 1. profiles ─────────────────────────────────────────────────
    op.create_table(
        "profiles",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String, unique=True, index=True, nullable=False),
        sa.Column("full_name", sa.String, nullable=False),
        sa.Column("gender", sa.String, nullable=False, comment="male / female"),
        sa.Column(
            "seeking_genders",
            postgresql.JSONB,
            nullable=True,
            comment="Genders sought; NULL = opposite gender",
        ),
        sa.Column("date_of_birth", sa.Date, nullable=True),
        sa.Column("latitude", sa.Float, nullable=True),
        sa.Column("longitude", sa.Float, nullable=True),
        sa.Column("denomination", sa.String, nullable=True),
        sa.Column("church_attendance_frequency", sa.String, nullable=True),
        sa.Column("ministry_involvement", postgresql.JSONB, nullable=False),
        sa.Column("education_level", sa.String, nullable=True),
        sa.Column("hobbies", postgresql.JSONB, nullable=False),
        sa.Column("languages_spoken", postgresql.JSONB, nullable=False),
        sa.Column("preferred_age_min", sa.Integer, nullable=True),
        sa.Column("preferred_age_max", sa.Integer, nullable=True),
        sa.Column("preferred_radius_km", sa.Float, nullable=True),
        sa.Column("preferred_denominations", postgresql.JSONB, nullable=False),
        sa.Column(
            "must_share_denomination", sa.Boolean, server_default="false", nullable=False
        ),
        sa.Column("is_verified", sa.Boolean, server_default="false", nullable=False),
        sa.Column("is_faith_verified", sa.Boolean, server_default="false", nullable=False),
        sa.Column(
            "is_marriage_intent_verified", sa.Boolean, server_default="false", nullable=False
        ),
        sa.Column("is_active", sa.Boolean, server_default="true", nullable=False),
        sa.Column(
            "onboarding_completed", sa.Boolean, server_default="false", nullable=False
        ),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_profiles_discovery",
        "profiles",
        ["is_active", "gender", "denomination"],
    )

    # ── 2. matches (directional) ────────────────────────────────────
    op.create_table(
        "matches",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _profile_fk("user_id", index=True),
        _profile_fk("matched_user_id"),
        sa.Column("score", sa.Integer, nullable=False, comment="0-100"),
        sa.Column(
            "status",
            sa.String,
            nullable=False,
            comment="new / interested / passed / connected",
        ),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("user_id", "matched_user_id", name="uq_match_direction"),
    )

    # ── 3. interests ────────────────────────────────────────────────
    op.create_table(
        "interests",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _profile_fk("sender_id", index=True),
        _profile_fk("receiver_id", index=True),
        sa.Column(
            "status",
            sa.String,
            nullable=False,
            comment="pending / accepted / rejected",
        ),
        sa.Column("message", sa.String, nullable=True),
        _created_at("sent_at"),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("sender_id", "receiver_id", name="uq_interest_pair"),
    )

    # ── 4. conversations ────────────────────────────────────────────
    op.create_table(
        "conversations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _profile_fk("participant_1_id", index=True),
        _profile_fk("participant_2_id", index=True),
        sa.Column(
            "pair_key",
            sa.String,
            unique=True,
            nullable=False,
            comment="sorted '<uuid>:<uuid>'",
        ),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_message_preview", sa.String, nullable=True),
        _created_at(),
    )

    # ── 5. messages ─────────────────────────────────────────────────
    op.create_table(
        "messages",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "conversation_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("conversations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        _profile_fk("sender_id"),
        _profile_fk("receiver_id"),
        sa.Column("text", sa.Text, nullable=True),
        sa.Column("message_type", sa.String, nullable=False, comment="text / image"),
        sa.Column("image_url", sa.String, nullable=True),
        sa.Column("is_read", sa.Boolean, server_default="false", nullable=False),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_index(
        "ix_messages_conversation_order",
        "messages",
        ["conversation_id", "created_at", "id"],
    )
    op.create_index(
        "ix_messages_unread",
        "messages",
        ["receiver_id", "is_read"],
    )

    # ── 6. blocks ───────────────────────────────────────────────────
    op.create_table(
        "blocks",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _profile_fk("blocker_id", index=True),
        _profile_fk("blocked_id", index=True),
        _created_at(),
        sa.UniqueConstraint("blocker_id", "blocked_id", name="uq_block_pair"),
    )

    # ── 7. reports ──────────────────────────────────────────────────
    op.create_table(
        "reports",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _profile_fk("reporter_id"),
        _profile_fk("reported_id", index=True),
        sa.Column("reason", sa.String, nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("status", sa.String, server_default="pending", nullable=False),
        _created_at(),
    )

    # ── 8. profile_views ────────────────────────────────────────────
    op.create_table(
        "profile_views",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _profile_fk("viewer_id"),
        _profile_fk("viewed_id", index=True),
        _created_at("viewed_at"),
    )


def downgrade() -> None:
    # Drop in reverse order (children / dependents first).
    op.drop_table("profile_views")
    op.drop_table("reports")
    op.drop_table("blocks")

    op.drop_index("ix_messages_unread", table_name="messages")
    op.drop_index("ix_messages_conversation_order", table_name="messages")
    op.drop_table("messages")

    op.drop_table("conversations")
    op.drop_table("interests")
    op.drop_table("matches")

    op.drop_index("ix_profiles_discovery", table_name="profiles")
    op.drop_table("profiles")
