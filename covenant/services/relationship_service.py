"""
Covenant — Relationship Lifecycle

Owns every transition of the Match and Interest state machines:

  Match     new -> interested   (viewer sends interest)
            new -> passed       (viewer passes)
            *   -> connected    (either direction's interest accepted)
  Interest  pending -> accepted | rejected

Concurrency control lives entirely in the database:

* ``interests`` carries a unique (sender, receiver) constraint, so a racing
  duplicate send fails on insert and is reported as ``DuplicateInterest``.
* ``respond_to_interest`` flips the row with a conditional
  ``UPDATE ... WHERE status = 'pending'``; whoever updates zero rows lost.
* Match rows and the pair's Conversation are written with
  ``INSERT ... ON CONFLICT`` so repeated or racing acceptances converge.

Every public method commits its own unit of work and rolls back on any
domain error, leaving state unchanged.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from covenant.config import get_settings
from covenant.database import dialect_insert, translate_store_errors, utcnow
from covenant.errors import (
    AlreadyResolved,
    DuplicateInterest,
    InvalidParticipant,
    InvalidTarget,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from covenant.models.conversation import Conversation, pair_key
from covenant.models.match import Interest, InterestStatus, Match, MatchStatus
from covenant.models.profile import Profile
from covenant.models.safety import Block, ProfileView, Report
from covenant.services.compatibility import compatibility_score
from covenant.services.profile_store import ProfileStore

logger = structlog.get_logger("covenant.relationship_service")

INTEREST_DIRECTIONS = ("received", "sent")


@dataclass
class InterestResponse:
    interest: Interest
    conversation_id: uuid.UUID | None = None


class RelationshipService:
    """Interest, pass, view, block and report operations."""

    def __init__(self, profile_store: ProfileStore | None = None) -> None:
        self.profile_store = profile_store or ProfileStore()

    # ── Interests ─────────────────────────────────────────────────────────

    async def send_interest(
        self,
        sender_id: uuid.UUID,
        receiver_id: uuid.UUID,
        db_session: AsyncSession,
        message: str | None = None,
    ) -> Interest:
        """Record a pending interest from ``sender_id`` to ``receiver_id``.

        The sender's Match row moves to ``interested`` (created if absent)
        in the same transaction.

        Raises
        ------
        InvalidTarget
            Self-targeting, inactive receiver, receiver not sought by the
            sender, a block between the pair, or a sender Match row that is
            already ``passed`` or ``connected``.
        NotFound
            Either profile does not exist.
        DuplicateInterest
            An interest for this ordered pair already exists.
        """
        log = logger.bind(sender_id=str(sender_id), receiver_id=str(receiver_id))

        if sender_id == receiver_id:
            raise InvalidTarget("Cannot send interest to yourself.")

        message = (message or "").strip() or None
        max_length = get_settings().INTEREST_MESSAGE_MAX_LENGTH
        if message is not None and len(message) > max_length:
            raise ValidationError(f"Interest message exceeds {max_length} characters.")

        sender = await self.profile_store.get_profile(sender_id, db_session)
        receiver = await self.profile_store.get_profile(receiver_id, db_session)

        if not receiver.is_active:
            raise InvalidTarget("Receiver profile is not active.")
        if not receiver.is_fully_verified:
            raise InvalidTarget("Receiver profile is not fully verified.")
        if receiver.gender not in sender.sought_genders:
            raise InvalidTarget("Receiver is outside the sender's seeking preference.")
        if sender.gender not in receiver.sought_genders:
            raise InvalidTarget("Sender is outside the receiver's seeking preference.")
        if await self._is_blocked(sender_id, receiver_id, db_session):
            raise InvalidTarget("Interest is not allowed between these profiles.")

        existing_match = await self._get_match(sender_id, receiver_id, db_session)
        if existing_match is not None and existing_match.status in (
            MatchStatus.PASSED,
            MatchStatus.CONNECTED,
        ):
            raise InvalidTarget(
                f"Match is already {existing_match.status}.",
                status=existing_match.status,
            )

        if await self._find_interest(sender_id, receiver_id, db_session) is not None:
            raise DuplicateInterest("Interest already sent to this profile.")

        interest = Interest(
            sender_id=sender_id,
            receiver_id=receiver_id,
            status=InterestStatus.PENDING,
            message=message,
        )
        db_session.add(interest)
        try:
            with translate_store_errors("send_interest"):
                await db_session.flush()
        except IntegrityError as exc:
            await db_session.rollback()
            log.info("send_interest_lost_race")
            raise DuplicateInterest("Interest already sent to this profile.") from exc

        with translate_store_errors("send_interest"):
            await self._upsert_match(
                db_session,
                sender,
                receiver,
                MatchStatus.INTERESTED,
                only_from=MatchStatus.NEW,
            )
            await db_session.commit()

        log.info("interest_sent", interest_id=str(interest.id))
        return interest

    async def respond_to_interest(
        self,
        interest_id: uuid.UUID,
        accept: bool,
        db_session: AsyncSession,
        responder_id: uuid.UUID | None = None,
    ) -> InterestResponse:
        """Accept or reject a pending interest.

        Parameters
        ----------
        interest_id:
            Interest to resolve.
        accept:
            ``True`` to accept, ``False`` to reject.
        db_session:
            Active async session.
        responder_id:
            When given, must be the interest's receiver.

        Returns
        -------
        InterestResponse
            The resolved interest and, on acceptance, the id of the pair's
            conversation.
        """
        log = logger.bind(interest_id=str(interest_id), accept=accept)

        with translate_store_errors("respond_to_interest"):
            interest = await db_session.get(Interest, interest_id)
        if interest is None:
            raise NotFound(f"Interest {interest_id} not found.")
        if responder_id is not None and responder_id != interest.receiver_id:
            raise InvalidParticipant("Only the receiver can respond to an interest.")

        new_status = InterestStatus.ACCEPTED if accept else InterestStatus.REJECTED

        with translate_store_errors("respond_to_interest"):
            result = await db_session.execute(
                update(Interest)
                .where(
                    Interest.id == interest_id,
                    Interest.status == InterestStatus.PENDING,
                )
                .values(status=new_status, responded_at=utcnow())
                .execution_options(synchronize_session=False)
            )

        if result.rowcount == 0:
            await db_session.rollback()
            log.info("interest_already_resolved")
            raise AlreadyResolved("Interest has already been responded to.")

        conversation_id = None
        with translate_store_errors("respond_to_interest"):
            if accept:
                sender = await self.profile_store.get_profile(interest.sender_id, db_session)
                receiver = await self.profile_store.get_profile(interest.receiver_id, db_session)
                await self._connect_pair(db_session, sender, receiver)
                conversation = await self._ensure_conversation(
                    interest.sender_id, interest.receiver_id, db_session
                )
                conversation_id = conversation.id

            await db_session.commit()
            interest = await self._reload(Interest, interest_id, db_session)

        log.info(
            "interest_resolved",
            status=new_status,
            conversation_id=str(conversation_id) if conversation_id else None,
        )
        return InterestResponse(interest=interest, conversation_id=conversation_id)

    async def list_interests(
        self,
        user_id: uuid.UUID,
        db_session: AsyncSession,
        direction: str = "received",
        status: str | None = None,
    ) -> list[Interest]:
        if direction not in INTEREST_DIRECTIONS:
            raise ValidationError(f"direction must be one of {INTEREST_DIRECTIONS}")
        if status is not None and status not in InterestStatus.ALL:
            raise ValidationError(f"status must be one of {InterestStatus.ALL}")

        column = Interest.receiver_id if direction == "received" else Interest.sender_id
        stmt = select(Interest).where(column == user_id)
        if status is not None:
            stmt = stmt.where(Interest.status == status)
        stmt = stmt.order_by(Interest.sent_at.desc())

        with translate_store_errors("list_interests"):
            result = await db_session.execute(stmt)
        return list(result.scalars().all())

    # ── Matches ───────────────────────────────────────────────────────────

    async def pass_match(
        self,
        viewer_id: uuid.UUID,
        candidate_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> Match:
        """Mark ``candidate_id`` as passed for ``viewer_id`` only.

        Idempotent on an already-passed row.  The reverse row is never
        touched, so the candidate may still send interest to the viewer.
        """
        log = logger.bind(viewer_id=str(viewer_id), candidate_id=str(candidate_id))

        if viewer_id == candidate_id:
            raise InvalidTarget("Cannot pass on yourself.")

        viewer = await self.profile_store.get_profile(viewer_id, db_session)
        candidate = await self.profile_store.get_profile(candidate_id, db_session)

        existing = await self._get_match(viewer_id, candidate_id, db_session)
        if existing is not None:
            if existing.status == MatchStatus.PASSED:
                return existing
            if existing.status != MatchStatus.NEW:
                raise InvalidTransition(
                    f"Cannot pass a match that is {existing.status}.",
                    status=existing.status,
                )

        with translate_store_errors("pass_match"):
            await self._upsert_match(
                db_session,
                viewer,
                candidate,
                MatchStatus.PASSED,
                only_from=MatchStatus.NEW,
            )
            match = await self._get_match(viewer_id, candidate_id, db_session, refresh=True)

        if match is None or match.status != MatchStatus.PASSED:
            # Another request moved the row out of ``new`` first.
            await db_session.rollback()
            raise InvalidTransition("Match changed state before it could be passed.")

        with translate_store_errors("pass_match"):
            await db_session.commit()

        log.info("match_passed", match_id=str(match.id))
        return match

    async def record_profile_view(
        self,
        viewer_id: uuid.UUID,
        viewed_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> ProfileView:
        """Log a profile view and materialise the viewer's Match row as ``new``."""
        if viewer_id == viewed_id:
            raise InvalidTarget("Viewing your own profile is not recorded.")

        viewer = await self.profile_store.get_profile(viewer_id, db_session)
        viewed = await self.profile_store.get_profile(viewed_id, db_session)

        view = ProfileView(viewer_id=viewer_id, viewed_id=viewed_id)
        db_session.add(view)

        with translate_store_errors("record_profile_view"):
            await db_session.flush()
            await self._insert_match_if_absent(db_session, viewer, viewed)
            await db_session.commit()

        logger.info(
            "profile_viewed",
            viewer_id=str(viewer_id),
            viewed_id=str(viewed_id),
        )
        return view

    async def get_matches(
        self,
        user_id: uuid.UUID,
        db_session: AsyncSession,
        status: str | None = None,
    ) -> list[Match]:
        """The user's Match rows, newest first, optionally by status."""
        if status is not None and status not in MatchStatus.ALL:
            raise ValidationError(f"status must be one of {MatchStatus.ALL}")

        stmt = select(Match).where(Match.user_id == user_id)
        if status is not None:
            stmt = stmt.where(Match.status == status)
        stmt = stmt.order_by(Match.created_at.desc())

        with translate_store_errors("get_matches"):
            result = await db_session.execute(stmt)
        return list(result.scalars().all())

    # ── Safety ────────────────────────────────────────────────────────────

    async def block_user(
        self,
        blocker_id: uuid.UUID,
        blocked_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> Block:
        """Block ``blocked_id``; blocking twice returns the existing row."""
        if blocker_id == blocked_id:
            raise InvalidTarget("Cannot block yourself.")

        await self.profile_store.get_profile(blocker_id, db_session)
        await self.profile_store.get_profile(blocked_id, db_session)

        stmt = (
            dialect_insert(db_session, Block)
            .values(id=uuid.uuid4(), blocker_id=blocker_id, blocked_id=blocked_id, created_at=utcnow())
            .on_conflict_do_nothing(index_elements=["blocker_id", "blocked_id"])
        )
        with translate_store_errors("block_user"):
            await db_session.execute(stmt)
            result = await db_session.execute(
                select(Block).where(
                    Block.blocker_id == blocker_id,
                    Block.blocked_id == blocked_id,
                )
            )
            block = result.scalar_one()
            await db_session.commit()

        logger.info("user_blocked", blocker_id=str(blocker_id), blocked_id=str(blocked_id))
        return block

    async def report_user(
        self,
        reporter_id: uuid.UUID,
        reported_id: uuid.UUID,
        reason: str,
        db_session: AsyncSession,
        description: str | None = None,
    ) -> Report:
        if reporter_id == reported_id:
            raise InvalidTarget("Cannot report yourself.")
        if not reason or not reason.strip():
            raise ValidationError("A report needs a reason.")

        await self.profile_store.get_profile(reporter_id, db_session)
        await self.profile_store.get_profile(reported_id, db_session)

        report = Report(
            reporter_id=reporter_id,
            reported_id=reported_id,
            reason=reason.strip(),
            description=description,
        )
        db_session.add(report)
        with translate_store_errors("report_user"):
            await db_session.commit()

        logger.warning(
            "user_reported",
            reporter_id=str(reporter_id),
            reported_id=str(reported_id),
            reason=report.reason,
        )
        return report

    # ── Internal helpers ─────────────────────────────────────────────────

    async def _upsert_match(
        self,
        db_session: AsyncSession,
        user: Profile,
        other: Profile,
        status: str,
        only_from: str | None = None,
    ) -> None:
        """Create Match(user -> other) with ``status`` or move the existing
        row to it.  With ``only_from`` an existing row only moves when it is
        currently in that state."""
        now = utcnow()
        stmt = dialect_insert(db_session, Match).values(
            id=uuid.uuid4(),
            user_id=user.id,
            matched_user_id=other.id,
            score=compatibility_score(user, other),
            status=status,
            created_at=now,
        )
        conflict_kwargs: dict[str, Any] = {
            "index_elements": ["user_id", "matched_user_id"],
            "set_": {"status": status, "updated_at": now},
        }
        if only_from is not None:
            conflict_kwargs["where"] = Match.status == only_from
        await db_session.execute(stmt.on_conflict_do_update(**conflict_kwargs))

    async def _connect_pair(
        self,
        db_session: AsyncSession,
        user_a: Profile,
        user_b: Profile,
    ) -> None:
        """Move both directional rows to ``connected``.

        Rows are written in ascending id order whichever side accepted, so
        two acceptances racing on the same pair lock them in the same order.
        """
        first, second = sorted((user_a, user_b), key=lambda p: str(p.id))
        await self._upsert_match(db_session, first, second, MatchStatus.CONNECTED)
        await self._upsert_match(db_session, second, first, MatchStatus.CONNECTED)

    async def _insert_match_if_absent(
        self,
        db_session: AsyncSession,
        user: Profile,
        other: Profile,
    ) -> None:
        stmt = (
            dialect_insert(db_session, Match)
            .values(
                id=uuid.uuid4(),
                user_id=user.id,
                matched_user_id=other.id,
                score=compatibility_score(user, other),
                status=MatchStatus.NEW,
                created_at=utcnow(),
            )
            .on_conflict_do_nothing(index_elements=["user_id", "matched_user_id"])
        )
        await db_session.execute(stmt)

    async def _ensure_conversation(
        self,
        sender_id: uuid.UUID,
        receiver_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> Conversation:
        key = pair_key(sender_id, receiver_id)
        stmt = (
            dialect_insert(db_session, Conversation)
            .values(
                id=uuid.uuid4(),
                participant_1_id=sender_id,
                participant_2_id=receiver_id,
                pair_key=key,
                created_at=utcnow(),
            )
            .on_conflict_do_nothing(index_elements=["pair_key"])
        )
        await db_session.execute(stmt)
        result = await db_session.execute(
            select(Conversation).where(Conversation.pair_key == key)
        )
        return result.scalar_one()

    async def _get_match(
        self,
        user_id: uuid.UUID,
        matched_user_id: uuid.UUID,
        db_session: AsyncSession,
        refresh: bool = False,
    ) -> Match | None:
        stmt = select(Match).where(
            Match.user_id == user_id,
            Match.matched_user_id == matched_user_id,
        )
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        with translate_store_errors("get_match"):
            result = await db_session.execute(stmt)
        return result.scalar_one_or_none()

    async def _find_interest(
        self,
        sender_id: uuid.UUID,
        receiver_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> Interest | None:
        with translate_store_errors("find_interest"):
            result = await db_session.execute(
                select(Interest).where(
                    Interest.sender_id == sender_id,
                    Interest.receiver_id == receiver_id,
                )
            )
        return result.scalar_one_or_none()

    async def _is_blocked(
        self,
        user_a_id: uuid.UUID,
        user_b_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> bool:
        with translate_store_errors("is_blocked"):
            result = await db_session.execute(
                select(Block.id)
                .where(
                    or_(
                        (Block.blocker_id == user_a_id) & (Block.blocked_id == user_b_id),
                        (Block.blocker_id == user_b_id) & (Block.blocked_id == user_a_id),
                    )
                )
                .limit(1)
            )
        return result.first() is not None

    @staticmethod
    async def _reload(model: Any, pk: Any, db_session: AsyncSession) -> Any:
        return await db_session.get(model, pk, populate_existing=True)
