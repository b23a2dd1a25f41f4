"""Tests for RelationshipService — interest, acceptance, pass and safety flows."""
import asyncio
import uuid
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from covenant.database import Base
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
from covenant.services.relationship_service import RelationshipService


@pytest.fixture
def service():
    return RelationshipService()


@pytest.fixture
def couple(make_profile):
    """A compatible male/female pair."""

    async def _couple():
        sender = await make_profile(denomination="Baptist")
        receiver = await make_profile(gender="female", denomination="Baptist")
        return sender, receiver

    return _couple


async def _count(db, model, *where):
    result = await db.execute(select(func.count()).select_from(model).where(*where))
    return result.scalar_one()


async def _match(db, user_id, matched_user_id):
    result = await db.execute(
        select(Match)
        .where(Match.user_id == user_id, Match.matched_user_id == matched_user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


class TestSendInterest:

    @pytest.mark.asyncio
    async def test_creates_pending_interest_and_interested_match(self, service, couple, db):
        sender, receiver = await couple()

        interest = await service.send_interest(sender.id, receiver.id, db, message="  Hello  ")

        assert interest.status == InterestStatus.PENDING
        assert interest.message == "Hello"
        match = await _match(db, sender.id, receiver.id)
        assert match.status == MatchStatus.INTERESTED
        assert match.score == 30 + 15  # shared denomination, open age ranges
        assert await _match(db, receiver.id, sender.id) is None

    @pytest.mark.asyncio
    async def test_moves_existing_new_match_to_interested(self, service, couple, db):
        sender, receiver = await couple()
        await service.record_profile_view(sender.id, receiver.id, db)

        await service.send_interest(sender.id, receiver.id, db)

        assert (await _match(db, sender.id, receiver.id)).status == MatchStatus.INTERESTED
        assert await _count(db, Match) == 1

    @pytest.mark.asyncio
    async def test_second_send_is_duplicate(self, service, couple, db):
        sender, receiver = await couple()
        await service.send_interest(sender.id, receiver.id, db)

        with pytest.raises(DuplicateInterest):
            await service.send_interest(sender.id, receiver.id, db)

        assert await _count(db, Interest) == 1

    @pytest.mark.asyncio
    async def test_insert_race_reports_duplicate(self, service, couple, db, session_factory):
        """A sender that passes the pre-check but loses on the unique
        constraint still gets DuplicateInterest and leaves one row."""
        sender, receiver = await couple()
        async with session_factory() as other:
            await service.send_interest(sender.id, receiver.id, other)

        with patch.object(service, "_find_interest", AsyncMock(return_value=None)):
            with pytest.raises(DuplicateInterest):
                await service.send_interest(sender.id, receiver.id, db)

        assert await _count(db, Interest) == 1

    @pytest.mark.asyncio
    async def test_self_target(self, service, make_profile, db):
        me = await make_profile()
        with pytest.raises(InvalidTarget):
            await service.send_interest(me.id, me.id, db)

    @pytest.mark.asyncio
    async def test_missing_profile(self, service, make_profile, db):
        me = await make_profile()
        with pytest.raises(NotFound):
            await service.send_interest(me.id, uuid.uuid4(), db)

    @pytest.mark.asyncio
    async def test_inactive_receiver(self, service, make_profile, db):
        sender = await make_profile()
        receiver = await make_profile(gender="female", is_active=False)
        with pytest.raises(InvalidTarget):
            await service.send_interest(sender.id, receiver.id, db)

    @pytest.mark.asyncio
    async def test_receiver_not_sought(self, service, make_profile, db):
        sender = await make_profile()
        receiver = await make_profile(gender="male")
        with pytest.raises(InvalidTarget):
            await service.send_interest(sender.id, receiver.id, db)

    @pytest.mark.asyncio
    async def test_unverified_receiver(self, service, make_profile, db):
        sender = await make_profile()
        receiver = await make_profile(gender="female", is_faith_verified=False)
        with pytest.raises(InvalidTarget):
            await service.send_interest(sender.id, receiver.id, db)
        assert await _count(db, Interest) == 0

    @pytest.mark.asyncio
    async def test_sender_not_sought_by_receiver(self, service, make_profile, db):
        sender = await make_profile(seeking_genders=["female"])
        receiver = await make_profile(gender="female", seeking_genders=["female"])
        with pytest.raises(InvalidTarget):
            await service.send_interest(sender.id, receiver.id, db)
        assert await _count(db, Interest) == 0

    @pytest.mark.asyncio
    async def test_blocked_pair(self, service, couple, db):
        sender, receiver = await couple()
        await service.block_user(receiver.id, sender.id, db)

        with pytest.raises(InvalidTarget):
            await service.send_interest(sender.id, receiver.id, db)
        assert await _count(db, Interest) == 0

    @pytest.mark.asyncio
    async def test_after_pass_is_invalid(self, service, couple, db):
        sender, receiver = await couple()
        await service.pass_match(sender.id, receiver.id, db)

        with pytest.raises(InvalidTarget):
            await service.send_interest(sender.id, receiver.id, db)

    @pytest.mark.asyncio
    async def test_message_too_long(self, service, couple, db):
        sender, receiver = await couple()
        with pytest.raises(ValidationError):
            await service.send_interest(sender.id, receiver.id, db, message="x" * 501)


class TestRespondToInterest:

    @pytest.mark.asyncio
    async def test_accept_connects_pair_and_opens_conversation(self, service, couple, db):
        sender, receiver = await couple()
        interest = await service.send_interest(sender.id, receiver.id, db)

        result = await service.respond_to_interest(interest.id, True, db, responder_id=receiver.id)

        assert result.interest.status == InterestStatus.ACCEPTED
        assert result.interest.responded_at is not None
        assert (await _match(db, sender.id, receiver.id)).status == MatchStatus.CONNECTED
        assert (await _match(db, receiver.id, sender.id)).status == MatchStatus.CONNECTED

        conversation = await db.get(Conversation, result.conversation_id)
        assert conversation.pair_key == pair_key(sender.id, receiver.id)
        assert conversation.participant_1_id == sender.id
        assert conversation.participant_2_id == receiver.id

    @pytest.mark.asyncio
    async def test_accept_twice_is_already_resolved(self, service, couple, db, session_factory):
        sender, receiver = await couple()
        interest = await service.send_interest(sender.id, receiver.id, db)
        first = await service.respond_to_interest(interest.id, True, db)

        async with session_factory() as other:
            with pytest.raises(AlreadyResolved):
                await service.respond_to_interest(interest.id, True, other)

        assert first.conversation_id is not None
        assert await _count(db, Conversation) == 1
        assert await _count(db, Match) == 2

    @pytest.mark.asyncio
    async def test_mutual_acceptance_converges_on_one_conversation(self, service, couple, db):
        """Each side sends, both accept: still one conversation."""
        a, b = await couple()
        a_to_b = await service.send_interest(a.id, b.id, db)
        b_to_a = await service.send_interest(b.id, a.id, db)

        first = await service.respond_to_interest(a_to_b.id, True, db)
        second = await service.respond_to_interest(b_to_a.id, True, db)

        assert first.conversation_id == second.conversation_id
        assert await _count(db, Conversation) == 1
        assert await _count(db, Match, Match.status == MatchStatus.CONNECTED) == 2

    @pytest.mark.asyncio
    async def test_connected_rows_written_in_id_order(self, service, couple, db):
        """Whichever side accepts, the lower id's row is written first."""
        a, b = await couple()
        a_to_b = await service.send_interest(a.id, b.id, db)
        b_to_a = await service.send_interest(b.id, a.id, db)
        low, high = sorted((a, b), key=lambda p: str(p.id))

        with patch.object(
            service, "_upsert_match", AsyncMock(wraps=service._upsert_match)
        ) as upsert:
            await service.respond_to_interest(a_to_b.id, True, db)
            await service.respond_to_interest(b_to_a.id, True, db)

        order = [
            (call.args[1].id, call.args[2].id)
            for call in upsert.await_args_list
            if call.args[3] == MatchStatus.CONNECTED
        ]
        assert order == [(low.id, high.id), (high.id, low.id)] * 2

    @pytest.mark.asyncio
    async def test_accept_overrides_receivers_pass(self, service, couple, db):
        sender, receiver = await couple()
        await service.pass_match(receiver.id, sender.id, db)
        interest = await service.send_interest(sender.id, receiver.id, db)

        await service.respond_to_interest(interest.id, True, db)

        assert (await _match(db, receiver.id, sender.id)).status == MatchStatus.CONNECTED

    @pytest.mark.asyncio
    async def test_reject_leaves_match_untouched(self, service, couple, db):
        sender, receiver = await couple()
        interest = await service.send_interest(sender.id, receiver.id, db)

        result = await service.respond_to_interest(interest.id, False, db)

        assert result.interest.status == InterestStatus.REJECTED
        assert result.conversation_id is None
        assert (await _match(db, sender.id, receiver.id)).status == MatchStatus.INTERESTED
        assert await _count(db, Conversation) == 0

    @pytest.mark.asyncio
    async def test_unknown_interest(self, service, db):
        with pytest.raises(NotFound):
            await service.respond_to_interest(uuid.uuid4(), True, db)

    @pytest.mark.asyncio
    async def test_only_receiver_may_respond(self, service, couple, db):
        sender, receiver = await couple()
        interest = await service.send_interest(sender.id, receiver.id, db)

        with pytest.raises(InvalidParticipant):
            await service.respond_to_interest(interest.id, True, db, responder_id=sender.id)

        refreshed = await db.get(Interest, interest.id, populate_existing=True)
        assert refreshed.status == InterestStatus.PENDING


class TestPassMatch:

    @pytest.mark.asyncio
    async def test_pass_is_one_directional(self, service, couple, db):
        a, b = await couple()

        await service.pass_match(a.id, b.id, db)

        assert (await _match(db, a.id, b.id)).status == MatchStatus.PASSED
        assert await _match(db, b.id, a.id) is None

        interest = await service.send_interest(b.id, a.id, db)
        assert interest.status == InterestStatus.PENDING

    @pytest.mark.asyncio
    async def test_pass_twice_is_idempotent(self, service, couple, db):
        a, b = await couple()
        first = await service.pass_match(a.id, b.id, db)
        second = await service.pass_match(a.id, b.id, db)

        assert first.id == second.id
        assert second.status == MatchStatus.PASSED

    @pytest.mark.asyncio
    async def test_pass_after_view(self, service, couple, db):
        a, b = await couple()
        await service.record_profile_view(a.id, b.id, db)

        match = await service.pass_match(a.id, b.id, db)

        assert match.status == MatchStatus.PASSED
        assert await _count(db, Match) == 1

    @pytest.mark.asyncio
    async def test_pass_after_interest_is_invalid(self, service, couple, db):
        a, b = await couple()
        await service.send_interest(a.id, b.id, db)

        with pytest.raises(InvalidTransition):
            await service.pass_match(a.id, b.id, db)
        assert (await _match(db, a.id, b.id)).status == MatchStatus.INTERESTED


class TestViewsAndListings:

    @pytest.mark.asyncio
    async def test_view_materialises_new_match_once(self, service, couple, db):
        viewer, viewed = await couple()

        await service.record_profile_view(viewer.id, viewed.id, db)
        await service.record_profile_view(viewer.id, viewed.id, db)

        assert await _count(db, ProfileView) == 2
        assert await _count(db, Match) == 1
        assert (await _match(db, viewer.id, viewed.id)).status == MatchStatus.NEW

    @pytest.mark.asyncio
    async def test_get_matches_filters_by_status(self, service, make_profile, db):
        viewer = await make_profile()
        passed = await make_profile(gender="female")
        wanted = await make_profile(gender="female")
        await service.pass_match(viewer.id, passed.id, db)
        await service.send_interest(viewer.id, wanted.id, db)

        everything = await service.get_matches(viewer.id, db)
        interested = await service.get_matches(viewer.id, db, status=MatchStatus.INTERESTED)

        assert len(everything) == 2
        assert [m.matched_user_id for m in interested] == [wanted.id]

    @pytest.mark.asyncio
    async def test_get_matches_rejects_unknown_status(self, service, db):
        with pytest.raises(ValidationError):
            await service.get_matches(uuid.uuid4(), db, status="married")

    @pytest.mark.asyncio
    async def test_list_interests_by_direction(self, service, couple, db):
        sender, receiver = await couple()
        interest = await service.send_interest(sender.id, receiver.id, db)

        received = await service.list_interests(receiver.id, db, direction="received")
        sent = await service.list_interests(sender.id, db, direction="sent")
        accepted = await service.list_interests(
            receiver.id, db, direction="received", status=InterestStatus.ACCEPTED
        )

        assert [i.id for i in received] == [interest.id]
        assert [i.id for i in sent] == [interest.id]
        assert accepted == []


class TestSafety:

    @pytest.mark.asyncio
    async def test_block_is_idempotent(self, service, couple, db):
        a, b = await couple()

        first = await service.block_user(a.id, b.id, db)
        second = await service.block_user(a.id, b.id, db)

        assert first.id == second.id
        assert await _count(db, Block) == 1

    @pytest.mark.asyncio
    async def test_cannot_block_self(self, service, make_profile, db):
        me = await make_profile()
        with pytest.raises(InvalidTarget):
            await service.block_user(me.id, me.id, db)

    @pytest.mark.asyncio
    async def test_report_recorded_as_pending(self, service, couple, db):
        a, b = await couple()

        report = await service.report_user(a.id, b.id, "  spam  ", db, description="Sent links")

        assert report.reason == "spam"
        assert report.status == "pending"
        assert await _count(db, Report) == 1

    @pytest.mark.asyncio
    async def test_report_needs_reason(self, service, couple, db):
        a, b = await couple()
        with pytest.raises(ValidationError):
            await service.report_user(a.id, b.id, "   ", db)


@pytest_asyncio.fixture
async def file_sessions(tmp_path):
    """Session factory over a file-backed database, one connection per session,
    so concurrent tasks really contend for the store."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'covenant.db'}",
        connect_args={"timeout": 15},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def stored_couple(file_sessions):
    async def _couple():
        async with file_sessions() as session:
            him = Profile(
                email=f"{uuid.uuid4().hex[:8]}@example.com",
                full_name="Samuel Boateng",
                gender="male",
                is_verified=True,
                is_faith_verified=True,
                is_marriage_intent_verified=True,
            )
            her = Profile(
                email=f"{uuid.uuid4().hex[:8]}@example.com",
                full_name="Esther Nwosu",
                gender="female",
                is_verified=True,
                is_faith_verified=True,
                is_marriage_intent_verified=True,
            )
            session.add_all([him, her])
            await session.commit()
        return him, her

    return _couple


class TestConcurrentCalls:
    """Racing calls on separate sessions settle on a single outcome."""

    @staticmethod
    async def _in_own_session(sessions, call, *args):
        async with sessions() as session:
            return await call(*args, session)

    @pytest.mark.asyncio
    async def test_concurrent_sends_create_one_interest(
        self, service, stored_couple, file_sessions
    ):
        him, her = await stored_couple()

        results = await asyncio.gather(
            self._in_own_session(file_sessions, service.send_interest, him.id, her.id),
            self._in_own_session(file_sessions, service.send_interest, him.id, her.id),
            return_exceptions=True,
        )

        assert sorted(type(r).__name__ for r in results) == ["DuplicateInterest", "Interest"]
        async with file_sessions() as session:
            assert await _count(session, Interest) == 1

    @pytest.mark.asyncio
    async def test_concurrent_accepts_resolve_once(self, service, stored_couple, file_sessions):
        him, her = await stored_couple()
        interest = await self._in_own_session(
            file_sessions, service.send_interest, him.id, her.id
        )

        results = await asyncio.gather(
            self._in_own_session(file_sessions, service.respond_to_interest, interest.id, True),
            self._in_own_session(file_sessions, service.respond_to_interest, interest.id, True),
            return_exceptions=True,
        )

        assert sorted(type(r).__name__ for r in results) == [
            "AlreadyResolved",
            "InterestResponse",
        ]
        async with file_sessions() as session:
            assert await _count(session, Conversation) == 1
            assert await _count(session, Match, Match.status == MatchStatus.CONNECTED) == 2

    @pytest.mark.asyncio
    async def test_concurrent_mutual_acceptance_shares_conversation(
        self, service, stored_couple, file_sessions
    ):
        him, her = await stored_couple()
        his = await self._in_own_session(file_sessions, service.send_interest, him.id, her.id)
        hers = await self._in_own_session(file_sessions, service.send_interest, her.id, him.id)

        first, second = await asyncio.gather(
            self._in_own_session(file_sessions, service.respond_to_interest, his.id, True),
            self._in_own_session(file_sessions, service.respond_to_interest, hers.id, True),
        )

        assert first.conversation_id == second.conversation_id
        async with file_sessions() as session:
            assert await _count(session, Conversation) == 1
            assert await _count(session, Match, Match.status == MatchStatus.CONNECTED) == 2
