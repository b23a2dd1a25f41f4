"""HTTP-level tests: routing, status codes and error rendering."""
import asyncio
import uuid
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio
from fastapi import WebSocketDisconnect

from covenant.api import conversations as conversations_api
from covenant.database import get_db
from covenant.main import InFlightRequests, app
from covenant.services.messaging_service import MessagingService


@pytest_asyncio.fixture
async def client(session_factory, monkeypatch):
    async def _test_db():
        async with session_factory() as session:
            yield session

    broker = AsyncMock()
    broker.publish.return_value = 0
    monkeypatch.setattr(conversations_api, "_messaging_service", MessagingService(broker=broker))
    app.dependency_overrides[get_db] = _test_db

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def create_profile(client):
    async def _create(**overrides) -> dict:
        body = {
            "email": f"{uuid.uuid4().hex[:10]}@example.com",
            "full_name": "Test User",
            "gender": "male",
            "date_of_birth": "1995-01-01",
            "denomination": "Baptist",
            "is_verified": True,
            "is_faith_verified": True,
            "is_marriage_intent_verified": True,
        }
        body.update(overrides)
        resp = await client.post("/api/v1/profiles", json=body)
        assert resp.status_code == 201, resp.text
        return resp.json()

    return _create


class TestHealth:

    @pytest.mark.asyncio
    async def test_liveness(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "healthy"}

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, client):
        resp = await client.get("/health", headers={"x-request-id": "abc123"})
        assert resp.headers["x-request-id"] == "abc123"

    @pytest.mark.asyncio
    async def test_drain_waits_for_in_flight_requests(self):
        tracker = InFlightRequests()
        tracker.enter()

        assert await tracker.drain(timeout=0.05) is False
        tracker.leave()
        assert await tracker.drain(timeout=0.05) is True


class TestProfilesApi:

    @pytest.mark.asyncio
    async def test_create_and_fetch(self, client, create_profile):
        created = await create_profile(full_name="David Okafor")

        resp = await client.get(f"/api/v1/profiles/{created['id']}")

        assert resp.status_code == 200
        assert resp.json()["full_name"] == "David Okafor"
        assert resp.json()["is_active"] is True

    @pytest.mark.asyncio
    async def test_duplicate_email_conflicts(self, client, create_profile):
        created = await create_profile()
        resp = await client.post(
            "/api/v1/profiles",
            json={"email": created["email"], "full_name": "Someone Else", "gender": "female"},
        )
        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_unknown_profile_renders_domain_error(self, client):
        resp = await client.get(f"/api/v1/profiles/{uuid.uuid4()}")
        assert resp.status_code == 404
        assert resp.json()["error"] == "not_found"

    @pytest.mark.asyncio
    async def test_patch_updates_only_given_fields(self, client, create_profile):
        created = await create_profile(hobbies=["reading"])

        resp = await client.patch(
            f"/api/v1/profiles/{created['id']}", json={"denomination": "Anglican"}
        )

        assert resp.status_code == 200
        assert resp.json()["denomination"] == "Anglican"
        assert resp.json()["hobbies"] == ["reading"]

    @pytest.mark.asyncio
    async def test_empty_patch_rejected(self, client, create_profile):
        created = await create_profile()
        resp = await client.patch(f"/api/v1/profiles/{created['id']}", json={})
        assert resp.status_code == 422

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [{"full_name": None}, {"is_active": None}])
    async def test_null_for_required_field_rejected(self, client, create_profile, body):
        created = await create_profile()

        resp = await client.patch(f"/api/v1/profiles/{created['id']}", json=body)

        assert resp.status_code == 422
        fetched = await client.get(f"/api/v1/profiles/{created['id']}")
        assert fetched.json()["full_name"] == "Test User"

    @pytest.mark.asyncio
    async def test_null_clears_optional_field(self, client, create_profile):
        created = await create_profile()

        resp = await client.patch(
            f"/api/v1/profiles/{created['id']}", json={"denomination": None}
        )

        assert resp.status_code == 200
        assert resp.json()["denomination"] is None

    @pytest.mark.asyncio
    async def test_inverted_age_window_rejected(self, client, create_profile):
        created = await create_profile()

        resp = await client.patch(
            f"/api/v1/profiles/{created['id']}",
            json={"preferred_age_min": 40, "preferred_age_max": 30},
        )

        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_inverted_age_window_rejected_on_create(self, client):
        resp = await client.post(
            "/api/v1/profiles",
            json={
                "email": "window@example.com",
                "full_name": "Ruth Mensah",
                "gender": "female",
                "preferred_age_min": 45,
                "preferred_age_max": 28,
            },
        )
        assert resp.status_code == 422


class TestMatchingApi:

    @pytest.mark.asyncio
    async def test_candidates_ranked_with_scores(self, client, create_profile):
        viewer = await create_profile()
        same_church = await create_profile(gender="female", denomination="Baptist")
        other_church = await create_profile(gender="female", denomination="Catholic")

        resp = await client.get(f"/api/v1/matching/candidates/{viewer['id']}")

        assert resp.status_code == 200
        items = resp.json()
        assert [i["profile"]["id"] for i in items] == [same_church["id"], other_church["id"]]
        assert items[0]["score"] > items[1]["score"]

    @pytest.mark.asyncio
    async def test_pass_then_candidate_disappears(self, client, create_profile):
        viewer = await create_profile()
        candidate = await create_profile(gender="female")

        resp = await client.post(
            "/api/v1/matching/pass",
            json={"viewer_id": viewer["id"], "candidate_id": candidate["id"]},
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "passed"

        remaining = await client.get(f"/api/v1/matching/candidates/{viewer['id']}")
        assert remaining.json() == []


class TestInterestsAndMessagingApi:

    @pytest.mark.asyncio
    async def test_interest_lifecycle_to_first_message(self, client, create_profile):
        him = await create_profile()
        her = await create_profile(gender="female", full_name="Grace Adeyemi")

        sent = await client.post(
            "/api/v1/interests",
            json={"sender_id": him["id"], "receiver_id": her["id"], "message": "Hello"},
        )
        assert sent.status_code == 201
        assert sent.json()["status"] == "pending"

        duplicate = await client.post(
            "/api/v1/interests",
            json={"sender_id": him["id"], "receiver_id": her["id"]},
        )
        assert duplicate.status_code == 409
        assert duplicate.json()["error"] == "duplicate_interest"

        received = await client.get(f"/api/v1/interests/received/{her['id']}")
        assert [i["id"] for i in received.json()] == [sent.json()["id"]]

        accepted = await client.post(
            f"/api/v1/interests/{sent.json()['id']}/respond",
            json={"accept": True, "responder_id": her["id"]},
        )
        assert accepted.status_code == 200
        assert accepted.json()["interest"]["status"] == "accepted"
        conversation_id = accepted.json()["conversation_id"]
        assert conversation_id is not None

        again = await client.post(
            f"/api/v1/interests/{sent.json()['id']}/respond",
            json={"accept": False, "responder_id": her["id"]},
        )
        assert again.status_code == 409
        assert again.json()["error"] == "already_resolved"

        message = await client.post(
            f"/api/v1/conversations/{conversation_id}/messages",
            json={"sender_id": him["id"], "text": "Nice to meet you"},
        )
        assert message.status_code == 201
        assert message.json()["receiver_id"] == her["id"]

        unread = await client.get(f"/api/v1/conversations/user/{her['id']}/unread")
        assert unread.json()["unread_count"] == 1

        read = await client.post(
            f"/api/v1/conversations/{conversation_id}/read", json={"user_id": her["id"]}
        )
        assert read.json() == {"marked_read": 1}

        inbox = await client.get(f"/api/v1/conversations/user/{her['id']}")
        assert inbox.json()[0]["last_message_preview"] == "Nice to meet you"
        assert inbox.json()[0]["unread_count"] == 0

        search = await client.get(
            f"/api/v1/conversations/user/{him['id']}/search", params={"q": "GRACE"}
        )
        assert [c["id"] for c in search.json()] == [conversation_id]

    @pytest.mark.asyncio
    async def test_self_interest_is_invalid_target(self, client, create_profile):
        me = await create_profile()
        resp = await client.post(
            "/api/v1/interests", json={"sender_id": me["id"], "receiver_id": me["id"]}
        )
        assert resp.status_code == 422
        assert resp.json()["error"] == "invalid_target"

    @pytest.mark.asyncio
    async def test_outsider_cannot_post(self, client, create_profile):
        him = await create_profile()
        her = await create_profile(gender="female")
        outsider = await create_profile()
        sent = await client.post(
            "/api/v1/interests", json={"sender_id": him["id"], "receiver_id": her["id"]}
        )
        accepted = await client.post(
            f"/api/v1/interests/{sent.json()['id']}/respond", json={"accept": True}
        )
        conversation_id = accepted.json()["conversation_id"]

        resp = await client.post(
            f"/api/v1/conversations/{conversation_id}/messages",
            json={"sender_id": outsider["id"], "text": "hi"},
        )

        assert resp.status_code == 403
        assert resp.json()["error"] == "invalid_participant"


def _socket(receive):
    websocket = AsyncMock()
    websocket.receive.side_effect = receive
    return websocket


async def _never_returns():
    await asyncio.Event().wait()


class TestMessageStream:
    """The stream releases its subscription as soon as either side ends."""

    @pytest.mark.asyncio
    async def test_idle_stream_released_on_client_disconnect(self):
        released = []

        async def idle_events():
            try:
                await asyncio.Event().wait()
                yield {}
            finally:
                released.append(True)

        async def disconnect():
            return {"type": "websocket.disconnect", "code": 1000}

        websocket = _socket(disconnect)

        await asyncio.wait_for(
            conversations_api.relay_until_disconnect(websocket, idle_events()), timeout=2
        )

        assert released == [True]
        websocket.send_json.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_events_forwarded_until_stream_ends(self):
        event = {"type": "message", "text": "Shalom"}

        async def one_event():
            yield event

        websocket = _socket(_never_returns)

        await asyncio.wait_for(
            conversations_api.relay_until_disconnect(websocket, one_event()), timeout=2
        )

        websocket.send_json.assert_awaited_once_with(event)

    @pytest.mark.asyncio
    async def test_failed_send_ends_stream_quietly(self):
        released = []

        async def endless_events():
            try:
                while True:
                    yield {"type": "message"}
            finally:
                released.append(True)

        websocket = _socket(_never_returns)
        websocket.send_json.side_effect = WebSocketDisconnect(code=1001)

        await asyncio.wait_for(
            conversations_api.relay_until_disconnect(websocket, endless_events()), timeout=2
        )

        assert released == [True]
