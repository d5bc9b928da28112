import json
from datetime import date, datetime

import httpx
import pytest
import pytest_asyncio
from conftest import OWNER, FakeAIClient, mock_http_client
from api.bin import create_bin_router
from api.calendar import create_calendar_router
from api.chat import create_chat_router
from api.events import create_events_router
from api.extract import create_extract_router
from api.reminder import create_reminder_router
from api.upload import create_upload_router
from core.authentication import AUTH_COOKIE, generate_jwt_token, get_current_owner_id
from core.errors import register_exception_handlers
from fastapi import FastAPI
from integrations.google import GoogleCalendarClient
from models.integrations import Integration
from models.users import User
from services.assets import LocalAssetStore
from services.bin import BinManager
from services.calendar_sync import CalendarSyncService
from services.conversation import ConversationService
from services.email import EmailService
from services.extraction import ExtractionService
from services.sweeper import ExpirationSweeper

TODAY = date(2025, 6, 1)
# Clock for the background sweeper; earlier than every fixture event
SWEEP_NOW = datetime(2025, 5, 1, 12, 0)

EXTRACTED = {
    "name": "Summer Jazz",
    "date": "2025-06-01",
    "time": "20:00",
    "location": "Riverside Park",
    "ticketUrl": None,
    "description": "Jazz by the river.",
}


def google_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"id": "gcal-1", "htmlLink": "https://calendar.google.com/e/1"})


@pytest.fixture
def ai():
    return FakeAIClient()


@pytest.fixture
def app(tmp_path, session_factory, repository, ai):
    app = FastAPI()
    register_exception_handlers(app)

    http_client = mock_http_client(google_handler)
    assets = LocalAssetStore(str(tmp_path / "uploads"))
    sweeper = ExpirationSweeper(session_factory, clock=lambda: SWEEP_NOW)
    google = GoogleCalendarClient(http_client, "id", "secret")

    app.include_router(create_events_router(repository, sweeper, today=lambda: TODAY))
    app.include_router(create_extract_router(ExtractionService(ai, http_client), assets))
    app.include_router(create_chat_router(ConversationService(ai, repository)))
    app.include_router(
        create_calendar_router(CalendarSyncService(session_factory, repository, google))
    )
    app.include_router(create_bin_router(BinManager(session_factory)))
    app.include_router(create_upload_router(assets))
    app.include_router(
        create_reminder_router(EmailService(http_client, "", "", "", ""), session_factory)
    )
    app.state.sweeper = sweeper
    return app


@pytest_asyncio.fixture
async def anonymous(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    await app.state.sweeper.drain()


@pytest_asyncio.fixture
async def client(app, anonymous):
    app.dependency_overrides[get_current_owner_id] = lambda: OWNER
    yield anonymous
    app.dependency_overrides.clear()


# Purpose: verify every core route rejects a caller without a session cookie.
@pytest.mark.asyncio
@pytest.mark.parametrize(
    "method,path",
    [
        ("GET", "/api/events"),
        ("POST", "/api/events"),
        ("GET", "/api/bin"),
        ("POST", "/api/calendar"),
        ("POST", "/api/chat"),
        ("POST", "/api/extract-url"),
    ],
)
async def test_requires_authentication(anonymous, method, path):
    resp = await anonymous.request(method, path)

    assert resp.status_code == 401
    assert resp.json()["kind"] == "Unauthorized"


# Purpose: verify a valid session cookie identifies the owner and a forged one is rejected.
@pytest.mark.asyncio
async def test_session_cookie(anonymous):
    anonymous.cookies.set(AUTH_COOKIE, generate_jwt_token(OWNER))
    resp = await anonymous.get("/api/events")
    assert resp.status_code == 200

    anonymous.cookies.set(AUTH_COOKIE, "not-a-jwt")
    resp = await anonymous.get("/api/events")
    assert resp.status_code == 401


# Purpose: verify the create, read, update, delete, restore cycle over HTTP.
@pytest.mark.asyncio
async def test_event_lifecycle(client):
    resp = await client.post(
        "/api/events", json={"name": "Gig", "date": "2025-06-01", "time": "20:00"}
    )
    assert resp.status_code == 201
    event_id = resp.json()["id"]

    resp = await client.put(
        f"/api/events/{event_id}",
        json={"name": "Gig", "date": "2025-06-01", "time": "21:00", "location": "Hall"},
    )
    assert resp.json()["time"] == "21:00"
    assert resp.json()["location"] == "Hall"

    assert (await client.delete(f"/api/events/{event_id}")).json() == {"success": True}
    assert (await client.get(f"/api/events/{event_id}")).status_code == 404
    assert [e["id"] for e in (await client.get("/api/bin")).json()] == [event_id]

    resp = await client.post(f"/api/bin/{event_id}")
    assert resp.status_code == 200
    assert resp.json()["deleted_at"] is None
    assert (await client.get(f"/api/events/{event_id}")).status_code == 200


# Purpose: verify malformed bodies come back as ValidationError with status 400.
@pytest.mark.asyncio
async def test_validation_errors(client):
    resp = await client.post("/api/events", json={"date": "2025-06-01"})
    assert resp.status_code == 400
    assert resp.json()["kind"] == "ValidationError"

    resp = await client.post(
        "/api/events", json={"name": "Gig", "date": "2025-06-05", "endDate": "2025-06-01"}
    )
    assert resp.status_code == 400


# Purpose: verify list search and filters plus the dashboard split.
@pytest.mark.asyncio
async def test_list_filters_and_dashboard(client):
    for body in (
        {"name": "Jazz Night", "date": "2025-06-01", "time": "23:00"},
        {"name": "Quiz", "date": "2025-06-08"},
        {"name": "Old Jazz", "date": "2025-05-20"},
    ):
        await client.post("/api/events", json=body)

    resp = await client.get("/api/events", params={"q": "JAZZ", "filter": "today"})
    assert [e["name"] for e in resp.json()] == ["Jazz Night"]

    resp = await client.get("/api/events", params={"filter": "nextWeek"})
    assert [e["name"] for e in resp.json()] == ["Quiz"]

    resp = await client.get("/api/events/dashboard")
    data = resp.json()
    assert [e["name"] for e in data["upcoming"]] == ["Jazz Night", "Quiz"]
    assert [e["name"] for e in data["past"]] == ["Old Jazz"]


# Purpose: verify bulk bin routes report per-id results and the bin can be emptied.
@pytest.mark.asyncio
async def test_bulk_bin_routes(client):
    ids = []
    for name in ("One", "Two", "Three"):
        event_id = (await client.post("/api/events", json={"name": name, "date": "2025-07-01"})).json()["id"]
        await client.delete(f"/api/events/{event_id}")
        ids.append(event_id)

    resp = await client.post("/api/bin/restore", json={"ids": [ids[0], "missing"]})
    body = resp.json()
    assert body["succeeded"] == [ids[0]]
    assert body["failed"][0]["id"] == "missing"

    resp = await client.post("/api/bin/purge", json={"ids": [ids[1]]})
    assert resp.json()["succeeded"] == [ids[1]]

    resp = await client.delete("/api/bin")
    assert resp.json()["deleted"] == 1
    assert (await client.get("/api/bin")).json() == []
    assert (await client.delete(f"/api/bin/{ids[2]}")).status_code == 404


# Purpose: verify the manual cleanup route sweeps expired events and reports their ids.
@pytest.mark.asyncio
async def test_cleanup_route(client, repository):
    old = await repository.create(OWNER, {"name": "Old", "date": "2020-01-01"})

    resp = await client.post("/api/events/cleanup")

    assert resp.json() == {"deleted": 1, "eventIds": [old.id]}


# Purpose: verify an uploaded poster can be extracted by its reference.
@pytest.mark.asyncio
async def test_upload_then_extract(client, ai):
    ai.queue(json.dumps(EXTRACTED))

    resp = await client.post(
        "/api/upload", files={"file": ("poster.png", b"\x89PNG-data", "image/png")}
    )
    assert resp.status_code == 200
    image_url = resp.json()["imageUrl"]
    assert image_url.startswith("/uploads/") and image_url.endswith(".png")

    resp = await client.post("/api/extract", json={"imageUrl": image_url})
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "data": EXTRACTED}
    sent = ai.calls[0]["messages"][1]["content"][1]["image_url"]["url"]
    assert sent.startswith("data:image/png;base64,")


# Purpose: verify an upload is stored under its image extension whatever the client filename says.
@pytest.mark.asyncio
async def test_upload_ignores_client_extension(client):
    resp = await client.post(
        "/api/upload", files={"file": ("evil.html", b"<script>alert(1)</script>", "image/png")}
    )

    assert resp.status_code == 200
    assert resp.json()["imageUrl"].endswith(".png")


# Purpose: verify non-image uploads and unknown references are rejected.
@pytest.mark.asyncio
async def test_upload_and_extract_rejections(client, ai):
    resp = await client.post(
        "/api/upload", files={"file": ("notes.txt", b"hello", "text/plain")}
    )
    assert resp.status_code == 400

    resp = await client.post("/api/extract", json={"imageUrl": "/uploads/../../etc/passwd"})
    assert resp.status_code == 404
    assert resp.json()["kind"] == "AssetNotFound"
    assert ai.calls == []


# Purpose: verify URL extraction errors surface with their own status and kind.
@pytest.mark.asyncio
async def test_extract_url_invalid(client):
    resp = await client.post("/api/extract-url", json={"url": "javascript:alert(1)"})

    assert resp.status_code == 400
    assert resp.json()["kind"] == "InvalidSourceError"


# Purpose: verify a chat can be started, completed and confirmed over HTTP.
@pytest.mark.asyncio
async def test_chat_routes(client, ai):
    ai.queue(
        "Hi! What would you like to create?",
        '```json\n{"eventReady": true, "name": "Dentist", "date": "2025-06-03", '
        '"time": "09:30", "location": "none", "withWho": "none", "description": "Check-up"}\n```',
    )

    turn = (await client.post("/api/chat")).json()
    assert turn["state"] == "collecting"

    turn = (
        await client.post(
            f"/api/chat/{turn['conversation_id']}/messages", json={"message": "Dentist Tuesday 9:30"}
        )
    ).json()
    assert turn["state"] == "done"
    assert turn["event_data"]["location"] is None

    turn = (await client.post(f"/api/chat/{turn['conversation_id']}/confirm")).json()
    event = (await client.get(f"/api/events/{turn['event_id']}")).json()
    assert event["name"] == "Dentist"
    assert event["time"] == "09:30"

    resp = await client.delete(f"/api/chat/{turn['conversation_id']}")
    assert resp.status_code == 404


# Purpose: verify the calendar route syncs once and then reports the event as already synced.
@pytest.mark.asyncio
async def test_calendar_route(client, session_factory, repository):
    async with session_factory() as session:
        session.add(
            Integration(
                user_id=OWNER,
                platform="google",
                access_token="token",
                refresh_token="refresh",
                expires_at=4_000_000_000,
            )
        )
        await session.commit()
    event = await repository.create(OWNER, {"name": "Gig", "date": "2025-06-01"})

    resp = await client.post("/api/calendar", json={"eventId": event.id})
    assert resp.json() == {
        "success": True,
        "googleEventId": "gcal-1",
        "htmlLink": "https://calendar.google.com/e/1",
    }

    resp = await client.post("/api/calendar", json={"eventId": event.id})
    assert resp.status_code == 409
    assert resp.json()["kind"] == "CalendarAlreadySynced"


# Purpose: verify the reminder route validates the message and reports an unconfigured mailer.
@pytest.mark.asyncio
async def test_reminder_route(client, session_factory):
    async with session_factory() as session:
        session.add(User(id=OWNER, name="Owner", email="owner@example.com"))
        await session.commit()

    resp = await client.post("/api/reminder", json={"message": "   "})
    assert resp.status_code == 400

    resp = await client.post("/api/reminder", json={"message": "Buy tickets"})
    assert resp.status_code == 503
    assert resp.json()["kind"] == "EmailNotConfigured"
