"""Shared fixtures and in-memory fakes for the test suite."""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi.testclient import TestClient

from calendar_backend.auth import VerifiedClaims
from calendar_backend.config import Settings
from calendar_backend.main import create_app, get_auth_service, get_calendar_service, get_user_repository
from calendar_backend.models import Meeting, User
from calendar_backend.oauth import TokenSet
from calendar_backend.services.auth_service import AuthService
from calendar_backend.services.calendar_service import CalendarService

NOW = datetime(2025, 1, 1, 8, 0, tzinfo=timezone.utc)


class InMemoryUserRepository:
    def __init__(self, users: Optional[list[User]] = None):
        self.users: dict[uuid.UUID, User] = {u.id: u for u in users or []}
        self.update_calls = 0

    async def create_user(self, user: User) -> User:
        if any(u.google_id == user.google_id or u.email == user.email for u in self.users.values()):
            raise ValueError("duplicate user")
        self.users[user.id] = user
        return user

    async def get_user_by_google_id(self, google_id: str) -> Optional[User]:
        return next((u for u in self.users.values() if u.google_id == google_id), None)

    async def get_user_by_email(self, email: str) -> Optional[User]:
        return next((u for u in self.users.values() if u.email == email), None)

    async def update_user(self, user: User) -> User:
        self.update_calls += 1
        self.users[user.id] = user
        return user


class InMemoryMeetingRepository:
    def __init__(self):
        self.meetings: list[Meeting] = []

    async def create_meeting(self, meeting: Meeting) -> Meeting:
        meeting.id = len(self.meetings) + 1
        self.meetings.append(meeting)
        return meeting

    async def list_meetings_by_user(self, email: str, start: datetime, end: datetime) -> list[Meeting]:
        return [m for m in self.meetings if m.created_by == email and m.start_time >= start and m.end_time <= end]

    async def get_meeting_by_id(self, meeting_id: int) -> Optional[Meeting]:
        return next((m for m in self.meetings if m.id == meeting_id), None)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        db_url="sqlite+aiosqlite:///:memory:",
        google_client_id="client-id.apps.googleusercontent.com",
        google_client_secret="client-secret",
        google_redirect_url="http://testserver/auth/google/callback",
        jwt_secret="test-jwt-secret",
        csrf_secret="test-csrf-secret",
    )


@pytest.fixture
def stored_user() -> User:
    return User(
        google_id="g123",
        email="a@b.com",
        name="Ada",
        picture="https://example.com/a.png",
        access_token="old-access",
        refresh_token="stored-refresh",
        expires_at=NOW - timedelta(minutes=5),
    )


@pytest.fixture
def user_repo(stored_user: User) -> InMemoryUserRepository:
    return InMemoryUserRepository([stored_user])


@pytest.fixture
def empty_user_repo() -> InMemoryUserRepository:
    return InMemoryUserRepository()


@pytest.fixture
def meeting_repo() -> InMemoryMeetingRepository:
    return InMemoryMeetingRepository()


@pytest.fixture
def calendar_client() -> Mock:
    client = Mock()
    client.insert_event = AsyncMock(return_value={"id": "evt-1", "htmlLink": "https://calendar.google.com/evt-1"})
    client.list_events = AsyncMock(return_value=[])
    return client


@pytest.fixture
def oauth_client() -> Mock:
    client = Mock()
    client.refresh = AsyncMock(
        return_value=TokenSet(access_token="new-access", refresh_token="", expires_at=NOW + timedelta(hours=1))
    )
    return client


@pytest.fixture
def calendar_service(user_repo, meeting_repo, calendar_client, oauth_client) -> CalendarService:
    return CalendarService(user_repo, meeting_repo, calendar_client, oauth_client, now=lambda: NOW)


@pytest.fixture
def verifier() -> Mock:
    verifier = Mock()
    verifier.verify_code = AsyncMock(
        return_value=(
            VerifiedClaims(subject="g123", email="a@b.com", name="Ada", picture=""),
            TokenSet(access_token="fresh-access", refresh_token="fresh-refresh", expires_at=NOW + timedelta(hours=1)),
        )
    )
    return verifier


@pytest.fixture
def app(settings, user_repo, calendar_service, verifier):
    app = create_app(settings)
    app.dependency_overrides[get_user_repository] = lambda: user_repo
    app.dependency_overrides[get_calendar_service] = lambda: calendar_service
    app.dependency_overrides[get_auth_service] = lambda: AuthService(verifier, app.state.session_issuer)
    return app


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


@pytest.fixture
def session_token(app) -> str:
    return app.state.session_issuer.issue("a@b.com")


@pytest.fixture
def auth_headers(session_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {session_token}"}


@pytest.fixture
def make_calendar_item():
    """Build a Calendar API event resource starting at `start`."""

    def make(event_id: str, start: datetime, **extra: Any) -> dict[str, Any]:
        return {
            "id": event_id,
            "summary": f"Meeting {event_id}",
            "description": "",
            "start": {"dateTime": start.isoformat()},
            "end": {"dateTime": (start + timedelta(hours=1)).isoformat()},
            "attendees": [{"email": "x@y.com"}],
            **extra,
        }

    return make
