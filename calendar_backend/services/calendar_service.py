# calendar_backend/services/calendar_service.py
"""Create and list Google Calendar events with the user's stored OAuth credentials."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httplib2
from google.auth.exceptions import RefreshError
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from calendar_backend.exceptions import (
    EventCreationError,
    EventListingError,
    ExternalAPIError,
    UserNotFound,
    ValidationError,
)
from calendar_backend.models import ATTENDEE_SEPARATOR, Meeting, User
from calendar_backend.oauth import GoogleOAuthClient
from calendar_backend.repositories import MeetingRepository, UserRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")

PRIMARY_CALENDAR = "primary"
LISTING_WINDOW = timedelta(days=7)
MAX_EMAIL_LENGTH = 254  # RFC 5321

# Checked only after the status and exception-type checks in is_token_expired_error
TOKEN_EXPIRED_MARKERS = ("invalid_grant", "expired", "Invalid Credentials")


@dataclass
class CreateEventInput:
    title: str
    description: str
    start_time: datetime
    end_time: datetime
    created_by: str
    attendees: list[str] = field(default_factory=list)


@dataclass
class EventOutput:
    title: str
    description: str
    start_time: Optional[datetime]
    end_time: Optional[datetime]
    attendees: list[str]
    event_id: str
    created_by: str


def is_valid_email(email: str) -> bool:
    """Basic syntactic check: contains '@' and '.', no separator, at most 254 characters."""
    return (
        "@" in email
        and "." in email
        and ATTENDEE_SEPARATOR not in email
        and len(email) <= MAX_EMAIL_LENGTH
    )


def validate_event_input(event: CreateEventInput) -> None:
    if event.start_time >= event.end_time:
        raise ValidationError("start time must be before end time")
    for email in event.attendees:
        if not is_valid_email(email):
            raise ValidationError(f"Invalid attendee email: {email}")


def is_token_expired_error(err: BaseException) -> bool:
    if isinstance(err, RefreshError):
        return True
    if isinstance(err, HttpError):
        status = getattr(err, "status_code", None) or getattr(err.resp, "status", None)
        if status is not None and int(status) == 401:
            return True
    message = str(err)
    return any(marker in message for marker in TOKEN_EXPIRED_MARKERS)


def _event_datetime(value: datetime) -> dict[str, str]:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    body = {"dateTime": value.isoformat()}
    if value.utcoffset() == timedelta(0):
        body["timeZone"] = "UTC"
    return body


def build_event_body(event: CreateEventInput) -> dict[str, Any]:
    return {
        "summary": event.title,
        "description": event.description,
        "start": _event_datetime(event.start_time),
        "end": _event_datetime(event.end_time),
        "attendees": [{"email": email} for email in event.attendees],
    }


def parse_event_time(value: Optional[dict[str, Any]]) -> Optional[datetime]:
    """Read a Calendar API start/end object. All-day events map to midnight UTC."""
    if not value:
        return None
    if value.get("dateTime"):
        return datetime.fromisoformat(value["dateTime"].replace("Z", "+00:00"))
    if value.get("date"):
        return datetime.fromisoformat(value["date"]).replace(tzinfo=timezone.utc)
    return None


def event_output_from_item(item: dict[str, Any], requester: str) -> EventOutput:
    return EventOutput(
        title=item.get("summary", ""),
        description=item.get("description", ""),
        start_time=parse_event_time(item.get("start")),
        end_time=parse_event_time(item.get("end")),
        attendees=[a["email"] for a in item.get("attendees", []) if a.get("email")],
        event_id=item.get("id", ""),
        created_by=requester,
    )


class GoogleCalendarClient:
    """
    Calendar API v3 over google-api-python-client.

    The client library is blocking, so every call runs in a worker thread. The
    same ``timeout`` bounds the socket and the awaiting coroutine, so a call
    that times out is also abandoned on the wire. A timeout or cancellation
    propagates to the caller.
    """

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout

    def _service(self, access_token: str):
        # Access token only. Expiry surfaces as a 401 and is handled by CalendarService
        creds = Credentials(token=access_token)
        http = AuthorizedHttp(creds, http=httplib2.Http(timeout=self.timeout))
        return build("calendar", "v3", http=http, cache_discovery=False)

    async def _run(self, fn: Callable[[], T]) -> T:
        return await asyncio.wait_for(asyncio.to_thread(fn), timeout=self.timeout)

    async def insert_event(self, access_token: str, body: dict[str, Any]) -> dict[str, Any]:
        def call():
            service = self._service(access_token)
            return service.events().insert(calendarId=PRIMARY_CALENDAR, body=body).execute()

        return await self._run(call)

    async def list_events(self, access_token: str, time_min: datetime, time_max: datetime) -> list[dict[str, Any]]:
        def call():
            service = self._service(access_token)
            items: list[dict[str, Any]] = []
            page_token = None
            while True:
                response = (
                    service.events()
                    .list(
                        calendarId=PRIMARY_CALENDAR,
                        showDeleted=False,
                        singleEvents=True,
                        timeMin=time_min.isoformat(),
                        timeMax=time_max.isoformat(),
                        orderBy="startTime",
                        pageToken=page_token,
                    )
                    .execute()
                )
                items.extend(response.get("items", []))
                page_token = response.get("nextPageToken")
                if not page_token:
                    return items

        return await self._run(call)


class CalendarService:
    def __init__(
        self,
        user_repo: UserRepository,
        meeting_repo: MeetingRepository,
        calendar_client: GoogleCalendarClient,
        oauth_client: GoogleOAuthClient,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.user_repo = user_repo
        self.meeting_repo = meeting_repo
        self.calendar_client = calendar_client
        self.oauth_client = oauth_client
        self._now = now

    async def create_event(self, event: CreateEventInput) -> str:
        """
        Create the event on the creator's primary calendar and record it locally.

        The calendar event is created first. If the local insert then fails the
        calendar event is left in place.

        Returns:
            The Google Calendar event id.

        Raises:
            ValidationError: bad times or attendee emails (before any external call)
            UserNotFound: no stored credentials for ``event.created_by``
            TokenRefreshError: the access token expired and could not be refreshed
            EventCreationError: any other provider failure
        """
        validate_event_input(event)
        user = await self._get_user(event.created_by)
        body = build_event_body(event)

        created = await self._call_with_refresh(
            user,
            lambda token: self.calendar_client.insert_event(token, body),
            EventCreationError,
            "create event",
        )
        event_id = created.get("id")
        if not event_id:
            raise EventCreationError("failed to create event: response carried no event id")

        meeting = Meeting(
            title=event.title,
            description=event.description,
            start_time=event.start_time,
            end_time=event.end_time,
            event_id=event_id,
            attendees=Meeting.join_attendees(event.attendees),
            created_by=event.created_by,
        )
        await self.meeting_repo.create_meeting(meeting)
        logger.info("Event created", extra={"event_id": event_id, "link": created.get("htmlLink")})
        return event_id

    async def list_events(self, email: str) -> list[EventOutput]:
        """Upcoming single events in [now, now + 7 days), earliest first. Read from the calendar only."""
        user = await self._get_user(email)
        time_min = self._now()
        time_max = time_min + LISTING_WINDOW

        items = await self._call_with_refresh(
            user,
            lambda token: self.calendar_client.list_events(token, time_min, time_max),
            EventListingError,
            "list events",
        )
        events = [event_output_from_item(item, email) for item in items]
        events.sort(key=lambda e: e.start_time or time_max)
        return events

    async def _get_user(self, email: str) -> User:
        user = await self.user_repo.get_user_by_email(email)
        if user is None:
            logger.error("User not found", extra={"email": email})
            raise UserNotFound(email)
        return user

    async def _call_with_refresh(
        self,
        user: User,
        call: Callable[[str], Awaitable[T]],
        error_cls: type[ExternalAPIError],
        action: str,
    ) -> T:
        """Run ``call`` with the stored access token; on token expiry refresh once and retry once."""
        try:
            return await call(user.access_token or "")
        except asyncio.TimeoutError:
            raise
        except Exception as e:
            logger.warning(f"Google Calendar call failed ({action}): {e}")
            if not is_token_expired_error(e):
                raise error_cls(f"failed to {action}: {e}") from e

        logger.info("Attempting to refresh token", extra={"user_id": str(user.id)})
        access_token = await self._refresh_credentials(user)
        try:
            return await call(access_token)
        except asyncio.TimeoutError:
            raise
        except Exception as e:
            raise error_cls(f"failed to {action} after token refresh: {e}") from e

    async def _refresh_credentials(self, user: User) -> str:
        # TokenRefreshError propagates before the user row is touched
        token_set = await self.oauth_client.refresh(user.refresh_token or "")
        user.access_token = token_set.access_token
        user.expires_at = token_set.expires_at
        if token_set.refresh_token:
            user.refresh_token = token_set.refresh_token
        await self.user_repo.update_user(user)
        return token_set.access_token
