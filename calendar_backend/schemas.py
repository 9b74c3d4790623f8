# calendar_backend/schemas.py
import re
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from calendar_backend.exceptions import ValidationError


class CreateEventRequest(BaseModel):
    title: str
    description: str = ""
    start_time: str
    end_time: str
    attendees: list[str] = Field(default_factory=list)


class CreateEventResponse(BaseModel): message: str; event_id: str
class HealthCheckResponse(BaseModel): status: str


class EventResponse(BaseModel):
    title: str
    description: str
    start_time: Optional[datetime]
    end_time: Optional[datetime]
    attendees: list[str]
    event_id: str
    created_by: str


class EventsResponse(BaseModel):
    events: list[EventResponse]


RFC3339_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?(Z|[+-]\d{2}:\d{2})")


def parse_rfc3339(value: str, field_name: str) -> datetime:
    """Parse an RFC 3339 timestamp: full date, time with seconds, and 'Z' or a ±HH:MM offset."""
    if not RFC3339_PATTERN.fullmatch(value):
        raise ValidationError(f"Invalid {field_name} format")
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"Invalid {field_name} format")
