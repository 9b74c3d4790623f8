# calendar_backend/models.py
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

ATTENDEE_SEPARATOR = ","


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    google_id: str = Field(unique=True, index=True)
    email: str = Field(unique=True, index=True)
    name: Optional[str] = Field(default=None)
    picture: Optional[str] = Field(default=None, max_length=512)
    access_token: Optional[str] = Field(default=None, max_length=2048)
    refresh_token: Optional[str] = Field(default=None, max_length=2048)
    expires_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class Meeting(SQLModel, table=True):
    __tablename__ = "meetings"

    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    description: str = ""
    start_time: datetime = Field(sa_type=DateTime(timezone=True))
    end_time: datetime = Field(sa_type=DateTime(timezone=True))
    event_id: str = Field(index=True)
    attendees: str = Field(default="")
    created_by: str = Field(index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))

    @property
    def attendee_list(self) -> list[str]:
        if not self.attendees:
            return []
        return self.attendees.split(ATTENDEE_SEPARATOR)

    @staticmethod
    def join_attendees(emails: list[str]) -> str:
        return ATTENDEE_SEPARATOR.join(emails)


class Attendee(SQLModel, table=True):
    __tablename__ = "attendees"

    id: Optional[int] = Field(default=None, primary_key=True)
    meeting_id: int = Field(foreign_key="meetings.id", index=True)
    email: str
