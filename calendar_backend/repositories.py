# calendar_backend/repositories.py
"""Credential Store and Meeting Store over the relational database."""

import logging
from datetime import datetime
from typing import Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from calendar_backend.models import Meeting, User, utcnow

logger = logging.getLogger(__name__)


class UserRepository(Protocol):
    async def create_user(self, user: User) -> User: ...

    async def get_user_by_google_id(self, google_id: str) -> Optional[User]: ...

    async def get_user_by_email(self, email: str) -> Optional[User]: ...

    async def update_user(self, user: User) -> User: ...


class MeetingRepository(Protocol):
    async def create_meeting(self, meeting: Meeting) -> Meeting: ...

    async def list_meetings_by_user(self, email: str, start: datetime, end: datetime) -> list[Meeting]: ...

    async def get_meeting_by_id(self, meeting_id: int) -> Optional[Meeting]: ...


class SQLUserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_user(self, user: User) -> User:
        self.session.add(user)
        await self.session.commit()
        await self.session.refresh(user)
        logger.info("Created user", extra={"user_id": str(user.id)})
        return user

    async def get_user_by_google_id(self, google_id: str) -> Optional[User]:
        result = await self.session.execute(select(User).where(User.google_id == google_id))
        return result.scalar_one_or_none()

    async def get_user_by_email(self, email: str) -> Optional[User]:
        result = await self.session.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    async def update_user(self, user: User) -> User:
        user.updated_at = utcnow()
        self.session.add(user)
        await self.session.commit()
        await self.session.refresh(user)
        return user


class SQLMeetingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_meeting(self, meeting: Meeting) -> Meeting:
        self.session.add(meeting)
        try:
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        await self.session.refresh(meeting)
        return meeting

    async def list_meetings_by_user(self, email: str, start: datetime, end: datetime) -> list[Meeting]:
        statement = (
            select(Meeting)
            .where(Meeting.created_by == email)
            .where(Meeting.start_time >= start)
            .where(Meeting.end_time <= end)
            .order_by(Meeting.start_time)
        )
        result = await self.session.execute(statement)
        return list(result.scalars().all())

    async def get_meeting_by_id(self, meeting_id: int) -> Optional[Meeting]:
        return await self.session.get(Meeting, meeting_id)
