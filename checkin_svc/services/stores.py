from __future__ import annotations
import uuid
from dataclasses import dataclass
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from ..models import Attendance, AttendanceStatus, Event, EventSession


@dataclass
class InsertResult:
    inserted: bool
    record: Attendance | None


class EventStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, event_id: uuid.UUID) -> Event | None:
        return (await self.db.execute(select(Event).where(Event.id == event_id))).scalar_one_or_none()


class EventSessionStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, session_id: uuid.UUID) -> EventSession | None:
        return (await self.db.execute(
            select(EventSession).where(EventSession.id == session_id)
        )).scalar_one_or_none()


class AttendanceStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_checked_in(self, event_id: uuid.UUID, volunteer_id: str) -> Attendance | None:
        return (await self.db.execute(
            select(Attendance).where(
                Attendance.event_id == event_id,
                Attendance.volunteer_id == volunteer_id,
                Attendance.status == AttendanceStatus.CHECKED_IN,
            )
        )).scalar_one_or_none()

    async def try_insert_checked_in(self, event_id: uuid.UUID, volunteer_id: str, record: Attendance) -> InsertResult:
        """Insert ``record`` unless a checked_in row already exists.

        The partial unique index decides the race: the loser gets
        ``inserted=False`` and the winner's row. Any other integrity failure
        (a vanished event or session) leaves no checked_in row behind and is
        re-raised.
        """
        record.event_id = event_id
        record.volunteer_id = volunteer_id
        record.status = AttendanceStatus.CHECKED_IN
        self.db.add(record)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            existing = await self.get_checked_in(event_id, volunteer_id)
            if existing is None:
                raise
            return InsertResult(inserted=False, record=existing)
        return InsertResult(inserted=True, record=record)

    async def rollback(self) -> None:
        await self.db.rollback()

    async def list_for_event(self, event_id: uuid.UUID) -> list[Attendance]:
        rows = (await self.db.execute(
            select(Attendance).where(Attendance.event_id == event_id).order_by(Attendance.check_in_time.asc())
        )).scalars().all()
        return list(rows)

    async def list_for_volunteer(self, volunteer_id: str) -> list[Attendance]:
        rows = (await self.db.execute(
            select(Attendance).where(Attendance.volunteer_id == volunteer_id).order_by(Attendance.check_in_time.desc())
        )).scalars().all()
        return list(rows)
