"""Shared fixtures: a throwaway SQLite database, seeded events and fake collaborators."""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("AUTH_JWKS_URL", "http://auth.test/.well-known/jwks.json")
os.environ.setdefault("RL_ENABLED", "false")
os.environ.setdefault("QR_SECRET", "test-qr-secret")
os.environ.setdefault("USE_NATS_FOR_BADGES", "false")

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from checkin_svc.models import Base, Event, EventSession
from checkin_svc.services.checkins import AttendanceRecorder
from checkin_svc.services.stores import AttendanceStore, EventSessionStore, EventStore

DUBAI = {"lat": 25.2048, "lng": 55.2708}


class RecordingBadges:
    """Stands in for the badge dispatcher; remembers who was enqueued."""

    def __init__(self):
        self.volunteers = []

    def enqueue(self, volunteer_id, *, event_id=None, token=None):
        self.volunteers.append(volunteer_id)
        return True


class RecordingAudit:
    def __init__(self):
        self.events = []

    async def emit(self, action, **fields):
        self.events.append((action, fields))

    def actions(self):
        return [a for a, _ in self.events]


@pytest_asyncio.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'checkin.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_maker):
    async with session_maker() as s:
        yield s


@pytest.fixture
def badges():
    return RecordingBadges()


@pytest.fixture
def audit():
    return RecordingAudit()


@pytest_asyncio.fixture
async def make_event(session_maker):
    async def _make(location=DUBAI, radius=500, **kwargs):
        async with session_maker() as s:
            event = Event(title=kwargs.pop("title", "Beach clean-up"), location_coordinates=location, geofence_radius=radius, **kwargs)
            s.add(event)
            await s.commit()
            return event
    return _make


@pytest_asyncio.fixture
async def make_session(session_maker):
    async def _make(event_id, location=None, radius=None, **kwargs):
        async with session_maker() as s:
            session = EventSession(event_id=event_id, title=kwargs.pop("title", "Morning shift"),
                                   location_coordinates=location, geofence_radius=radius, **kwargs)
            s.add(session)
            await s.commit()
            return session
    return _make


@pytest.fixture
def make_recorder(badges, audit):
    def _make(db, **overrides):
        kwargs = dict(
            events=EventStore(db),
            sessions=EventSessionStore(db),
            attendance=AttendanceStore(db),
            badges=badges,
            audit=audit,
        )
        kwargs.update(overrides)
        return AttendanceRecorder(**kwargs)
    return _make


@pytest.fixture
def claims():
    return {"sub": "auth0|volunteer-1", "role": "volunteer"}


@pytest_asyncio.fixture
async def client(session_maker, claims, badges, audit):
    from checkin_svc.main import app
    from checkin_svc.deps import get_audit, get_badge_dispatcher, get_claims, get_db

    async def _get_db():
        async with session_maker() as s:
            yield s

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_claims] = lambda: claims
    app.dependency_overrides[get_badge_dispatcher] = lambda: badges
    app.dependency_overrides[get_audit] = lambda: audit
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test", headers={"Authorization": "Bearer test"}) as c:
        yield c
    app.dependency_overrides.clear()


