import asyncio
import os
from datetime import datetime, timedelta, timezone

# must be set before anything under tertil is imported
os.environ.setdefault("SECRET", "test-secret-not-for-production")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./tertil-test.db")
os.environ.setdefault("EMAIL_TRANSPORT", "dummy")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from tertil.database import Base, get_db
from tertil.main import app
from tertil.models import Program, ProgramStatus, ProgramType, User
from tertil.services.sections import ReadingBoard, SectionKind
from tertil.utils import get_current_user


@pytest.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def sent_notifications(monkeypatch):
    """Record completion/approval notifications instead of sending email."""
    calls = []

    def _recorder(kind):
        def _notify(program_id):
            calls.append((kind, program_id))
            return asyncio.sleep(0)
        return _notify

    monkeypatch.setattr("tertil.services.assignment.notify_program_completed", _recorder("completed"))
    monkeypatch.setattr("tertil.services.programs.notify_program_approved", _recorder("approved"))
    return calls


@pytest.fixture
def make_user(session_maker):
    """Users are written in their own session so a rollback in `db` never expires them."""
    counter = {"n": 0}

    async def _make(first_name="Ahmet", last_name="Yilmaz", *, admin=False):
        counter["n"] += 1
        user = User(
            email=f"user{counter['n']}@example.com",
            hashed_password="not-a-real-hash",
            first_name=first_name,
            last_name=last_name,
            is_active=True,
            is_superuser=admin,
            is_verified=True,
        )
        async with session_maker() as session:
            session.add(user)
            await session.commit()
        return user

    return _make


@pytest.fixture
def make_program(session_maker):
    async def _make(
        creator,
        *,
        count=30,
        kind=SectionKind.whole,
        status=ProgramStatus.active,
        approved=True,
        is_public=True,
        payload=None,
        title="Ramadan Hatim",
    ):
        now = datetime.now(timezone.utc)
        board = ReadingBoard.create(count, kind)
        program = Program(
            title=title,
            program_type=ProgramType.hatim,
            created_by=creator.id,
            start_date=now,
            end_date=now + timedelta(days=30),
            target_count=count,
            section_kind=kind,
            sections=payload if payload is not None else board.to_payload(),
            status=status,
            is_approved=approved,
            is_public=is_public,
            total_participants=0,
            completed_parts=0,
        )
        async with session_maker() as session:
            session.add(program)
            await session.commit()
        return program

    return _make


@pytest.fixture
async def client(session_maker, sent_notifications):
    """HTTP client; set ``client.user`` to act as that user (None = anonymous)."""

    async def _get_db():
        async with session_maker() as session:
            yield session

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        c.user = None
        app.dependency_overrides[get_db] = _get_db
        app.dependency_overrides[get_current_user] = lambda: c.user
        try:
            yield c
        finally:
            app.dependency_overrides.clear()
