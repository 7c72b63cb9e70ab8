import os
from datetime import time
from typing import AsyncGenerator, Callable, Dict

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.auth.security import create_access_token
from app.core.models import TemplateSlot, Timetable
from app.db.session import Base, get_db
from app.main import app


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture()
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Fresh in-memory database per test; also overrides the FastAPI session dependency."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:

        async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
            yield session

        app.dependency_overrides[get_db] = override_get_db
        yield session

    app.dependency_overrides.pop(get_db, None)
    await engine.dispose()


@pytest.fixture()
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def auth_headers() -> Callable[..., Dict[str, str]]:
    def _headers(user_id: int = 1, role: str = "USER", organization_id: int = 10) -> Dict[str, str]:
        token = create_access_token(
            subject={"user_id": user_id, "role": role, "organization_id": organization_id}
        )
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture()
async def template(db_session: AsyncSession) -> Timetable:
    """Weekly template owned by user 1 with one Monday 09:00-10:00 slot for Li Hua."""
    timetable = Timetable(name="Coach Zhang", is_weekly=True, organization_id=10, owner_id=1)
    db_session.add(timetable)
    await db_session.flush()
    db_session.add(
        TemplateSlot(
            timetable_id=timetable.id,
            day_of_week="MONDAY",
            start_time=time(9, 0),
            end_time=time(10, 0),
            student_name="Li Hua",
            subject="Math",
        )
    )
    await db_session.commit()
    await db_session.refresh(timetable)
    return timetable


@pytest.fixture()
def add_slot(db_session: AsyncSession):
    async def _add(template_id: int, day: str, start: time, end: time, student: str, **extra) -> TemplateSlot:
        slot = TemplateSlot(
            timetable_id=template_id,
            day_of_week=day,
            start_time=start,
            end_time=end,
            student_name=student,
            **extra,
        )
        db_session.add(slot)
        await db_session.commit()
        await db_session.refresh(slot)
        return slot

    return _add
