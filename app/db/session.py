from typing import AsyncGenerator, Dict

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from app.core.config import settings


def engine_options(database_url: str) -> Dict[str, object]:
    """Pool options for the given URL. SQLite (tests, local runs) takes the defaults."""
    if database_url.startswith("sqlite"):
        return {}
    # pool_pre_ping: check the connection is alive before use.
    # pool_recycle: discard connections older than this many seconds.
    return {"pool_pre_ping": True, "pool_recycle": 300}


engine = create_async_engine(
    settings.database_url,
    echo=False,
    future=True,
    **engine_options(settings.database_url),
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def create_tables() -> None:
    """Create every mapped table that does not exist yet (local setup and scripts)."""
    import app.core.models  # noqa: F401  registers all mappers on Base.metadata

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
