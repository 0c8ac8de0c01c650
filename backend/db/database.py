from collections.abc import AsyncGenerator
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from core.config import settings


class Base(DeclarativeBase):
    pass


def _make_engine(url: str) -> Optional[AsyncEngine]:
    if not url:
        # Startup refuses to run without DATABASE_URL (see main.lifespan).
        return None
    return create_async_engine(url, echo=settings.database_echo)


engine = _make_engine(settings.database_url)
async_session_maker = async_sessionmaker(engine, expire_on_commit=False) if engine is not None else None


async def create_db_and_tables():
    # Register every model on Base.metadata before create_all.
    from db import models  # noqa: F401

    settings.require()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    if async_session_maker is None:
        raise RuntimeError("Missing required settings: DATABASE_URL")
    async with async_session_maker() as session:
        yield session
