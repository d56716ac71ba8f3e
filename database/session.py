"""
Async SQLAlchemy session factory.

PostgreSQL (asyncpg) in production; SQLite (aiosqlite) URLs are accepted
for local runs and tests and skip the connection-pool sizing.
"""

from __future__ import annotations

from typing import Any, Dict

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from config.settings import config
from database.models import Base


def build_engine(url: str) -> AsyncEngine:
    kwargs: Dict[str, Any] = {"echo": False}
    if not url.startswith("sqlite"):
        kwargs.update(pool_size=10, max_overflow=20, pool_recycle=3600)
    return create_async_engine(url, **kwargs)


engine = build_engine(config.database_url)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def create_tables(bind: AsyncEngine = engine) -> None:
    """Create the credential and mapping tables if they do not exist."""
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
