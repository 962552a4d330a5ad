from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.core.settings import DatabaseSettings, get_settings


logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_sessionmaker: async_sessionmaker[AsyncSession] | None = None

# Migrations run synchronously; async drivers map to their sync siblings.
SYNC_DRIVERS = {
    "sqlite+aiosqlite": "sqlite",
    "postgresql+asyncpg": "postgresql+psycopg",
}


def engine_options(cfg: DatabaseSettings) -> dict[str, Any]:
    url = cfg.sqlalchemy_url()
    options: dict[str, Any] = {"pool_pre_ping": cfg.pre_ping}
    # Pool sizing only applies to the queue pool used by server databases.
    if url.startswith("postgresql"):
        options.update(
            pool_size=max(cfg.min_conns, 1),
            max_overflow=cfg.max_conns - max(cfg.min_conns, 1),
            pool_recycle=cfg.max_conn_lifetime_seconds,
        )
    return options


def make_sync_url(url: str) -> str:
    u = make_url(url)
    driver = SYNC_DRIVERS.get(u.drivername)
    if driver is not None:
        u = u.set(drivername=driver)
    if u.drivername.startswith("postgresql+psycopg") and "ssl" in u.query:
        # asyncpg spells it `ssl`, libpq `sslmode`.
        mode = u.query["ssl"]
        u = u.difference_update_query(["ssl"]).update_query_dict({"sslmode": mode})
    # str(URL) masks the password; the migration connection needs it.
    return u.render_as_string(hide_password=False)


def get_engine() -> AsyncEngine:
    """Create the async engine lazily to avoid side effects at import time."""

    global _engine
    if _engine is None:
        cfg = get_settings().database
        _engine = create_async_engine(cfg.sqlalchemy_url(), **engine_options(cfg))
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    global _sessionmaker
    if _sessionmaker is None:
        _sessionmaker = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _sessionmaker


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an AsyncSession."""

    sessionmaker = get_sessionmaker()
    async with sessionmaker() as session:
        yield session


async def ping_db() -> None:
    async with get_engine().connect() as conn:
        await conn.execute(text("SELECT 1"))


async def dispose_engine() -> None:
    global _engine, _sessionmaker
    if _engine is not None:
        await _engine.dispose()
        logger.info("database engine disposed")
    _engine = None
    _sessionmaker = None
