from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterator
from pathlib import Path
import sys
from typing import Any

import fakeredis
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient


# Ensure `import app.*` works when pytest chooses an import mode that
# doesn't automatically add the project root to sys.path.
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))


@pytest.fixture()
def fake_server() -> fakeredis.FakeServer:
    return fakeredis.FakeServer()


@pytest.fixture()
def fake_redis(fake_server: fakeredis.FakeServer) -> fakeredis.FakeAsyncRedis:
    return fakeredis.FakeAsyncRedis(server=fake_server, decode_responses=True)


@pytest.fixture()
def redis_sync(fake_server: fakeredis.FakeServer) -> fakeredis.FakeRedis:
    """Synchronous view of the same in-memory server, for assertions."""

    return fakeredis.FakeRedis(server=fake_server, decode_responses=True)


@pytest.fixture()
def make_app(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    fake_redis: fakeredis.FakeAsyncRedis,
) -> Iterator[Callable[..., FastAPI]]:
    """Factory for apps over an isolated sqlite DB and an in-memory Valkey.

    Keyword arguments are Settings overrides, e.g. `server={"max_request_size": 10}`.
    """

    # No stray config.yaml from the working directory.
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("BASEAPP_CONFIG", raising=False)

    db_path = tmp_path / "test.db"
    monkeypatch.setenv("BASEAPP_DATABASE__URL", f"sqlite+aiosqlite:///{db_path.as_posix()}")

    # Clear settings cache and reset DB engine/sessionmaker and the Valkey client.
    from app.core.settings import get_settings

    get_settings.cache_clear()

    from app.db import session as db_session
    from app.db import valkey

    db_session._engine = None  # noqa: SLF001
    db_session._sessionmaker = None  # noqa: SLF001

    # Import models so Base.metadata is fully populated.
    import app.models  # noqa: F401

    from app.db.base import Base

    async def _init_schema() -> None:
        engine = db_session.get_engine()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        # The app opens its own engine on the TestClient event loop.
        await db_session.dispose_engine()

    asyncio.run(_init_schema())

    valkey._redis = fake_redis  # noqa: SLF001

    from app.core.errors import StackTraceOrder, set_stack_trace_order
    from app.core.settings import load_settings
    from app.main import create_app

    def _make(**overrides: Any) -> FastAPI:
        return create_app(load_settings(**overrides))

    yield _make

    set_stack_trace_order(StackTraceOrder.NEWEST_FIRST)
    valkey._redis = None  # noqa: SLF001
    get_settings.cache_clear()


@pytest.fixture()
def client(make_app: Callable[..., FastAPI]) -> Iterator[TestClient]:
    with TestClient(make_app()) as c:
        yield c
