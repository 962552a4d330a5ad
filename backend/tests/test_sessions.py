from __future__ import annotations

import asyncio
import json
from collections.abc import Callable

import fakeredis
import pytest
from fastapi import APIRouter, Depends, FastAPI
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from app.api.sessions import (
    ResponseContext,
    Session,
    SessionManager,
    SessionStatus,
    get_session,
)
from app.core.settings import SessionSettings


def _routes() -> APIRouter:
    router = APIRouter(prefix="/visits")

    @router.get("")
    async def read(session: Session = Depends(get_session)) -> dict:
        return {"count": session.get("count", 0)}

    @router.post("")
    async def bump(session: Session = Depends(get_session)) -> dict:
        count = session.get("count", 0) + 1
        session.put("count", count)
        return {"count": count}

    @router.post("/renew")
    async def renew(session: Session = Depends(get_session)) -> dict:
        session.renew_token()
        return {"count": session.get("count", 0)}

    @router.delete("", status_code=204)
    async def forget(session: Session = Depends(get_session)) -> None:
        session.destroy()

    return router


@pytest.fixture()
def session_client(make_app: Callable[..., FastAPI]):
    app = make_app()
    app.include_router(_routes())
    with TestClient(app) as c:
        yield c


def _token(client: TestClient) -> str:
    return client.cookies["session"]


def test_health_check_sets_no_cookie(session_client: TestClient) -> None:
    r = session_client.get("/health/liveness")
    assert r.status_code == 200, r.text
    assert "set-cookie" not in r.headers
    assert "Cookie" in r.headers["vary"]


def test_read_only_request_sets_no_cookie(session_client: TestClient) -> None:
    r = session_client.get("/visits")
    assert r.status_code == 200, r.text
    assert r.json() == {"count": 0}
    assert "set-cookie" not in r.headers


def test_write_sets_cookie_and_persists(
    session_client: TestClient, redis_sync: fakeredis.FakeRedis
) -> None:
    r = session_client.post("/visits")
    assert r.status_code == 200, r.text
    cookie = r.headers["set-cookie"]
    assert cookie.startswith("session=")
    assert "HttpOnly" in cookie
    assert "Path=/" in cookie
    assert "SameSite=Lax" in cookie
    assert "expires=" in cookie.lower()

    token = _token(session_client)
    raw = redis_sync.get(f"scs:session:{token}")
    doc = json.loads(raw)
    assert doc["values"] == {"count": 1}
    assert doc["deadline"] > 0

    r = session_client.post("/visits")
    assert r.json() == {"count": 2}

    # Reading an existing session does not re-issue the cookie.
    r = session_client.get("/visits")
    assert r.json() == {"count": 2}
    assert "set-cookie" not in r.headers


def test_renew_token_moves_data(
    session_client: TestClient, redis_sync: fakeredis.FakeRedis
) -> None:
    session_client.post("/visits")
    old = _token(session_client)

    r = session_client.post("/visits/renew")
    assert r.status_code == 200, r.text
    new = _token(session_client)
    assert new != old
    assert redis_sync.exists(f"scs:session:{old}") == 0

    assert session_client.get("/visits").json() == {"count": 1}


def test_destroy_expires_cookie(
    session_client: TestClient, redis_sync: fakeredis.FakeRedis
) -> None:
    session_client.post("/visits")
    token = _token(session_client)

    r = session_client.delete("/visits")
    assert r.status_code == 204, r.text
    assert "max-age=0" in r.headers["set-cookie"].lower()
    assert redis_sync.exists(f"scs:session:{token}") == 0


def test_store_failure_on_load_is_500(
    session_client: TestClient,
    fake_redis: fakeredis.FakeAsyncRedis,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    async def _down(*_args, **_kwargs):
        raise RedisConnectionError("valkey.internal:6379 unreachable")

    monkeypatch.setattr(fake_redis, "get", _down)
    session_client.cookies.set("session", "some-token")

    r = session_client.get("/visits")
    assert r.status_code == 500, r.text
    assert r.json()["type"].endswith("/internal_server_error")
    assert "valkey.internal" not in r.text


def test_store_failure_on_commit_is_500(
    session_client: TestClient,
    fake_redis: fakeredis.FakeAsyncRedis,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    async def _down(*_args, **_kwargs):
        raise RedisConnectionError("valkey.internal:6379 connection reset")

    monkeypatch.setattr(fake_redis, "set", _down)

    r = session_client.post("/visits")
    assert r.status_code == 500, r.text
    assert r.headers["content-type"] == "application/problem+json"
    assert r.json()["type"].endswith("/internal_server_error")
    assert "detail" not in r.json()
    assert "valkey.internal" not in r.text
    assert "set-cookie" not in r.headers


def test_metrics_path_skips_sessions(make_app: Callable[..., FastAPI]) -> None:
    with TestClient(make_app(prometheus={"enabled": True})) as c:
        r = c.get("/metrics")
    assert r.status_code == 200, r.text
    assert "vary" not in r.headers


class _CountingManager(SessionManager):
    def __init__(self) -> None:
        super().__init__(store=None, cfg=SessionSettings())  # type: ignore[arg-type]
        self.commits = 0

    async def commit(self, session: Session) -> list[str]:
        self.commits += 1
        return ["session=abc"]


def test_response_context_commits_once() -> None:
    manager = _CountingManager()
    session = Session(None, {}, 0.0)
    session.put("k", "v")
    ctx = ResponseContext(manager, session)

    async def _run() -> list[list[str]]:
        return [await ctx.commit_if_needed(), await ctx.commit_if_needed()]

    first, second = asyncio.run(_run())
    assert first == ["session=abc"]
    assert second == []
    assert ctx.committed is True
    assert manager.commits == 1


def test_session_status_transitions() -> None:
    session = Session("t1", {"a": 1}, 0.0)
    assert session.status is SessionStatus.UNMODIFIED
    assert session.get("a") == 1
    assert session.pop("missing") is None
    assert session.status is SessionStatus.UNMODIFIED

    assert session.pop("a") == 1
    assert session.status is SessionStatus.MODIFIED

    session.destroy()
    assert session.status is SessionStatus.DESTROYED
    assert session.token is None
    assert session.stale_tokens == ("t1",)
