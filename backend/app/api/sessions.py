"""Server-side sessions stored in Valkey, keyed by a cookie token.

The session is loaded before the route runs and committed lazily: once, when
the response starts (so the cookie can still be set) or at the end of the
request if nothing was sent.
"""

from __future__ import annotations

import enum
import json
import logging
import secrets
import time
from email.utils import formatdate
from http.cookies import SimpleCookie
from typing import Any

from fastapi import Request
from opentelemetry import trace
from redis.asyncio import Redis
from redis.exceptions import RedisError
from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from app.api.problem_details import ProblemDetailsRenderer
from app.core.errors import ErrorKind
from app.core.settings import SessionSettings
from app.core.telemetry import trace_id_of


logger = logging.getLogger(__name__)

# Store failures: network/protocol errors and undecodable payloads.
SESSION_STORE_ERRORS = (RedisError, OSError, ValueError, KeyError, TypeError)


class SessionStatus(enum.Enum):
    UNMODIFIED = "unmodified"
    MODIFIED = "modified"
    DESTROYED = "destroyed"


class Session:
    def __init__(
        self,
        token: str | None,
        values: dict[str, Any],
        deadline: float,
    ) -> None:
        self._token = token
        self._values = values
        self._deadline = deadline
        self._status = SessionStatus.UNMODIFIED
        # Tokens to delete from the store on commit (renewed or destroyed).
        self._stale_tokens: list[str] = []

    @property
    def token(self) -> str | None:
        return self._token

    @property
    def deadline(self) -> float:
        return self._deadline

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def stale_tokens(self) -> tuple[str, ...]:
        return tuple(self._stale_tokens)

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def items(self) -> dict[str, Any]:
        return dict(self._values)

    def put(self, key: str, value: Any) -> None:
        self._values[key] = value
        self._status = SessionStatus.MODIFIED

    def pop(self, key: str, default: Any = None) -> Any:
        if key not in self._values:
            return default
        self._status = SessionStatus.MODIFIED
        return self._values.pop(key)

    def clear(self) -> None:
        if not self._values:
            return
        self._values.clear()
        self._status = SessionStatus.MODIFIED

    def destroy(self) -> None:
        self._values.clear()
        if self._token is not None:
            self._stale_tokens.append(self._token)
        self._token = None
        self._status = SessionStatus.DESTROYED

    def renew_token(self) -> None:
        """Issue a new token for the same data (call after privilege changes)."""

        if self._token is not None:
            self._stale_tokens.append(self._token)
        self._token = new_token()
        self._status = SessionStatus.MODIFIED


def new_token() -> str:
    return secrets.token_urlsafe(32)


class RedisSessionStore:
    """JSON `{"deadline", "values"}` documents under `<prefix><token>`."""

    def __init__(self, redis: Redis, prefix: str) -> None:
        self._redis = redis
        self._prefix = prefix

    def key(self, token: str) -> str:
        return f"{self._prefix}{token}"

    async def find(self, token: str) -> tuple[dict[str, Any], float] | None:
        raw = await self._redis.get(self.key(token))
        if raw is None:
            return None
        doc = json.loads(raw)
        return dict(doc["values"]), float(doc["deadline"])

    async def commit(self, token: str, values: dict[str, Any], deadline: float) -> None:
        ttl_ms = int((deadline - time.time()) * 1000)
        if ttl_ms <= 0:
            await self.delete(token)
            return
        doc = json.dumps({"deadline": deadline, "values": values})
        await self._redis.set(self.key(token), doc, px=ttl_ms)

    async def delete(self, token: str) -> None:
        await self._redis.delete(self.key(token))


class SessionManager:
    def __init__(self, store: RedisSessionStore, cfg: SessionSettings) -> None:
        self.store = store
        self.cfg = cfg

    async def load(self, token: str | None) -> Session:
        fresh_deadline = time.time() + self.cfg.lifetime_seconds
        if not token:
            return Session(None, {}, fresh_deadline)
        found = await self.store.find(token)
        if found is None:
            # Unknown or expired token: start over, a new token is issued on write.
            logger.debug("session token not found in store, starting a new session")
            return Session(None, {}, fresh_deadline)
        values, deadline = found
        return Session(token, values, deadline)

    async def commit(self, session: Session) -> list[str]:
        """Persist `session`; returns the Set-Cookie header values to send."""

        for stale in session.stale_tokens:
            await self.store.delete(stale)

        if session.status is SessionStatus.DESTROYED:
            return [self.expired_cookie()]
        if session.status is SessionStatus.UNMODIFIED:
            return []

        token = session.token
        if token is None:
            token = new_token()
        await self.store.commit(token, session.items(), session.deadline)
        return [self.cookie(token, session.deadline)]

    def _morsel(self, value: str) -> SimpleCookie:
        cfg = self.cfg
        cookie: SimpleCookie = SimpleCookie()
        cookie[cfg.cookie_name] = value
        morsel = cookie[cfg.cookie_name]
        morsel["path"] = cfg.cookie_path
        if cfg.cookie_domain:
            morsel["domain"] = cfg.cookie_domain
        if cfg.cookie_secure:
            morsel["secure"] = True
        if cfg.cookie_http_only:
            morsel["httponly"] = True
        morsel["samesite"] = cfg.cookie_same_site.capitalize()
        return cookie

    def cookie(self, token: str, deadline: float) -> str:
        cookie = self._morsel(token)
        if self.cfg.cookie_persist:
            morsel = cookie[self.cfg.cookie_name]
            morsel["expires"] = formatdate(deadline, usegmt=True)
            morsel["max-age"] = max(int(deadline - time.time()), 0)
        return cookie.output(header="").strip()

    def expired_cookie(self) -> str:
        cookie = self._morsel("")
        morsel = cookie[self.cfg.cookie_name]
        morsel["expires"] = formatdate(0, usegmt=True)
        morsel["max-age"] = 0
        return cookie.output(header="").strip()


class ResponseContext:
    """Commit state of one request's session.

    `commit_if_needed()` persists the session at most once, however many
    times it is called.
    """

    def __init__(self, manager: SessionManager, session: Session) -> None:
        self._manager = manager
        self._session = session
        self.committed = False

    async def commit_if_needed(self) -> list[str]:
        if self.committed:
            return []
        self.committed = True
        return await self._manager.commit(self._session)


class SessionMiddleware:
    def __init__(
        self,
        app: ASGIApp,
        manager: SessionManager,
        renderer: ProblemDetailsRenderer,
        skip_paths: list[str] | None = None,
    ) -> None:
        self.app = app
        self.manager = manager
        self.renderer = renderer
        self.skip_paths = frozenset(skip_paths or ())

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope["path"] in self.skip_paths:
            await self.app(scope, receive, send)
            return

        token = Request(scope).cookies.get(self.manager.cfg.cookie_name)
        try:
            session = await self.manager.load(token)
        except SESSION_STORE_ERRORS as exc:
            await self._fail(scope, receive, send, "failed to load session", exc)
            return

        scope.setdefault("state", {})["session"] = session
        ctx = ResponseContext(self.manager, session)
        replaced = False

        async def send_wrapper(message: Message) -> None:
            nonlocal replaced
            if replaced:
                return
            if message["type"] == "http.response.start":
                try:
                    cookies = await ctx.commit_if_needed()
                except SESSION_STORE_ERRORS as exc:
                    # Headers are not out yet, so the response can still be swapped.
                    replaced = True
                    await self._fail(scope, receive, send, "failed to commit session", exc)
                    return
                headers = MutableHeaders(scope=message)
                headers.add_vary_header("Cookie")
                for value in cookies:
                    headers.append("set-cookie", value)
            await send(message)

        await self.app(scope, receive, send_wrapper)
        if not ctx.committed:
            # Nothing was sent; the cookie is lost but the data is kept.
            await ctx.commit_if_needed()

    async def _fail(
        self, scope: Scope, receive: Receive, send: Send, message: str, exc: Exception
    ) -> None:
        err = ErrorKind.SYSTEM_INTERNAL.new(message, cause=exc)
        response = self.renderer.response(err, trace_id_of(trace.get_current_span()))
        await response(scope, receive, send)


def get_session(request: Request) -> Session:
    """FastAPI dependency returning the current request's session."""

    session = getattr(request.state, "session", None)
    if session is None:
        raise ErrorKind.INVALID_STATE.new("session middleware is not installed")
    return session
