from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.api.middleware import RateLimitMiddleware
from app.api.problem_details import ProblemDetailsRenderer


def test_rate_limit_returns_problem_document(make_app: Callable[..., FastAPI]) -> None:
    app = make_app(server={"rate_limit": {"enabled": True, "limit": "2/minute"}})
    with TestClient(app) as c:
        assert c.get("/health/liveness").status_code == 200
        assert c.get("/health/liveness").status_code == 200
        r = c.get("/health/liveness")

    assert r.status_code == 429, r.text
    body = r.json()
    assert body["status"] == 429
    assert body["type"].endswith("/too_many_requests")
    assert body["detail"] == "rate limit exceeded"
    assert int(r.headers["retry-after"]) >= 1


def test_rate_limit_is_shared_across_clients() -> None:
    served: list[str] = []
    statuses: list[int] = []

    async def inner(scope, receive, send) -> None:
        served.append(scope["client"][0])
        await send({"type": "http.response.start", "status": 200, "headers": []})
        await send({"type": "http.response.body", "body": b""})

    async def receive() -> dict:
        return {"type": "http.request", "body": b"", "more_body": False}

    async def send(message: dict) -> None:
        if message["type"] == "http.response.start":
            statuses.append(message["status"])

    limiter = RateLimitMiddleware(inner, "1/minute", ProblemDetailsRenderer("https://example.com/"))

    async def run() -> None:
        for ip in ("10.0.0.1", "10.0.0.2"):
            scope = {"type": "http", "method": "GET", "path": "/", "headers": [], "client": (ip, 4000)}
            await limiter(scope, receive, send)

    asyncio.run(run())
    assert statuses == [200, 429]
    assert served == ["10.0.0.1"]


def test_rate_limit_disabled_by_default(client: TestClient) -> None:
    for _ in range(10):
        assert client.get("/health/liveness").status_code == 200


def test_oversized_body_is_413(make_app: Callable[..., FastAPI]) -> None:
    with TestClient(make_app(server={"max_request_size": 48})) as c:
        r = c.post("/users", json={"name": "x" * 64, "email": "a@example.com"})
        assert r.status_code == 413, r.text
        assert r.json()["type"].endswith("/request_entity_too_large")

        r = c.post("/users", json={"name": "x", "email": "a@b.co"})
        assert r.status_code == 201, r.text


def test_custom_headers(make_app: Callable[..., FastAPI]) -> None:
    app = make_app(
        server={
            "custom_headers": [
                {"name": "X-Frame-Options", "value": "DENY"},
                {"name": "Content-Type", "value": "text/plain"},
                {"name": "Cache-Control", "value": "no-store", "override": True},
                {"name": "X-Disabled", "value": "1", "enabled": False},
            ]
        }
    )
    with TestClient(app) as c:
        r = c.get("/health/liveness")
    assert r.headers["x-frame-options"] == "DENY"
    # Without override an existing header is kept.
    assert r.headers["content-type"] == "application/json"
    assert r.headers["cache-control"] == "no-store"
    assert "x-disabled" not in r.headers


def test_cors_preflight(make_app: Callable[..., FastAPI]) -> None:
    app = make_app(
        server={
            "cors": {
                "enabled": True,
                "allow_origins": ["http://localhost:3000"],
                "allow_methods": ["get", "post"],
                "allow_headers": ["Content-Type"],
                "max_age_hour": 2,
            }
        }
    )
    with TestClient(app) as c:
        r = c.options(
            "/users",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "Content-Type",
            },
        )
        assert r.status_code == 200, r.text
        assert r.headers["access-control-allow-origin"] == "http://localhost:3000"
        assert r.headers["access-control-max-age"] == "7200"

        r = c.get("/users", headers={"Origin": "http://evil.example"})
        assert "access-control-allow-origin" not in r.headers


def test_metrics_use_route_template(make_app: Callable[..., FastAPI]) -> None:
    app = make_app(prometheus={"enabled": True})
    with TestClient(app) as c:
        assert c.get(f"/users/{uuid.uuid4()}").status_code == 404
        text = c.get("/metrics").text

    assert "baseapp_http_server_request_duration_seconds_bucket" in text
    count = app.state.metrics.registry.get_sample_value(
        "baseapp_http_server_request_duration_seconds_count",
        {"path": "/users/{user_id}", "method": "GET", "status": "404"},
    )
    assert count == 1.0


def test_access_log(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.INFO, logger="app.access"):
        client.get("/health/liveness")
    records = [r for r in caplog.records if r.name == "app.access"]
    assert records
    rec = records[-1]
    assert rec.method == "GET"
    assert rec.path == "/health/liveness"
    assert rec.status_code == 200
    assert rec.client_ip == "testclient"
