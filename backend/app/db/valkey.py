"""Lazily created Valkey (Redis protocol) client used by the session store."""

from __future__ import annotations

import logging

from redis.asyncio import Redis

from app.core.settings import get_settings


logger = logging.getLogger(__name__)

_redis: Redis | None = None


def get_redis() -> Redis:
    global _redis
    if _redis is None:
        cfg = get_settings().valkey
        _redis = Redis(
            host=cfg.host,
            port=cfg.port,
            db=cfg.db,
            password=cfg.password,
            max_connections=cfg.max_connections,
            socket_connect_timeout=cfg.dial_connect_timeout_seconds,
            socket_timeout=cfg.dial_read_timeout_seconds,
            decode_responses=True,
        )
    return _redis


async def ping_redis() -> None:
    await get_redis().ping()


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        logger.info("valkey client closed")
    _redis = None
