from __future__ import annotations

from app.core.settings import DatabaseSettings
from app.db.session import engine_options, make_sync_url


def test_sync_url_swaps_async_drivers() -> None:
    assert make_sync_url("sqlite+aiosqlite:///./data/dev.db") == "sqlite:///./data/dev.db"
    assert (
        make_sync_url("postgresql+asyncpg://app:s3cret@pg:5432/appdb")
        == "postgresql+psycopg://app:s3cret@pg:5432/appdb"
    )


def test_sync_url_renames_ssl_for_psycopg() -> None:
    cfg = DatabaseSettings(
        host="pg", user="app", password="s3cret", database="appdb", sslmode="require"
    )
    url = make_sync_url(cfg.sqlalchemy_url())
    assert url == "postgresql+psycopg://app:s3cret@pg:5432/appdb?sslmode=require"
    assert "ssl=" not in url


def test_pool_options_only_for_postgres() -> None:
    sqlite = engine_options(DatabaseSettings(url="sqlite+aiosqlite://"))
    assert "pool_size" not in sqlite

    pg = engine_options(
        DatabaseSettings(user="app", password="pw", database="appdb", min_conns=2, max_conns=10)
    )
    assert pg["pool_size"] == 2
    assert pg["max_overflow"] == 8
