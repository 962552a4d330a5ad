from __future__ import annotations

from pathlib import Path

import pytest

from app import cli
from app.core.settings import get_settings


@pytest.fixture(autouse=True)
def _clean_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.chdir(tmp_path)
    # setenv first so monkeypatch restores whatever apply_args writes.
    for name in ("BASEAPP_CONFIG", "BASEAPP_LOG_LEVEL", "BASEAPP_LOG_FORMAT"):
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_flags_outrank_config_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config = tmp_path / "app.yaml"
    config.write_text("log_level: error\nlog_format: text\n", encoding="utf-8")

    args = cli.build_parser().parse_args(["-c", str(config), "--log-level", "debug"])
    cli.apply_args(args)

    settings = get_settings()
    assert settings.log_level == "debug"
    assert settings.log_format == "text"


def test_rejects_unknown_level() -> None:
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["--log-level", "verbose"])


def test_main_exits_1_on_bad_config(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    def _no_serve(*_args, **_kwargs) -> None:
        raise AssertionError("server must not start")

    monkeypatch.setattr(cli.uvicorn, "run", _no_serve)
    assert cli.main(["-c", "/nonexistent/config.yaml"]) == 1
    assert "VALIDATION" in capsys.readouterr().err


def test_main_runs_server(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BASEAPP_SERVER__PORT", "9123")
    calls: list[dict] = []

    def _serve(target: str, **kwargs) -> None:
        calls.append({"target": target, **kwargs})

    monkeypatch.setattr(cli.uvicorn, "run", _serve)
    monkeypatch.setattr(cli, "setup_logging", lambda *_a: None)

    assert cli.main(["--log-format", "json"]) == 0
    assert calls[0]["target"] == "app.main:app"
    assert calls[0]["port"] == 9123
    assert calls[0]["timeout_graceful_shutdown"] == 5
