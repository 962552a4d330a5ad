from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from limits import parse as parse_limit
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)
from sqlalchemy.engine import URL

from app.core.errors import ErrorKind, StackTraceOrder


logger = logging.getLogger(__name__)

APP_NAME = "baseapp"
ENV_PREFIX = "BASEAPP_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG"
DEFAULT_CONFIG_FILE = "config.yaml"

HTTP_METHODS = {"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"}


class CORSSettings(BaseModel):
    enabled: bool = False
    allow_origins: list[str] = Field(default_factory=list)
    allow_methods: list[str] = Field(default_factory=list)
    allow_headers: list[str] = Field(default_factory=list)
    expose_headers: list[str] = Field(default_factory=list)
    allow_credentials: bool = False
    # Browsers cap preflight caching at 24h.
    max_age_hour: int = Field(default=0, ge=0, le=24)

    @model_validator(mode="after")
    def _check_enabled(self) -> CORSSettings:
        if not self.enabled:
            return self
        if not self.allow_origins:
            raise ValueError("allow_origins is required when cors is enabled")
        if not self.allow_methods:
            raise ValueError("allow_methods is required when cors is enabled")
        unknown = {m.upper() for m in self.allow_methods} - HTTP_METHODS
        if unknown:
            raise ValueError(f"unsupported cors methods: {sorted(unknown)}")
        for header in (*self.allow_headers, *self.expose_headers):
            if not header.isascii() or not header.isprintable():
                raise ValueError(f"cors header must be printable ascii: {header!r}")
        return self


class RateLimitSettings(BaseModel):
    enabled: bool = False
    # `limits` notation, e.g. "5/second" or "100 per minute".
    limit: str = "5/second"

    @field_validator("limit")
    @classmethod
    def _check_limit(cls, value: str) -> str:
        parse_limit(value)
        return value


class CustomHeader(BaseModel):
    enabled: bool = True
    name: str
    value: str
    override: bool = False


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = Field(default=8080, gt=0, le=65535)
    shutdown_grace_seconds: int = Field(default=5, ge=0)
    idle_timeout_seconds: int = Field(default=60, ge=0)
    # Request bodies above this many bytes are rejected; 0 disables the check.
    max_request_size: int = Field(default=0, ge=0)
    cors: CORSSettings = Field(default_factory=CORSSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    custom_headers: list[CustomHeader] = Field(default_factory=list)


class DatabaseSettings(BaseModel):
    # Full SQLAlchemy URL; takes precedence over the discrete postgres fields.
    url: str | None = None

    host: str = "postgres"
    port: int = Field(default=5432, gt=0, le=65535)
    user: str = ""
    password: str = ""
    database: str = ""
    sslmode: Literal[
        "disable", "allow", "prefer", "require", "verify-ca", "verify-full"
    ] = "disable"

    min_conns: int = Field(default=2, ge=0)
    max_conns: int = Field(default=10, ge=1)
    max_conn_lifetime_seconds: int = 3600
    pre_ping: bool = True

    @model_validator(mode="after")
    def _check_pool(self) -> DatabaseSettings:
        if self.max_conns < self.min_conns:
            raise ValueError("max_conns must be greater than or equal to min_conns")
        if self.url is None:
            for name in ("user", "password", "database"):
                if not getattr(self, name):
                    raise ValueError(f"database.{name} is required")
        return self

    def sqlalchemy_url(self) -> str:
        if self.url:
            return self.url
        url = URL.create(
            "postgresql+asyncpg",
            username=self.user,
            password=self.password,
            host=self.host,
            port=self.port,
            database=self.database,
        )
        if self.sslmode != "disable":
            url = url.update_query_dict({"ssl": self.sslmode})
        return url.render_as_string(hide_password=False)


class ValkeySettings(BaseModel):
    host: str = "valkey"
    port: int = Field(default=6379, gt=0, le=65535)
    db: int = Field(default=0, ge=0)
    password: str | None = None
    max_connections: int = Field(default=100, ge=1)
    dial_connect_timeout_seconds: float = Field(default=3.0, ge=0)
    dial_read_timeout_seconds: float = Field(default=3.0, ge=0)


class SessionSettings(BaseModel):
    cookie_name: str = "session"
    cookie_path: str = "/"
    cookie_domain: str | None = None
    cookie_secure: bool = False
    cookie_http_only: bool = True
    cookie_same_site: Literal["lax", "strict", "none"] = "lax"
    # Persistent cookies carry Expires; otherwise they end with the browser session.
    cookie_persist: bool = True
    lifetime_seconds: int = Field(default=24 * 60 * 60, gt=0)
    key_prefix: str = "scs:session:"
    # Paths that never load or commit a session.
    skip_paths: list[str] = Field(default_factory=lambda: ["/metrics"])


class HealthSettings(BaseModel):
    ping_timeout_seconds: float = Field(default=2.0, gt=0)


class OTLPEndpoint(BaseModel):
    enabled: bool = False
    host: str = "opentelemetry-collector"
    port: int = Field(default=4318, gt=0, le=65535)

    @model_validator(mode="after")
    def _check_host(self) -> OTLPEndpoint:
        if self.enabled and not self.host:
            raise ValueError("host is required when the exporter is enabled")
        return self

    @property
    def endpoint(self) -> str:
        return f"http://{self.host}:{self.port}"


class OTLPTraceSettings(OTLPEndpoint):
    timeout_seconds: float = Field(default=10.0, ge=0)


class PrometheusSettings(BaseModel):
    enabled: bool = False
    metrics_path: str = "/metrics"


class PyroscopeSettings(BaseModel):
    enabled: bool = False
    host: str = "pyroscope"
    port: int = Field(default=4040, gt=0, le=65535)
    tenant_id: str = ""


class Settings(BaseSettings):
    """Runtime configuration loaded from init kwargs, environment and YAML."""

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: Literal["debug", "info", "warning", "error"] = "info"
    log_format: Literal["text", "json"] = "text"
    stack_trace_order: StackTraceOrder = StackTraceOrder.NEWEST_FIRST
    # Base URI for problem details `type` references.
    problem_type_base: str = "https://example.com/"

    server: ServerSettings = Field(default_factory=ServerSettings)
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            url="sqlite+aiosqlite:///./data/dev.db"
        )
    )
    valkey: ValkeySettings = Field(default_factory=ValkeySettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    health: HealthSettings = Field(default_factory=HealthSettings)
    otlp_trace: OTLPTraceSettings = Field(default_factory=OTLPTraceSettings)
    otlp_metric: OTLPEndpoint = Field(default_factory=OTLPEndpoint)
    otlp_log: OTLPEndpoint = Field(default_factory=OTLPEndpoint)
    prometheus: PrometheusSettings = Field(default_factory=PrometheusSettings)
    pyroscope: PyroscopeSettings = Field(default_factory=PyroscopeSettings)

    @property
    def otel_enabled(self) -> bool:
        return self.otlp_trace.enabled or self.otlp_metric.enabled or self.otlp_log.enabled

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        sources: list[PydanticBaseSettingsSource] = [init_settings, env_settings]
        config_file = resolve_config_file()
        if config_file is not None:
            sources.append(YamlConfigSettingsSource(settings_cls, yaml_file=config_file))
        return tuple(sources)


def resolve_config_file() -> Path | None:
    """Return the YAML config file to read, if any.

    An explicit BASEAPP_CONFIG must exist; otherwise ./config.yaml is used
    when present.
    """

    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        path = Path(explicit)
        if not path.is_file():
            raise ErrorKind.VALIDATION.new("config file not found: %s", explicit)
        return path
    default = Path.cwd() / DEFAULT_CONFIG_FILE
    if default.is_file():
        return default
    return None


def load_settings(**overrides: Any) -> Settings:
    try:
        settings = Settings(**overrides)
    except ValidationError as exc:
        raise ErrorKind.VALIDATION.new("invalid config", cause=exc) from exc
    if resolve_config_file() is None:
        logger.info("config file not found, using default configuration")
    return settings


@lru_cache
def get_settings() -> Settings:
    return load_settings()
