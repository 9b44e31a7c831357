"""
Environment driven configuration for the payment dashboard.

Every group is a plain pydantic model so callers (and tests) can build one
directly; ``load_config`` fills them from the process environment after
reading an optional ``.env`` file.
"""

from __future__ import annotations

import os
from typing import Optional
from urllib.parse import quote_plus

from dotenv import load_dotenv
from pydantic import BaseModel


class DatabaseConfig(BaseModel):
    url: Optional[str] = None
    """Full connection string; takes precedence over the discrete fields."""

    host: Optional[str] = None
    port: int = 5432
    database: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None

    sslmode: str = "require"
    max_connections: int = 10
    idle_timeout_ms: int = 10_000
    connection_timeout_ms: int = 5_000
    statement_timeout_ms: int = 30_000

    def is_configured(self) -> bool:
        return bool(self.url or (self.host and self.database))

    def sqlalchemy_url(self) -> Optional[str]:
        if self.url:
            url = self.url
            # Hosted providers hand out postgres:// which SQLAlchemy no longer accepts.
            if url.startswith("postgres://"):
                url = "postgresql://" + url[len("postgres://"):]
            return url
        if not (self.host and self.database):
            return None
        credentials = ""
        if self.user:
            credentials = quote_plus(self.user)
            if self.password:
                credentials += ":" + quote_plus(self.password)
            credentials += "@"
        return f"postgresql://{credentials}{self.host}:{self.port}/{self.database}"


class SeatLookupConfig(BaseModel):
    default_host_user_id: Optional[int] = None
    """Host used when a request does not name one."""

    limit: int = 50
    include_seats: bool = False
    """Seat rows live in a large, poorly indexed table; off unless asked for."""

    timezone: str = "UTC"


class ZipApiConfig(BaseModel):
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    delay_seconds: float = 0.5
    timeout_seconds: float = 10.0
    zip_field: str = "zip"


class LLMConfig(BaseModel):
    model: str = "openai:gpt-4o-mini"
    """Model used to draft SQL from natural language questions."""

    temperature: float = 0.0


class RetryConfig(BaseModel):
    max_retries: int = 3


class DashboardConfig(BaseModel):
    """Configuration for the payment dashboard API."""

    database: DatabaseConfig = DatabaseConfig()
    seat_lookup: SeatLookupConfig = SeatLookupConfig()
    zip_api: ZipApiConfig = ZipApiConfig()
    llm: LLMConfig = LLMConfig()
    retry: RetryConfig = RetryConfig()
    log_level: str = "INFO"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def load_config(env_file: Optional[str] = None) -> DashboardConfig:
    load_dotenv(env_file)

    cfg = DashboardConfig()
    cfg.database = DatabaseConfig(
        url=os.getenv("DATABASE_URL") or None,
        host=os.getenv("DB_HOST") or None,
        port=_env_int("DB_PORT", cfg.database.port),
        database=os.getenv("DB_DATABASE") or None,
        user=os.getenv("DB_USER") or None,
        password=os.getenv("DB_PASSWORD") or None,
        sslmode=os.getenv("DB_SSLMODE", cfg.database.sslmode),
        max_connections=_env_int("DB_MAX_CONNECTIONS", cfg.database.max_connections),
        idle_timeout_ms=_env_int("DB_IDLE_TIMEOUT", cfg.database.idle_timeout_ms),
        connection_timeout_ms=_env_int("DB_CONNECTION_TIMEOUT", cfg.database.connection_timeout_ms),
        statement_timeout_ms=_env_int("DB_STATEMENT_TIMEOUT", cfg.database.statement_timeout_ms),
    )
    cfg.seat_lookup = SeatLookupConfig(
        default_host_user_id=_env_int("DEFAULT_HOST_USER_ID", None),
        limit=_env_int("SEAT_LOOKUP_LIMIT", cfg.seat_lookup.limit),
        include_seats=_env_bool("SEAT_LOOKUP_INCLUDE_SEATS", cfg.seat_lookup.include_seats),
        timezone=os.getenv("DASHBOARD_TIMEZONE", cfg.seat_lookup.timezone),
    )
    cfg.zip_api = ZipApiConfig(
        base_url=os.getenv("ZIP_API_BASE_URL") or None,
        api_key=os.getenv("ZIP_API_KEY") or None,
        delay_seconds=_env_float("ZIP_API_DELAY_SECONDS", cfg.zip_api.delay_seconds),
        timeout_seconds=_env_float("ZIP_API_TIMEOUT_SECONDS", cfg.zip_api.timeout_seconds),
        zip_field=os.getenv("ZIP_API_FIELD", cfg.zip_api.zip_field),
    )
    cfg.llm = LLMConfig(
        model=os.getenv("NL_SQL_MODEL", cfg.llm.model),
        temperature=_env_float("NL_SQL_TEMPERATURE", cfg.llm.temperature),
    )
    cfg.retry = RetryConfig(max_retries=_env_int("NL_SQL_MAX_RETRIES", cfg.retry.max_retries))
    cfg.log_level = os.getenv("LOG_LEVEL", cfg.log_level).upper()
    return cfg
