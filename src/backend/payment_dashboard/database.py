"""
Process-wide, lazily created SQLAlchemy engine for the ticketing database.

Every pooled connection is switched to read-only mode and given a statement
timeout as soon as it is opened, so nothing issued through this engine can
modify data or run unbounded.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Optional, Sequence, Tuple

from sqlalchemy import create_engine, event
from sqlalchemy.exc import DisconnectionError
from sqlalchemy.engine import Engine

from .configuration import DatabaseConfig, load_config
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None
_engine_lock = threading.Lock()


def build_engine(config: DatabaseConfig) -> Engine:
    url = config.sqlalchemy_url()
    if url is None:
        raise ConfigurationError(
            "Database is not configured; set DATABASE_URL or DB_HOST/DB_DATABASE/DB_USER/DB_PASSWORD."
        )

    engine = create_engine(
        url,
        pool_size=config.max_connections,
        max_overflow=0,
        pool_pre_ping=True,
        connect_args={
            "sslmode": config.sslmode,
            "connect_timeout": max(1, config.connection_timeout_ms // 1000),
        },
    )
    install_session_settings(engine, config.statement_timeout_ms)
    install_idle_timeout(engine, config.idle_timeout_ms)
    return engine


def session_settings(statement_timeout_ms: int) -> Tuple[str, ...]:
    return (
        "SET default_transaction_read_only = on",
        f"SET statement_timeout = {int(statement_timeout_ms)}",
    )


def apply_session_settings(dbapi_connection: Any, statements: Sequence[str]) -> None:
    """
    Run ``statements`` on a fresh DBAPI connection outside any transaction.

    A setting the server refuses is logged and skipped; the connection is
    still handed to the pool.
    """

    autocommit = dbapi_connection.autocommit
    dbapi_connection.autocommit = True
    cursor = dbapi_connection.cursor()
    try:
        for statement in statements:
            try:
                cursor.execute(statement)
            except Exception as exc:
                logger.warning("Could not apply session setting %r: %s", statement, exc)
    finally:
        cursor.close()
        dbapi_connection.autocommit = autocommit


def install_session_settings(engine: Engine, statement_timeout_ms: int) -> None:
    statements = session_settings(statement_timeout_ms)

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        apply_session_settings(dbapi_connection, statements)


def mark_checked_in(connection_record: Any, clock=time.monotonic) -> None:
    connection_record.info["checked_in_at"] = clock()


def ensure_not_idle(connection_record: Any, idle_timeout_ms: int, clock=time.monotonic) -> None:
    """
    Refuse a pooled connection that sat unused longer than ``idle_timeout_ms``.

    Raising ``DisconnectionError`` from a checkout hook makes the pool discard
    the connection and hand out a freshly opened one. The idle clock
    restarts on every check-in, so connections in steady use are kept.
    """

    checked_in_at = connection_record.info.get("checked_in_at")
    if checked_in_at is None:
        return
    idle_ms = (clock() - checked_in_at) * 1000
    if idle_ms > idle_timeout_ms:
        raise DisconnectionError(f"Connection idle for {idle_ms:.0f} ms")


def install_idle_timeout(engine: Engine, idle_timeout_ms: int) -> None:
    @event.listens_for(engine, "checkin")
    def _on_checkin(dbapi_connection: Any, connection_record: Any) -> None:
        mark_checked_in(connection_record)

    @event.listens_for(engine, "checkout")
    def _on_checkout(dbapi_connection: Any, connection_record: Any, connection_proxy: Any) -> None:
        ensure_not_idle(connection_record, idle_timeout_ms)


def get_engine(config: Optional[DatabaseConfig] = None) -> Engine:
    global _engine
    if _engine is None:
        with _engine_lock:
            if _engine is None:
                _engine = build_engine(config or load_config().database)
                logger.info("Created database engine (pool size %s)", _engine.pool.size())
    return _engine


def dispose_engine() -> None:
    global _engine
    with _engine_lock:
        if _engine is not None:
            _engine.dispose()
            _engine = None
