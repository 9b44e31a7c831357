from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy import DateTime, bindparam, text
from sqlalchemy.engine import Engine, Row
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql.elements import TextClause

from .configuration import DatabaseConfig, load_config
from .database import get_engine
from .models import Attendee, BuiltQuery, Payment, PaymentMatch, PaymentSearchParams
from .postprocess import coerce_datetime
from .query_builder import LIKE_ESCAPE, day_start, ensure_read_only_sql, like_pattern

logger = logging.getLogger(__name__)


class PaymentRepository:
    """
    Interface for the read-only queries the dashboard issues.

    Every payment query is scoped to one host user through the owning event
    (``events.user_id``).
    """

    def find_payments_by_attendee_name(self, host_user_id: int, search: str, limit: int) -> Sequence[PaymentMatch]:
        raise NotImplementedError

    def get_attendees(self, attendee_ids: Iterable[int]) -> Dict[int, Attendee]:
        raise NotImplementedError

    def get_seats(self, payment_ids: Iterable[int]) -> Dict[int, List[str]]:
        raise NotImplementedError

    def search_payments(self, params: PaymentSearchParams) -> Sequence[Payment]:
        raise NotImplementedError

    def run_query(self, query: BuiltQuery) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def execute_sql(self, sql: str) -> List[Dict[str, Any]]:
        raise NotImplementedError


class SQLPaymentRepository(PaymentRepository):
    """
    Query the ticketing schema:
      - payments(id, transaction_id, status, name_on_card, card_type, last_four, amount,
                 created_at, user_id, event_id, event_attendee_id, shipping_address_id, metadata)
      - events(id, user_id, name, start_date)
      - event_attendees(id, event_id, first_name, last_name, created_at)
      - attendee_guests(id, payment_id, event_attendee_id, seat_id, seat_obj)

    The name search deliberately avoids joining ``attendee_guests``: that
    table is large and unindexed on the lookup columns, so seats are fetched
    separately and only on request.
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    def find_payments_by_attendee_name(self, host_user_id: int, search: str, limit: int) -> Sequence[PaymentMatch]:
        query = text(
            f"""
            SELECT
              p.id AS payment_id,
              p.transaction_id,
              p.amount,
              p.created_at,
              p.event_attendee_id,
              e.name AS event_name,
              e.start_date AS event_start
            FROM payments p
            INNER JOIN events e ON p.event_id = e.id
            WHERE e.user_id = :host_user_id
              AND p.event_attendee_id IN (
                SELECT ea.id
                FROM event_attendees ea
                WHERE LOWER(ea.first_name) LIKE :pattern ESCAPE '{LIKE_ESCAPE}'
                   OR LOWER(ea.last_name) LIKE :pattern ESCAPE '{LIKE_ESCAPE}'
                   OR LOWER(COALESCE(ea.first_name, '') || ' ' || COALESCE(ea.last_name, ''))
                      LIKE :pattern ESCAPE '{LIKE_ESCAPE}'
              )
            ORDER BY p.created_at DESC
            LIMIT :limit
            """
        )
        params = {"host_user_id": host_user_id, "pattern": like_pattern(search), "limit": limit}
        rows = self._fetch(query, params)
        return tuple(self._row_to_match(row) for row in rows)

    def get_attendees(self, attendee_ids: Iterable[int]) -> Dict[int, Attendee]:
        ids = sorted({int(attendee_id) for attendee_id in attendee_ids if attendee_id is not None})
        if not ids:
            return {}
        query = text(
            """
            SELECT id, first_name, last_name
            FROM event_attendees
            WHERE id IN :ids
            """
        ).bindparams(bindparam("ids", expanding=True))
        rows = self._fetch(query, {"ids": ids})
        return {
            int(row.id): Attendee(id=int(row.id), first_name=row.first_name, last_name=row.last_name)
            for row in rows
        }

    def get_seats(self, payment_ids: Iterable[int]) -> Dict[int, List[str]]:
        ids = sorted({int(payment_id) for payment_id in payment_ids if payment_id is not None})
        if not ids:
            return {}
        query = text(
            """
            SELECT id, payment_id, seat_id, seat_obj
            FROM attendee_guests
            WHERE payment_id IN :ids
            ORDER BY id ASC
            """
        ).bindparams(bindparam("ids", expanding=True))
        seats: Dict[int, List[str]] = {}
        for row in self._fetch(query, {"ids": ids}):
            label = seat_label(row.seat_id, row.seat_obj)
            if label:
                seats.setdefault(int(row.payment_id), []).append(label)
        return seats

    def search_payments(self, params: PaymentSearchParams) -> Sequence[Payment]:
        # Columns are listed explicitly: the foreign tables may expose columns
        # the remote table no longer has.
        sql = """
            SELECT
              p.id,
              p.transaction_id,
              p.status,
              p.name_on_card,
              p.card_type,
              p.last_four,
              p.amount,
              p.created_at,
              p.user_id,
              p.event_id,
              p.event_attendee_id,
              p.shipping_address_id,
              p.metadata,
              e.user_id AS host_user_id
            FROM payments p
            LEFT JOIN events e ON p.event_id = e.id
            WHERE 1=1
        """
        bind: Dict[str, Any] = {}
        expanding = []

        if params.transaction_ids:
            sql += " AND p.transaction_id IN :transaction_ids"
            bind["transaction_ids"] = list(params.transaction_ids)
            expanding.append(bindparam("transaction_ids", expanding=True))
        if params.date_from is not None:
            sql += " AND p.created_at >= :date_from"
            bind["date_from"] = day_start(params.date_from)
        if params.date_to is not None:
            sql += " AND p.created_at < :date_to"
            bind["date_to"] = day_start(params.date_to) + timedelta(days=1)
        if params.host_user_id is not None:
            sql += " AND e.user_id = :host_user_id"
            bind["host_user_id"] = params.host_user_id

        sql += " ORDER BY p.created_at DESC"

        if params.limit:
            sql += " LIMIT :limit"
            bind["limit"] = params.limit
        if params.offset:
            if not params.limit:
                # OFFSET without LIMIT is not portable; -1 means "no limit" on SQLite only.
                sql += " LIMIT ALL" if self.engine.dialect.name == "postgresql" else " LIMIT -1"
            sql += " OFFSET :offset"
            bind["offset"] = params.offset

        query = text(sql)
        if expanding:
            query = query.bindparams(*expanding)
        rows = self._fetch(query, bind)
        return tuple(self._row_to_payment(row) for row in rows)

    def run_query(self, query: BuiltQuery) -> List[Dict[str, Any]]:
        rows = self._fetch(text(query.sql), query.params)
        return [dict(row._mapping) for row in rows]

    def execute_sql(self, sql: str) -> List[Dict[str, Any]]:
        statement = ensure_read_only_sql(sql)
        rows = self._fetch(text(statement), {})
        return [dict(row._mapping) for row in rows]

    def _fetch(self, query: TextClause, params: Mapping[str, Any]) -> Sequence[Row]:
        # Text clauses carry no column types; tell the dialect which binds are timestamps.
        timestamps = [bindparam(key, type_=DateTime()) for key, value in params.items() if isinstance(value, datetime)]
        if timestamps:
            query = query.bindparams(*timestamps)
        try:
            with self.engine.connect() as connection:
                return connection.execute(query, dict(params)).fetchall()
        except SQLAlchemyError as exc:
            logger.error("Database query error: %s", exc)
            raise

    @staticmethod
    def _row_to_match(row: Row) -> PaymentMatch:
        return PaymentMatch(
            payment_id=int(row.payment_id),
            transaction_id=row.transaction_id,
            amount=_to_decimal(row.amount),
            created_at=coerce_datetime(row.created_at),
            event_attendee_id=None if row.event_attendee_id is None else int(row.event_attendee_id),
            event_name=row.event_name,
            event_start=coerce_datetime(row.event_start),
        )

    @staticmethod
    def _row_to_payment(row: Row) -> Payment:
        metadata = row.metadata
        if isinstance(metadata, str):
            try:
                metadata = json.loads(metadata)
            except json.JSONDecodeError:
                metadata = None
        return Payment(
            id=int(row.id),
            transaction_id=row.transaction_id,
            status=row.status,
            name_on_card=row.name_on_card,
            card_type=row.card_type,
            last_four=row.last_four,
            amount=_to_decimal(row.amount),
            created_at=coerce_datetime(row.created_at),
            user_id=row.user_id,
            event_id=row.event_id,
            event_attendee_id=row.event_attendee_id,
            shipping_address_id=row.shipping_address_id,
            host_user_id=row.host_user_id,
            metadata=metadata,
        )


def _to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def seat_label(seat_id: Any, seat_obj: Any) -> Optional[str]:
    """
    Human readable seat description.

    ``seat_obj`` is a JSON document written by the seating chart; it is
    either a string or an already decoded mapping depending on the driver.
    """

    if isinstance(seat_obj, str):
        try:
            seat_obj = json.loads(seat_obj)
        except json.JSONDecodeError:
            seat_obj = None

    if isinstance(seat_obj, dict):
        if seat_obj.get("label"):
            return str(seat_obj["label"])
        parts = [
            f"{title} {seat_obj[key]}"
            for key, title in (("section", "Section"), ("row", "Row"), ("seat", "Seat"))
            if seat_obj.get(key) not in (None, "")
        ]
        if parts:
            return ", ".join(parts)

    if seat_id not in (None, ""):
        return str(seat_id)
    return None


def build_repository_from_env(config: Optional[DatabaseConfig] = None) -> Optional[PaymentRepository]:
    cfg = config or load_config().database
    if cfg.is_configured():
        return SQLPaymentRepository(get_engine(cfg))
    return None
