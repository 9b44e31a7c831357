"""
SQL builders for the dashboard's data sources.

``build_filter_query`` turns a sparse :class:`FilterForm` into a single
SELECT, always ending with ``ORDER BY ... DESC LIMIT :limit``. Values are
never interpolated into the SQL text; everything goes through bind
parameters. ``ensure_read_only_sql`` guards free-form SQL (typed by staff or
drafted by the language model) before it reaches the database.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional

from .errors import QueryValidationError
from .models import BuiltQuery, FilterForm

DEFAULT_FORM_LIMIT = 100
MAX_FORM_LIMIT = 1000
LIKE_ESCAPE = "\\"

PAYMENT_ONLY_FILTERS = ("status", "card_type", "amount_min", "amount_max")
PAYMENT_ONLY_FLAGS = ("with_attendee_only", "exclude_zero_amount")

_FORBIDDEN_KEYWORDS = (
    "insert",
    "update",
    "delete",
    "merge",
    "upsert",
    "drop",
    "alter",
    "create",
    "truncate",
    "grant",
    "revoke",
    "copy",
    "vacuum",
    "reindex",
    "call",
    "into",
    "lock",
    "set",
    "reset",
)
_FORBIDDEN_RE = re.compile(r"\b(" + "|".join(_FORBIDDEN_KEYWORDS) + r")\b", re.IGNORECASE)
# Alternatives are tried at each position left to right, so whichever of
# string, identifier or comment opens first owns the text up to its end.
_TOKEN_RE = re.compile(
    r"""
    (?P<string>'(?:[^']|'')*')
    | (?P<identifier>"(?:[^"]|"")*")
    | (?P<dollar>\$(?P<tag>(?:[A-Za-z_]\w*)?)\$.*?\$(?P=tag)\$)
    | (?P<comment>--[^\n]*|/\*.*?\*/)
    """,
    re.DOTALL | re.VERBOSE,
)
_PARENTHESIZED_RE = re.compile(r"\([^()]*\)")
_LEADING_KEYWORD_RE = re.compile(r"^\s*(select|with)\b", re.IGNORECASE)
_LIMIT_RE = re.compile(r"\blimit\s+\d+", re.IGNORECASE)


@dataclass(frozen=True)
class TableSpec:
    name: str
    alias: str
    date_column: str
    host_join: Optional[str]
    """Join needed to reach ``events.user_id``; ``None`` when the table owns it."""

    host_column: str = "user_id"
    supports_payment_filters: bool = False


TABLES: Dict[str, TableSpec] = {
    "payments": TableSpec(
        name="payments",
        alias="p",
        date_column="created_at",
        host_join="INNER JOIN events e ON p.event_id = e.id",
        supports_payment_filters=True,
    ),
    "event_attendees": TableSpec(
        name="event_attendees",
        alias="ea",
        date_column="created_at",
        host_join="INNER JOIN events e ON ea.event_id = e.id",
    ),
    "events": TableSpec(
        name="events",
        alias="e",
        date_column="start_date",
        host_join=None,
    ),
}


def clamp_limit(limit: Optional[int], default: int, maximum: int) -> int:
    if limit is None:
        return default
    return max(1, min(int(limit), maximum))


def day_start(value: date) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.min)


def build_filter_query(form: FilterForm) -> BuiltQuery:
    table = TABLES.get(form.table)
    if table is None:
        raise QueryValidationError(
            f"Unknown table {form.table!r}; expected one of {', '.join(sorted(TABLES))}."
        )
    _validate_form(form, table)

    joined = form.host_user_id is not None and table.host_join is not None

    def column(name: str) -> str:
        return f"{table.alias}.{name}" if joined else name

    if joined:
        query = f"SELECT {table.alias}.*, e.user_id AS host_user_id FROM {table.name} {table.alias} {table.host_join}"
    else:
        query = f"SELECT * FROM {table.name}"
    query += " WHERE 1=1"

    clauses: List[str] = []
    params: Dict[str, Any] = {}

    if form.status:
        clauses.append(f"{column('status')} = :status")
        params["status"] = form.status
    if form.card_type:
        clauses.append(f"LOWER({column('card_type')}) = LOWER(:card_type)")
        params["card_type"] = form.card_type
    if form.date_from is not None:
        clauses.append(f"{column(table.date_column)} >= :date_from")
        params["date_from"] = day_start(form.date_from)
    if form.date_to is not None:
        # Inclusive calendar day: compare against the start of the next day.
        clauses.append(f"{column(table.date_column)} < :date_to")
        params["date_to"] = day_start(form.date_to) + timedelta(days=1)
    if form.amount_min is not None:
        clauses.append(f"{column('amount')} >= :amount_min")
        params["amount_min"] = float(form.amount_min)
    if form.amount_max is not None:
        clauses.append(f"{column('amount')} <= :amount_max")
        params["amount_max"] = float(form.amount_max)
    if form.with_attendee_only:
        clauses.append(f"{column('event_attendee_id')} IS NOT NULL")
    if form.exclude_zero_amount:
        clauses.append(f"{column('amount')} > 0")
    if form.host_user_id is not None:
        host_column = f"e.{table.host_column}" if joined else column(table.host_column)
        clauses.append(f"{host_column} = :host_user_id")
        params["host_user_id"] = form.host_user_id

    for clause in clauses:
        query += f" AND {clause}"

    query += f" ORDER BY {column(table.date_column)} DESC LIMIT :limit"
    params["limit"] = clamp_limit(form.limit, DEFAULT_FORM_LIMIT, MAX_FORM_LIMIT)
    return BuiltQuery(sql=query, params=params)


def _validate_form(form: FilterForm, table: TableSpec) -> None:
    if not table.supports_payment_filters:
        offending = [name for name in PAYMENT_ONLY_FILTERS if getattr(form, name) not in (None, "")]
        offending += [name for name in PAYMENT_ONLY_FLAGS if getattr(form, name)]
        if offending:
            raise QueryValidationError(
                f"Filters {', '.join(offending)} only apply to the payments table, not {table.name}."
            )
    if form.date_from is not None and form.date_to is not None and form.date_from > form.date_to:
        raise QueryValidationError("date_from must not be after date_to.")
    if form.amount_min is not None and form.amount_max is not None and form.amount_min > form.amount_max:
        raise QueryValidationError("amount_min must not be greater than amount_max.")


def like_pattern(term: str) -> str:
    """Lower-cased substring pattern with LIKE wildcards in ``term`` escaped."""

    escaped = (
        term.strip()
        .lower()
        .replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )
    return f"%{escaped}%"


def _scrub(sql: str, keep_literals: bool = False) -> str:
    """
    Drop comments and, unless ``keep_literals``, blank out quoted text.

    One left-to-right pass, so ``--`` inside a string is not a comment and a
    quote inside a comment does not open a string.
    """

    def replace(match: "re.Match[str]") -> str:
        if match.group("comment") is not None:
            return " "
        if keep_literals:
            return match.group(0)
        if match.group("identifier") is not None:
            return '""'
        return "''"

    return _TOKEN_RE.sub(replace, sql)


def _outer_level(sql: str) -> str:
    previous = None
    while previous != sql:
        previous, sql = sql, _PARENTHESIZED_RE.sub(" ", sql)
    return sql


def ensure_read_only_sql(sql: str) -> str:
    """
    Validate a free-form statement and return it without a trailing semicolon.

    Accepts exactly one SELECT (or WITH ... SELECT) statement. Keywords that
    write, change schema or change session state are rejected even though
    the connection itself is read-only.
    """

    statement = (sql or "").strip()
    while statement.endswith(";"):
        statement = statement[:-1].rstrip()
    if not statement:
        raise QueryValidationError("SQL statement is empty.")

    scrubbed = _scrub(statement)
    if ";" in scrubbed:
        raise QueryValidationError("Only a single SQL statement may be executed.")
    if not _LEADING_KEYWORD_RE.match(scrubbed):
        raise QueryValidationError("Only SELECT queries are allowed.")
    forbidden = _FORBIDDEN_RE.search(scrubbed)
    if forbidden:
        raise QueryValidationError(f"Keyword {forbidden.group(1).upper()!r} is not allowed in read-only queries.")
    return statement


def ensure_limit(sql: str, limit: int) -> str:
    """
    Append ``LIMIT limit`` unless the outermost query already has one.

    A LIMIT inside a CTE or subquery does not count. Comments are dropped
    before appending so a trailing ``--`` cannot swallow the clause.
    """

    if _LIMIT_RE.search(_outer_level(_scrub(sql))):
        return sql
    return f"{_scrub(sql, keep_literals=True).strip()} LIMIT {int(limit)}"
