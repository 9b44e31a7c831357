from __future__ import annotations

from datetime import date, datetime, time
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .models import SeatLookupResult, compose_name


class DateBucket(str, Enum):
    PAST = "past"
    TODAY = "today"
    FUTURE = "future"


def coerce_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def normalize_datetime(dt: datetime, tz: ZoneInfo) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=tz)
    return dt.astimezone(tz)


def coerce_datetime(value: Any) -> Optional[datetime]:
    """
    Accept whatever the driver hands back for a timestamp column.

    PostgreSQL drivers return ``datetime`` objects, SQLite returns ISO strings.
    """

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if isinstance(value, str):
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            return None
    return None


def today_in(timezone: str) -> date:
    return datetime.now(coerce_timezone(timezone)).date()


def format_date(value: datetime) -> str:
    return value.strftime("%m/%d/%Y")


def format_time(value: datetime) -> str:
    hour = value.hour % 12 or 12
    suffix = "AM" if value.hour < 12 else "PM"
    return f"{hour}:{value.minute:02d} {suffix}"


def format_datetime(value: datetime) -> str:
    return f"{format_date(value)} {format_time(value)}"


def parse_display_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return datetime.strptime(value.strip(), "%m/%d/%Y").date()
    except ValueError:
        return None


def result_date(result: SeatLookupResult) -> Optional[date]:
    return result.event_date or parse_display_date(result.event_start_date)


def classify(result: SeatLookupResult, today: date) -> DateBucket:
    """
    Place a result in exactly one bucket relative to ``today``.

    Results without a usable event date are treated as past so that they
    stay hidden until staff explicitly ask for older rows.
    """

    event_day = result_date(result)
    if event_day is None or event_day < today:
        return DateBucket.PAST
    if event_day == today:
        return DateBucket.TODAY
    return DateBucket.FUTURE


def partition_by_date_bucket(
    results: Iterable[SeatLookupResult],
    today: date,
) -> Dict[DateBucket, List[SeatLookupResult]]:
    buckets: Dict[DateBucket, List[SeatLookupResult]] = {bucket: [] for bucket in DateBucket}
    for result in results:
        buckets[classify(result, today)].append(result)
    return buckets


def bucket_counts(results: Iterable[SeatLookupResult], today: date) -> Dict[str, int]:
    return {bucket.value: len(items) for bucket, items in partition_by_date_bucket(results, today).items()}


def filter_by_date_bucket(
    results: Sequence[SeatLookupResult],
    today: date,
    show_past: bool = False,
    show_future: bool = False,
) -> List[SeatLookupResult]:
    """
    Keep today's results always, past/future ones only when asked for.

    Input order is preserved.
    """

    allowed = {DateBucket.TODAY}
    if show_past:
        allowed.add(DateBucket.PAST)
    if show_future:
        allowed.add(DateBucket.FUTURE)
    return [result for result in results if classify(result, today) in allowed]


def normalize_rows(rows: Iterable[Mapping[str, Any]], timezone: str = "UTC") -> List[Dict[str, Any]]:
    """
    Add display fields to arbitrary query rows.

    ``<column>_display`` is added for every date/datetime value and
    ``full_name`` for rows that carry first/last name columns. The original
    columns are left untouched.
    """

    tz = coerce_timezone(timezone)
    normalized: List[Dict[str, Any]] = []
    for row in rows:
        enriched = dict(row)
        for key, value in row.items():
            if isinstance(value, datetime):
                enriched[f"{key}_display"] = format_datetime(normalize_datetime(value, tz))
            elif isinstance(value, date):
                enriched[f"{key}_display"] = value.strftime("%m/%d/%Y")
        if "first_name" in row or "last_name" in row:
            enriched["full_name"] = compose_name(row.get("first_name"), row.get("last_name"))
        normalized.append(enriched)
    return normalized
