from __future__ import annotations

import csv
import io
from datetime import date, datetime
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from .models import SeatLookupResult
from .postprocess import filter_by_date_bucket

SEAT_LOOKUP_HEADERS = ("Event Name", "Event Date", "Event Time", "Payment ID", "Payer Name", "Seat")


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _write_csv(headers: Sequence[str], rows: Iterable[Sequence[Any]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(headers)
    for row in rows:
        writer.writerow([_cell(value) for value in row])
    return buffer.getvalue()


def seat_lookup_csv(
    results: Sequence[SeatLookupResult],
    today: date,
    show_past: bool = False,
    show_future: bool = False,
) -> str:
    """Export exactly the rows the results table shows for the same filters."""

    visible = filter_by_date_bucket(results, today, show_past=show_past, show_future=show_future)
    return _write_csv(
        SEAT_LOOKUP_HEADERS,
        (
            (
                result.event_name,
                result.event_start_date,
                result.event_start_time,
                result.payment_id,
                result.payer_name,
                result.seat_info,
            )
            for result in visible
        ),
    )


def rows_csv(rows: Sequence[Mapping[str, Any]], columns: Optional[Sequence[str]] = None) -> str:
    if columns is None:
        ordered: List[str] = []
        for row in rows:
            for key in row:
                if key not in ordered:
                    ordered.append(key)
        columns = ordered
    return _write_csv(columns, ([row.get(column) for column in columns] for row in rows))


def export_filename(prefix: str, today: date) -> str:
    return f"{prefix}-{today.isoformat()}.csv"
