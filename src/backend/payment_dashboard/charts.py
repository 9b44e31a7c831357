from __future__ import annotations

from collections import Counter, defaultdict
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .errors import QueryValidationError
from .models import ChartData, ChartPoint, ChartSeries
from .postprocess import coerce_datetime, coerce_timezone, normalize_datetime

TIME_SERIES = "time_series"
AMOUNT_DISTRIBUTION = "amount_distribution"
STATUS_BREAKDOWN = "status_breakdown"
CHART_TYPES = (TIME_SERIES, AMOUNT_DISTRIBUTION, STATUS_BREAKDOWN)

AMOUNT_BINS: Sequence[Tuple[str, Optional[float], Optional[float]]] = (
    ("< $0", None, 0.0),
    ("$0-25", 0.0, 25.0),
    ("$25-50", 25.0, 50.0),
    ("$50-100", 50.0, 100.0),
    ("$100-250", 100.0, 250.0),
    ("$250-500", 250.0, 500.0),
    ("$500+", 500.0, None),
)

# Checked in order; the first preset with a matching keyword wins.
PROMPT_KEYWORDS: Sequence[Tuple[str, Sequence[str]]] = (
    (STATUS_BREAKDOWN, ("status", "declined", "approved", "refund", "breakdown", "pie")),
    (AMOUNT_DISTRIBUTION, ("distribution", "histogram", "amount", "price", "range", "spend")),
    (TIME_SERIES, ("over time", "trend", "daily", "per day", "timeline", "when")),
)


def select_chart_type(chart_type: Optional[str] = None, prompt: Optional[str] = None) -> str:
    if chart_type:
        if chart_type not in CHART_TYPES:
            raise QueryValidationError(
                f"Unknown chart type {chart_type!r}; expected one of {', '.join(CHART_TYPES)}."
            )
        return chart_type
    text = (prompt or "").lower()
    for preset, keywords in PROMPT_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return preset
    return TIME_SERIES


def build_chart(
    rows: Iterable[Mapping[str, Any]],
    chart_type: Optional[str] = None,
    prompt: Optional[str] = None,
    timezone: str = "UTC",
) -> ChartData:
    selected = select_chart_type(chart_type, prompt)
    rows = list(rows)
    if selected == STATUS_BREAKDOWN:
        return _status_breakdown(rows)
    if selected == AMOUNT_DISTRIBUTION:
        return _amount_distribution(rows)
    return _time_series(rows, timezone)


def _amount(row: Mapping[str, Any]) -> Optional[float]:
    value = row.get("amount")
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _time_series(rows: List[Mapping[str, Any]], timezone: str) -> ChartData:
    tz = coerce_timezone(timezone)
    counts: Dict[str, int] = defaultdict(int)
    totals: Dict[str, float] = defaultdict(float)

    for row in rows:
        created_at = coerce_datetime(row.get("created_at"))
        if created_at is None:
            continue
        day_key = normalize_datetime(created_at, tz).date().isoformat()
        counts[day_key] += 1
        totals[day_key] += _amount(row) or 0.0

    days = sorted(counts)
    return ChartData(
        chart_type=TIME_SERIES,
        title="Payments per day",
        series=[
            ChartSeries(name="Payments", points=[ChartPoint(day, counts[day]) for day in days], unit="payments"),
            ChartSeries(name="Amount", points=[ChartPoint(day, round(totals[day], 2)) for day in days], unit="$"),
        ],
    )


def _amount_distribution(rows: List[Mapping[str, Any]]) -> ChartData:
    counts = {label: 0 for label, _, _ in AMOUNT_BINS}
    for row in rows:
        amount = _amount(row)
        if amount is None:
            continue
        for label, lower, upper in AMOUNT_BINS:
            if (lower is None or amount >= lower) and (upper is None or amount < upper):
                counts[label] += 1
                break

    return ChartData(
        chart_type=AMOUNT_DISTRIBUTION,
        title="Payment amount distribution",
        series=[
            ChartSeries(
                name="Payments",
                points=[ChartPoint(label, counts[label]) for label, _, _ in AMOUNT_BINS],
                unit="payments",
            )
        ],
    )


def _status_breakdown(rows: List[Mapping[str, Any]]) -> ChartData:
    counter = Counter(str(row.get("status") or "unknown") for row in rows)
    ordered = sorted(counter.items(), key=lambda item: (-item[1], item[0]))
    return ChartData(
        chart_type=STATUS_BREAKDOWN,
        title="Payments by status",
        series=[
            ChartSeries(
                name="Payments",
                points=[ChartPoint(status, count) for status, count in ordered],
                unit="payments",
            )
        ],
    )
