from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

UNKNOWN_PAYER = "Unknown"


@dataclass(frozen=True)
class Payment:
    """
    Row of the ``payments`` table as seen through the read-only connection.

    ``host_user_id`` is not a payments column; it is the owner of the event the
    payment belongs to (``events.user_id``) and is only filled when the query
    joined the events table.
    """

    id: int
    transaction_id: Optional[str]
    status: Optional[str]
    amount: Decimal
    created_at: Optional[datetime]
    card_type: Optional[str] = None
    last_four: Optional[str] = None
    name_on_card: Optional[str] = None
    user_id: Optional[int] = None
    event_id: Optional[int] = None
    event_attendee_id: Optional[int] = None
    shipping_address_id: Optional[int] = None
    host_user_id: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "status": self.status,
            "name_on_card": self.name_on_card,
            "card_type": self.card_type,
            "last_four": self.last_four,
            "amount": self.amount,
            "created_at": self.created_at,
            "user_id": self.user_id,
            "event_id": self.event_id,
            "event_attendee_id": self.event_attendee_id,
            "shipping_address_id": self.shipping_address_id,
            "host_user_id": self.host_user_id,
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class Attendee:
    id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @property
    def full_name(self) -> str:
        return compose_name(self.first_name, self.last_name)


@dataclass(frozen=True)
class PaymentMatch:
    """Payment joined to its event, as returned by the name search."""

    payment_id: int
    transaction_id: Optional[str]
    amount: Decimal
    created_at: Optional[datetime]
    event_attendee_id: Optional[int]
    event_name: Optional[str]
    event_start: Optional[datetime]


@dataclass(frozen=True)
class SeatLookupResult:
    event_name: str
    event_start_date: str
    event_start_time: str
    payment_id: int
    amount: float
    payer_name: str = UNKNOWN_PAYER
    seat_info: Optional[str] = None
    transaction_id: Optional[str] = None
    event_date: Optional[date] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "eventName": self.event_name,
            "eventStartDate": self.event_start_date,
            "eventStartTime": self.event_start_time,
            "paymentId": self.payment_id,
            "amount": self.amount,
            "payerName": self.payer_name,
            "seatInfo": self.seat_info,
            "transactionId": self.transaction_id,
            "eventDate": None if self.event_date is None else self.event_date.isoformat(),
        }


@dataclass(frozen=True)
class PaymentSearchParams:
    transaction_ids: Sequence[str] = ()
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    host_user_id: Optional[int] = None
    limit: Optional[int] = None
    offset: Optional[int] = None


@dataclass(frozen=True)
class FilterForm:
    """
    Sparse filter set submitted by the "Form" data source.

    Only ``table`` is required. Date bounds are inclusive calendar days,
    amount bounds are inclusive.
    """

    table: str = "payments"
    status: Optional[str] = None
    card_type: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    amount_min: Optional[Decimal] = None
    amount_max: Optional[Decimal] = None
    with_attendee_only: bool = False
    exclude_zero_amount: bool = False
    host_user_id: Optional[int] = None
    limit: Optional[int] = None


@dataclass(frozen=True)
class BuiltQuery:
    sql: str
    params: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ZipLookupFailure:
    transaction_id: Optional[str]
    error: str

    def as_dict(self) -> Dict[str, Any]:
        return {"transactionId": self.transaction_id, "error": self.error}


@dataclass(frozen=True)
class ZipEnrichmentResult:
    rows: List[Dict[str, Any]]
    errors: List[ZipLookupFailure] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "rows": self.rows,
            "errors": [failure.as_dict() for failure in self.errors],
        }


@dataclass(frozen=True)
class ChartPoint:
    label: str
    value: float


@dataclass(frozen=True)
class ChartSeries:
    name: str
    points: Sequence[ChartPoint]
    unit: Optional[str] = None


@dataclass(frozen=True)
class ChartData:
    chart_type: str
    title: str
    series: Sequence[ChartSeries] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        """
        Convert the nested dataclasses into a JSON-serialisable structure the
        charting widget can consume directly.
        """

        return {
            "chartType": self.chart_type,
            "title": self.title,
            "series": [
                {
                    "name": series.name,
                    "unit": series.unit,
                    "points": [{"label": point.label, "value": point.value} for point in series.points],
                }
                for series in self.series
            ],
        }


def compose_name(first_name: Optional[str], last_name: Optional[str]) -> str:
    parts = [part.strip() for part in (first_name, last_name) if part and part.strip()]
    return " ".join(parts)
