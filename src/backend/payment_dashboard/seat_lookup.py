from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from .errors import QueryValidationError
from .models import UNKNOWN_PAYER, Attendee, PaymentMatch, SeatLookupResult
from .postprocess import coerce_timezone, format_date, format_time, normalize_datetime
from .query_builder import clamp_limit
from .repository import PaymentRepository

logger = logging.getLogger(__name__)

MAX_SEAT_LOOKUP_LIMIT = 100


class SeatLookupService:
    """
    Find a host's payments by attendee name.

    Payments are fetched first on the indexed payments/events path, then the
    attendee names for the distinct attendee ids present are fetched in one
    batch and merged in memory. Seats are an optional third batch; they come
    from a table that is slow to query, so a failure there only costs the
    seat column.
    """

    def __init__(
        self,
        repository: PaymentRepository,
        timezone: str = "UTC",
        default_limit: int = 50,
        include_seats: bool = False,
    ) -> None:
        self.repository = repository
        self.tz = coerce_timezone(timezone)
        self.default_limit = default_limit
        self.include_seats = include_seats

    def search(
        self,
        search_query: str,
        host_user_id: int,
        limit: Optional[int] = None,
        include_seats: Optional[bool] = None,
    ) -> List[SeatLookupResult]:
        term = (search_query or "").strip()
        if not term:
            raise QueryValidationError("Please enter a name to search")

        limit = clamp_limit(limit, self.default_limit, MAX_SEAT_LOOKUP_LIMIT)
        matches = self.repository.find_payments_by_attendee_name(host_user_id, term, limit)
        logger.info("Seat lookup for host %s matched %d payment(s)", host_user_id, len(matches))
        if not matches:
            return []

        attendees = self.repository.get_attendees(
            {match.event_attendee_id for match in matches if match.event_attendee_id is not None}
        )

        want_seats = self.include_seats if include_seats is None else include_seats
        seats = self._load_seats(matches) if want_seats else {}

        return [self._to_result(match, attendees, seats) for match in matches]

    def _load_seats(self, matches: Sequence[PaymentMatch]) -> Dict[int, List[str]]:
        try:
            return self.repository.get_seats(match.payment_id for match in matches)
        except SQLAlchemyError as exc:
            logger.warning("Seat lookup failed, returning results without seats: %s", exc)
            return {}

    def _to_result(
        self,
        match: PaymentMatch,
        attendees: Dict[int, Attendee],
        seats: Dict[int, List[str]],
    ) -> SeatLookupResult:
        attendee = attendees.get(match.event_attendee_id) if match.event_attendee_id is not None else None
        payer_name = (attendee.full_name if attendee else "") or UNKNOWN_PAYER

        event_date = None
        start_date = ""
        start_time = ""
        if match.event_start is not None:
            local_start = normalize_datetime(match.event_start, self.tz)
            event_date = local_start.date()
            start_date = format_date(local_start)
            start_time = format_time(local_start)

        seat_labels = seats.get(match.payment_id)
        return SeatLookupResult(
            event_name=match.event_name or "",
            event_start_date=start_date,
            event_start_time=start_time,
            payment_id=match.payment_id,
            amount=float(match.amount),
            payer_name=payer_name,
            seat_info="\n".join(seat_labels) if seat_labels else None,
            transaction_id=match.transaction_id,
            event_date=event_date,
        )
