from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import Mock

import pytest
from sqlalchemy.exc import OperationalError

from backend.payment_dashboard.errors import QueryValidationError
from backend.payment_dashboard.models import UNKNOWN_PAYER, Attendee, PaymentMatch
from backend.payment_dashboard.repository import PaymentRepository
from backend.payment_dashboard.seat_lookup import MAX_SEAT_LOOKUP_LIMIT, SeatLookupService

from .conftest import HOST_USER_ID


def _match(payment_id, attendee_id, created_at, event_start=datetime(2024, 5, 1, 19, 30)):
    return PaymentMatch(
        payment_id=payment_id,
        transaction_id=f"T{payment_id}",
        amount=Decimal("12.50"),
        created_at=created_at,
        event_attendee_id=attendee_id,
        event_name="Spring Gala",
        event_start=event_start,
    )


def _fake_repository(matches, attendees=None, seats=None):
    repository = Mock(spec=PaymentRepository)
    repository.find_payments_by_attendee_name.return_value = tuple(matches)
    repository.get_attendees.return_value = attendees or {}
    repository.get_seats.return_value = seats or {}
    return repository


def test_search_merges_attendee_names_in_payment_order():
    repository = _fake_repository(
        [_match(2, 20, datetime(2024, 4, 2)), _match(1, 10, datetime(2024, 4, 1))],
        attendees={10: Attendee(10, "Edwina", "Smith"), 20: Attendee(20, "Mary", None)},
    )

    results = SeatLookupService(repository).search("  ed ", HOST_USER_ID)

    assert [result.payment_id for result in results] == [2, 1]
    assert [result.payer_name for result in results] == ["Mary", "Edwina Smith"]
    repository.find_payments_by_attendee_name.assert_called_once_with(HOST_USER_ID, "ed", 50)
    repository.get_attendees.assert_called_once_with({10, 20})
    repository.get_seats.assert_not_called()


def test_missing_attendee_falls_back_to_placeholder():
    repository = _fake_repository(
        [_match(1, 999, datetime(2024, 4, 1)), _match(2, None, datetime(2024, 3, 1))],
        attendees={},
    )

    results = SeatLookupService(repository).search("ed", HOST_USER_ID)

    assert [result.payer_name for result in results] == [UNKNOWN_PAYER, UNKNOWN_PAYER]


def test_blank_attendee_name_uses_placeholder():
    repository = _fake_repository([_match(1, 10, datetime(2024, 4, 1))], attendees={10: Attendee(10, " ", None)})

    assert SeatLookupService(repository).search("ed", HOST_USER_ID)[0].payer_name == UNKNOWN_PAYER


def test_blank_search_is_rejected():
    repository = _fake_repository([])

    with pytest.raises(QueryValidationError):
        SeatLookupService(repository).search("   ", HOST_USER_ID)
    repository.find_payments_by_attendee_name.assert_not_called()


def test_no_matches_skips_attendee_lookup():
    repository = _fake_repository([])

    assert SeatLookupService(repository).search("nobody", HOST_USER_ID) == []
    repository.get_attendees.assert_not_called()


def test_limit_is_clamped_to_maximum():
    repository = _fake_repository([])

    SeatLookupService(repository).search("ed", HOST_USER_ID, limit=10_000)

    repository.find_payments_by_attendee_name.assert_called_once_with(HOST_USER_ID, "ed", MAX_SEAT_LOOKUP_LIMIT)


def test_event_start_is_formatted_in_configured_timezone():
    start = datetime(2024, 5, 2, 1, 15, tzinfo=timezone.utc)
    repository = _fake_repository([_match(1, None, datetime(2024, 4, 1), event_start=start)])

    result = SeatLookupService(repository, timezone="America/New_York").search("ed", HOST_USER_ID)[0]

    assert result.event_start_date == "05/01/2024"
    assert result.event_start_time == "9:15 PM"
    assert result.event_date == date(2024, 5, 1)
    assert result.amount == 12.5


def test_event_without_start_has_empty_display_fields():
    repository = _fake_repository([_match(1, None, datetime(2024, 4, 1), event_start=None)])

    result = SeatLookupService(repository).search("ed", HOST_USER_ID)[0]

    assert (result.event_start_date, result.event_start_time, result.event_date) == ("", "", None)


def test_seats_are_joined_when_requested():
    repository = _fake_repository(
        [_match(1, 10, datetime(2024, 4, 1))],
        attendees={10: Attendee(10, "Edwina", "Smith")},
        seats={1: ["A-1", "A-2"]},
    )

    result = SeatLookupService(repository).search("ed", HOST_USER_ID, include_seats=True)[0]

    assert result.seat_info == "A-1\nA-2"


def test_seat_failures_do_not_fail_the_search():
    repository = _fake_repository([_match(1, 10, datetime(2024, 4, 1))], attendees={10: Attendee(10, "Ed", None)})
    repository.get_seats.side_effect = OperationalError("SELECT", {}, Exception("canceling statement due to timeout"))

    results = SeatLookupService(repository, include_seats=True).search("ed", HOST_USER_ID)

    assert [(result.payer_name, result.seat_info) for result in results] == [("Ed", None)]


def test_attendee_failures_propagate():
    repository = _fake_repository([_match(1, 10, datetime(2024, 4, 1))])
    repository.get_attendees.side_effect = OperationalError("SELECT", {}, Exception("connection reset"))

    with pytest.raises(OperationalError):
        SeatLookupService(repository).search("ed", HOST_USER_ID)


def test_search_against_database(repository):
    service = SeatLookupService(repository, include_seats=True)

    results = service.search("edwin", HOST_USER_ID)

    assert [result.payment_id for result in results] == [101, 102, 100]
    assert [result.payer_name for result in results] == ["Edwina Smith", "Mary Edwinson", "Edwina Smith"]
    assert results[0].event_name == "Summer Show"
    assert results[0].event_start_time == "8:05 AM"
    assert results[2].event_start_date == "05/01/2024"
    assert results[2].seat_info == "Section A, Row 1, Seat 1\nBalcony A2"
    assert results[1].seat_info is None
