import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

from backend.payment_dashboard.repository import SQLPaymentRepository

HOST_USER_ID = 9987142
OTHER_HOST_USER_ID = 555

SCHEMA = (
    """
    CREATE TABLE events (
        id INTEGER PRIMARY KEY,
        user_id INTEGER NOT NULL,
        name TEXT,
        start_date TIMESTAMP
    )
    """,
    """
    CREATE TABLE event_attendees (
        id INTEGER PRIMARY KEY,
        event_id INTEGER,
        first_name TEXT,
        last_name TEXT,
        created_at TIMESTAMP
    )
    """,
    """
    CREATE TABLE payments (
        id INTEGER PRIMARY KEY,
        transaction_id TEXT,
        status TEXT,
        name_on_card TEXT,
        card_type TEXT,
        last_four TEXT,
        amount NUMERIC,
        created_at TIMESTAMP,
        user_id INTEGER,
        event_id INTEGER,
        event_attendee_id INTEGER,
        shipping_address_id INTEGER,
        metadata TEXT
    )
    """,
    """
    CREATE TABLE attendee_guests (
        id INTEGER PRIMARY KEY,
        payment_id INTEGER,
        event_attendee_id INTEGER,
        seat_id TEXT,
        seat_obj TEXT
    )
    """,
)

EVENTS = [
    {"id": 1, "user_id": HOST_USER_ID, "name": "Spring Gala", "start_date": "2024-05-01 19:30:00"},
    {"id": 2, "user_id": HOST_USER_ID, "name": "Summer Show", "start_date": "2024-07-10 08:05:00"},
    {"id": 3, "user_id": OTHER_HOST_USER_ID, "name": "Other Show", "start_date": "2024-06-01 20:00:00"},
]

ATTENDEES = [
    {"id": 10, "event_id": 1, "first_name": "Edwina", "last_name": "Smith", "created_at": "2024-03-01 10:00:00"},
    {"id": 11, "event_id": 1, "first_name": "Eddie", "last_name": "Jones", "created_at": "2024-03-02 10:00:00"},
    {"id": 12, "event_id": 2, "first_name": "Mary", "last_name": "Edwinson", "created_at": "2024-03-03 10:00:00"},
    {"id": 13, "event_id": 3, "first_name": "Edwina", "last_name": "Other", "created_at": "2024-03-04 10:00:00"},
    {"id": 15, "event_id": 2, "first_name": "Al_x", "last_name": "Under", "created_at": "2024-03-05 10:00:00"},
    {"id": 16, "event_id": 2, "first_name": "Alex", "last_name": "Plain", "created_at": "2024-03-06 10:00:00"},
]

PAYMENTS = [
    {"id": 100, "transaction_id": "T100", "status": "approved", "card_type": "visa", "amount": 50.00,
     "created_at": "2024-04-01 10:00:00", "event_id": 1, "event_attendee_id": 10,
     "metadata": '{"ip_address": "10.0.0.1"}'},
    {"id": 101, "transaction_id": "T101", "status": "approved", "card_type": "visa", "amount": 75.50,
     "created_at": "2024-04-03 09:00:00", "event_id": 2, "event_attendee_id": 10, "metadata": None},
    {"id": 102, "transaction_id": "T102", "status": "declined", "card_type": "mastercard", "amount": 20.00,
     "created_at": "2024-04-02 12:00:00", "event_id": 2, "event_attendee_id": 12, "metadata": None},
    {"id": 103, "transaction_id": "T103", "status": "approved", "card_type": "visa", "amount": 30.00,
     "created_at": "2024-04-04 08:00:00", "event_id": 3, "event_attendee_id": 13, "metadata": None},
    {"id": 104, "transaction_id": "T104", "status": "approved", "card_type": "amex", "amount": 0,
     "created_at": "2024-04-05 08:00:00", "event_id": 1, "event_attendee_id": 11, "metadata": None},
    {"id": 105, "transaction_id": "T105", "status": "refunded", "card_type": "visa", "amount": 10.00,
     "created_at": "2024-04-06 08:00:00", "event_id": 1, "event_attendee_id": None, "metadata": "not json"},
    {"id": 106, "transaction_id": "T106", "status": "approved", "card_type": "visa", "amount": 15.00,
     "created_at": "2024-04-07 08:00:00", "event_id": 2, "event_attendee_id": 15, "metadata": None},
    {"id": 107, "transaction_id": "T107", "status": "approved", "card_type": "visa", "amount": 15.00,
     "created_at": "2024-04-08 08:00:00", "event_id": 2, "event_attendee_id": 16, "metadata": None},
]

GUESTS = [
    {"id": 1, "payment_id": 100, "event_attendee_id": 10, "seat_id": "A-1",
     "seat_obj": '{"section": "A", "row": "1", "seat": "1"}'},
    {"id": 2, "payment_id": 100, "event_attendee_id": 10, "seat_id": "A-2", "seat_obj": '{"label": "Balcony A2"}'},
    {"id": 3, "payment_id": 101, "event_attendee_id": 10, "seat_id": "B-7", "seat_obj": None},
]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    with engine.begin() as connection:
        for statement in SCHEMA:
            connection.execute(text(statement))
        connection.execute(
            text("INSERT INTO events (id, user_id, name, start_date) VALUES (:id, :user_id, :name, :start_date)"),
            EVENTS,
        )
        connection.execute(
            text(
                "INSERT INTO event_attendees (id, event_id, first_name, last_name, created_at) "
                "VALUES (:id, :event_id, :first_name, :last_name, :created_at)"
            ),
            ATTENDEES,
        )
        connection.execute(
            text(
                "INSERT INTO payments (id, transaction_id, status, card_type, amount, created_at, "
                "event_id, event_attendee_id, metadata) VALUES (:id, :transaction_id, :status, "
                ":card_type, :amount, :created_at, :event_id, :event_attendee_id, :metadata)"
            ),
            PAYMENTS,
        )
        connection.execute(
            text(
                "INSERT INTO attendee_guests (id, payment_id, event_attendee_id, seat_id, seat_obj) "
                "VALUES (:id, :payment_id, :event_attendee_id, :seat_id, :seat_obj)"
            ),
            GUESTS,
        )
    yield engine
    engine.dispose()


@pytest.fixture
def repository(engine):
    return SQLPaymentRepository(engine)
