"""Utilities to populate the database with sample data for tests and demos."""
from __future__ import annotations

import random
from datetime import datetime, timedelta
from typing import Dict, Sequence, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from .directory import add_airport, add_flight, add_user, create_seats
from .errors import StorageError
from .models import utcnow

AIRPORTS: Sequence[Tuple[str, str]] = (
    ("ATL", "Hartsfield-Jackson Atlanta"),
    ("DXB", "Dubai International"),
    ("LAX", "Los Angeles International"),
    ("HND", "Tokyo Haneda"),
    ("ORD", "Chicago O'Hare"),
    ("LHR", "London Heathrow"),
    ("CDG", "Paris Charles de Gaulle"),
    ("JFK", "New York John F. Kennedy"),
)
FIRST_NAMES = ("Ava", "Noah", "Liam", "Mia", "Lucas", "Emma", "Ethan", "Isabella")
LAST_NAMES = ("Johnson", "Williams", "Smith", "Brown", "Garcia", "Lee")


def _random_datetime(days_from_now: int) -> datetime:
    start = utcnow() + timedelta(days=days_from_now)
    hour = random.randint(5, 22)
    minute = random.choice((0, 15, 30, 45))
    return start.replace(hour=hour, minute=minute, second=0, microsecond=0)


def generate_sample_data(
    session_factory: sessionmaker[Session],
    *,
    flights: int = 10,
    rows: int = 20,
    users: int = 50,
    first_flight_number: int = 100,
) -> Dict[str, int]:
    """Populate the database with deterministic pseudo-random data.

    Every flight gets a full set of unbooked seats; reservations are left to
    the service. Seeding a database that already holds the sample airports or
    flight numbers raises :class:`StorageError` and writes nothing.
    """

    random.seed(42)
    with session_factory() as session:
        try:
            seats = _populate(session, flights=flights, rows=rows, users=users, first_flight_number=first_flight_number)
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise StorageError(f"Sample data clashes with existing records: {exc.orig}") from exc
    return {"airports": len(AIRPORTS), "flights": flights, "seats": seats, "users": users}


def _populate(session: Session, *, flights: int, rows: int, users: int, first_flight_number: int) -> int:
    seats = 0
    codes = [add_airport(session, code=code, name=name).code for code, name in AIRPORTS]
    for index in range(flights):
        departure_code, destination_code = random.sample(codes, 2)
        departure = _random_datetime(random.randint(1, 10))
        flight = add_flight(
            session,
            flight_number=first_flight_number + index,
            departure_code=departure_code,
            destination_code=destination_code,
            departure_time=departure,
            arrival_time=departure + timedelta(hours=random.randint(2, 12)),
        )
        seats += len(create_seats(session, flight, rows=rows))
    for index in range(users):
        first = random.choice(FIRST_NAMES)
        last = random.choice(LAST_NAMES)
        add_user(
            session,
            username=f"{first.lower()}{index}",
            display_name=f"{first} {last}",
            email=f"test{index}@example.com",
            phone=f"+1-555-{index:04d}",
        )
    return seats


__all__ = ["generate_sample_data", "AIRPORTS"]
