from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from utopia_booking.database import create_session_factory
from utopia_booking.directory import add_airport, add_flight, add_user, create_seats
from utopia_booking.models import Base, SeatLocation
from utopia_booking.services import ReservationService

NOW = datetime(2024, 5, 1, 12, 0)
FLIGHT_NUMBER = 152
SEAT = SeatLocation(FLIGHT_NUMBER, 1, "A")
# md5("152 1 A 1")
EXPECTED_BOOKING_ID = "31e3789fa3d1d1f5d95297ee3183f486"


@pytest.fixture
def session_factory(tmp_path):
    engine, factory = create_session_factory(f"sqlite+pysqlite:///{tmp_path / 'booking.db'}")
    Base.metadata.create_all(engine)
    yield factory
    engine.dispose()


@pytest.fixture
def flight_number(session_factory):
    """Flight 152 LAX-JFK with rows 1-3, seats A-C, and users 1 (alice) and 2 (bob)."""

    with session_factory() as session:
        add_airport(session, code="LAX", name="Los Angeles International")
        add_airport(session, code="JFK", name="New York John F. Kennedy")
        flight = add_flight(
            session,
            flight_number=FLIGHT_NUMBER,
            departure_code="LAX",
            destination_code="JFK",
            departure_time=NOW + timedelta(days=2),
            arrival_time=NOW + timedelta(days=2, hours=5),
        )
        create_seats(session, flight, rows=3, letters="ABC")
        add_user(session, username="alice", display_name="Alice Johnson")
        add_user(session, username="bob")
        session.commit()
    return FLIGHT_NUMBER


@pytest.fixture
def service(session_factory, flight_number):
    return ReservationService(session_factory, reservation_minutes=15, clock=lambda: NOW)
