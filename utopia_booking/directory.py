"""Airport, flight and user records, plus seat creation at flight setup."""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional, Sequence

from sqlalchemy import Select, and_, case, func, select
from sqlalchemy.orm import Session

from .errors import SeatNotFoundError, UserNotFoundError
from .models import Airport, Flight, Ticket, User

SEAT_LETTERS: Sequence[str] = tuple("ABCDEF")


def default_seat_class(row: int) -> int:
    """First class for rows 1-2, business for 3-6, economy after that."""

    if row <= 2:
        return 1
    if row <= 6:
        return 2
    return 3


def add_airport(session: Session, *, code: str, name: str) -> Airport:
    airport = Airport(code=code.upper(), name=name)
    session.add(airport)
    session.flush()
    return airport


def add_flight(
    session: Session,
    *,
    flight_number: int,
    departure_code: str,
    destination_code: str,
    departure_time: datetime,
    arrival_time: datetime,
) -> Flight:
    """Create a flight entry."""

    if arrival_time <= departure_time:
        raise ValueError("arrival must be after departure")
    flight = Flight(
        flight_number=flight_number,
        departure_code=departure_code.upper(),
        destination_code=destination_code.upper(),
        departure_time=departure_time,
        arrival_time=arrival_time,
    )
    session.add(flight)
    session.flush()
    return flight


def add_user(
    session: Session,
    *,
    username: str,
    display_name: Optional[str] = None,
    email: Optional[str] = None,
    phone: Optional[str] = None,
) -> User:
    user = User(username=username, display_name=display_name, email=email, phone=phone)
    session.add(user)
    session.flush()
    return user


def create_seats(
    session: Session,
    flight: Flight,
    *,
    rows: int,
    letters: Iterable[str] = SEAT_LETTERS,
    seat_class: Callable[[int], int] = default_seat_class,
) -> List[Ticket]:
    """Create one unbooked ticket per seat; done once when a flight is set up."""

    if rows < 1:
        raise ValueError("a flight needs at least one row")
    tickets = [
        Ticket(flight=flight, row=row, seat=letter.upper(), seat_class=seat_class(row))
        for row in range(1, rows + 1)
        for letter in letters
    ]
    session.add_all(tickets)
    session.flush()
    return tickets


def resolve_user(session: Session, user_id: int) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise UserNotFoundError(f"No user with id {user_id}")
    return user


def resolve_flight_by_number(session: Session, flight_number: int) -> Flight:
    flight = find_flight(session, flight_number)
    if flight is None:
        raise SeatNotFoundError(f"No flight numbered {flight_number}")
    return flight


def find_flight(session: Session, flight_number: int) -> Optional[Flight]:
    return session.scalars(select(Flight).where(Flight.flight_number == flight_number)).first()


def list_airports(session: Session) -> List[Airport]:
    return list(session.scalars(select(Airport).order_by(Airport.code)))


def search_flights(
    session: Session,
    *,
    departure: Optional[str] = None,
    destination: Optional[str] = None,
    departure_date: Optional[datetime] = None,
) -> List[Flight]:
    stmt: Select[tuple[Flight]] = select(Flight)
    if departure:
        stmt = stmt.where(Flight.departure_code == departure.upper())
    if destination:
        stmt = stmt.where(Flight.destination_code == destination.upper())
    if departure_date:
        start = departure_date.replace(hour=0, minute=0, second=0, microsecond=0)
        end = start + timedelta(days=1)
        stmt = stmt.where(Flight.departure_time >= start, Flight.departure_time < end)
    return list(session.scalars(stmt.order_by(Flight.departure_time)))


def summarize_seats(session: Session) -> List[dict]:
    """Seat counts per flight, split into unbooked, reserved and paid."""

    rows = session.execute(
        select(
            Flight.flight_number,
            Flight.departure_code,
            Flight.destination_code,
            func.count(Ticket.seat).label("seats"),
            func.sum(case((and_(Ticket.seat.is_not(None), Ticket.reserver_id.is_(None)), 1), else_=0)).label("unbooked"),
            func.sum(case((Ticket.price.is_not(None), 1), else_=0)).label("paid"),
        )
        .outerjoin(Ticket, Ticket.flight_id == Flight.id)
        .group_by(Flight.id)
        .order_by(Flight.flight_number)
    ).all()
    return [
        {
            "flight": row.flight_number,
            "route": f"{row.departure_code}-{row.destination_code}",
            "seats": row.seats,
            "unbooked": row.unbooked or 0,
            "reserved": row.seats - (row.unbooked or 0) - (row.paid or 0),
            "paid": row.paid or 0,
        }
        for row in rows
    ]


__all__ = [
    "SEAT_LETTERS",
    "default_seat_class",
    "add_airport",
    "add_flight",
    "add_user",
    "create_seats",
    "resolve_user",
    "resolve_flight_by_number",
    "find_flight",
    "list_airports",
    "search_flights",
    "summarize_seats",
]
