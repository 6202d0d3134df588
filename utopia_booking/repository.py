"""Ticket lookups and writes used by the reservation service."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from .database import TransactionScope
from .errors import StorageError
from .models import Flight, Ticket


def lookup_ticket(
    session: Session,
    flight: Flight,
    row: int,
    seat: str,
    *,
    for_update: bool = False,
) -> Optional[Ticket]:
    """Return the stored ticket for a seat, locking the row when asked."""

    try:
        ticket = session.get(
            Ticket,
            (flight.id, row, seat),
            with_for_update=for_update,
            populate_existing=for_update,
        )
    except SQLAlchemyError as exc:
        raise StorageError(f"Could not load ticket {flight.flight_number}/{row}/{seat}: {exc}") from exc
    return ticket


def lookup_tickets_by_booking_id(session: Session, booking_id: str) -> List[Ticket]:
    """Every ticket carrying ``booking_id``; more than one is a data fault."""

    stmt = (
        select(Ticket)
        .options(joinedload(Ticket.flight))
        .where(Ticket.booking_id == booking_id)
    )
    try:
        return list(session.scalars(stmt))
    except SQLAlchemyError as exc:
        raise StorageError(f"Could not search booking {booking_id}: {exc}") from exc


def persist_ticket(scope: TransactionScope, ticket: Ticket) -> Ticket:
    scope.session.add(ticket)
    scope.flush()
    return ticket


def list_flight_tickets(session: Session, flight: Flight) -> List[Ticket]:
    stmt = (
        select(Ticket)
        .options(joinedload(Ticket.flight), joinedload(Ticket.reserver))
        .where(Ticket.flight_id == flight.id)
        .order_by(Ticket.row, Ticket.seat)
    )
    return list(session.scalars(stmt))


def find_expired_reservations(session: Session, now: datetime, *, limit: int = 500) -> List[Ticket]:
    """Reserved tickets whose payment deadline is at or before ``now``."""

    stmt = (
        select(Ticket)
        .options(joinedload(Ticket.flight))
        .where(
            Ticket.reserver_id.is_not(None),
            Ticket.price.is_(None),
            Ticket.reservation_timeout <= now,
        )
        .order_by(Ticket.reservation_timeout)
        .limit(limit)
    )
    return list(session.scalars(stmt))


__all__ = [
    "lookup_ticket",
    "lookup_tickets_by_booking_id",
    "persist_ticket",
    "list_flight_tickets",
    "find_expired_reservations",
]
