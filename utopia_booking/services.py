"""Business logic for reserving, paying for and cancelling seats."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional, TypeVar

from sqlalchemy.orm import Session, sessionmaker

from .config import DEFAULT_EXPIRATION_MINUTES, DEFAULT_MAX_ATTEMPTS, Settings
from .database import TransactionScope, transaction_scope
from .directory import resolve_flight_by_number, resolve_user
from .errors import (
    BookingNotFoundError,
    ConcurrentUpdateError,
    ConsistencyError,
    DomainError,
    SeatNotFoundError,
    StorageError,
    TransactionError,
    UniquenessViolationError,
)
from .models import SeatLocation, Ticket, TicketSnapshot, TicketState, to_storage_time, utcnow
from .repository import (
    list_flight_tickets,
    lookup_ticket,
    lookup_tickets_by_booking_id,
    persist_ticket,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _load_ticket(scope: TransactionScope, seat: SeatLocation, *, for_update: bool = True) -> Ticket:
    flight = resolve_flight_by_number(scope.session, seat.flight_number)
    ticket = lookup_ticket(scope.session, flight, seat.row, seat.seat, for_update=for_update)
    if ticket is None:
        raise SeatNotFoundError(f"No seat {seat}")
    return ticket


def _load_booking(scope: TransactionScope, booking_id: str) -> Optional[Ticket]:
    """Resolve a booking id to its ticket, locked and freshly read."""

    matches = lookup_tickets_by_booking_id(scope.session, booking_id)
    if not matches:
        return None
    if len(matches) > 1:
        raise UniquenessViolationError(
            f"Booking {booking_id} matches {len(matches)} tickets: "
            + ", ".join(str(ticket.location) for ticket in matches)
        )
    ticket = _load_ticket(scope, matches[0].location)
    # Cancelled between the search and the lock.
    if ticket.booking_id != booking_id:
        return None
    return ticket


def _reserve(scope: TransactionScope, seat: SeatLocation, user_id: int, timeout: datetime) -> TicketSnapshot:
    ticket = _load_ticket(scope, seat)
    user = resolve_user(scope.session, user_id)
    ticket.reserve(user, timeout)
    persist_ticket(scope, ticket)
    logger.info("Seat %s reserved by user %s until %s", seat, user_id, ticket.reservation_timeout)
    return ticket.snapshot()


def _pay(scope: TransactionScope, ticket: Ticket, price: int) -> TicketSnapshot:
    if ticket.confirm_payment(price):
        persist_ticket(scope, ticket)
        logger.info("Seat %s paid at %s", ticket.location, price)
    return ticket.snapshot()


def _cancel(scope: TransactionScope, ticket: Ticket) -> TicketSnapshot:
    if ticket.release():
        persist_ticket(scope, ticket)
        logger.info("Reservation on seat %s cancelled", ticket.location)
    return ticket.snapshot()


@dataclass
class ReservationService:
    """Book, pay for and cancel seat reservations.

    Each public method runs in a transaction scope of its own, opened from
    ``session_factory`` and passed explicitly to the step that does the work;
    nothing transactional is stored on the service. Ticket rows are locked
    while they are read, and the optimistic version column catches anything
    the database lets through. A call that loses such a race is retried from
    scratch, up to ``max_attempts`` times, so it sees the winner's committed
    state and fails the normal way.
    """

    session_factory: sessionmaker[Session]
    reservation_minutes: int = DEFAULT_EXPIRATION_MINUTES
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    clock: Callable[[], datetime] = utcnow

    @classmethod
    def from_settings(cls, session_factory: sessionmaker[Session], settings: Settings) -> "ReservationService":
        return cls(
            session_factory=session_factory,
            reservation_minutes=settings.expiration_minutes,
            max_attempts=settings.max_attempts,
        )

    def _run(self, operation: str, step: Callable[[TransactionScope], T]) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                with transaction_scope(self.session_factory) as scope:
                    return step(scope)
            except ConcurrentUpdateError:
                if attempt >= self.max_attempts:
                    logger.error("%s gave up after %d conflicting updates", operation, attempt)
                    raise
                logger.info("%s lost a race, retrying (attempt %d)", operation, attempt + 1)
            except DomainError as exc:
                logger.debug("%s refused: %s", operation, exc)
                raise
            except ConsistencyError:
                logger.exception("%s found inconsistent booking data", operation)
                raise
            except (StorageError, TransactionError):
                logger.exception("%s failed in the database", operation)
                raise

    def default_timeout(self) -> datetime:
        return self.clock() + timedelta(minutes=self.reservation_minutes)

    def get_ticket(self, seat: SeatLocation) -> TicketSnapshot:
        return self._run("get_ticket", lambda scope: _load_ticket(scope, seat, for_update=False).snapshot())

    def list_seats(self, flight_number: int) -> List[TicketSnapshot]:
        def step(scope: TransactionScope) -> List[TicketSnapshot]:
            flight = resolve_flight_by_number(scope.session, flight_number)
            return [ticket.snapshot() for ticket in list_flight_tickets(scope.session, flight)]

        return self._run("list_seats", step)

    def book_seat(
        self,
        seat: SeatLocation,
        user_id: int,
        timeout: Optional[datetime] = None,
    ) -> TicketSnapshot:
        """Reserve ``seat`` for the user until ``timeout`` (default: now plus the configured minutes)."""

        deadline = to_storage_time(timeout) if timeout is not None else self.default_timeout()
        return self._run("book_seat", lambda scope: _reserve(scope, seat, user_id, deadline))

    def accept_payment(self, seat: SeatLocation, price: int) -> TicketSnapshot:
        """Mark the reservation on ``seat`` paid; paying again at the same price is a no-op."""

        return self._run("accept_payment", lambda scope: _pay(scope, _load_ticket(scope, seat), price))

    def accept_payment_for_booking(self, booking_id: str, price: int) -> TicketSnapshot:
        def step(scope: TransactionScope) -> TicketSnapshot:
            ticket = _load_booking(scope, booking_id)
            if ticket is None:
                raise BookingNotFoundError(f"No booking {booking_id}")
            return _pay(scope, ticket, price)

        return self._run("accept_payment", step)

    def cancel_reservation(self, seat: SeatLocation) -> TicketSnapshot:
        """Release an unpaid reservation; cancelling an unbooked seat is a no-op."""

        return self._run("cancel_reservation", lambda scope: _cancel(scope, _load_ticket(scope, seat)))

    def cancel_reservation_for_booking(self, booking_id: str) -> None:
        def step(scope: TransactionScope) -> None:
            ticket = _load_booking(scope, booking_id)
            if ticket is not None:
                _cancel(scope, ticket)

        self._run("cancel_reservation", step)

    def expire_reservation(self, seat: SeatLocation, now: Optional[datetime] = None) -> bool:
        """Release ``seat`` if its reservation is still unpaid past its deadline.

        A ticket paid for, cancelled, or rebooked with a later deadline since
        it was found is left alone.
        """

        cutoff = to_storage_time(now) if now is not None else self.clock()

        def step(scope: TransactionScope) -> bool:
            ticket = _load_ticket(scope, seat)
            if ticket.state is not TicketState.RESERVED or ticket.reservation_timeout > cutoff:
                return False
            _cancel(scope, ticket)
            return True

        return self._run("expire_reservation", step)


__all__ = ["ReservationService"]
