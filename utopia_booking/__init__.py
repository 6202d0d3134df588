"""Seat reservation and payment for airline flights."""
from typing import TYPE_CHECKING, Any

from .booking_id import booking_reference
from .database import create_session_factory, init_db, transaction_scope
from .dataset import generate_sample_data
from .errors import (
    AlreadyPaidError,
    AlreadyReservedError,
    BookingError,
    BookingNotFoundError,
    NotReservedError,
    PaymentConflictError,
    SeatNotFoundError,
    UniquenessViolationError,
)
from .models import SeatLocation, Ticket, TicketSnapshot, TicketState
from .services import ReservationService
from .sweeper import release_expired

if TYPE_CHECKING:  # pragma: no cover - import for type hints only
    from .web import create_app as _create_app


def create_app(*args: Any, **kwargs: Any):  # pragma: no cover - thin wrapper
    from .web import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "booking_reference",
    "create_session_factory",
    "init_db",
    "transaction_scope",
    "generate_sample_data",
    "AlreadyPaidError",
    "AlreadyReservedError",
    "BookingError",
    "BookingNotFoundError",
    "NotReservedError",
    "PaymentConflictError",
    "SeatNotFoundError",
    "UniquenessViolationError",
    "SeatLocation",
    "Ticket",
    "TicketSnapshot",
    "TicketState",
    "ReservationService",
    "release_expired",
    "create_app",
]
