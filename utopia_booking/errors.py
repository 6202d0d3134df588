"""Error taxonomy for the seat booking service."""
from __future__ import annotations

from typing import Optional


class BookingError(RuntimeError):
    """Base error for booking service issues."""

    kind: str = "booking_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind)
        self.rollback_error: Optional[BaseException] = None


class DomainError(BookingError):
    """Expected business outcome the caller can recover from."""


class AlreadyReservedError(DomainError):
    """Raised when booking a seat that already has a reserver."""

    kind = "already_reserved"


class NotReservedError(DomainError):
    """Raised when paying for a seat nobody has reserved."""

    kind = "not_reserved"


class PaymentConflictError(DomainError):
    """Raised when a paid ticket is paid again at a different price."""

    kind = "payment_conflict"


class AlreadyPaidError(DomainError):
    """Raised when cancelling a reservation that has been paid for."""

    kind = "already_paid"


class NotFoundError(DomainError):
    kind = "not_found"


class SeatNotFoundError(NotFoundError):
    kind = "seat_not_found"


class BookingNotFoundError(NotFoundError):
    kind = "booking_not_found"


class UserNotFoundError(NotFoundError):
    kind = "user_not_found"


class ConsistencyError(BookingError):
    """Internal fault: stored or in-memory state broke an invariant."""


class UniquenessViolationError(ConsistencyError):
    """Raised when one booking id refers to more than one ticket."""

    kind = "uniqueness_violation"


class InvalidTransitionError(ConsistencyError):
    """Raised on a programming error that would corrupt a ticket."""

    kind = "invalid_transition"


class StorageError(BookingError):
    """Raised when the database rejects a read or write."""

    kind = "storage_error"


class TransactionError(BookingError):
    """Raised when a transaction cannot be committed."""

    kind = "transaction_error"


class ConcurrentUpdateError(TransactionError):
    """Raised when another transaction changed the ticket first."""

    kind = "concurrent_update"


__all__ = [
    "BookingError",
    "DomainError",
    "AlreadyReservedError",
    "NotReservedError",
    "PaymentConflictError",
    "AlreadyPaidError",
    "NotFoundError",
    "SeatNotFoundError",
    "BookingNotFoundError",
    "UserNotFoundError",
    "ConsistencyError",
    "UniquenessViolationError",
    "InvalidTransitionError",
    "StorageError",
    "TransactionError",
    "ConcurrentUpdateError",
]
