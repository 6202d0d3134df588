"""SQLAlchemy models and the ticket state machine for seat booking."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, validates
from sqlalchemy.orm.attributes import flag_modified

from .booking_id import booking_reference
from .errors import (
    AlreadyPaidError,
    AlreadyReservedError,
    InvalidTransitionError,
    NotReservedError,
    PaymentConflictError,
)


def utcnow() -> datetime:
    """Current time as a naive UTC timestamp, the form stored in the database."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_storage_time(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass


class Airport(Base):
    __tablename__ = "airports"

    code: Mapped[str] = mapped_column(String(3), primary_key=True)
    name: Mapped[str] = mapped_column(String(80), nullable=False)


class Flight(Base):
    __tablename__ = "flights"
    __table_args__ = (UniqueConstraint("flight_number", name="uq_flight_number"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    flight_number: Mapped[int] = mapped_column(Integer, nullable=False)
    departure_code: Mapped[str] = mapped_column(ForeignKey("airports.code"), nullable=False)
    destination_code: Mapped[str] = mapped_column(ForeignKey("airports.code"), nullable=False)
    departure_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    arrival_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    departure_airport: Mapped[Airport] = relationship(foreign_keys=[departure_code])
    destination_airport: Mapped[Airport] = relationship(foreign_keys=[destination_code])
    tickets: Mapped[List["Ticket"]] = relationship(back_populates="flight", cascade="all, delete-orphan")


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    username: Mapped[Optional[str]] = mapped_column(String(50))
    display_name: Mapped[Optional[str]] = mapped_column(String(80))
    email: Mapped[Optional[str]] = mapped_column(String(120))
    phone: Mapped[Optional[str]] = mapped_column(String(20))

    @property
    def name(self) -> str:
        return self.display_name or self.username or "unknown user"


@dataclass(frozen=True)
class SeatLocation:
    """Flight, row and seat that together identify one bookable seat."""

    flight_number: int
    row: int
    seat: str

    def __post_init__(self) -> None:
        if self.row < 1:
            raise ValueError(f"row must be at least 1, got {self.row}")
        label = (self.seat or "").strip().upper()
        if not label:
            raise ValueError("seat label must not be empty")
        object.__setattr__(self, "seat", label)

    def __str__(self) -> str:
        return f"{self.flight_number}/{self.row}/{self.seat}"


class TicketState(str, enum.Enum):
    UNBOOKED = "unbooked"
    RESERVED = "reserved"
    PAID = "paid"


@dataclass(frozen=True)
class TicketSnapshot:
    """Read-only copy of a ticket taken inside a transaction."""

    location: SeatLocation
    seat_class: int
    state: TicketState
    reserver_id: Optional[int]
    price: Optional[int]
    reservation_timeout: Optional[datetime]
    booking_id: Optional[str]

    @property
    def reserved(self) -> bool:
        return self.state is not TicketState.UNBOOKED

    def as_dict(self) -> dict:
        # reserver is write-only; it never goes back out to clients.
        return {
            "flight": self.location.flight_number,
            "row": self.location.row,
            "seat": self.location.seat,
            "seat_class": self.seat_class,
            "state": self.state.value,
            "reserved": self.reserved,
            "price": self.price,
            "reservation_timeout": (
                self.reservation_timeout.isoformat() if self.reservation_timeout else None
            ),
            "booking_id": self.booking_id,
        }

    def as_row(self) -> List[object]:
        return [
            str(self.location),
            self.seat_class,
            self.state.value,
            "-" if self.price is None else self.price,
            "-" if self.reservation_timeout is None else self.reservation_timeout.isoformat(" ", "seconds"),
            self.booking_id or "-",
        ]


_TICKET_STATE_CHECK = (
    "(reserver_id IS NULL AND price IS NULL AND reservation_timeout IS NULL AND booking_id IS NULL)"
    " OR (reserver_id IS NOT NULL AND booking_id IS NOT NULL"
    " AND ((price IS NULL AND reservation_timeout IS NOT NULL)"
    " OR (price IS NOT NULL AND reservation_timeout IS NULL)))"
)


class Ticket(Base):
    """A seat on a flight, for which a ticket may be reserved and paid for.

    The mutable fields only change through :meth:`reserve`,
    :meth:`confirm_payment` and :meth:`release`, which keep the ticket in one
    of three states:

    * unbooked: no reserver, price, timeout or booking id;
    * reserved: reserver, booking id and payment deadline, no price;
    * paid: reserver, booking id and price, no deadline.

    Assigning a price, deadline or booking id that would break this raises
    :class:`InvalidTransitionError`. Setting ``reserver`` to ``None`` clears
    the other three fields with it; handing a held seat to another user is
    refused.
    """

    __tablename__ = "tickets"
    __table_args__ = (
        CheckConstraint("seat_row >= 1", name="ck_ticket_row_positive"),
        CheckConstraint(_TICKET_STATE_CHECK, name="ck_ticket_state"),
    )

    flight_id: Mapped[int] = mapped_column(ForeignKey("flights.id", ondelete="CASCADE"), primary_key=True)
    row: Mapped[int] = mapped_column("seat_row", Integer, primary_key=True)
    seat: Mapped[str] = mapped_column(String(2), primary_key=True)
    seat_class: Mapped[int] = mapped_column(Integer, nullable=False)
    reserver_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    price: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    reservation_timeout: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)
    booking_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    flight: Mapped[Flight] = relationship(back_populates="tickets")
    reserver: Mapped[Optional[User]] = relationship()

    __mapper_args__ = {"version_id_col": version}

    @property
    def location(self) -> SeatLocation:
        return SeatLocation(self.flight.flight_number, self.row, self.seat)

    @property
    def state(self) -> TicketState:
        if self.reserver is None:
            return TicketState.UNBOOKED
        if self.price is None:
            return TicketState.RESERVED
        return TicketState.PAID

    def is_valid(self) -> bool:
        """Whether the mutable fields are internally consistent."""

        if self.reserver is None:
            return self.price is None and self.reservation_timeout is None and self.booking_id is None
        if self.booking_id is None:
            return False
        if self.price is None:
            return self.reservation_timeout is not None
        return self.reservation_timeout is None

    @validates("reserver")
    def _validate_reserver(self, key: str, value: Optional[User]) -> Optional[User]:
        current = self.reserver
        if value is not None:
            if current is not None and current is not value:
                raise InvalidTransitionError(f"Seat {self.location} is held by another user")
            return value
        # Unbooking clears the whole reservation. Written past the validators,
        # which still see the outgoing reserver.
        for name in ("price", "reservation_timeout", "booking_id"):
            self.__dict__[name] = None
            flag_modified(self, name)
        return value

    @validates("price")
    def _validate_price(self, key: str, value: Optional[int]) -> Optional[int]:
        if value is not None and self.reserver is None:
            raise InvalidTransitionError("Ticket can only be paid for if someone reserved it")
        return value

    @validates("reservation_timeout")
    def _validate_timeout(self, key: str, value: Optional[datetime]) -> Optional[datetime]:
        if value is None:
            return value
        if self.reserver is None:
            raise InvalidTransitionError("Tickets only expire if someone reserved them")
        if self.price is not None:
            raise InvalidTransitionError("Only unconfirmed bookings can time out")
        return to_storage_time(value)

    @validates("booking_id")
    def _validate_booking_id(self, key: str, value: Optional[str]) -> Optional[str]:
        if value is not None and self.reserver is None:
            raise InvalidTransitionError("Unbooked seat cannot have a booking ID")
        if value is None and self.reserver is not None:
            raise InvalidTransitionError("Booked seat must have booking ID")
        return value

    def _ensure_valid(self) -> None:
        if not self.is_valid():
            raise InvalidTransitionError(f"Ticket {self.location} left in an inconsistent state")

    def reserve(self, user: User, timeout: datetime) -> None:
        """Hold this seat for ``user`` until ``timeout`` unless paid for."""

        if user is None or user.id is None:
            raise InvalidTransitionError("A reservation needs a persisted user")
        if timeout is None:
            raise InvalidTransitionError("A reservation needs a payment deadline")
        if self.reserver is not None:
            raise AlreadyReservedError(f"Seat {self.location} is already reserved")
        location = self.location
        self.reserver = user
        self.reservation_timeout = timeout
        self.booking_id = booking_reference(location.flight_number, location.row, location.seat, user.id)
        self._ensure_valid()

    def confirm_payment(self, price: int) -> bool:
        """Record payment; returns ``False`` when it was already paid at ``price``."""

        if price is None or price < 0:
            raise InvalidTransitionError(f"Invalid ticket price {price!r}")
        state = self.state
        if state is TicketState.UNBOOKED:
            raise NotReservedError(f"Seat {self.location} is not reserved")
        if state is TicketState.PAID:
            if self.price == price:
                return False
            raise PaymentConflictError(
                f"Seat {self.location} was already paid for at {self.price}, not {price}"
            )
        self.price = price
        self.reservation_timeout = None
        self._ensure_valid()
        return True

    def release(self) -> bool:
        """Return the seat to unbooked; returns ``False`` when it already was."""

        state = self.state
        if state is TicketState.UNBOOKED:
            return False
        if state is TicketState.PAID:
            raise AlreadyPaidError(f"Seat {self.location} has been paid for")
        self.reserver = None
        self._ensure_valid()
        return True

    def snapshot(self) -> TicketSnapshot:
        return TicketSnapshot(
            location=self.location,
            seat_class=self.seat_class,
            state=self.state,
            reserver_id=self.reserver.id if self.reserver is not None else None,
            price=self.price,
            reservation_timeout=self.reservation_timeout,
            booking_id=self.booking_id,
        )
