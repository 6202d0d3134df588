from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from sqlalchemy import select

from utopia_booking import services
from utopia_booking.errors import (
    AlreadyPaidError,
    AlreadyReservedError,
    BookingNotFoundError,
    ConcurrentUpdateError,
    NotReservedError,
    PaymentConflictError,
    SeatNotFoundError,
    UniquenessViolationError,
    UserNotFoundError,
)
from utopia_booking.models import SeatLocation, Ticket, TicketState
from utopia_booking.services import ReservationService

from .conftest import EXPECTED_BOOKING_ID, NOW, SEAT


def _assert_all_valid(session_factory):
    with session_factory() as session:
        for ticket in session.scalars(select(Ticket)):
            assert ticket.is_valid(), ticket.location


def test_book_seat_reserves_with_default_deadline(service):
    ticket = service.book_seat(SEAT, 1)
    assert ticket.state is TicketState.RESERVED
    assert ticket.reserver_id == 1
    assert ticket.booking_id == EXPECTED_BOOKING_ID
    assert ticket.reservation_timeout == NOW + timedelta(minutes=15)
    assert service.get_ticket(SEAT) == ticket


def test_book_seat_honours_explicit_deadline(service):
    deadline = NOW + timedelta(hours=2)
    ticket = service.book_seat(SEAT, 1, timeout=deadline)
    assert ticket.reservation_timeout == deadline


def test_second_booking_of_same_seat_is_refused(service):
    service.book_seat(SEAT, 1)
    with pytest.raises(AlreadyReservedError):
        service.book_seat(SEAT, 2)
    assert service.get_ticket(SEAT).reserver_id == 1


def test_booking_unknown_seat_flight_or_user(service):
    with pytest.raises(SeatNotFoundError):
        service.book_seat(SeatLocation(152, 9, "A"), 1)
    with pytest.raises(SeatNotFoundError):
        service.book_seat(SeatLocation(999, 1, "A"), 1)
    with pytest.raises(UserNotFoundError):
        service.book_seat(SEAT, 42)
    assert service.get_ticket(SEAT).state is TicketState.UNBOOKED


def test_payment_flow_is_idempotent_and_detects_conflicts(service, session_factory):
    service.book_seat(SEAT, 1)

    paid = service.accept_payment(SEAT, 300)
    assert paid.state is TicketState.PAID
    assert paid.price == 300
    assert paid.reservation_timeout is None

    again = service.accept_payment(SEAT, 300)
    assert again == paid

    with pytest.raises(PaymentConflictError):
        service.accept_payment(SEAT, 400)
    assert service.get_ticket(SEAT).price == 300
    _assert_all_valid(session_factory)


def test_payment_for_unbooked_seat_is_refused(service):
    with pytest.raises(NotReservedError):
        service.accept_payment(SEAT, 300)


def test_payment_by_booking_id(service):
    booked = service.book_seat(SEAT, 1)
    paid = service.accept_payment_for_booking(booked.booking_id, 300)
    assert paid.location == SEAT
    assert paid.price == 300


def test_payment_by_booking_id_of_unbooked_seat_is_not_found(service):
    with pytest.raises(BookingNotFoundError):
        service.accept_payment_for_booking(EXPECTED_BOOKING_ID, 300)


def test_cancel_is_idempotent(service, session_factory):
    service.book_seat(SEAT, 1)
    for _ in range(3):
        ticket = service.cancel_reservation(SEAT)
        assert ticket.state is TicketState.UNBOOKED
        assert ticket.booking_id is None
    _assert_all_valid(session_factory)


def test_cancel_after_payment_is_refused(service):
    service.book_seat(SEAT, 1)
    service.accept_payment(SEAT, 300)
    with pytest.raises(AlreadyPaidError):
        service.cancel_reservation(SEAT)
    ticket = service.get_ticket(SEAT)
    assert ticket.state is TicketState.PAID
    assert ticket.price == 300


def test_cancel_by_booking_id(service):
    booked = service.book_seat(SEAT, 1)
    service.cancel_reservation_for_booking(booked.booking_id)
    assert service.get_ticket(SEAT).state is TicketState.UNBOOKED
    # Unknown or already cancelled bookings are a no-op.
    service.cancel_reservation_for_booking(booked.booking_id)


def test_cancel_by_booking_id_after_payment_is_refused(service):
    booked = service.book_seat(SEAT, 1)
    service.accept_payment(SEAT, 300)
    with pytest.raises(AlreadyPaidError):
        service.cancel_reservation_for_booking(booked.booking_id)


def test_cancel_and_rebook_reuses_booking_id(service):
    first = service.book_seat(SEAT, 1)
    service.cancel_reservation(SEAT)
    second = service.book_seat(SEAT, 1)
    assert second.booking_id == first.booking_id
    paid = service.accept_payment_for_booking(second.booking_id, 250)
    assert paid.price == 250


def test_duplicate_booking_id_is_a_uniqueness_violation(service, session_factory):
    first = service.book_seat(SEAT, 1)
    other = SeatLocation(152, 2, "B")
    service.book_seat(other, 2)
    with session_factory() as session:
        ticket = session.scalars(
            select(Ticket).where(Ticket.row == 2, Ticket.seat == "B")
        ).one()
        ticket.booking_id = first.booking_id
        session.commit()

    with pytest.raises(UniquenessViolationError):
        service.accept_payment_for_booking(first.booking_id, 300)
    with pytest.raises(UniquenessViolationError):
        service.cancel_reservation_for_booking(first.booking_id)
    assert service.get_ticket(SEAT).state is TicketState.RESERVED
    assert service.get_ticket(other).state is TicketState.RESERVED


def test_unassigning_reserver_clears_stored_reservation(service, session_factory):
    service.book_seat(SEAT, 1)
    service.accept_payment(SEAT, 300)
    with session_factory() as session:
        ticket = session.scalars(select(Ticket).where(Ticket.row == 1, Ticket.seat == "A")).one()
        ticket.reserver = None
        session.commit()

    stored = service.get_ticket(SEAT)
    assert stored.state is TicketState.UNBOOKED
    assert stored.price is None
    assert stored.booking_id is None
    _assert_all_valid(session_factory)


def test_invariant_holds_across_mixed_operations(service, session_factory):
    seats = [SeatLocation(152, row, letter) for row in (1, 2) for letter in "AB"]
    steps = [
        lambda seat: service.book_seat(seat, 1),
        lambda seat: service.book_seat(seat, 2),
        lambda seat: service.accept_payment(seat, 120),
        lambda seat: service.accept_payment(seat, 150),
        lambda seat: service.cancel_reservation(seat),
    ]
    for index, seat in enumerate(seats):
        for offset in range(len(steps)):
            step = steps[(index + offset) % len(steps)]
            try:
                step(seat)
            except (AlreadyReservedError, NotReservedError, PaymentConflictError, AlreadyPaidError):
                pass
            _assert_all_valid(session_factory)


def test_concurrent_bookings_of_one_seat_admit_exactly_one(session_factory, flight_number):
    from utopia_booking.directory import add_user

    with session_factory() as session:
        user_ids = [add_user(session, username=f"racer{i}").id for i in range(8)]
        session.commit()
    service = ReservationService(session_factory, max_attempts=3, clock=lambda: NOW)

    def attempt(user_id: int):
        try:
            return service.book_seat(SEAT, user_id)
        except AlreadyReservedError:
            return None

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(attempt, user_ids))

    winners = [result for result in results if result is not None]
    assert len(winners) == 1
    assert service.get_ticket(SEAT).reserver_id == winners[0].reserver_id
    _assert_all_valid(session_factory)


def test_concurrent_bookings_of_different_seats_all_succeed(service):
    seats = [SeatLocation(152, row, letter) for row in (1, 2, 3) for letter in "ABC"]

    with ThreadPoolExecutor(max_workers=9) as pool:
        results = list(pool.map(lambda seat: service.book_seat(seat, 1), seats))

    assert {result.location for result in results} == set(seats)
    assert len({result.booking_id for result in results}) == len(seats)


def test_conflicting_updates_are_retried_then_surfaced(service, monkeypatch):
    calls = []

    def always_conflicts(scope, seat, user_id, timeout):
        calls.append(seat)
        raise ConcurrentUpdateError("simulated")

    monkeypatch.setattr(services, "_reserve", always_conflicts)
    with pytest.raises(ConcurrentUpdateError):
        service.book_seat(SEAT, 1)
    assert len(calls) == service.max_attempts


def test_list_seats_returns_every_seat_in_order(service):
    service.book_seat(SeatLocation(152, 2, "C"), 2)
    seats = service.list_seats(152)
    assert [str(ticket.location) for ticket in seats][:4] == ["152/1/A", "152/1/B", "152/1/C", "152/2/A"]
    assert len(seats) == 9
    assert [ticket.state for ticket in seats].count(TicketState.RESERVED) == 1
