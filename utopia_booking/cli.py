"""Command line interface for booking, paying for and cancelling seats."""
from __future__ import annotations

import argparse
import sys
from datetime import datetime
from typing import Callable, Dict, Iterable

from tabulate import tabulate

from .config import DEFAULT_DATABASE_URL, configure_logging, load_settings
from .database import init_db
from .dataset import generate_sample_data
from .directory import summarize_seats
from .errors import BookingError
from .models import SeatLocation, TicketSnapshot
from .services import ReservationService
from .sweeper import release_expired

TICKET_HEADERS = ["Seat", "Class", "State", "Price", "Pay by (UTC)", "Booking ID"]


def _render_tickets(tickets: Iterable[TicketSnapshot]) -> str:
    return tabulate([ticket.as_row() for ticket in tickets], headers=TICKET_HEADERS, tablefmt="github")


def _seat_from(args: argparse.Namespace) -> SeatLocation:
    return SeatLocation(args.flight, args.row, args.seat)


def _add_seat_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("flight", type=int, help="Flight number.")
    parser.add_argument("row", type=int, help="Seat row, starting at 1.")
    parser.add_argument("seat", help="Seat letter within the row.")


def _cmd_init_db(service: ReservationService, args: argparse.Namespace) -> str:
    return "Database ready"


def _cmd_seed(service: ReservationService, args: argparse.Namespace) -> str:
    summary = generate_sample_data(
        service.session_factory,
        flights=args.flights,
        rows=args.rows,
        users=args.users,
    )
    return tabulate([list(summary.values())], headers=[key.title() for key in summary], tablefmt="github")


def _cmd_book(service: ReservationService, args: argparse.Namespace) -> str:
    timeout = datetime.fromisoformat(args.timeout) if args.timeout else None
    return _render_tickets([service.book_seat(_seat_from(args), args.user, timeout)])


def _cmd_pay(service: ReservationService, args: argparse.Namespace) -> str:
    if args.booking_id:
        ticket = service.accept_payment_for_booking(args.booking_id, args.price)
    else:
        if args.flight is None or args.row is None or args.seat is None:
            raise ValueError("give either --booking-id or flight, row and seat")
        ticket = service.accept_payment(_seat_from(args), args.price)
    return _render_tickets([ticket])


def _cmd_cancel(service: ReservationService, args: argparse.Namespace) -> str:
    if args.booking_id:
        service.cancel_reservation_for_booking(args.booking_id)
        return f"Booking {args.booking_id} cancelled"
    if args.flight is None or args.row is None or args.seat is None:
        raise ValueError("give either --booking-id or flight, row and seat")
    return _render_tickets([service.cancel_reservation(_seat_from(args))])


def _cmd_show(service: ReservationService, args: argparse.Namespace) -> str:
    if (args.row is None) != (args.seat is None):
        raise ValueError("give both row and seat, or neither to list the flight")
    if args.row is not None:
        return _render_tickets([service.get_ticket(_seat_from(args))])
    return _render_tickets(service.list_seats(args.flight))


def _cmd_seats(service: ReservationService, args: argparse.Namespace) -> str:
    with service.session_factory() as session:
        summary = summarize_seats(session)
    return tabulate(summary, headers="keys", tablefmt="github")


def _cmd_sweep(service: ReservationService, args: argparse.Namespace) -> str:
    result = release_expired(service)
    return f"Released {len(result.released)} of {result.checked} expired reservations"


_COMMANDS: Dict[str, Callable[[ReservationService, argparse.Namespace], str]] = {
    "init-db": _cmd_init_db,
    "seed": _cmd_seed,
    "book": _cmd_book,
    "pay": _cmd_pay,
    "cancel": _cmd_cancel,
    "show": _cmd_show,
    "seats": _cmd_seats,
    "sweep": _cmd_sweep,
}


def parse_args(argv: Iterable[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reserve, pay for and cancel airline seats.")
    parser.add_argument(
        "--db",
        default=None,
        help=f"Database URL (default: $UTOPIA_DATABASE_URL or {DEFAULT_DATABASE_URL}).",
    )
    parser.add_argument("--log-level", default=None, help="Logging level (default: $UTOPIA_LOG_LEVEL or INFO).")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create the database tables.")

    seed = commands.add_parser("seed", help="Load sample airports, flights, seats and users.")
    seed.add_argument("--flights", type=int, default=10)
    seed.add_argument("--rows", type=int, default=20)
    seed.add_argument("--users", type=int, default=50)

    book = commands.add_parser("book", help="Reserve a seat for a user.")
    _add_seat_arguments(book)
    book.add_argument("--user", type=int, required=True, help="Id of the user reserving the seat.")
    book.add_argument("--timeout", help="Payment deadline as an ISO timestamp (default: configured minutes from now).")

    pay = commands.add_parser("pay", help="Record payment for a reservation.")
    pay.add_argument("flight", type=int, nargs="?")
    pay.add_argument("row", type=int, nargs="?")
    pay.add_argument("seat", nargs="?")
    pay.add_argument("--booking-id", help="Pay by booking id instead of seat.")
    pay.add_argument("--price", type=int, required=True)

    cancel = commands.add_parser("cancel", help="Cancel an unpaid reservation.")
    cancel.add_argument("flight", type=int, nargs="?")
    cancel.add_argument("row", type=int, nargs="?")
    cancel.add_argument("seat", nargs="?")
    cancel.add_argument("--booking-id", help="Cancel by booking id instead of seat.")

    show = commands.add_parser("show", help="Show one seat, or every seat on a flight.")
    show.add_argument("flight", type=int)
    show.add_argument("row", type=int, nargs="?")
    show.add_argument("seat", nargs="?")

    commands.add_parser("seats", help="Summarize seat states per flight.")
    commands.add_parser("sweep", help="Release reservations past their payment deadline.")

    return parser.parse_args(list(argv))


def main(argv: Iterable[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    settings = load_settings()
    configure_logging(args.log_level or settings.log_level)
    service = ReservationService.from_settings(init_db(args.db or settings.database_url), settings)
    try:
        output = _COMMANDS[args.command](service, args)
    except BookingError as exc:
        print(f"Error ({exc.kind}): {exc}", file=sys.stderr)
        return 1
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2
    print(output)
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
