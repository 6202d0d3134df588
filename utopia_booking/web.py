"""FastAPI application exposing seat booking over HTTP."""
from __future__ import annotations

from datetime import date, datetime
from io import BytesIO, StringIO
from typing import Any, Dict, Iterable, List, Literal, Optional, Tuple, Type

import pandas as pd
from fastapi import FastAPI, HTTPException, Query, Response
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from .config import load_settings
from .database import init_db
from .directory import list_airports, search_flights
from .errors import (
    AlreadyPaidError,
    AlreadyReservedError,
    BookingError,
    BookingNotFoundError,
    NotFoundError,
    NotReservedError,
    PaymentConflictError,
)
from .models import Flight, SeatLocation, TicketSnapshot
from .services import ReservationService


class UserRef(BaseModel):
    id: int


class PaymentAmount(BaseModel):
    price: int = Field(ge=0)


# First match wins, so subclasses come before their bases.
_STATUS_BY_ERROR: Tuple[Tuple[Type[BookingError], int], ...] = (
    (AlreadyReservedError, 409),
    (PaymentConflictError, 409),
    (AlreadyPaidError, 409),
    (NotReservedError, 410),
    (BookingNotFoundError, 410),
    (NotFoundError, 404),
    (BookingError, 500),
)


def status_for(exc: BookingError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


def _http_error(exc: BookingError) -> HTTPException:
    status = status_for(exc)
    detail = exc.kind if status >= 500 else str(exc)
    return HTTPException(status_code=status, detail=detail)


def _seat(flight: int, row: int, seat: str) -> SeatLocation:
    try:
        return SeatLocation(flight, row, seat)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


def _flight_payload(flight: Flight) -> Dict[str, Any]:
    return {
        "flight_number": flight.flight_number,
        "departure": flight.departure_code,
        "destination": flight.destination_code,
        "departure_time": flight.departure_time.isoformat(),
        "arrival_time": flight.arrival_time.isoformat(),
    }


def _as_dataframe(tickets: Iterable[TicketSnapshot]) -> pd.DataFrame:
    data: List[Dict[str, object]] = []
    for ticket in tickets:
        data.append(
            {
                "Row": ticket.location.row,
                "Seat": ticket.location.seat,
                "Class": ticket.seat_class,
                "State": ticket.state.value,
                "Price": ticket.price,
                "Pay By": ticket.reservation_timeout,
                "Booking ID": ticket.booking_id,
            }
        )
    return pd.DataFrame(data)


def create_app(service: Optional[ReservationService] = None) -> FastAPI:
    """Return an application wired to ``service`` or to one built from the environment."""

    if service is None:
        settings = load_settings()
        service = ReservationService.from_settings(init_db(settings.database_url), settings)

    app = FastAPI(title="Utopia Booking", description="Seat reservation and payment")
    app.state.service = service

    @app.post("/booking/book/{flight}/{row}/{seat}", status_code=201)
    def book_ticket(flight: int, row: int, seat: str, user: UserRef) -> Dict[str, Any]:
        try:
            ticket = service.book_seat(_seat(flight, row, seat), user.id)
        except BookingError as exc:
            raise _http_error(exc) from exc
        return ticket.as_dict()

    @app.put("/booking/pay/{flight}/{row}/{seat}")
    def accept_payment(flight: int, row: int, seat: str, payment: PaymentAmount) -> Dict[str, Any]:
        try:
            ticket = service.accept_payment(_seat(flight, row, seat), payment.price)
        except BookingError as exc:
            raise _http_error(exc) from exc
        return ticket.as_dict()

    @app.put("/booking/pay/{booking_id}")
    def accept_payment_for_booking(booking_id: str, payment: PaymentAmount) -> Dict[str, Any]:
        try:
            ticket = service.accept_payment_for_booking(booking_id, payment.price)
        except BookingError as exc:
            raise _http_error(exc) from exc
        return ticket.as_dict()

    @app.delete("/booking/book/{flight}/{row}/{seat}", status_code=204)
    def cancel_reservation(flight: int, row: int, seat: str) -> Response:
        try:
            service.cancel_reservation(_seat(flight, row, seat))
        except BookingError as exc:
            raise _http_error(exc) from exc
        return Response(status_code=204)

    @app.delete("/booking/book/{booking_id}", status_code=204)
    def cancel_reservation_for_booking(booking_id: str) -> Response:
        try:
            service.cancel_reservation_for_booking(booking_id)
        except BookingError as exc:
            raise _http_error(exc) from exc
        return Response(status_code=204)

    @app.get("/booking/ticket/{flight}/{row}/{seat}")
    def get_ticket(flight: int, row: int, seat: str) -> Dict[str, Any]:
        try:
            ticket = service.get_ticket(_seat(flight, row, seat))
        except BookingError as exc:
            raise _http_error(exc) from exc
        return ticket.as_dict()

    @app.get("/booking/airports")
    def airports() -> List[Dict[str, str]]:
        with service.session_factory() as session:
            return [{"code": airport.code, "name": airport.name} for airport in list_airports(session)]

    @app.get("/booking/flights")
    def flights(
        departure: Optional[str] = Query(None, description="Departure airport code"),
        destination: Optional[str] = Query(None, description="Destination airport code"),
        day: Optional[date] = Query(None, alias="date", description="Departure date"),
    ) -> List[Dict[str, Any]]:
        departure_date = datetime(day.year, day.month, day.day) if day else None
        with service.session_factory() as session:
            found = search_flights(
                session,
                departure=departure,
                destination=destination,
                departure_date=departure_date,
            )
            return [_flight_payload(flight) for flight in found]

    @app.get("/booking/flights/{flight}/manifest.{file_format}")
    def manifest(flight: int, file_format: Literal["csv", "xlsx"]) -> StreamingResponse:
        try:
            tickets = service.list_seats(flight)
        except BookingError as exc:
            raise _http_error(exc) from exc

        filename = f"flight_{flight}_manifest.{file_format}"
        headers = {"Content-Disposition": f"attachment; filename=\"{filename}\""}
        dataframe = _as_dataframe(tickets)

        if file_format == "csv":
            buffer = StringIO()
            dataframe.to_csv(buffer, index=False)
            buffer.seek(0)
            return StreamingResponse(iter([buffer.getvalue()]), media_type="text/csv", headers=headers)

        buffer = BytesIO()
        with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
            dataframe.to_excel(writer, index=False, sheet_name="Manifest")
        buffer.seek(0)
        return StreamingResponse(
            buffer,
            media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            headers=headers,
        )

    return app


__all__ = ["create_app", "status_for"]
