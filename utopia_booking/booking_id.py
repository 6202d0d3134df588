"""Public booking references derived from seat and user."""
from __future__ import annotations

import hashlib


def booking_reference(flight_number: int, row: int, seat: str, user_id: int) -> str:
    """Return the booking id customers use to refer to a reservation.

    The value is a plain md5 fingerprint of the flight number, row, seat and
    user id, so the same user rebooking the same seat gets the same id back.
    It is not a secret.
    """

    payload = f"{flight_number} {row} {seat} {user_id}"
    return hashlib.md5(payload.encode("utf-8"), usedforsecurity=False).hexdigest()


__all__ = ["booking_reference"]
