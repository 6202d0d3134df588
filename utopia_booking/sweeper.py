"""Release reservations that were never paid for."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from .database import transaction_scope
from .errors import BookingError
from .models import SeatLocation, to_storage_time
from .repository import find_expired_reservations
from .services import ReservationService

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    checked: int = 0
    released: List[SeatLocation] = field(default_factory=list)
    failed: List[SeatLocation] = field(default_factory=list)


def scan_expired(service: ReservationService, now: datetime, *, limit: int = 500) -> List[SeatLocation]:
    with transaction_scope(service.session_factory) as scope:
        return [ticket.location for ticket in find_expired_reservations(scope.session, now, limit=limit)]


def release_expired(
    service: ReservationService,
    *,
    now: Optional[datetime] = None,
    limit: int = 500,
) -> SweepResult:
    """Cancel every reservation whose payment deadline has passed.

    Each seat is released through the service in its own transaction; the
    sweeper holds no lock across seats.
    """

    cutoff = to_storage_time(now) if now is not None else service.clock()
    result = SweepResult()
    for seat in scan_expired(service, cutoff, limit=limit):
        result.checked += 1
        try:
            if service.expire_reservation(seat, now=cutoff):
                result.released.append(seat)
        except BookingError as exc:
            logger.warning("Could not release expired reservation on %s: %s", seat, exc)
            result.failed.append(seat)
    if result.checked:
        logger.info(
            "Sweep at %s: %d expired, %d released, %d failed",
            cutoff.isoformat(" ", "seconds"),
            result.checked,
            len(result.released),
            len(result.failed),
        )
    return result


def sweeper_loop(
    service: ReservationService,
    stop_event: threading.Event,
    poll_interval: float = 30.0,
) -> None:
    """Run sweeps until ``stop_event`` is set."""

    while not stop_event.is_set():
        try:
            release_expired(service)
        except BookingError:
            logger.exception("Sweep failed; retrying in %.0f seconds", poll_interval)
        stop_event.wait(poll_interval)


__all__ = ["SweepResult", "scan_expired", "release_expired", "sweeper_loop"]
