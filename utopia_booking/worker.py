"""Utility entrypoint for running the reservation expiry sweeper."""
from __future__ import annotations

import threading

from .config import configure_logging, load_settings
from .database import init_db
from .services import ReservationService
from .sweeper import sweeper_loop


def main() -> None:  # pragma: no cover - thin wrapper
    settings = load_settings()
    configure_logging(settings.log_level)
    service = ReservationService.from_settings(init_db(settings.database_url), settings)
    stop = threading.Event()
    try:
        sweeper_loop(service, stop, poll_interval=settings.sweep_interval)
    except KeyboardInterrupt:
        stop.set()


if __name__ == "__main__":  # pragma: no cover
    main()
