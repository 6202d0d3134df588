"""Database helpers and the per-call transaction scope."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Dict, Iterator, Tuple

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import StaticPool

from .config import DEFAULT_DATABASE_URL
from .errors import BookingError, ConcurrentUpdateError, StorageError, TransactionError
from .models import Base

logger = logging.getLogger(__name__)


def create_session_factory(
    db_url: str = DEFAULT_DATABASE_URL,
    *,
    echo: bool = False,
    connect_args: Dict[str, object] | None = None,
) -> Tuple[Engine, sessionmaker[Session]]:
    """Return an engine/session factory pair configured for SQLite by default."""

    engine_kwargs: Dict[str, object] = {"echo": echo, "future": True}
    if db_url.startswith("sqlite"):
        # Writers queue on the database lock instead of failing straight away.
        final_connect_args: Dict[str, object] = {"check_same_thread": False, "timeout": 30}
        if connect_args:
            final_connect_args.update(connect_args)
        if db_url.endswith(":memory:"):
            engine_kwargs["poolclass"] = StaticPool
    else:
        final_connect_args = dict(connect_args or {})
        engine_kwargs["pool_pre_ping"] = True

    engine = create_engine(db_url, connect_args=final_connect_args, **engine_kwargs)
    session_factory = sessionmaker(bind=engine, expire_on_commit=False, future=True)
    return engine, session_factory


def init_db(db_url: str = DEFAULT_DATABASE_URL, *, echo: bool = False) -> sessionmaker[Session]:
    """Create all tables and return a session factory."""

    engine, session_factory = create_session_factory(db_url, echo=echo)
    Base.metadata.create_all(engine)
    return session_factory


class TransactionScope:
    """One transaction on its own session, owned by exactly one call.

    Scopes are never shared between callers; obtain a fresh one from
    :func:`transaction_scope` for every operation and pass it along
    explicitly.
    """

    def __init__(self, session: Session) -> None:
        self.session = session
        self._transaction = session.begin()
        self._committed = False

    @property
    def committed(self) -> bool:
        return self._committed

    def flush(self) -> None:
        """Push pending changes so version conflicts surface inside the scope."""

        try:
            self.session.flush()
        except StaleDataError as exc:
            raise ConcurrentUpdateError("Ticket was modified by another transaction") from exc
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not write changes: {exc}") from exc

    def commit(self) -> None:
        if self._committed:
            raise TransactionError("Transaction scope already committed")
        self._committed = True
        try:
            self._transaction.commit()
        except StaleDataError as exc:
            raise ConcurrentUpdateError("Ticket was modified by another transaction") from exc
        except SQLAlchemyError as exc:
            raise TransactionError(f"Commit failed: {exc}") from exc

    def rollback(self) -> None:
        self.session.rollback()


def _attach_rollback_failure(error: BaseException, rollback_error: BaseException) -> None:
    if isinstance(error, BookingError):
        error.rollback_error = rollback_error
    error.add_note(f"rollback also failed: {rollback_error!r}")


@contextmanager
def transaction_scope(session_factory: sessionmaker[Session]) -> Iterator[TransactionScope]:
    """Run the enclosed block as a single transaction.

    Commits once when the block finishes, otherwise rolls back before the
    error propagates. Raw SQLAlchemy errors are re-raised as
    :class:`StorageError`; a failing rollback is attached to the original
    error rather than replacing it.
    """

    session = session_factory()
    try:
        try:
            scope = TransactionScope(session)
        except SQLAlchemyError as exc:
            raise TransactionError(f"Could not begin transaction: {exc}") from exc
        try:
            yield scope
            scope.commit()
        except Exception as exc:
            error: Exception = exc
            if isinstance(exc, SQLAlchemyError):
                error = StorageError(f"Database error: {exc}")
            try:
                scope.rollback()
            except SQLAlchemyError as rollback_exc:
                logger.exception("Rollback failed while handling %s", type(error).__name__)
                _attach_rollback_failure(error, rollback_exc)
            if error is exc:
                raise
            raise error from exc
    finally:
        session.close()


__all__ = [
    "create_session_factory",
    "init_db",
    "TransactionScope",
    "transaction_scope",
]
