from __future__ import annotations

import pytest
from sqlalchemy import select, text
from sqlalchemy.exc import OperationalError

from utopia_booking.database import transaction_scope
from utopia_booking.errors import (
    AlreadyReservedError,
    ConcurrentUpdateError,
    StorageError,
    TransactionError,
)
from utopia_booking.models import Ticket, User

from .conftest import NOW


def _user_names(session_factory):
    with session_factory() as session:
        return [user.username for user in session.scalars(select(User).order_by(User.id))]


def test_scope_commits_when_block_succeeds(session_factory, flight_number):
    with transaction_scope(session_factory) as scope:
        scope.session.add(User(username="carol"))
    assert _user_names(session_factory) == ["alice", "bob", "carol"]


def test_scope_rolls_back_on_domain_error(session_factory, flight_number):
    with pytest.raises(AlreadyReservedError):
        with transaction_scope(session_factory) as scope:
            scope.session.add(User(username="carol"))
            scope.flush()
            raise AlreadyReservedError("seat taken")
    assert _user_names(session_factory) == ["alice", "bob"]


def test_raw_database_errors_become_storage_errors(session_factory, flight_number):
    with pytest.raises(StorageError) as excinfo:
        with transaction_scope(session_factory) as scope:
            scope.session.execute(text("SELECT * FROM no_such_table"))
    assert isinstance(excinfo.value.__cause__, OperationalError)


def test_failed_rollback_is_attached_to_original_error(session_factory, flight_number):
    rollback_failure = OperationalError("ROLLBACK", {}, Exception("connection lost"))

    def failing_rollback():
        raise rollback_failure

    with pytest.raises(AlreadyReservedError) as excinfo:
        with transaction_scope(session_factory) as scope:
            scope.session.rollback = failing_rollback
            raise AlreadyReservedError("seat taken")

    assert excinfo.value.rollback_error is rollback_failure
    assert any("rollback also failed" in note for note in excinfo.value.__notes__)


def test_commit_happens_only_once(session_factory, flight_number):
    with pytest.raises(TransactionError):
        with transaction_scope(session_factory) as scope:
            scope.session.add(User(username="carol"))
            scope.commit()
    assert "carol" in _user_names(session_factory)


def _seat_1a(session):
    return session.scalars(select(Ticket).where(Ticket.row == 1, Ticket.seat == "A")).one()


def test_stale_ticket_version_is_a_concurrent_update(session_factory, flight_number):
    with pytest.raises(ConcurrentUpdateError):
        with transaction_scope(session_factory) as scope:
            loser = _seat_1a(scope.session)
            loser_user = scope.session.get(User, 1)

            with session_factory() as other:
                winner = _seat_1a(other)
                winner.reserve(other.get(User, 2), NOW)
                other.commit()

            loser.reserve(loser_user, NOW)
            scope.flush()

    with session_factory() as session:
        assert _seat_1a(session).reserver_id == 2
