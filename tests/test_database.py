import sqlite3
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from shared.database import get_engine, is_serialization_failure


class PgError(Exception):
    def __init__(self, sqlstate):
        super().__init__(f"sqlstate {sqlstate}")
        self.sqlstate = sqlstate


def wrap(orig):
    return OperationalError("UPDATE bookings", {}, orig)


def test_postgres_serialization_failures_are_retryable():
    assert is_serialization_failure(wrap(PgError("40001")))
    assert is_serialization_failure(wrap(PgError("40P01")))
    assert not is_serialization_failure(wrap(PgError("23505")))


def test_sqlite_lock_is_retryable():
    assert is_serialization_failure(wrap(sqlite3.OperationalError("database is locked")))
    assert not is_serialization_failure(wrap(sqlite3.OperationalError("no such table: bookings")))


def test_plain_exception_is_not_retryable():
    assert not is_serialization_failure(ValueError("nope"))


def test_postgres_engine_requests_serializable():
    with patch("shared.database.create_async_engine") as create:
        get_engine("postgresql+asyncpg://u:p@localhost/bookings", serializable=True)

    assert create.call_args.kwargs["isolation_level"] == "SERIALIZABLE"


def test_postgres_engine_default_isolation():
    with patch("shared.database.create_async_engine") as create:
        get_engine("postgresql+asyncpg://u:p@localhost/bookings")

    assert "isolation_level" not in create.call_args.kwargs
