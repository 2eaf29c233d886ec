from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

SERIALIZATION_FAILURE_CODES = {"40001", "40P01"}


def _begin_immediate(engine):
    # pysqlite would otherwise start deferred transactions that upgrade lazily
    sync_engine = engine.sync_engine

    @event.listens_for(sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def get_engine(database_url: str, serializable: bool = False):
    """
    Postgres runs at SERIALIZABLE when asked to; SQLite serializes writers by
    taking the write lock at BEGIN.
    """
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        engine = create_async_engine(url, echo=False, future=True)
        _begin_immediate(engine)
        return engine

    if serializable:
        return create_async_engine(url, echo=False, future=True, isolation_level="SERIALIZABLE")
    return create_async_engine(url, echo=False, future=True)


Base = declarative_base()


def get_session(engine):
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False
    )


def is_serialization_failure(exc: Exception) -> bool:
    """True when the database aborted the transaction so it can be retried."""
    orig = getattr(exc, "orig", None)
    if orig is None:
        return False
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code in SERIALIZATION_FAILURE_CODES:
        return True
    return "database is locked" in str(orig)
