"""Database setup: SQLite by default, any SQLAlchemy URL via environment."""
import logging
import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .errors import ConcurrencyConflict

logger = logging.getLogger(__name__)

T = TypeVar("T")

DB_PATH = Path(__file__).resolve().parent / "schedule.db"
DATABASE_URL = os.environ.get("CLINIC_SCHEDULER_DATABASE_URL", f"sqlite:///{DB_PATH}")

# SQLSTATE codes PostgreSQL uses for serialization failure / deadlock
RETRYABLE_SQLSTATES = {"40001", "40P01"}
MAX_RETRIES = 2
RETRY_BACKOFF_SECONDS = 0.05

Base = declarative_base()


def make_engine(url: str = DATABASE_URL, echo: bool = False):
    """Create an engine. SQLite connections get explicit BEGIN handling so that
    the serializable bind can take the write lock up front (BEGIN IMMEDIATE)."""
    if not url.startswith("sqlite"):
        return create_engine(url, echo=echo, pool_pre_ping=True)

    eng = create_engine(
        url,
        connect_args={"check_same_thread": False, "timeout": 15},
        echo=echo,
    )

    @event.listens_for(eng, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        # pysqlite otherwise defers BEGIN until the first write
        dbapi_connection.isolation_level = None
        dbapi_connection.execute("PRAGMA foreign_keys=ON")
        # readers must not block the serializable writer's commit
        if ":memory:" not in url:
            dbapi_connection.execute("PRAGMA journal_mode=WAL")

    @event.listens_for(eng, "begin")
    def _begin(conn):
        mode = conn.get_execution_options().get("sqlite_begin", "")
        conn.exec_driver_sql(f"BEGIN {mode}".strip())

    return eng


def serializable_bind(eng):
    """Engine view whose transactions run at the strictest isolation available."""
    if eng.dialect.name == "sqlite":
        # SQLite serialises writers; IMMEDIATE takes the lock before the first read
        return eng.execution_options(sqlite_begin="IMMEDIATE")
    return eng.execution_options(isolation_level="SERIALIZABLE")


def make_session_factories(eng):
    """(plain factory, serializable factory) bound to the same engine."""
    plain = sessionmaker(autocommit=False, autoflush=False, bind=eng)
    serializable = sessionmaker(
        autocommit=False, autoflush=False, expire_on_commit=False, bind=serializable_bind(eng),
    )
    return plain, serializable


engine = make_engine()
SessionLocal, SerializableSession = make_session_factories(engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory():
    return SerializableSession


@contextmanager
def serializable_transaction(session_factory: Callable[[], Session]):
    """One serializable unit of work without retries: commit on success,
    roll back on any error."""
    db = session_factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def is_serialization_failure(exc: DBAPIError) -> bool:
    """True for errors the store raises when a concurrent transaction won."""
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code in RETRYABLE_SQLSTATES:
        return True
    msg = str(orig or exc).lower()
    return "database is locked" in msg or "could not serialize" in msg


def run_serializable(
    session_factory: Callable[[], Session],
    work: Callable[[Session], T],
    retries: int = MAX_RETRIES,
    backoff: float = RETRY_BACKOFF_SECONDS,
) -> T:
    """Run ``work(db)`` in one serializable transaction and commit it.

    Serialization failures are retried with exponential backoff, re-running
    ``work`` against fresh state. When retries are exhausted the failure is
    raised as ConcurrencyConflict. Any other error rolls back and propagates.
    """
    attempt = 0
    while True:
        try:
            with serializable_transaction(session_factory) as db:
                result = work(db)
            return result
        except DBAPIError as exc:
            if not is_serialization_failure(exc):
                raise
            if attempt >= retries:
                raise ConcurrencyConflict(
                    "Another request changed the same slots at the same time. Please retry."
                ) from exc
            attempt += 1
            logger.warning("serialization failure, retrying (attempt %d/%d)", attempt, retries)
            time.sleep(backoff * (2 ** (attempt - 1)))
