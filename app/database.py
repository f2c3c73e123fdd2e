"""
Metadata store: engine, session factory and declarative base.

SQLite in development and tests, Postgres via DATABASE_URL in production.
get_db is the one per-request session dependency shared by the auth, folders
and files routers; services receive that session and own their commits,
which go through commit_with_retry.
"""
import logging
import time
from typing import Callable, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from config import DATABASE_URL, STORAGE_RETRY_DELAY
from errors import StorageFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")

_is_sqlite = DATABASE_URL.startswith("sqlite")

# Sync endpoints run in a thread pool, so SQLite connections cross threads.
# Pre-ping turns a dropped server connection into a reconnect rather than a
# failed request.
engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False} if _is_sqlite else {},
    pool_pre_ping=not _is_sqlite,
)
SessionLocal = sessionmaker(bind=engine)

Base = declarative_base()


if _is_sqlite:
    @event.listens_for(engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
        # Parent and folder references are only enforced with this pragma on
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def get_db():
    """Yield a session for one request and close it afterwards."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def commit_with_retry(db: Session, apply: Callable[[], T], description: str) -> T:
    """
    Run apply() against db and commit, returning what apply() returned.

    An OperationalError (store unreachable, locked) rolls back, waits
    STORAGE_RETRY_DELAY and replays apply() once; a second failure raises
    StorageFailure. apply() must therefore redo all of its session changes
    and any checks they depend on. IntegrityError is rolled back and
    re-raised for the caller to translate.
    """
    for attempt in (1, 2):
        try:
            result = apply()
            db.commit()
            return result
        except IntegrityError:
            db.rollback()
            raise
        except OperationalError:
            db.rollback()
            if attempt == 2:
                logger.exception("Metadata %s failed after retry", description)
                raise StorageFailure()
            logger.warning("Metadata %s failed; retrying once", description, exc_info=True)
            time.sleep(STORAGE_RETRY_DELAY)
