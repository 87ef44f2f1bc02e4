"""
Database configuration with lazy initialization.

The engine is created on first access so importing the package never opens
a connection.
"""
import logging
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool

from .core.config import settings
from .core.errors import IdentityError, Internal

logger = logging.getLogger(__name__)

_engine = None
_SessionLocal = None

Base = declarative_base()


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # Local development only
        return {"poolclass": QueuePool, "pool_size": 5, "max_overflow": 0, "connect_args": {"check_same_thread": False}}
    return {"poolclass": QueuePool, "pool_size": 20, "max_overflow": 10, "pool_pre_ping": True, "pool_recycle": 3600}


def get_engine():
    """Engine for settings.DATABASE_URL, created on first use."""
    global _engine
    if _engine is not None:
        return _engine

    url = settings.DATABASE_URL
    if settings.ENV == "prod" and url.startswith("sqlite"):
        raise ValueError("SQLite is not supported in production; set DATABASE_URL to PostgreSQL")

    logger.info(f"[DB] Creating engine for {url.split(':', 1)[0]} database")
    _engine = create_engine(url, **_engine_options(url))
    return _engine


def get_session_local():
    """Get or create the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=get_engine())
    return _SessionLocal


def SessionLocal() -> Session:
    return get_session_local()()


def get_db():
    """
    Dependency that provides a database session.
    Used by FastAPI's dependency injection.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db: Session, operation: str):
    """
    Run one unit of work: commit on success, roll back on any failure.

    Identity errors propagate unchanged. Datastore errors are logged with
    context and surfaced as an opaque Internal error. Any other exception
    is re-raised after the rollback.
    """
    try:
        yield
        db.commit()
    except IdentityError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception(f"[DB] {operation} failed: {e}")
        raise Internal() from e
    except Exception:
        db.rollback()
        raise


def insert_ignore(db: Session, model, values: dict, conflict_columns: list):
    """
    INSERT .. ON CONFLICT DO NOTHING for the bound dialect.

    Returns the number of rows inserted (0 when the key already existed).
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(model.__table__).values(**values)
    elif dialect == "sqlite":
        stmt = sqlite.insert(model.__table__).values(**values)
    else:
        raise ValueError(f"insert_ignore is not supported on {dialect}")
    stmt = stmt.on_conflict_do_nothing(index_elements=conflict_columns)
    return db.execute(stmt).rowcount
