"""
Database utilities and connection management.

WHAT: SQLAlchemy engine and session handling for persistent negotiation records
WHY: Round limits are seeded from and written back to the durable record
HOW: SQLAlchemy sync engine v2, WAL mode on SQLite, session context manager
"""

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base
from contextlib import contextmanager
from pathlib import Path

from .config import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)

IS_SQLITE = settings.DATABASE_URL.startswith("sqlite")

# Ensure data directory exists for file-backed SQLite
if IS_SQLITE and ":memory:" not in settings.DATABASE_URL and settings.DATABASE_URL != "sqlite://":
    data_dir = Path(settings.DATABASE_URL.replace("sqlite:///", "")).parent
    if not data_dir.exists():
        data_dir.mkdir(parents=True, exist_ok=True)

engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False} if IS_SQLITE else {},
    echo=settings.DEBUG,
    future=True
)


if IS_SQLITE:
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        """Enable WAL mode for better concurrency."""
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()


# Session factory
SessionLocal = sessionmaker(
    bind=engine,
    expire_on_commit=False,
    autoflush=False,
    autocommit=False
)

# Base for models
Base = declarative_base()


@contextmanager
def get_db(session_factory=None):
    """
    Context manager for database session.

    Usage:
        with get_db() as db:
            # use db session
            pass

    Args:
        session_factory: Alternate sessionmaker (tests bind one to in-memory SQLite)

    Yields:
        Session: SQLAlchemy session
    """
    session = (session_factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(bind=None):
    """Create tables on the given engine (default: configured engine)."""
    # Import models so they register with Base.metadata
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
    logger.info("Negotiation record tables initialized")
