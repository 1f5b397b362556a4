"""
Database configuration and session management for the clinic core.

The engine is owned by an explicitly constructed ``Database`` object that is
opened when the process starts and disposed when it stops. Callers receive
sessions through ``session_scope``, which is the unit of work: it commits when
the block completes and rolls back on any exception.
"""
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

# Base class for declarative models
Base = declarative_base()


class Database:
    """
    Storage handle wrapping a SQLAlchemy engine and its session factory.

    Args:
        url: SQLAlchemy database URL
        engine: Optional pre-built engine (takes precedence over ``url``)
    """

    def __init__(self, url: Optional[str] = None, engine: Optional[Engine] = None):
        if engine is None:
            if url is None:
                raise ValueError("Either a database URL or an engine is required")
            engine = create_engine(url, **_engine_options(url))
        self.engine = engine
        # Objects stay readable after commit so results can be built from them
        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=engine
        )

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def create_all(self) -> None:
        """Create every table registered on ``Base``."""
        # Import models so their tables are registered
        from . import models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """
        Provide a transactional scope around a series of operations.

        Yields:
            Session: SQLAlchemy database session
        """
        db = self.SessionLocal()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def dispose(self) -> None:
        logger.info("Disposing database engine")
        self.engine.dispose()


def _engine_options(url: str) -> dict:
    # In-memory SQLite must share one connection or every session sees an empty database
    if url.startswith("sqlite"):
        options = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            options["poolclass"] = StaticPool
        return options
    return {"pool_pre_ping": True}
