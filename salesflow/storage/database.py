"""Database connection and session management."""

from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ..core.logging import get_logger

logger = get_logger(__name__)

# Base class for all database models
Base = declarative_base()


class Database:
    """Engine and session factory built from a database URL."""

    def __init__(self, database_url: str, echo: bool = False, connect_args: Optional[dict] = None):
        if connect_args is None:
            connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}

        if self._is_in_memory_sqlite(database_url):
            # One shared connection so the in-memory database survives across sessions
            self.engine: Engine = create_engine(
                database_url,
                connect_args=connect_args,
                poolclass=StaticPool,
                echo=echo
            )
        else:
            self.engine = create_engine(
                database_url,
                echo=echo,
                connect_args=connect_args,
                pool_pre_ping=True
            )

        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        self.url = database_url

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @staticmethod
    def _is_in_memory_sqlite(database_url: str) -> bool:
        if not database_url.startswith("sqlite"):
            return False
        return database_url.rstrip("/").endswith(":") or ":memory:" in database_url or "mode=memory" in database_url

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Session scope that commits on success and rolls back on error."""
        db = self.SessionLocal()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def create_tables(self) -> None:
        """Create all database tables."""
        # Register the mapped classes on Base.metadata
        from . import models  # noqa: F401
        Base.metadata.create_all(bind=self.engine)
        logger.info("Database tables created")

    def dispose(self) -> None:
        self.engine.dispose()
