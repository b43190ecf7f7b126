"""Database engine and session management for the ledger store."""

from contextlib import contextmanager
from typing import Iterator, Optional
import logging

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import DatabaseConfig

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class Database:
    """
    Owns the SQLAlchemy engine and hands out transactional sessions.

    In-memory SQLite URLs share one connection across sessions so every
    session sees the same data.
    """

    def __init__(self, url: str = "sqlite:///goal_ledger_recon.db", echo: bool = False):
        self.url = url
        self.engine: Engine = self._create_engine(url, echo)
        self.session_factory = sessionmaker(
            bind=self.engine,
            expire_on_commit=False,
            autoflush=False,
        )

    @classmethod
    def from_config(cls, config: Optional[DatabaseConfig] = None) -> "Database":
        config = config or DatabaseConfig()
        return cls(url=config.url, echo=config.echo)

    @staticmethod
    def _create_engine(url: str, echo: bool) -> Engine:
        if url.startswith("sqlite"):
            kwargs: dict = {"connect_args": {"check_same_thread": False}}
            if ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://"):
                kwargs["poolclass"] = StaticPool
            engine = create_engine(url, echo=echo, **kwargs)

            @event.listens_for(engine, "connect")
            def _enable_foreign_keys(dbapi_connection, connection_record):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()

            return engine

        return create_engine(url, echo=echo, pool_pre_ping=True, pool_size=5, max_overflow=10)

    def create_all(self) -> None:
        """Create any missing tables."""
        # Register the mapped tables on Base.metadata
        from . import tables  # noqa: F401

        Base.metadata.create_all(self.engine)
        logger.info(f"Ledger schema ready on {self.engine.url.render_as_string(hide_password=True)}")

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Provide a transactional scope: commit on success, rollback on error."""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()
