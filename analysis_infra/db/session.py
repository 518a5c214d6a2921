"""Database engine and session management."""

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..log_config import get_logger
from .models import Base

log = get_logger("database")


class Database:
    """Owns the SQLAlchemy engine for the process.

    Created once on startup (see resources.py) and disposed on shutdown.
    """

    def __init__(self, url: str, echo: bool = False):
        kwargs: dict = {"echo": echo}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
        else:
            kwargs["pool_pre_ping"] = True
        self.url = url
        self.engine = create_engine(url, **kwargs)
        self._session_factory = sessionmaker(self.engine, expire_on_commit=False)

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Session wrapped in a transaction that commits on success."""
        with self._session_factory() as session, session.begin():
            yield session

    def dispose(self) -> None:
        self.engine.dispose()
        log.info("database.disposed")
