"""
Database plumbing — engine, sessions, and the declarative base.

Works with SQLite, PostgreSQL, MySQL, etc. via SQLAlchemy.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import DateTime, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.types import TypeDecorator

logger = logging.getLogger("qbolink.storage.database")


class UTCDateTime(TypeDecorator):
    """Store naive UTC, hand back timezone-aware UTC.

    SQLite drops tzinfo on the way out; normalising here keeps every
    expiry comparison aware-vs-aware.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    pass


class Database:
    """Owns the engine and hands out transactional sessions.

    Usage::

        db = Database("sqlite:///qbolink.db")
        db.create_all()
        with db.session() as session:
            ...
    """

    def __init__(self, url: str, *, echo: bool = False, **engine_options: Any) -> None:
        self.url = url
        self.engine: Engine = create_engine(url, echo=echo, **engine_options)
        self._session_factory = sessionmaker(self.engine, expire_on_commit=False)

    def create_all(self) -> None:
        """Create every table registered on ``Base`` (idempotent)."""
        # Import so the example entity tables are registered too.
        from qbolink.storage import entities, tables  # noqa: F401

        Base.metadata.create_all(self.engine)
        logger.debug("Ensured schema on %s", self.engine.url.render_as_string(hide_password=True))

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Commit on success, roll back on error."""
        session = self._session_factory()
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
