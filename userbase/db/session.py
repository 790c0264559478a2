import logging
from typing import Generator, Optional

from fastapi import Request
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from userbase.core.config import Settings
from userbase.core.errors import ConfigurationError
from userbase.db.base import Base

logger = logging.getLogger(__name__)


class Database:
    """
    Owns the SQLAlchemy engine and session factory for one application instance.

    Constructed once at startup and handed to request handlers through
    ``get_db``; nothing in the service builds its own engine.
    """

    def __init__(self, url: Optional[str], echo: bool = False):
        if not url:
            raise ConfigurationError("Missing DATABASE_URL configuration")

        engine_kwargs = {"echo": echo}
        if url.startswith("sqlite"):
            # In-memory SQLite must share one connection across threads
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs["pool_pre_ping"] = True

        self.url = url
        self.engine = create_engine(url, **engine_kwargs)
        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(settings.DATABASE_URL, echo=settings.DEBUG)

    def create_all(self) -> None:
        # Tests only; deployed databases are migrated with alembic
        # Importing registers every model on Base.metadata
        from userbase.db import models  # noqa: F401
        Base.metadata.create_all(bind=self.engine)
        logger.info("Ensured userbase tables exist")

    def ping(self) -> None:
        with self.engine.connect() as connection:
            connection.execute(text("SELECT 1"))

    def dispose(self) -> None:
        self.engine.dispose()


def get_db(request: Request) -> Generator[Session, None, None]:
    """
    Dependency function that yields a database session.

    Yields:
        Database session bound to the application's engine
    """
    database: Database = request.app.state.database
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()
