from typing import Optional

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool
import structlog

from app.core.config import settings

logger = structlog.get_logger()


class Database:
    """Owns the engine and session factory for one process.

    Created and connected in the application lifespan, disposed at shutdown.
    Services never reach for it directly; they receive a ``Session``.
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.echo = echo
        self.engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    def connect(self) -> "Database":
        if self.engine is not None:
            return self

        if self.url.startswith("sqlite"):
            self.engine = create_engine(
                self.url,
                connect_args={"check_same_thread": False},
                echo=self.echo,
            )
        else:
            self.engine = create_engine(
                self.url,
                poolclass=QueuePool,
                pool_size=settings.DB_POOL_SIZE,
                max_overflow=settings.DB_MAX_OVERFLOW,
                pool_timeout=settings.DB_POOL_TIMEOUT,
                pool_recycle=settings.DB_POOL_RECYCLE,
                pool_pre_ping=True,
                echo=self.echo,
            )

        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        logger.info("database_connected", dialect=self.engine.dialect.name)
        return self

    def session(self) -> Session:
        if self._session_factory is None:
            raise RuntimeError("Database is not connected")
        return self._session_factory()

    def dispose(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
            logger.info("database_disposed")
        self.engine = None
        self._session_factory = None


def get_db(request: Request):
    """Database session generator for FastAPI dependency injection"""
    db = request.app.state.database.session()
    try:
        yield db
    finally:
        db.close()
