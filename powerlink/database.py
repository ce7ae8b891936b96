"""
PowerLink — Database Engine & Session Factory
Supports SQLite (local dev, tests) and PostgreSQL (production).

Connection setup is owned by a DatabaseManager with explicit states
(disconnected → connecting → connected). ensure_connected() is the single
entry point; concurrent cold-start callers wait on the one in-flight connect
instead of each building an engine.
"""

from __future__ import annotations

import enum
import threading
from typing import Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from powerlink.config import get_settings
from powerlink.core.exceptions import DatabaseUnavailableError
from powerlink.core.logging import get_logger

logger = get_logger(__name__)


class Base(DeclarativeBase):
    """Shared declarative base — all ORM models inherit from this."""

    pass


def _build_engine(database_url: str, connect_timeout: int) -> Engine:
    """Construct SQLAlchemy engine with appropriate settings for URL type."""
    is_sqlite = database_url.startswith("sqlite")

    if is_sqlite:
        # SQLite uses SingletonThreadPool: pool_size/max_overflow are not supported
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": connect_timeout},
            echo=False,
        )

        @event.listens_for(engine, "connect")
        def set_sqlite_pragmas(dbapi_conn, _connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.close()

    else:
        engine = create_engine(
            database_url,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
            pool_timeout=connect_timeout,
            connect_args={"connect_timeout": connect_timeout},
            echo=False,
        )

    return engine


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class DatabaseManager:
    """Owns the engine and session factory for one database URL."""

    def __init__(self, database_url: str, connect_timeout: int = 5) -> None:
        self.database_url = database_url
        self.connect_timeout = connect_timeout
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker[Session]] = None
        self._state = ConnectionState.DISCONNECTED
        self._lock = threading.Lock()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def engine(self) -> Engine:
        self.ensure_connected()
        engine = self._engine
        if engine is None:
            # disposed by another thread between connect and read
            raise DatabaseUnavailableError()
        return engine

    def ensure_connected(self) -> sessionmaker[Session]:
        """
        Connect on first use and return the session factory.
        Raises DatabaseUnavailableError if the store cannot be reached within
        the configured timeout; the manager falls back to DISCONNECTED so a
        later call retries.
        """
        if self._state is ConnectionState.CONNECTED and self._session_factory:
            return self._session_factory

        with self._lock:
            if self._state is ConnectionState.CONNECTED and self._session_factory:
                return self._session_factory

            self._state = ConnectionState.CONNECTING
            try:
                engine = _build_engine(self.database_url, self.connect_timeout)
                with engine.connect() as conn:
                    conn.execute(text("SELECT 1"))
            except SQLAlchemyError as exc:
                self._state = ConnectionState.DISCONNECTED
                logger.error("Database connection failed: %s", exc)
                raise DatabaseUnavailableError() from exc

            self._engine = engine
            self._session_factory = sessionmaker(
                bind=engine,
                autocommit=False,
                autoflush=False,
            )
            self._state = ConnectionState.CONNECTED
            logger.info("Database connected (%s)", engine.url.get_backend_name())
            return self._session_factory

    def dispose(self) -> None:
        with self._lock:
            if self._engine is not None:
                self._engine.dispose()
            self._engine = None
            self._session_factory = None
            self._state = ConnectionState.DISCONNECTED


settings = get_settings()
db_manager = DatabaseManager(settings.DATABASE_URL, settings.DB_CONNECT_TIMEOUT_SECONDS)


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency that yields a SQLAlchemy Session.
    Automatically closes the session after the request.

    Usage:
        @router.get("/example")
        def example(db: Session = Depends(get_db)):
            ...
    """
    factory = db_manager.ensure_connected()
    db = factory()
    try:
        yield db
    finally:
        db.close()


def init_db(manager: Optional[DatabaseManager] = None) -> None:
    """
    Create all tables defined in all model modules.
    Call this on application startup.
    """
    # Import all models so their table definitions are registered on Base.metadata
    from powerlink.models import ledger, records, users  # noqa: F401

    manager = manager or db_manager
    Base.metadata.create_all(bind=manager.engine)
