import logging
import time
from typing import Callable

from fastapi import Request
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from visitdesk.core.config import Settings
from visitdesk.core.exceptions import StorageUnavailable

logger = logging.getLogger(__name__)


def build_engine(settings: Settings) -> Engine:
    if settings.is_sqlite:
        return create_engine(
            settings.DATABASE_URL,
            pool_pre_ping=True,
            connect_args={"check_same_thread": False, "timeout": settings.DB_CONNECT_TIMEOUT},
        )
    return create_engine(
        settings.DATABASE_URL,
        pool_pre_ping=True,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        connect_args={"connect_timeout": settings.DB_CONNECT_TIMEOUT},
    )


class Store:
    """Process-wide handle on the engine and its session factory."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self.session_factory = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False)
        self.available = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "Store":
        return cls(build_engine(settings))

    def session(self) -> Session:
        return self.session_factory()

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            logger.warning("database ping failed: %s", exc)
            self.available = False
            return False
        self.available = True
        return True

    def mark_unavailable(self) -> None:
        self.available = False

    def connect_with_retry(
        self,
        max_attempts: int = 5,
        initial_delay: float = 5.0,
        factor: float = 1.5,
        max_delay: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        delay = initial_delay
        for attempt in range(1, max_attempts + 1):
            logger.info("database connection attempt %d/%d", attempt, max_attempts)
            try:
                with self.engine.connect() as conn:
                    conn.execute(text("SELECT 1"))
            except SQLAlchemyError as exc:
                logger.error("database connection attempt %d failed: %s", attempt, exc)
                if attempt == max_attempts:
                    raise StorageUnavailable(
                        f"Failed to connect to database after {max_attempts} attempts"
                    ) from exc
                logger.info("retrying database connection in %.1fs", delay)
                sleep(delay)
                delay = min(delay * factor, max_delay)
                continue
            self.available = True
            logger.info("database connected")
            return

    def dispose(self) -> None:
        self.available = False
        self.engine.dispose()


def get_db(request: Request):
    store: Store = request.app.state.store
    if not store.available and not store.ping():
        raise StorageUnavailable("Database connection unavailable")
    db = store.session()
    try:
        yield db
    finally:
        db.close()
