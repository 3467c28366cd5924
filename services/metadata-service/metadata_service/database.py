"""
Database configuration and connection management.

Wraps one SQLAlchemy engine with a bounded QueuePool. Connections are
acquired explicitly so that pool exhaustion surfaces as CapacityError and
callers waiting for a connection can be reported by the health check.
"""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Connection
from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from .config import Settings
from .domain.exceptions import CapacityError, ConnectivityError
from .models import Base

logger = logging.getLogger(__name__)

BACKEND = "postgresql"


def get_connect_args(db_url: str) -> dict:
    """
    Get database-specific connection arguments.

    Args:
        db_url: Database connection URL

    Returns:
        Connection arguments dict
    """
    if db_url.startswith("sqlite"):
        return {"check_same_thread": False, "timeout": 30}
    return {}


class Database:
    """
    Engine, pool and session scopes for the relational backend.

    One instance per storage context; nothing here is module-global, so
    several databases can live in the same process.
    """

    def __init__(self, settings: Settings):
        self.url = settings.DATABASE_URL
        self.pool_size = settings.DB_POOL_SIZE
        self.max_overflow = settings.DB_MAX_OVERFLOW
        self.pool_timeout = settings.DB_POOL_TIMEOUT
        self.query_log_threshold_ms = settings.QUERY_LOG_THRESHOLD_MS
        self._awaiting = 0
        self._lock = threading.Lock()

        self.engine = create_engine(
            self.url,
            connect_args=get_connect_args(self.url),
            pool_pre_ping=settings.DB_POOL_PRE_PING,
            pool_recycle=settings.DB_POOL_RECYCLE,
            pool_timeout=self.pool_timeout,
            poolclass=QueuePool,
            pool_size=self.pool_size,
            max_overflow=self.max_overflow,
            echo=False,
        )
        self._session_factory = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False
        )
        event.listen(self.engine, "before_cursor_execute", self._before_cursor_execute)
        event.listen(self.engine, "after_cursor_execute", self._after_cursor_execute)

        logger.info(
            f"Database engine created for {settings.safe_database_url} "
            f"(pool_size={self.pool_size}, max_overflow={self.max_overflow}, "
            f"pool_timeout={self.pool_timeout}s)"
        )

    def _before_cursor_execute(self, conn, cursor, statement, parameters, context, executemany):
        conn.info.setdefault("query_start_time", []).append(time.time())

    def _after_cursor_execute(self, conn, cursor, statement, parameters, context, executemany):
        total_time_ms = (time.time() - conn.info["query_start_time"].pop()) * 1000
        if total_time_ms > self.query_log_threshold_ms:
            logger.warning(
                f"Slow query detected: {total_time_ms:.2f}ms",
                extra={"query_time_ms": total_time_ms, "statement": statement[:200]},
            )

    def connect(self) -> Connection:
        """
        Check a connection out of the pool.

        Blocks up to ``DB_POOL_TIMEOUT`` seconds.

        Raises:
            CapacityError: If no connection frees up in time
            ConnectivityError: If the database cannot be reached
        """
        with self._lock:
            self._awaiting += 1
        try:
            return self.engine.connect()
        except PoolTimeoutError as e:
            logger.error(f"Connection pool exhausted after {self.pool_timeout}s")
            raise CapacityError(
                BACKEND, f"no connection available within {self.pool_timeout}s"
            ) from e
        except OperationalError as e:
            logger.error(f"Database connection failed: {e.orig}")
            raise ConnectivityError(BACKEND, str(e.orig)) from e
        finally:
            with self._lock:
                self._awaiting -= 1

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Session bound to one pooled connection, released on exit."""
        connection = self.connect()
        session = self._session_factory(bind=connection)
        try:
            yield session
        except OperationalError as e:
            session.rollback()
            logger.error(f"Database operation failed: {e.orig}")
            raise ConnectivityError(BACKEND, str(e.orig)) from e
        finally:
            session.close()
            connection.close()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        One native transaction: commit on success, roll back on any exception.
        """
        with self.session() as session:
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise

    def pool_stats(self) -> dict:
        """
        Connection pool occupancy.

        Returns:
            Dictionary with active, available, awaiting and max counts
        """
        maximum = self.pool_size + self.max_overflow
        active = self.engine.pool.checkedout()
        with self._lock:
            awaiting = self._awaiting
        return {
            "active": active,
            "available": max(0, maximum - active),
            "awaiting": awaiting,
            "max": maximum,
        }

    def create_all(self) -> None:
        """Create all tables that do not exist yet."""
        logger.info("Initializing database tables...")
        Base.metadata.create_all(bind=self.engine, checkfirst=True)
        logger.info("Database tables initialized")

    def dispose(self) -> None:
        self.engine.dispose()
