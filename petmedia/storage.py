import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from petmedia.changefeed import ChangeFeed

logger = logging.getLogger(__name__)

# Base class for SQLAlchemy models
Base = declarative_base()

COLLECTIONS = ("users", "threads", "messages", "map_spots")


class Backend:
    """
    Explicitly constructed handle on the document store.

    Owns the SQLAlchemy engine, the session factory and the change feed that
    live subscriptions listen on. Stores receive a Backend by injection;
    call ``init_db`` before use and ``close`` on shutdown.
    """

    def __init__(self, database_url: str, echo: bool = False):
        self.database_url = database_url
        url = make_url(database_url)

        engine_kwargs = {"echo": echo}
        if url.get_backend_name() == "sqlite":
            # check_same_thread=False lets the event loop and worker threads share connections
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if url.database in (None, "", ":memory:"):
                # One shared connection, otherwise every session sees its own empty database
                engine_kwargs["poolclass"] = StaticPool

        self.engine = create_engine(database_url, **engine_kwargs)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        self.changes = ChangeFeed()
        self.closed = False

    def init_db(self) -> None:
        """
        Initialize the database by creating all collections.
        Called during application startup.
        """
        logger.debug(f"Initializing database with URL: {self.database_url}")
        try:
            # Import models to register them with Base.metadata
            from petmedia import models  # noqa: F401

            logger.debug("Creating database tables...")
            Base.metadata.create_all(bind=self.engine)
            logger.info("Database initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Open a session for one unit of work.
        Rolls back on error and always closes.
        """
        db = self.SessionLocal()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def check_health(self) -> bool:
        """
        Check if the database is reachable and every collection exists.

        Returns:
            True if DB is healthy and schema exists, False otherwise.
        """
        logger.debug("Checking database health...")
        try:
            with self.session() as db:
                db.execute(text("SELECT 1"))
            existing = set(inspect(self.engine).get_table_names())
            missing = [name for name in COLLECTIONS if name not in existing]
            if missing:
                logger.error(f"Database schema not applied, missing tables: {missing}")
                return False
            logger.debug("Database health check passed")
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def close(self) -> None:
        """Close live watches and release pooled connections. Safe to call twice."""
        if self.closed:
            return
        self.closed = True
        self.changes.close()
        self.engine.dispose()
        logger.info("Backend closed")
