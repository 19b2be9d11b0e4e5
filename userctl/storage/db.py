"""
Database engine and session management.

PostgreSQL in production; SQLite is accepted for local use and tests.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base, Session
from sqlalchemy.pool import StaticPool
from contextlib import contextmanager
from typing import Generator
from urllib.parse import urlparse

from userctl.monitoring.logger import get_logger

logger = get_logger(__name__)

# Base class for ORM models
Base = declarative_base()


class Database:
    """Database engine and session manager."""

    def __init__(self, database_url: str):
        """
        Initialize database connection.

        Args:
            database_url: SQLAlchemy connection string
        """
        self.database_url = database_url

        if database_url.startswith("sqlite"):
            # In-memory databases live on a single connection
            in_memory = database_url in ("sqlite://", "sqlite:///:memory:")
            self.engine = create_engine(
                database_url,
                echo=False,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool if in_memory else None,
            )
        else:
            self.engine = create_engine(
                database_url,
                echo=False,
                pool_pre_ping=True,  # Verify connections before using
                pool_size=2,  # One for records, one for lock rows
                max_overflow=2,
                pool_timeout=30,
            )

        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def create_all(self):
        """Create all tables."""
        # Registers the ORM models on Base.metadata
        import userctl.storage.repository  # noqa: F401
        Base.metadata.create_all(bind=self.engine)

    def dispose(self):
        self.engine.dispose()

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """
        Context manager for database sessions.

        Yields:
            SQLAlchemy Session

        Example:
            with db.get_session() as session:
                session.add(obj)
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


def init_db(database_url: str) -> Database:
    """
    Initialize database with specific URL.

    Args:
        database_url: SQLAlchemy connection string

    Returns:
        Database instance
    """
    try:
        parsed = urlparse(database_url)
        logger.info(
            "DATABASE_CONNECTION_INIT",
            scheme=parsed.scheme,
            host=parsed.hostname or "local",
            database=parsed.path.lstrip('/') or "memory",
            user=parsed.username or "none",
            has_password=bool(parsed.password),
        )
    except ValueError as e:
        logger.warning("Failed to parse DATABASE_URL for logging", error=str(e))

    db = Database(database_url)
    db.create_all()
    return db
