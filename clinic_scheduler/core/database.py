from contextlib import contextmanager
from sqlalchemy import create_engine, event
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker, Session
from typing import Generator, Iterator
import logging
import redis
from .config import settings
from .exceptions import PersistenceError

logger = logging.getLogger(__name__)

database_url = settings.get_database_url

if database_url.startswith("sqlite"):
    # SQLite is used for tests; sessions are shared across the TestClient threads
    engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
else:
    # PostgreSQL database setup with appropriate connection pool settings
    engine = create_engine(
        database_url,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=1800,  # Recycle connections after 30 minutes
        pool_pre_ping=True,
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

# Connections are opened lazily on the first command
redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)

# Database dependency
def get_db() -> Generator[Session, None, None]:
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

# Redis dependency
def get_redis():
    """Get Redis client."""
    return redis_client

@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """Run a unit of work and commit it, or roll everything back.

    Integrity errors are re-raised untouched so callers can translate
    constraint violations; any other store failure becomes PersistenceError.
    """
    try:
        yield db
        db.commit()
    except IntegrityError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database operation failed: {str(e)}")
        raise PersistenceError() from e
    except Exception:
        db.rollback()
        raise

# Database initialization
def init_db():
    """Initialize database tables."""
    # Register every model on the metadata before creating tables
    from ..models import user, schedule, appointment, visit, notification, activity  # noqa: F401

    Base.metadata.create_all(bind=engine)

def close_db():
    """Release pooled connections on shutdown."""
    engine.dispose()
