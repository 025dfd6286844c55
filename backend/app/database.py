"""Database configuration and session management."""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import get_settings

settings = get_settings()


def _engine_options(database_url: str) -> dict:
    """Pool and connection options for the configured backend."""
    if database_url.startswith("sqlite"):
        # Single shared connection so in-memory databases survive across sessions
        return {
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        }

    return {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        # Bounded per-query time; a timeout surfaces as a per-user rule failure
        "connect_args": {
            "options": f"-c statement_timeout={settings.db_statement_timeout_ms}"
        },
    }


# Create engine
engine = create_engine(settings.database_url, **_engine_options(settings.database_url))

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for models
Base = declarative_base()


def get_db():
    """Dependency for getting database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
