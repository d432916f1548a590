"""
Database Connection Module
SQLAlchemy engine, session factory and transactional session scope
"""
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

# Base class for models
Base = declarative_base()


def make_engine(database_url: str, echo: bool = False):
    """
    Build an engine for the given URL.

    SQLite (used by tests and local runs) gets a thread-tolerant connection
    and no pool sizing; server databases keep the pooled setup.
    """
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            echo=echo,
        )

    return create_engine(
        database_url,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=10,
        max_overflow=20,
        pool_recycle=3600,  # Recycle connections after 1 hour
        echo=echo,  # Set to True for SQL query logging
    )


def make_session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(session_factory):
    """
    Database session context manager
    Usage:
        with session_scope(SessionLocal) as db:
            # Use db session
            pass
    """
    db = session_factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db(engine):
    """
    Initialize database tables
    """
    # Register models on Base.metadata before create_all
    from database import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
