"""
Database connection and setup
SQLite by default, any SQLAlchemy URL via settings
"""
import logging
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from scorecache.models import Base
from config.settings import settings

logger = logging.getLogger("db")

_engine: Optional[Engine] = None


def make_engine(database_url: str) -> Engine:
    """
    Create an engine for a database URL
    SQLite connections are shared across the request and backfill threads
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False  # Needed for SQLite
    return create_engine(
        database_url,
        connect_args=connect_args,
        pool_pre_ping=True,
        echo=False,  # Set to True to see SQL queries
    )


def init_db(engine: Engine) -> None:
    """
    Initialize database - create all tables
    Safe to call multiple times (won't recreate existing tables)
    """
    Base.metadata.create_all(bind=engine)
    logger.info(f"Database initialized at: {engine.url.render_as_string(hide_password=True)}")


def get_engine() -> Engine:
    """Get or create the global engine from settings."""
    global _engine
    if _engine is None:
        _engine = make_engine(settings.database_url)
        init_db(_engine)
    return _engine


def make_session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to an engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
