"""
Sync SQLAlchemy engine and session factory for the controller.
"""

import logging
from functools import lru_cache

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from controller.src.config import get_settings
from controller.src.models.db import Base

logger = logging.getLogger(__name__)

def _set_sqlite_pragmas(dbapi_connection, connection_record):
    """SQLite ignores foreign keys (and so ON DELETE RESTRICT) unless asked."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys = ON")
    cursor.close()

def make_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine; in-memory SQLite shares one connection across threads."""
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url == "sqlite://":
            kwargs["poolclass"] = StaticPool
        engine = create_engine(database_url, echo=echo, **kwargs)
        event.listen(engine, "connect", _set_sqlite_pragmas)
        return engine

    return create_engine(database_url, echo=echo, pool_pre_ping=True)

def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)

@lru_cache()
def get_engine() -> Engine:
    settings = get_settings()
    return make_engine(settings.database_url)

def init_db(engine: Engine = None):
    """Create all tables that do not exist yet."""
    engine = engine or get_engine()
    Base.metadata.create_all(engine)
    logger.info("Database schema ready")
