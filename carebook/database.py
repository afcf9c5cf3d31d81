# carebook/database.py
import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

# Base class for models
Base = declarative_base()


def build_engine(database_url: str, echo: bool = False):
    """Create an engine for the configured URL.

    SQLite needs `check_same_thread=False` because FastAPI runs sync routes in a
    threadpool; in-memory SQLite additionally shares one connection so every
    session sees the same database.
    """
    if database_url.startswith("sqlite"):
        # Writers queue on the database lock instead of failing straight away
        kwargs = {"connect_args": {"check_same_thread": False, "timeout": 30}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)

    return create_engine(database_url, pool_pre_ping=True, echo=echo)


def build_session_factory(engine):
    # expire_on_commit=False: records are handed back to services after commit
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def create_tables(engine):
    """Create all database tables - MUST import models first!"""
    from . import models  # noqa: F401 registers tables on Base.metadata

    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created successfully")

