"""
Database configuration and session management for GitConnect
"""

import logging
import os
from typing import Iterator

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from gitconnect.models import Base

logger = logging.getLogger(__name__)


def build_engine(database_url: str) -> Engine:
    """
    Create the SQLAlchemy engine for the configured database.

    SQLite URLs get ``check_same_thread`` disabled because FastAPI runs sync
    dependencies in a threadpool; in-memory SQLite additionally shares one
    connection so every session sees the same tables.
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url == "sqlite://":
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)

    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=20,
        max_overflow=30,
        pool_recycle=3600,
        pool_timeout=30,
        echo=bool(os.getenv("DB_ECHO", "false").lower() == "true"),
    )


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine) -> None:
    """
    Initialize database - create all tables using SQLAlchemy models
    """
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ensured")


def get_db(request: Request) -> Iterator[Session]:
    """
    Dependency function to get database session
    """
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
