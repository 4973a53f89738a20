"""
Database connection and session management.
"""
from __future__ import annotations

import logging
from typing import Any, Generator

from fastapi import Request
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from subscription_api.config import Settings

logger = logging.getLogger(__name__)


class DatabaseConnectionError(RuntimeError):
    """Raised when the configured database cannot be reached or migrated."""


def create_db_engine(settings: Settings) -> Engine:
    url = settings.database_url
    kwargs: dict[str, Any] = {"pool_pre_ping": True, "echo": False}
    if url.get_backend_name() == "sqlite":
        kwargs["connect_args"] = {"check_same_thread": False}
        if url.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


def init_db(engine: Engine) -> None:
    """
    Create tables for every registered model.
    """
    from subscription_api.models import Base

    Base.metadata.create_all(bind=engine)


def check_database_connection(engine: Engine) -> bool:
    """
    Return True when the database connection is healthy.
    """
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as exc:
        logger.error("Database connection check failed: %s", exc)
        return False


def check_namespace(settings: Settings) -> None:
    """
    Table names are bound when the models are imported; a different namespace
    in ``settings`` cannot be honoured afterwards.
    """
    from subscription_api.models import NAMESPACE

    if settings.db_namespace != NAMESPACE:
        raise DatabaseConnectionError(
            f"database namespace {settings.db_namespace!r} does not match the "
            f"namespace {NAMESPACE!r} the tables were declared with"
        )


def connect(settings: Settings) -> sessionmaker:
    """
    Open the configured database, verify it answers, and migrate when enabled.
    """
    check_namespace(settings)
    engine = create_db_engine(settings)
    logger.info("Connecting to %s database", settings.db_driver)
    if not check_database_connection(engine):
        raise DatabaseConnectionError(f"checking database connection: cannot reach {settings.db_driver} database")

    if settings.db_automigrate:
        try:
            init_db(engine)
        except SQLAlchemyError as exc:
            raise DatabaseConnectionError(f"migrating tables: {exc}") from exc
        logger.info("Database tables migrated")

    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db(request: Request) -> Generator[Session, None, None]:
    """
    Dependency for getting a database session.
    """
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
