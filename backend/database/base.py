# backend/database/base.py
"""
SQLAlchemy Base and Engine Configuration

Provides the declarative base for all models, the engine factory and the
session context manager used by every operation module.

CRITICAL SAFETY: When TESTING=true, this module ONLY connects to the test
database (reclaim_db_test). Production database access is blocked during tests.
"""

import logging
import os
from contextlib import contextmanager

from dotenv import load_dotenv
from sqlalchemy import JSON, URL, create_engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import OperationalError, TimeoutError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool

load_dotenv(override=False)

logger = logging.getLogger(__name__)

# ============================================================================
# CRITICAL: TEST DATABASE SAFETY CHECK
# ============================================================================
IS_TESTING = os.getenv("TESTING", "").lower() in ("true", "1", "yes")
PRODUCTION_DB_NAME = "reclaim_db"
TEST_DB_NAME = os.getenv("POSTGRES_TEST_DB", "reclaim_db_test")

db_name = os.getenv("POSTGRES_DB", PRODUCTION_DB_NAME)

if IS_TESTING and db_name == PRODUCTION_DB_NAME:
    db_name = TEST_DB_NAME
    logger.warning(
        f"TESTING=true but POSTGRES_DB was production. Forcing test database: {db_name}"
    )

# DATABASE_URL wins over the POSTGRES_* parts when both are set
DATABASE_URL = os.getenv("DATABASE_URL") or URL.create(
    "postgresql",
    username=os.getenv("POSTGRES_USER", "reclaim_user"),
    password=os.getenv("POSTGRES_PASSWORD", "reclaim_password"),
    host=os.getenv("POSTGRES_HOST", "localhost"),
    port=int(os.getenv("POSTGRES_PORT", "5432")),
    database=db_name,
)

# Declarative base for all models
Base = declarative_base()

# JSON column: JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(postgresql.JSONB(), "postgresql")


def build_engine(url):
    """Create an engine; pooling options only apply to server databases."""
    if str(url).startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 30},
            echo=False,
        )

    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=10,
        max_overflow=0,
        pool_pre_ping=True,  # Verify connections before use
        echo=False,
        hide_parameters=True,  # Redact password in logs
    )


engine = build_engine(DATABASE_URL)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def configure_engine(url):
    """Rebind the session factory to another database (tests, scripts)."""
    global engine
    engine = build_engine(url)
    SessionLocal.configure(bind=engine)
    return engine


def get_engine():
    return engine


def upsert(model):
    """Dialect-matched INSERT supporting on_conflict_do_update/do_nothing."""
    if engine.dialect.name == "sqlite":
        return sqlite.insert(model)
    return postgresql.insert(model)


@contextmanager
def get_session():
    """Get a new SQLAlchemy session (context manager)."""
    try:
        db = SessionLocal()
    except TimeoutError:
        logger.error("Connection pool exhausted (all connections in use)")
        raise
    except OperationalError as e:
        logger.error(f"Database connection failed: {e}")
        raise

    try:
        yield db
    except Exception as e:
        logger.error(f"Session error: {e}")
        db.rollback()
        raise
    finally:
        db.close()


def init_db():
    """Create all tables registered on Base."""
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
