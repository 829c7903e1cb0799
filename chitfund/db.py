# db.py

import logging
from datetime import datetime, timezone
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from chitfund import config

log = logging.getLogger("chitfund.db")

# Engine kwargs (can be overridden with environment vars)
engine_kwargs = {
    "echo": config.DB_ECHO,
    "future": True,
}
if config.DATABASE_URL.startswith("sqlite"):
    # FastAPI runs sync endpoints in a threadpool
    engine_kwargs["connect_args"] = {"check_same_thread": False}

# Create SQLAlchemy engine
engine = create_engine(config.DATABASE_URL, **engine_kwargs)

# SessionLocal to interact with the DB
SessionLocal = sessionmaker(bind=engine, autoflush=False, future=True, expire_on_commit=False)

# Base class for all models
Base = declarative_base()


def init_db() -> None:
    """
    Initialize DB (create tables registered on Base).
    """
    log.info("Initializing the database...")
    import chitfund.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    log.info("Database tables created (if not already present).")


def get_db() -> Generator:
    """
    FastAPI dependency generator that yields a SQLAlchemy session and ensures it is closed.
    Usage in FastAPI endpoints:
        from fastapi import Depends
        def endpoint(db = Depends(get_db)): ...
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
