"""
Database Session Management
===========================

Engine and session factory for the court database. The URL comes from
DATABASE_URL (SQLite file by default) and is re-read whenever it changes,
so tests can point each run at a fresh file.
"""

import os
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from .models import Base

_engine = None
_engine_url = None

# Objects stay readable after commit; the state machine returns them to the API.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False)


def _current_database_url() -> str:
    return os.environ.get("DATABASE_URL", "sqlite:///./gosomi.db")


def get_engine():
    """Get the SQLAlchemy engine for the current DATABASE_URL"""
    global _engine, _engine_url
    database_url = _current_database_url()
    if _engine is None or _engine_url != database_url:
        connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        _engine = create_engine(
            database_url,
            connect_args=connect_args,
            pool_pre_ping=True,
            echo=os.environ.get("SQL_ECHO", "false").lower() == "true",
        )
        _engine_url = database_url
        SessionLocal.configure(bind=_engine)
    return _engine


def reset_engine():
    """Dispose the engine so the next call picks up DATABASE_URL again."""
    global _engine, _engine_url
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _engine_url = None
    SessionLocal.configure(bind=None)


def init_db():
    """Create the court tables"""
    Base.metadata.create_all(bind=get_engine())


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency: one session per request."""
    get_engine()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
