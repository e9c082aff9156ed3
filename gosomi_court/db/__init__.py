"""
Database Package - SQLAlchemy
=============================

Persistence for cases, evidence, jurors, summons and notifications.
"""

from .models import (
    Base,
    User, Case, CaseSequence,
    Evidence, Defense, Juror, Summons,
    Notification,
)
from .session import SessionLocal, get_db, init_db, get_engine, reset_engine

__all__ = [
    # Base
    "Base",
    # Parties
    "User",
    # Cases
    "Case", "CaseSequence",
    "Evidence", "Defense", "Juror", "Summons",
    # Side channel
    "Notification",
    # Session
    "SessionLocal", "get_db", "init_db", "get_engine", "reset_engine",
]
