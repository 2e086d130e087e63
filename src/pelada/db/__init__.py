"""
Database module for Pelada.

Provides SQLAlchemy ORM models and session management.

Usage:
    from pelada.db import get_session, Profile

    with get_session() as session:
        pending = session.query(Profile).filter_by(status="pendente").all()
"""

from pelada.db.models import (
    Base,
    Profile,
    MergeSuggestion,
    AuditLog,
)
from pelada.db.session import get_session, get_db, get_engine, SessionLocal

__all__ = [
    # Base
    "Base",
    # Models
    "Profile",
    "MergeSuggestion",
    "AuditLog",
    # Session
    "get_session",
    "get_db",
    "get_engine",
    "SessionLocal",
]
