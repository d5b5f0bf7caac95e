"""
Database Package - PostgreSQL with SQLAlchemy
==============================================

Persistence for users, cases and case access grants.
"""

from .models import (
    Base,
    User, Case, CaseAccessGrant,
    UserRole, CaseStatus, CaseCategory, GrantStatus,
)
from .session import get_db, get_db_session, init_db, get_engine, reset_engine

__all__ = [
    # Base
    "Base",
    # Models
    "User", "Case", "CaseAccessGrant",
    # Enums
    "UserRole", "CaseStatus", "CaseCategory", "GrantStatus",
    # Session
    "get_db", "get_db_session", "init_db", "get_engine", "reset_engine",
]
