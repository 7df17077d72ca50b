"""
Database Package
================

Database models, connection management, and repositories.
"""

from estimate_match.db.connection import (
    DatabaseManager,
    create_engine,
    create_session_factory,
    create_tables,
)
from estimate_match.db.models import Base, MatchingHistoryRow, MatchingPatternRow

__all__ = [
    # Models
    "Base",
    "MatchingPatternRow",
    "MatchingHistoryRow",
    # Connection
    "DatabaseManager",
    "create_engine",
    "create_session_factory",
    "create_tables",
]
