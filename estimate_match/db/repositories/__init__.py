"""
Database Repositories
=====================

Data access layer following repository pattern.

Components:
    - MatchingPatternRepository: contract for pattern/history storage
    - InMemoryPatternRepository / SqlPatternRepository: its backends
    - ProjectLineItemsRepository: project invoices, estimates and links
"""

from estimate_match.db.repositories.line_items_repo import ProjectLineItemsRepository
from estimate_match.db.repositories.pattern_repo import (
    InMemoryPatternRepository,
    MatchingPatternRepository,
    SqlPatternRepository,
)

__all__ = [
    "MatchingPatternRepository",
    "InMemoryPatternRepository",
    "SqlPatternRepository",
    "ProjectLineItemsRepository",
]
