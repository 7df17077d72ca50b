"""
API Routes
==========

Route modules for the matching service.
"""

from estimate_match.api.routes.match import router as match_router
from estimate_match.api.routes.patterns import router as patterns_router

__all__ = ["match_router", "patterns_router"]
