"""
Schemas Module
==============

Pydantic models for domain values, API requests and responses.
"""

from estimate_match.schemas.domain import (
    CacheEntry,
    EstimateLineItem,
    Invoice,
    InvoiceLineItem,
    LearningStats,
    LineItemCategory,
    MatchingHistoryEntry,
    MatchingMethod,
    MatchingPattern,
    MatchResult,
    MatchType,
    PatternSuggestion,
    PatternType,
)
from estimate_match.schemas.requests import (
    BatchMatchRequest,
    CorrectMatchRequest,
    EstimateLink,
    LearnMappingRequest,
    LinkEstimatesRequest,
    MatchOptions,
    ProjectMatchRequest,
)
from estimate_match.schemas.responses import (
    BatchMatchResponse,
    LinkEstimatesResponse,
    MatchSummary,
    ProcessingDetails,
)

__all__ = [
    "BatchMatchRequest",
    "BatchMatchResponse",
    "CacheEntry",
    "CorrectMatchRequest",
    "EstimateLineItem",
    "EstimateLink",
    "Invoice",
    "InvoiceLineItem",
    "LearnMappingRequest",
    "LearningStats",
    "LinkEstimatesRequest",
    "LinkEstimatesResponse",
    "LineItemCategory",
    "MatchOptions",
    "MatchResult",
    "MatchSummary",
    "MatchType",
    "MatchingHistoryEntry",
    "MatchingMethod",
    "MatchingPattern",
    "PatternSuggestion",
    "PatternType",
    "ProjectMatchRequest",
    "ProcessingDetails",
]
