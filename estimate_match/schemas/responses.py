"""
Response Schemas
================

Result of a batch matching call.
"""

from pydantic import BaseModel, Field

from estimate_match.schemas.domain import MatchResult


class MatchSummary(BaseModel):
    """Aggregate quality figures over the returned matches."""

    total_items: int = 0
    matched_items: int = 0
    unmatched_items: int = 0
    average_confidence: float = 0.0
    high_confidence_matches: int = 0
    medium_confidence_matches: int = 0
    low_confidence_matches: int = 0
    quality_score: int = 0
    recommendations: list[str] = Field(default_factory=list)


class ProcessingDetails(BaseModel):
    """
    How the results were produced by this call.

    Degraded strategies show up here (llm_failures) rather than as
    missing items. Tier counters count work done in this call, so a
    cache hit reports cache_hit=True with every counter at zero; the
    summary still describes the returned results.
    """

    cache_hit: bool = False
    existing_matches: int = 0
    pattern_matches: int = 0
    llm_matches: int = 0
    logic_matches: int = 0
    llm_calls: int = 0
    llm_failures: list[str] = Field(default_factory=list)
    patterns_learned: int = 0
    processing_time_ms: int = 0
    cost: float = 0.0


class BatchMatchResponse(BaseModel):
    """
    Response of MatchingService.match_batch.

    success is False only when no result could be produced for any item.
    """

    success: bool
    matches: list[MatchResult] = Field(default_factory=list)
    summary: MatchSummary = Field(default_factory=MatchSummary)
    processing_details: ProcessingDetails = Field(default_factory=ProcessingDetails)
    error: str | None = None


class LinkEstimatesResponse(BaseModel):
    """Result of applying estimate links."""

    updated: int = 0
    missing: list[str] = Field(default_factory=list)
