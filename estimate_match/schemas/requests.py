"""
Request Schemas
===============

Options and HTTP request bodies for the matching API.
"""

from typing import Annotated

from pydantic import BaseModel, Field

from estimate_match.config.settings import Settings, get_settings
from estimate_match.schemas.domain import EstimateLineItem, Invoice


class MatchOptions(BaseModel):
    """
    Per-call options for MatchingService.match_batch.

    Attributes:
        enable_pattern_learning: Feed confident results back into the pattern store
        enable_cache: Read and write the result cache
        concurrency: Semantic matcher batches in flight
        quality_threshold: Minimum confidence to accept a pattern or learn a result
        timeout_ms: Timeout per semantic matcher batch
        batch_size: Invoice line items per semantic matcher batch
        prioritize_high_value: Send high-value items to the semantic matcher first
    """

    enable_pattern_learning: bool = True
    enable_cache: bool = True
    concurrency: Annotated[int, Field(ge=1, le=50)] = 3
    quality_threshold: Annotated[float, Field(ge=0.0, le=1.0)] = 0.7
    timeout_ms: Annotated[int, Field(ge=1)] = 30000
    batch_size: Annotated[int, Field(ge=1, le=500)] = 50
    prioritize_high_value: bool = True

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "MatchOptions":
        """Build default options from application settings."""
        settings = settings or get_settings()
        return cls(
            concurrency=settings.match_concurrency,
            quality_threshold=settings.match_quality_threshold,
            timeout_ms=settings.match_timeout_ms,
            batch_size=settings.match_batch_size,
        )


class BatchMatchRequest(BaseModel):
    """Request body for POST /match/batch."""

    project_id: str = Field(min_length=1)
    user_id: str | None = Field(default=None, description="Scopes pattern learning")
    invoices: list[Invoice]
    estimates: list[EstimateLineItem] = Field(default_factory=list)
    options: MatchOptions | None = None


class LearnMappingRequest(BaseModel):
    """Request body for POST /patterns/learn."""

    user_id: str = Field(min_length=1)
    project_id: str | None = None
    invoice_line_item_id: str = Field(min_length=1)
    supplier_name: str = ""
    description: str = ""
    amount: float = 0.0
    trade_id: str = Field(min_length=1)
    estimate_line_item_id: str | None = None


class CorrectMatchRequest(BaseModel):
    """Request body for POST /patterns/history/{history_id}/correct."""

    user_id: str = Field(min_length=1)
    project_id: str | None = None
    trade_id: str = Field(min_length=1)
    estimate_line_item_id: str | None = None


class ProjectMatchRequest(BaseModel):
    """Request body for POST /match/project/{project_id}."""

    user_id: str | None = Field(default=None, description="Scopes pattern learning")
    options: MatchOptions | None = None


class EstimateLink(BaseModel):
    """An accepted invoice line item -> estimate line item link."""

    invoice_line_item_id: str = Field(min_length=1)
    estimate_line_item_id: str | None = None


class LinkEstimatesRequest(BaseModel):
    """Request body for POST /match/links."""

    links: list[EstimateLink] = Field(min_length=1)
