"""
Deterministic Fallback Matcher
==============================

Scores every estimate line against an invoice line with the similarity
toolkit and keeps the best one. No external calls and no failure modes;
this is the terminal tier of the matching strategy.

Score:
    0.4 * string_similarity(description, description)
  + 0.3 * semantic_similarity(description, description)
  + 0.2 * price_similarity(total_price, estimate total cost)
  + 0.1 if the invoice line is MATERIAL
rounded to two decimals.
"""

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass

from estimate_match.config.settings import Settings, get_settings
from estimate_match.schemas.domain import (
    EstimateLineItem,
    InvoiceLineItem,
    LineItemCategory,
    MatchResult,
    MatchType,
)
from estimate_match.utils.logger import get_logger
from estimate_match.utils.similarity import (
    price_similarity,
    semantic_similarity,
    string_similarity,
)

logger = get_logger(__name__)

DEFAULT_CHUNK_SIZE = 25


@dataclass(frozen=True)
class FallbackWeights:
    """Weights and thresholds of the deterministic score."""

    string: float = 0.4
    semantic: float = 0.3
    price: float = 0.2
    material_bonus: float = 0.1
    min_score: float = 0.3
    partial_threshold: float = 0.7

    @classmethod
    def from_settings(cls, settings: Settings) -> "FallbackWeights":
        return cls(
            string=settings.fallback_string_weight,
            semantic=settings.fallback_semantic_weight,
            price=settings.fallback_price_weight,
            material_bonus=settings.fallback_material_bonus,
            min_score=settings.fallback_min_score,
            partial_threshold=settings.fallback_partial_threshold,
        )


@dataclass(frozen=True)
class ScoreBreakdown:
    """Component scores for one invoice/estimate pair."""

    string: float
    semantic: float
    price: float
    total: float


class FallbackMatcher:
    """
    Similarity-based matcher used when no other tier resolves an item.

    Usage:
        matcher = FallbackMatcher()
        results = await matcher.match_items(items, estimates)
    """

    def __init__(
        self,
        weights: FallbackWeights | None = None,
        settings: Settings | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        if weights is None:
            weights = FallbackWeights.from_settings(settings or get_settings())
        self._weights = weights
        self._chunk_size = max(1, chunk_size)

    @property
    def weights(self) -> FallbackWeights:
        return self._weights

    def score(self, item: InvoiceLineItem, estimate: EstimateLineItem) -> ScoreBreakdown:
        """Score one invoice line against one estimate line."""
        w = self._weights
        text = string_similarity(item.description, estimate.description)
        semantic = semantic_similarity(item.description, estimate.description)
        price = price_similarity(item.total_price, estimate.total_cost)
        bonus = w.material_bonus if item.category == LineItemCategory.MATERIAL else 0.0

        total = round(text * w.string + semantic * w.semantic + price * w.price + bonus, 2)
        return ScoreBreakdown(
            string=text,
            semantic=semantic,
            price=price,
            total=min(1.0, max(0.0, total)),
        )

    def best_match(
        self,
        item: InvoiceLineItem,
        estimates: Sequence[EstimateLineItem],
    ) -> MatchResult:
        """
        Pick the highest-scoring estimate for an item.

        The first estimate wins ties. Returns a 'none' result unless the
        best score exceeds the minimum score.
        """
        best: MatchResult = MatchResult.no_match(item.id, "No matching estimate found")

        for estimate in estimates:
            breakdown = self.score(item, estimate)
            if breakdown.total > best.confidence and breakdown.total > self._weights.min_score:
                best = MatchResult(
                    invoice_line_item_id=item.id,
                    estimate_line_item_id=estimate.id,
                    confidence=breakdown.total,
                    reasoning=self._reasoning(breakdown),
                    match_type=(
                        MatchType.PARTIAL
                        if breakdown.total > self._weights.partial_threshold
                        else MatchType.CONCEPTUAL
                    ),
                )

        return best

    async def match_items(
        self,
        items: Sequence[InvoiceLineItem],
        estimates: Sequence[EstimateLineItem],
    ) -> list[MatchResult]:
        """
        Match every item, yielding to the event loop between chunks.

        Args:
            items: Unresolved invoice line items
            estimates: Candidate estimate lines

        Returns:
            One result per item, in input order
        """
        results: list[MatchResult] = []

        for index, item in enumerate(items, 1):
            results.append(self.best_match(item, estimates))
            if index % self._chunk_size == 0:
                await asyncio.sleep(0)

        logger.debug(
            "Fallback matching complete",
            items=len(items),
            estimates=len(estimates),
            matched=sum(1 for r in results if r.is_match),
        )
        return results

    @staticmethod
    def _reasoning(breakdown: ScoreBreakdown) -> str:
        reasons = []
        if breakdown.string > 0.5:
            reasons.append("text similarity")
        if breakdown.semantic > 0.4:
            reasons.append("semantic match")
        if breakdown.price > 0.6:
            reasons.append("price alignment")
        if not reasons:
            reasons.append("weak overall similarity")
        return f"Logic-based match: {', '.join(reasons)} (score {breakdown.total:.2f})"
