"""
Matching Service
================

Orchestrates invoice-to-estimate matching for one project batch.

Pipeline (each tier only sees the items the previous tiers left unresolved):

    cache lookup ──hit──> cached results
        │ miss
        ↓
    existing links ──> 'existing', confidence 1.0
        ↓
    pattern suggestions ──> 'pattern' (confidence ≥ quality threshold)
        ↓
    semantic matcher ──> batched, semaphore-limited, per-batch timeout
        ↓                 (failed batches fall through)
    fallback matcher ──> similarity score, never fails
        ↓
    merge (one result per item) → pattern learning → cache write

Follows:
- Dependency Inversion: matchers, cache and pattern store are injected
- Error Isolation: tier failures are recorded, never raised
"""

import asyncio
import math
import time
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass

from estimate_match.config.settings import Settings, get_settings
from estimate_match.llm.semantic_matcher import SemanticMatcher, SemanticMatchOutcome
from estimate_match.schemas.domain import (
    EstimateLineItem,
    Invoice,
    InvoiceLineItem,
    LineItemCategory,
    MatchingMethod,
    MatchResult,
    MatchType,
    PatternSuggestion,
)
from estimate_match.schemas.requests import MatchOptions
from estimate_match.schemas.responses import BatchMatchResponse, MatchSummary, ProcessingDetails
from estimate_match.services.fallback_matcher import FallbackMatcher
from estimate_match.services.pattern_learning import PatternLearningService
from estimate_match.services.result_cache import MatchResultCache, fingerprint
from estimate_match.utils.errors import MatchValidationError
from estimate_match.utils.logger import get_logger

logger = get_logger(__name__)

HIGH_CONFIDENCE = 0.8
MEDIUM_CONFIDENCE = 0.5
LOW_CONFIDENCE = 0.3


@dataclass(frozen=True)
class _LineRef:
    """An invoice line item with the invoice it belongs to."""

    invoice: Invoice
    item: InvoiceLineItem


@dataclass(frozen=True)
class _Resolution:
    """A tier's decision for one item."""

    result: MatchResult
    method: MatchingMethod | None = None
    pattern_id: str | None = None


def item_priority(item: InvoiceLineItem) -> float:
    """
    Semantic matcher priority of a line item; higher goes first.

    log(total + 1) * 10, plus 5 for long descriptions and 3 for materials.
    """
    priority = math.log(max(item.total_price, 0.0) + 1) * 10
    if len(item.description) > 50:
        priority += 5
    if item.category == LineItemCategory.MATERIAL:
        priority += 3
    return priority


def confidence_band(confidence: float) -> str:
    """'high', 'medium', 'low' or 'none'."""
    if confidence >= HIGH_CONFIDENCE:
        return "high"
    if confidence >= MEDIUM_CONFIDENCE:
        return "medium"
    if confidence >= LOW_CONFIDENCE:
        return "low"
    return "none"


def find_duplicate_estimates(results: Sequence[MatchResult]) -> dict[str, int]:
    """Estimate lines confidently matched by more than one invoice line."""
    usage = Counter(
        r.estimate_line_item_id
        for r in results
        if r.estimate_line_item_id is not None and r.confidence > MEDIUM_CONFIDENCE
    )
    return {estimate_id: count for estimate_id, count in usage.items() if count > 1}


def summarize(results: Sequence[MatchResult]) -> MatchSummary:
    """
    Aggregate quality figures and recommendations for a result set.

    Quality score (0-100):
        0.4 * average confidence + 0.3 * match rate
      + 0.2 * high-confidence rate + 0.1 * pattern usage
    """
    total = len(results)
    if total == 0:
        return MatchSummary()

    bands = Counter(confidence_band(r.confidence) if r.is_match else "none" for r in results)
    matched = sum(1 for r in results if r.is_match)
    unmatched = total - matched
    average = sum(r.confidence for r in results) / total
    pattern_rate = sum(1 for r in results if r.match_type == MatchType.PATTERN) / total

    quality = round(
        (
            average * 0.4
            + (matched / total) * 0.3
            + (bands["high"] / total) * 0.2
            + pattern_rate * 0.1
        )
        * 100
    )

    recommendations = []
    if bands["low"] / total > 0.3:
        recommendations.append("Consider improving estimate descriptions for better matching accuracy")
    if unmatched / total > 0.2:
        recommendations.append(
            "Review unmatched items; they may indicate missing estimates or new project scope"
        )
    if pattern_rate < 0.1:
        recommendations.append("Enable pattern learning to improve future matching performance")
    if average < 0.6:
        recommendations.append("Consider manual review of matches before applying to project")
    duplicates = find_duplicate_estimates(results)
    if duplicates:
        recommendations.append(
            f"Found {len(duplicates)} estimate lines matched by several invoice lines; review for accuracy"
        )

    return MatchSummary(
        total_items=total,
        matched_items=matched,
        unmatched_items=unmatched,
        average_confidence=round(average, 4),
        high_confidence_matches=bands["high"],
        medium_confidence_matches=bands["medium"],
        low_confidence_matches=bands["low"],
        quality_score=quality,
        recommendations=recommendations,
    )


class MatchingService:
    """
    Tiered invoice-to-estimate matcher.

    Usage:
        service = MatchingService(
            semantic_matcher=SemanticMatcher(client),
            cache=ResultCache(),
            pattern_store=PatternLearningService(repo, user_id="u1", project_id="p1"),
        )
        response = await service.match_batch(invoices, estimates, "p1")

    With no semantic matcher the service runs in fallback-only mode.
    """

    def __init__(
        self,
        semantic_matcher: SemanticMatcher | None = None,
        fallback_matcher: FallbackMatcher | None = None,
        cache: MatchResultCache | None = None,
        pattern_store: PatternLearningService | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._semantic = semantic_matcher
        self._fallback = fallback_matcher or FallbackMatcher(settings=self._settings)
        self._cache = cache
        self._patterns = pattern_store

    async def match_batch(
        self,
        invoices: Sequence[Invoice],
        estimates: Sequence[EstimateLineItem],
        project_id: str,
        options: MatchOptions | None = None,
    ) -> BatchMatchResponse:
        """
        Match every line item of every invoice against the estimate set.

        Args:
            invoices: Invoices to match
            estimates: The project's estimate lines
            project_id: Project scope (part of the cache key)
            options: Per-call options; settings defaults when omitted

        Returns:
            BatchMatchResponse with exactly one result per submitted line
            item, or success=False when the batch itself is invalid
        """
        start = time.perf_counter()
        options = options or MatchOptions.from_settings(self._settings)
        details = ProcessingDetails()

        try:
            lines = self._validate(invoices)
        except MatchValidationError as e:
            logger.warning("Rejected matching batch", project_id=project_id, error=e.message)
            details.processing_time_ms = self._elapsed_ms(start)
            return BatchMatchResponse(success=False, processing_details=details, error=e.message)

        logger.info(
            "Matching batch started",
            project_id=project_id,
            invoices=len(invoices),
            items=len(lines),
            estimates=len(estimates),
        )

        try:
            cache_key = None
            if self._cache is not None and options.enable_cache:
                cache_key = fingerprint(invoices, estimates, project_id)
                cached = await self._read_cache(cache_key, lines)
                if cached is not None:
                    # No tier ran; per-tier counters stay at zero
                    details.cache_hit = True
                    details.processing_time_ms = self._elapsed_ms(start)
                    logger.info("Matching batch served from cache", project_id=project_id)
                    return BatchMatchResponse(
                        success=True,
                        matches=cached,
                        summary=summarize(cached),
                        processing_details=details,
                    )

            resolved: dict[str, _Resolution] = {}

            self._resolve_existing(lines, resolved, details)
            if estimates:
                await self._resolve_patterns(lines, estimates, options, resolved, details)
                await self._resolve_semantic(lines, estimates, options, resolved, details)
            await self._resolve_fallback(lines, estimates, resolved, details)

            results = self._merge(lines, resolved)

            if options.enable_pattern_learning and self._patterns is not None:
                details.patterns_learned = await self._learn(lines, estimates, resolved, options)

            if cache_key is not None:
                await self._write_cache(cache_key, results)

        except Exception as e:
            logger.exception("Matching batch failed", project_id=project_id, error=str(e))
            details.processing_time_ms = self._elapsed_ms(start)
            return BatchMatchResponse(success=False, processing_details=details, error=str(e))

        details.processing_time_ms = self._elapsed_ms(start)
        summary = summarize(results)

        logger.info(
            "Matching batch complete",
            project_id=project_id,
            items=summary.total_items,
            matched=summary.matched_items,
            existing=details.existing_matches,
            pattern=details.pattern_matches,
            llm=details.llm_matches,
            logic=details.logic_matches,
            llm_failures=len(details.llm_failures),
            time_ms=details.processing_time_ms,
        )
        return BatchMatchResponse(
            success=True,
            matches=results,
            summary=summary,
            processing_details=details,
        )

    # -------------------------------------------------------------------------
    # Validation and cache
    # -------------------------------------------------------------------------

    @staticmethod
    def _validate(invoices: Sequence[Invoice]) -> list[_LineRef]:
        lines = [_LineRef(invoice, item) for invoice in invoices for item in invoice.line_items]

        counts = Counter(line.item.id for line in lines)
        duplicates = sorted(item_id for item_id, count in counts.items() if count > 1)
        if duplicates:
            raise MatchValidationError(
                message=f"Duplicate invoice line item ids: {', '.join(duplicates[:5])}",
                details={"duplicates": duplicates},
            )
        return lines

    async def _read_cache(self, key: str, lines: Sequence[_LineRef]) -> list[MatchResult] | None:
        try:
            cached = await self._cache.get(key)
        except Exception as e:
            logger.warning("Result cache read failed", error=str(e))
            return None

        if cached is None:
            return None
        if [r.invoice_line_item_id for r in cached] != [line.item.id for line in lines]:
            logger.warning("Ignoring cached results that do not cover the batch", key=key)
            return None
        return cached

    async def _write_cache(self, key: str, results: Sequence[MatchResult]) -> None:
        try:
            await self._cache.set(key, results, ttl_ms=self._settings.cache_ttl_seconds * 1000)
        except Exception as e:
            logger.warning("Result cache write failed", error=str(e))

    # -------------------------------------------------------------------------
    # Tiers
    # -------------------------------------------------------------------------

    @staticmethod
    def _resolve_existing(
        lines: Sequence[_LineRef],
        resolved: dict[str, _Resolution],
        details: ProcessingDetails,
    ) -> None:
        for line in lines:
            if line.item.estimate_line_item_id:
                resolved[line.item.id] = _Resolution(
                    MatchResult(
                        invoice_line_item_id=line.item.id,
                        estimate_line_item_id=line.item.estimate_line_item_id,
                        confidence=1.0,
                        reasoning="Already linked to estimate line item",
                        match_type=MatchType.EXISTING,
                    )
                )
                details.existing_matches += 1

    async def _resolve_patterns(
        self,
        lines: Sequence[_LineRef],
        estimates: Sequence[EstimateLineItem],
        options: MatchOptions,
        resolved: dict[str, _Resolution],
        details: ProcessingDetails,
    ) -> None:
        if self._patterns is None:
            return

        pending = [line for line in lines if line.item.id not in resolved]
        if not pending:
            return

        trade_names = {e.trade_id: e.trade_name for e in estimates if e.trade_id and e.trade_name}
        suggestion_lists = await asyncio.gather(
            *(
                self._patterns.get_suggestions(
                    line.invoice.supplier_name,
                    line.item.description,
                    line.item.total_price,
                    trade_names=trade_names,
                )
                for line in pending
            )
        )

        for line, suggestions in zip(pending, suggestion_lists):
            resolution = self._apply_suggestions(line.item, suggestions, estimates, options)
            if resolution is not None:
                resolved[line.item.id] = resolution
                details.pattern_matches += 1

    def _apply_suggestions(
        self,
        item: InvoiceLineItem,
        suggestions: Sequence[PatternSuggestion],
        estimates: Sequence[EstimateLineItem],
        options: MatchOptions,
    ) -> _Resolution | None:
        """First suggestion above the threshold that resolves to a submitted estimate."""
        by_id = {e.id: e for e in estimates}

        for suggestion in suggestions:
            if suggestion.confidence < options.quality_threshold:
                continue

            estimate = by_id.get(suggestion.estimate_line_item_id or "")
            if estimate is None:
                in_trade = [e for e in estimates if e.trade_id == suggestion.trade_id]
                best = self._fallback.best_match(item, in_trade)
                if not best.is_match:
                    continue
                estimate = by_id[best.estimate_line_item_id]

            reasoning = f"Learned pattern: {suggestion.reason}"
            if suggestion.trade_name:
                reasoning += f" -> {suggestion.trade_name}"

            return _Resolution(
                MatchResult(
                    invoice_line_item_id=item.id,
                    estimate_line_item_id=estimate.id,
                    confidence=suggestion.confidence,
                    reasoning=reasoning,
                    match_type=MatchType.PATTERN,
                ),
                method=MatchingMethod.PATTERN,
                pattern_id=suggestion.pattern_id,
            )
        return None

    async def _resolve_semantic(
        self,
        lines: Sequence[_LineRef],
        estimates: Sequence[EstimateLineItem],
        options: MatchOptions,
        resolved: dict[str, _Resolution],
        details: ProcessingDetails,
    ) -> None:
        if self._semantic is None:
            return

        pending = [line for line in lines if line.item.id not in resolved]
        if not pending:
            return

        if options.prioritize_high_value:
            pending.sort(key=lambda line: item_priority(line.item), reverse=True)

        batches = [
            pending[i : i + options.batch_size]
            for i in range(0, len(pending), options.batch_size)
        ]
        semaphore = asyncio.Semaphore(options.concurrency)
        timeout = options.timeout_ms / 1000

        async def run(batch: list[_LineRef]) -> SemanticMatchOutcome:
            async with semaphore:
                try:
                    return await asyncio.wait_for(
                        self._semantic.match_safely(self._group_invoices(batch), estimates),
                        timeout=timeout,
                    )
                except asyncio.TimeoutError:
                    logger.warning("Semantic matcher batch timed out", items=len(batch), timeout_s=timeout)
                    return SemanticMatchOutcome(ok=False, error=f"timed out after {options.timeout_ms}ms")

        outcomes = await asyncio.gather(*(run(batch) for batch in batches))
        details.llm_calls += len(batches)

        for index, (batch, outcome) in enumerate(zip(batches, outcomes), 1):
            details.cost += outcome.cost
            if not outcome.ok:
                details.llm_failures.append(f"batch {index}/{len(batches)}: {outcome.error}")
                continue

            wanted = {line.item.id for line in batch}
            for result in outcome.matches:
                if result.invoice_line_item_id not in wanted:
                    continue
                resolved[result.invoice_line_item_id] = _Resolution(result, method=MatchingMethod.LLM)
                if result.is_match:
                    details.llm_matches += 1

        details.cost = round(details.cost, 6)

    async def _resolve_fallback(
        self,
        lines: Sequence[_LineRef],
        estimates: Sequence[EstimateLineItem],
        resolved: dict[str, _Resolution],
        details: ProcessingDetails,
    ) -> None:
        pending = [line.item for line in lines if line.item.id not in resolved]
        if not pending:
            return

        results = await self._fallback.match_items(pending, estimates)
        for item, result in zip(pending, results):
            resolved[item.id] = _Resolution(result, method=MatchingMethod.LOGIC)
            if result.is_match:
                details.logic_matches += 1

    @staticmethod
    def _group_invoices(batch: Sequence[_LineRef]) -> list[Invoice]:
        """Invoices restricted to the line items in the batch."""
        grouped: dict[str, tuple[Invoice, list[InvoiceLineItem]]] = {}
        for line in batch:
            grouped.setdefault(line.invoice.id, (line.invoice, []))[1].append(line.item)
        return [
            invoice.model_copy(update={"line_items": items})
            for invoice, items in grouped.values()
        ]

    @staticmethod
    def _merge(lines: Sequence[_LineRef], resolved: dict[str, _Resolution]) -> list[MatchResult]:
        results = []
        for line in lines:
            resolution = resolved.get(line.item.id)
            if resolution is None:
                logger.warning("Item left unresolved by every tier", item_id=line.item.id)
                results.append(MatchResult.no_match(line.item.id, "No strategy produced a match"))
            else:
                results.append(resolution.result)
        return results

    # -------------------------------------------------------------------------
    # Learning
    # -------------------------------------------------------------------------

    async def _learn(
        self,
        lines: Sequence[_LineRef],
        estimates: Sequence[EstimateLineItem],
        resolved: dict[str, _Resolution],
        options: MatchOptions,
    ) -> int:
        """
        Feed confident results back into the pattern store.

        Runs sequentially so repeated keys in one batch reinforce a single
        pattern. Failures are logged and skipped.
        """
        by_id = {e.id: e for e in estimates}
        learned = 0

        for line in lines:
            resolution = resolved.get(line.item.id)
            if resolution is None or resolution.method is None:
                continue
            result = resolution.result
            if not result.is_match or result.confidence < options.quality_threshold:
                continue
            estimate = by_id.get(result.estimate_line_item_id or "")
            if estimate is None or not estimate.trade_id:
                continue

            try:
                await self._patterns.learn_from_mapping(
                    line.item.id,
                    line.invoice.supplier_name,
                    line.item.description,
                    line.item.total_price,
                    estimate.trade_id,
                    estimate.id,
                    confidence=result.confidence,
                    matching_method=resolution.method,
                    matching_pattern_id=resolution.pattern_id,
                )
                learned += 1
            except Exception as e:
                logger.warning("Pattern learning failed", item_id=line.item.id, error=str(e))

        return learned

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int((time.perf_counter() - start) * 1000)
