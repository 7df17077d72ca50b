"""
Pattern Learning Service
========================

Learns supplier/description/amount -> trade (and estimate line) patterns
from confirmed matches and turns them into suggestions for new invoice
lines.

Pattern families:
- SUPPLIER_TO_TRADE: supplier name key
- LINEITEM_TO_TRADE: description key, no estimate line
- LINEITEM_TO_ESTIMATE: description key plus estimate line
- AMOUNT_TO_TRADE: amount bucket

Keyword patterns start at 0.7 and gain 0.1 per reinforcement, amount
patterns start at 0.5 and gain 0.05; confidence never exceeds 1.0. A user
correction multiplies the originating pattern's confidence by 0.9.

History is append-only: confirmations and corrections are new entries
pointing at the entry they refer to.
"""

import asyncio
from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from estimate_match.config.settings import Settings, get_settings
from estimate_match.db.repositories.pattern_repo import MatchingPatternRepository
from estimate_match.schemas.domain import (
    LearningStats,
    MatchingHistoryEntry,
    MatchingMethod,
    MatchingPattern,
    PatternSuggestion,
    PatternType,
)
from estimate_match.utils.errors import PatternStoreError
from estimate_match.utils.logger import get_logger
from estimate_match.utils.similarity import (
    amount_range,
    extract_pattern_key,
    relative_difference,
    word_jaccard,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class PatternLearningConfig:
    """Increments, decay and lookup limits of the learning loop."""

    keyword_increment: float = 0.1
    amount_increment: float = 0.05
    correction_decay: float = 0.9
    initial_keyword_confidence: float = 0.7
    initial_amount_confidence: float = 0.5
    suggestion_limit: int = 5
    history_window_days: int = 30
    history_limit: int = 20
    fuzzy_limit: int = 3
    fuzzy_min_score: float = 0.3

    @classmethod
    def from_settings(cls, settings: Settings) -> "PatternLearningConfig":
        return cls(
            keyword_increment=settings.pattern_keyword_increment,
            amount_increment=settings.pattern_amount_increment,
            correction_decay=settings.pattern_correction_decay,
            history_window_days=settings.pattern_history_window_days,
        )


class PatternLearningService:
    """
    Pattern store for one user (and optionally one project).

    Usage:
        service = PatternLearningService(repository, user_id="u1", project_id="p1")
        await service.learn_from_mapping("li-1", "ABC Concrete", "Concrete pour", 2500, "trade-1")
        suggestions = await service.get_suggestions("ABC Concrete", "Concrete pour", 2500)
    """

    def __init__(
        self,
        repository: MatchingPatternRepository,
        user_id: str,
        project_id: str | None = None,
        config: PatternLearningConfig | None = None,
    ) -> None:
        self._repository = repository
        self._user_id = user_id
        self._project_id = project_id
        self._config = config or PatternLearningConfig.from_settings(get_settings())

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def project_id(self) -> str | None:
        return self._project_id

    # -------------------------------------------------------------------------
    # Learning
    # -------------------------------------------------------------------------

    async def learn_from_mapping(
        self,
        invoice_line_item_id: str,
        supplier_name: str,
        description: str,
        amount: float,
        trade_id: str,
        estimate_line_item_id: str | None = None,
        *,
        confidence: float = 1.0,
        matching_method: MatchingMethod = MatchingMethod.MANUAL,
        matching_pattern_id: str | None = None,
    ) -> MatchingHistoryEntry:
        """
        Record a confirmed mapping and reinforce the patterns it implies.

        Args:
            invoice_line_item_id: Invoice line that was mapped
            supplier_name: Supplier on the invoice
            description: Invoice line description
            amount: Invoice line total
            trade_id: Trade the line belongs to
            estimate_line_item_id: Estimate line, when known
            confidence: Confidence of the mapping being recorded
            matching_method: How the mapping was produced
            matching_pattern_id: Pattern that produced the mapping, if any

        Returns:
            The appended history entry

        Raises:
            PatternStoreError: If the store rejects a write
        """
        entry = MatchingHistoryEntry(
            user_id=self._user_id,
            project_id=self._project_id,
            invoice_line_item_id=invoice_line_item_id,
            supplier_name=supplier_name,
            line_item_description=description,
            amount=amount,
            trade_id=trade_id,
            estimate_line_item_id=estimate_line_item_id,
            confidence=confidence,
            matching_method=matching_method,
            matching_pattern_id=matching_pattern_id,
            user_confirmed=True,
        )

        try:
            await self._repository.add_history(entry)
            await asyncio.gather(
                self._reinforce_supplier(supplier_name, trade_id),
                self._reinforce_line_item(description, trade_id, estimate_line_item_id),
                self._reinforce_amount(amount, trade_id),
            )
        except PatternStoreError:
            raise
        except Exception as e:
            logger.error(
                "Failed to learn from mapping",
                item_id=invoice_line_item_id,
                trade_id=trade_id,
                error=str(e),
            )
            raise PatternStoreError(
                message="Failed to learn from mapping",
                details={"error": str(e), "invoice_line_item_id": invoice_line_item_id},
            ) from e

        logger.debug(
            "Learned from mapping",
            item_id=invoice_line_item_id,
            trade_id=trade_id,
            method=matching_method.value,
        )
        return entry

    async def _reinforce_supplier(self, supplier_name: str, trade_id: str) -> None:
        key = extract_pattern_key(supplier_name)
        if not key:
            return
        await self._upsert(
            PatternType.SUPPLIER_TO_TRADE,
            trade_id,
            increment=self._config.keyword_increment,
            initial_confidence=self._config.initial_keyword_confidence,
            supplier_pattern=key,
        )

    async def _reinforce_line_item(
        self, description: str, trade_id: str, estimate_line_item_id: str | None
    ) -> None:
        key = extract_pattern_key(description)
        if not key:
            return
        pattern_type = (
            PatternType.LINEITEM_TO_ESTIMATE
            if estimate_line_item_id
            else PatternType.LINEITEM_TO_TRADE
        )
        await self._upsert(
            pattern_type,
            trade_id,
            increment=self._config.keyword_increment,
            initial_confidence=self._config.initial_keyword_confidence,
            line_item_pattern=key,
            estimate_line_item_id=estimate_line_item_id or None,
        )

    async def _reinforce_amount(self, amount: float, trade_id: str) -> None:
        if amount <= 0:
            return
        range_min, range_max = amount_range(amount)
        await self._upsert(
            PatternType.AMOUNT_TO_TRADE,
            trade_id,
            increment=self._config.amount_increment,
            initial_confidence=self._config.initial_amount_confidence,
            amount_range_min=range_min,
            amount_range_max=range_max,
        )

    async def _upsert(
        self,
        pattern_type: PatternType,
        trade_id: str,
        *,
        increment: float,
        initial_confidence: float,
        supplier_pattern: str | None = None,
        line_item_pattern: str | None = None,
        amount_range_min: float | None = None,
        amount_range_max: float | None = None,
        estimate_line_item_id: str | None = None,
    ) -> MatchingPattern:
        existing = await self._repository.find_pattern(
            self._user_id,
            self._project_id,
            pattern_type,
            trade_id,
            supplier_pattern=supplier_pattern,
            line_item_pattern=line_item_pattern,
            amount_range_min=amount_range_min,
            estimate_line_item_id=estimate_line_item_id,
        )

        if existing is None:
            pattern = MatchingPattern(
                user_id=self._user_id,
                project_id=self._project_id,
                pattern_type=pattern_type,
                supplier_pattern=supplier_pattern,
                line_item_pattern=line_item_pattern,
                amount_range_min=amount_range_min,
                amount_range_max=amount_range_max,
                trade_id=trade_id,
                estimate_line_item_id=estimate_line_item_id,
                confidence=initial_confidence,
            )
        else:
            pattern = existing.model_copy(
                update={
                    "confidence": min(1.0, existing.confidence + increment),
                    "usage_count": existing.usage_count + 1,
                    "success_count": existing.success_count + 1,
                    "last_used_at": datetime.now(timezone.utc),
                }
            )

        return await self._repository.save_pattern(pattern)

    # -------------------------------------------------------------------------
    # Suggestions
    # -------------------------------------------------------------------------

    async def get_suggestions(
        self,
        supplier_name: str,
        description: str,
        amount: float | None = None,
        trade_names: Mapping[str, str] | None = None,
    ) -> list[PatternSuggestion]:
        """
        Suggest trades (and estimate lines) for an invoice line.

        Pattern hits come first; with none, recent confirmed history is
        scored instead. Store failures yield an empty list.

        Args:
            supplier_name: Invoice supplier
            description: Invoice line description
            amount: Invoice line total
            trade_names: trade_id -> display name, used to fill trade_name

        Returns:
            Up to 5 pattern suggestions, or up to 3 history suggestions
        """
        try:
            patterns = await self._repository.search_patterns(
                self._user_id,
                self._project_id,
                supplier_key=extract_pattern_key(supplier_name),
                description_key=extract_pattern_key(description),
                amount=amount if amount and amount > 0 else None,
                limit=self._config.suggestion_limit,
            )
            if patterns:
                suggestions = [self._from_pattern(p) for p in patterns]
            else:
                suggestions = await self._history_suggestions(supplier_name, description, amount or 0.0)
        except Exception as e:
            logger.warning("Pattern suggestion lookup failed", user_id=self._user_id, error=str(e))
            return []

        if not trade_names:
            return suggestions
        return [
            s.model_copy(update={"trade_name": trade_names.get(s.trade_id, "")})
            for s in suggestions
        ]

    @staticmethod
    def _from_pattern(pattern: MatchingPattern) -> PatternSuggestion:
        if pattern.pattern_type == PatternType.SUPPLIER_TO_TRADE:
            reason = f"Supplier pattern '{pattern.supplier_pattern}'"
        elif pattern.pattern_type == PatternType.AMOUNT_TO_TRADE:
            reason = f"Amount range {pattern.amount_range_min:g}-{pattern.amount_range_max:g}"
        else:
            reason = f"Line item pattern '{pattern.line_item_pattern}'"

        return PatternSuggestion(
            pattern_id=pattern.id,
            trade_id=pattern.trade_id,
            estimate_line_item_id=pattern.estimate_line_item_id,
            confidence=pattern.confidence,
            matching_method=MatchingMethod.PATTERN,
            reason=f"{reason} (used {pattern.usage_count}x)",
        )

    async def _history_suggestions(
        self, supplier_name: str, description: str, amount: float
    ) -> list[PatternSuggestion]:
        since = datetime.now(timezone.utc) - timedelta(days=self._config.history_window_days)
        history = await self._repository.recent_history(
            self._user_id,
            self._project_id,
            since,
            limit=self._config.history_limit,
        )

        scored: list[tuple[float, MatchingHistoryEntry, list[str]]] = []
        for entry in history:
            score = 0.0
            reasons = []
            if word_jaccard(supplier_name, entry.supplier_name) > 0.6:
                score += 0.4
                reasons.append("similar supplier")
            if word_jaccard(description, entry.line_item_description) > 0.5:
                score += 0.4
                reasons.append("similar description")
            if amount > 0 and relative_difference(amount, entry.amount) < 0.3:
                score += 0.2
                reasons.append("similar amount")
            if score > self._config.fuzzy_min_score:
                scored.append((score, entry, reasons))

        scored.sort(key=lambda s: s[0], reverse=True)
        return [
            PatternSuggestion(
                trade_id=entry.trade_id,
                estimate_line_item_id=entry.estimate_line_item_id,
                confidence=round(min(1.0, score), 2),
                matching_method=MatchingMethod.FUZZY,
                reason=f"History match: {', '.join(reasons)}",
            )
            for score, entry, reasons in scored[: self._config.fuzzy_limit]
        ]

    # -------------------------------------------------------------------------
    # Feedback
    # -------------------------------------------------------------------------

    async def confirm_match(self, history_id: str) -> MatchingHistoryEntry | None:
        """
        Confirm a recorded match.

        Appends a confirming entry and credits the originating pattern.

        Returns:
            The confirming entry, or None if history_id is unknown
        """
        original = await self._load_history(history_id)
        if original is None:
            return None

        confirmation = original.model_copy(
            update={
                "id": str(uuid4()),
                "user_confirmed": True,
                "user_corrected": False,
                "parent_id": original.id,
                "created_at": datetime.now(timezone.utc),
            }
        )

        try:
            await self._repository.add_history(confirmation)
            if original.matching_pattern_id:
                pattern = await self._repository.get_pattern(original.matching_pattern_id)
                if pattern is not None:
                    await self._repository.save_pattern(
                        pattern.model_copy(
                            update={
                                "success_count": pattern.success_count + 1,
                                "last_used_at": datetime.now(timezone.utc),
                            }
                        )
                    )
        except Exception as e:
            raise PatternStoreError(
                message="Failed to confirm match",
                details={"error": str(e), "history_id": history_id},
            ) from e

        logger.info("Match confirmed", history_id=history_id, pattern_id=original.matching_pattern_id)
        return confirmation

    async def correct_match(
        self,
        history_id: str,
        trade_id: str,
        estimate_line_item_id: str | None = None,
    ) -> MatchingHistoryEntry | None:
        """
        Correct a recorded match.

        Appends a correcting entry, weakens the originating pattern and
        learns the corrected mapping.

        Returns:
            The correcting entry, or None if history_id is unknown
        """
        original = await self._load_history(history_id)
        if original is None:
            return None

        correction = original.model_copy(
            update={
                "id": str(uuid4()),
                "trade_id": trade_id,
                "estimate_line_item_id": estimate_line_item_id,
                "confidence": 1.0,
                "matching_method": MatchingMethod.MANUAL,
                "matching_pattern_id": None,
                "user_confirmed": False,
                "user_corrected": True,
                "parent_id": original.id,
                "created_at": datetime.now(timezone.utc),
            }
        )

        try:
            await self._repository.add_history(correction)
            if original.matching_pattern_id:
                pattern = await self._repository.get_pattern(original.matching_pattern_id)
                if pattern is not None:
                    await self._repository.save_pattern(
                        pattern.model_copy(
                            update={"confidence": pattern.confidence * self._config.correction_decay}
                        )
                    )
        except Exception as e:
            raise PatternStoreError(
                message="Failed to correct match",
                details={"error": str(e), "history_id": history_id},
            ) from e

        await self.learn_from_mapping(
            original.invoice_line_item_id,
            original.supplier_name,
            original.line_item_description,
            original.amount,
            trade_id,
            estimate_line_item_id,
        )

        logger.info(
            "Match corrected",
            history_id=history_id,
            old_trade=original.trade_id,
            new_trade=trade_id,
        )
        return correction

    async def _load_history(self, history_id: str) -> MatchingHistoryEntry | None:
        try:
            entry = await self._repository.get_history(history_id)
        except Exception as e:
            raise PatternStoreError(
                message="Failed to load history entry",
                details={"error": str(e), "history_id": history_id},
            ) from e

        if entry is None or entry.user_id != self._user_id:
            return None
        return entry

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    async def get_learning_stats(self) -> LearningStats:
        """Pattern counts, accuracy and most frequent supplier/trade pairs."""
        try:
            patterns = await self._repository.list_patterns(self._user_id, self._project_id)
            history = await self._repository.list_history(self._user_id, self._project_id)
        except Exception as e:
            raise PatternStoreError(
                message="Failed to load learning statistics",
                details={"error": str(e)},
            ) from e

        by_type = Counter(p.pattern_type.value for p in patterns)

        # Reviews point at the entry they judge; learned mappings have no parent.
        reviews = [h for h in history if h.parent_id is not None]
        confirmed = sum(1 for h in reviews if h.user_confirmed)
        corrected_ids = {h.parent_id for h in reviews if h.user_corrected}

        pairs = Counter(
            (h.supplier_name, h.trade_id)
            for h in history
            if h.supplier_name and h.parent_id is None and h.id not in corrected_ids
        )

        return LearningStats(
            total_patterns=len(patterns),
            patterns_by_type=dict(by_type),
            accuracy_rate=round(confirmed / len(reviews), 4) if reviews else 0.0,
            top_suppliers=[
                {"supplier_name": supplier, "trade_id": trade, "count": count}
                for (supplier, trade), count in pairs.most_common(5)
            ],
        )
