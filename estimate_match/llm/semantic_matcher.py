"""
Semantic Matcher
================

Asks an external language model to match a batch of invoice line items
against the estimate set, then validates every returned entry against the
ids actually submitted.

Flow:
1. Render the matching prompt (invoices + all estimates)
2. Call the model client
3. Extract the JSON object (markdown fences and surrounding prose tolerated)
   and check the top-level {"matches": [...]} shape
4. Validate each entry on its own; malformed entries are logged and skipped,
   items the model skipped come back as 'none'

A response without a decodable {"matches": [...]} object fails the whole
batch. match_safely() turns any failure into an outcome with ok=False.
"""

import math
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from estimate_match.config.settings import Settings, get_settings
from estimate_match.llm.client import SemanticModelClient
from estimate_match.llm.prompt_templates import build_match_prompt
from estimate_match.schemas.domain import EstimateLineItem, Invoice, MatchResult, MatchType
from estimate_match.utils.errors import EstimateMatchError, LLMError, LLMResponseError
from estimate_match.utils.logger import get_logger

logger = get_logger(__name__)

_MODEL_MATCH_TYPES = {MatchType.EXACT, MatchType.PARTIAL, MatchType.CONCEPTUAL, MatchType.NONE}


class LLMMatchEntry(BaseModel):
    """One entry of the model's 'matches' array."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    invoice_line_item_id: str = Field(alias="invoiceLineItemId")
    estimate_line_item_id: str | None = Field(default=None, alias="estimateLineItemId")
    confidence: float = 0.0
    reasoning: str | None = ""
    match_type: str | None = Field(default=None, alias="matchType")

    @field_validator("confidence", mode="before")
    @classmethod
    def coerce_confidence(cls, value: Any) -> float:
        """Anything that is not a finite number counts as 0."""
        try:
            number = float(value)
        except (TypeError, ValueError):
            return 0.0
        return number if math.isfinite(number) else 0.0


class LLMMatchPayload(BaseModel):
    """Expected top-level shape of the model response; entries stay raw."""

    model_config = ConfigDict(extra="ignore")

    matches: list[Any]


@dataclass
class SemanticMatchOutcome:
    """Tagged result of one semantic matcher call."""

    ok: bool
    matches: list[MatchResult] = field(default_factory=list)
    error: str | None = None
    tokens_used: int = 0
    cost: float = 0.0


def extract_json(response: str) -> str:
    """Pull the JSON object out of markdown fences or surrounding prose."""
    text = response.strip()

    if text.startswith("```"):
        match = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", text)
        if match:
            text = match.group(1).strip()
        else:
            text = re.sub(r"```(?:json)?", "", text).strip()

    if not text.startswith("{"):
        match = re.search(r"\{[\s\S]*\}", text)
        if match:
            text = match.group(0)

    return text


def parse_payload(response: str) -> LLMMatchPayload:
    """
    Decode and shape-check a model response.

    Raises:
        LLMResponseError: Empty response, invalid JSON or wrong shape
    """
    if not response or not response.strip():
        raise LLMResponseError(message="Empty LLM response")

    text = extract_json(response)
    try:
        return LLMMatchPayload.model_validate_json(text)
    except ValidationError as e:
        raise LLMResponseError(
            message="LLM response does not match the expected format",
            details={"errors": e.error_count(), "raw_response": text[:200]},
        ) from e


def validate_entries(
    payload: LLMMatchPayload,
    item_ids: Sequence[str],
    estimate_ids: set[str],
) -> list[MatchResult]:
    """
    Turn payload entries into results for exactly the submitted items.

    Malformed entries and unknown invoice line ids are dropped, unknown
    estimate ids cleared, confidence clamped, and items the model skipped
    come back as 'none'. The first entry for an item wins.

    Args:
        payload: Decoded model response
        item_ids: Invoice line item ids in the batch, in order
        estimate_ids: Ids of every submitted estimate line

    Returns:
        One result per item id, in item_ids order
    """
    wanted = set(item_ids)
    by_item: dict[str, MatchResult] = {}

    for index, raw in enumerate(payload.matches):
        try:
            entry = LLMMatchEntry.model_validate(raw)
        except ValidationError as e:
            logger.warning("LLM returned malformed match entry", index=index, errors=e.error_count())
            continue

        if entry.invoice_line_item_id not in wanted:
            logger.warning("LLM returned unknown invoice line item", item_id=entry.invoice_line_item_id)
            continue
        if entry.invoice_line_item_id in by_item:
            continue

        estimate_id = entry.estimate_line_item_id or None
        confidence = max(0.0, min(1.0, entry.confidence))
        reasoning = entry.reasoning or "Match suggested by LLM"

        if estimate_id is not None and estimate_id not in estimate_ids:
            logger.warning(
                "LLM returned unknown estimate line item",
                item_id=entry.invoice_line_item_id,
                estimate_id=estimate_id,
            )
            by_item[entry.invoice_line_item_id] = MatchResult.no_match(
                entry.invoice_line_item_id,
                f"LLM referenced unknown estimate '{estimate_id}'",
            )
            continue

        if estimate_id is None:
            match_type = MatchType.NONE
            confidence = 0.0
        else:
            try:
                match_type = MatchType(str(entry.match_type).lower())
            except ValueError:
                match_type = MatchType.PARTIAL
            if match_type not in _MODEL_MATCH_TYPES or match_type == MatchType.NONE:
                match_type = MatchType.PARTIAL

        by_item[entry.invoice_line_item_id] = MatchResult(
            invoice_line_item_id=entry.invoice_line_item_id,
            estimate_line_item_id=estimate_id,
            confidence=confidence,
            reasoning=reasoning,
            match_type=match_type,
        )

    results = []
    for item_id in item_ids:
        result = by_item.get(item_id)
        if result is None:
            result = MatchResult.no_match(item_id, "No match returned by LLM")
        results.append(result)
    return results


class SemanticMatcher:
    """
    LLM-backed batch matcher.

    Usage:
        matcher = SemanticMatcher(create_model_client(settings))
        outcome = await matcher.match_safely(invoices, estimates)
        if outcome.ok:
            ...
    """

    def __init__(
        self,
        client: SemanticModelClient,
        settings: Settings | None = None,
    ) -> None:
        self._client = client
        self._settings = settings or get_settings()

    @property
    def model_name(self) -> str:
        return self._client.model_name

    async def match(
        self,
        invoices: Sequence[Invoice],
        estimates: Sequence[EstimateLineItem],
    ) -> SemanticMatchOutcome:
        """
        Match every line item of the given invoices.

        Raises:
            ConfigurationError: Client not configured
            LLMError: Model call failed
            LLMResponseError: Response not decodable
        """
        item_ids = [item.id for invoice in invoices for item in invoice.line_items]
        if not item_ids:
            return SemanticMatchOutcome(ok=True)

        prompt = build_match_prompt(invoices, estimates)
        response = await self._client.complete(prompt)

        payload = parse_payload(response.content)
        matches = validate_entries(payload, item_ids, {e.id for e in estimates})

        tokens = response.tokens_used
        cost = round(tokens / 1000 * self._settings.llm_cost_per_1k_tokens, 6)

        logger.info(
            "Semantic matching complete",
            model=response.model,
            items=len(item_ids),
            matched=sum(1 for m in matches if m.is_match),
            tokens=tokens,
        )
        return SemanticMatchOutcome(ok=True, matches=matches, tokens_used=tokens, cost=cost)

    async def match_safely(
        self,
        invoices: Sequence[Invoice],
        estimates: Sequence[EstimateLineItem],
    ) -> SemanticMatchOutcome:
        """Like match(), but failures come back as ok=False instead of raising."""
        try:
            return await self.match(invoices, estimates)
        except LLMResponseError as e:
            logger.warning("LLM response rejected", error=e.message, details=e.details)
            return SemanticMatchOutcome(ok=False, error=e.message)
        except LLMError as e:
            logger.warning("LLM matching failed", error=e.message, details=e.details)
            return SemanticMatchOutcome(ok=False, error=e.message)
        except EstimateMatchError as e:
            logger.warning("LLM matching unavailable", error=e.message)
            return SemanticMatchOutcome(ok=False, error=e.message)
        except Exception as e:
            logger.exception("Unexpected error in semantic matching", error=str(e))
            return SemanticMatchOutcome(ok=False, error=str(e))
