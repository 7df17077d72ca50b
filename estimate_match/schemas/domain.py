"""
Domain Models
=============

Value types at the engine boundary. Invoice and estimate data are converted
into these once, and nothing downstream handles untyped records.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


# =============================================================================
# Enums
# =============================================================================


class LineItemCategory(str, Enum):
    """Invoice line item category."""

    MATERIAL = "MATERIAL"
    LABOR = "LABOR"
    EQUIPMENT = "EQUIPMENT"
    OTHER = "OTHER"


class MatchType(str, Enum):
    """How an invoice line item was resolved."""

    EXACT = "exact"
    PARTIAL = "partial"
    CONCEPTUAL = "conceptual"
    NONE = "none"
    EXISTING = "existing"
    PATTERN = "pattern"


class PatternType(str, Enum):
    """Learned pattern families."""

    SUPPLIER_TO_TRADE = "SUPPLIER_TO_TRADE"
    LINEITEM_TO_TRADE = "LINEITEM_TO_TRADE"
    LINEITEM_TO_ESTIMATE = "LINEITEM_TO_ESTIMATE"
    AMOUNT_TO_TRADE = "AMOUNT_TO_TRADE"


class MatchingMethod(str, Enum):
    """Source of a history entry or suggestion."""

    MANUAL = "MANUAL"
    PATTERN = "PATTERN"
    LLM = "LLM"
    LOGIC = "LOGIC"
    FUZZY = "FUZZY"


# =============================================================================
# Inputs
# =============================================================================


class InvoiceLineItem(BaseModel):
    """
    A single line on a supplier invoice.

    Attributes:
        id: Line item identifier
        description: Free-text description from the invoice
        quantity: Billed quantity
        unit_price: Price per unit
        total_price: Line total
        category: Line item category
        estimate_line_item_id: Estimate line already linked in the store, if any
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    description: str = ""
    quantity: Annotated[float, Field(ge=0)] = 0.0
    unit_price: float = 0.0
    total_price: float = 0.0
    category: LineItemCategory = LineItemCategory.OTHER
    estimate_line_item_id: str | None = None

    @field_validator("category", mode="before")
    @classmethod
    def _coerce_category(cls, value: Any) -> Any:
        if isinstance(value, LineItemCategory):
            return value
        if isinstance(value, str):
            try:
                return LineItemCategory(value.upper())
            except ValueError:
                return LineItemCategory.OTHER
        return LineItemCategory.OTHER


class Invoice(BaseModel):
    """A supplier invoice with its line items."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    invoice_number: str = ""
    supplier_name: str = ""
    line_items: list[InvoiceLineItem] = Field(default_factory=list)


class EstimateLineItem(BaseModel):
    """
    A budgeted unit of work in a project estimate.

    The estimated total is the sum of the three cost components; markup
    and overhead are the caller's concern.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    description: str = ""
    quantity: float = 0.0
    unit: str = ""
    material_cost_est: float = 0.0
    labor_cost_est: float = 0.0
    equipment_cost_est: float = 0.0
    trade_name: str = ""
    trade_id: str | None = None

    @property
    def total_cost(self) -> float:
        """Material + labor + equipment estimate."""
        return self.material_cost_est + self.labor_cost_est + self.equipment_cost_est


# =============================================================================
# Outputs
# =============================================================================


class MatchResult(BaseModel):
    """
    Outcome for one invoice line item.

    A null estimate_line_item_id means "no match".
    """

    invoice_line_item_id: str
    estimate_line_item_id: str | None = None
    confidence: Annotated[float, Field(ge=0.0, le=1.0)] = 0.0
    reasoning: str = ""
    match_type: MatchType = MatchType.NONE

    @property
    def is_match(self) -> bool:
        """True when the result points at an estimate line."""
        return self.estimate_line_item_id is not None and self.match_type != MatchType.NONE

    @classmethod
    def no_match(cls, invoice_line_item_id: str, reasoning: str) -> "MatchResult":
        """Build a 'none' result for an unresolved item."""
        return cls(
            invoice_line_item_id=invoice_line_item_id,
            estimate_line_item_id=None,
            confidence=0.0,
            reasoning=reasoning,
            match_type=MatchType.NONE,
        )


# =============================================================================
# Pattern learning
# =============================================================================


class MatchingPattern(BaseModel):
    """
    A rule learned from confirmed matches.

    Keyword patterns carry supplier_pattern or line_item_pattern; amount
    patterns carry the [amount_range_min, amount_range_max) bucket.
    """

    id: str = Field(default_factory=_new_id)
    user_id: str
    project_id: str | None = None
    pattern_type: PatternType
    supplier_pattern: str | None = None
    line_item_pattern: str | None = None
    amount_range_min: float | None = None
    amount_range_max: float | None = None
    trade_id: str
    estimate_line_item_id: str | None = None
    confidence: Annotated[float, Field(ge=0.0, le=1.0)] = 0.7
    usage_count: int = Field(default=1, ge=0)
    success_count: int = Field(default=1, ge=0)
    created_at: datetime = Field(default_factory=_utcnow)
    last_used_at: datetime = Field(default_factory=_utcnow)


class MatchingHistoryEntry(BaseModel):
    """
    Append-only audit record of a resolved match.

    Confirmations and corrections are new entries pointing at the entry
    they refer to through parent_id.
    """

    id: str = Field(default_factory=_new_id)
    user_id: str
    project_id: str | None = None
    invoice_line_item_id: str
    supplier_name: str = ""
    line_item_description: str = ""
    amount: float = 0.0
    trade_id: str
    estimate_line_item_id: str | None = None
    confidence: Annotated[float, Field(ge=0.0, le=1.0)] = 1.0
    matching_method: MatchingMethod = MatchingMethod.MANUAL
    matching_pattern_id: str | None = None
    user_confirmed: bool = False
    user_corrected: bool = False
    parent_id: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)


class PatternSuggestion(BaseModel):
    """A trade/estimate suggestion derived from patterns or history."""

    pattern_id: str | None = None
    trade_id: str
    trade_name: str = ""
    estimate_line_item_id: str | None = None
    confidence: Annotated[float, Field(ge=0.0, le=1.0)]
    matching_method: MatchingMethod = MatchingMethod.PATTERN
    reason: str = ""


class LearningStats(BaseModel):
    """Aggregate statistics over a user's patterns and history."""

    total_patterns: int = 0
    patterns_by_type: dict[str, int] = Field(default_factory=dict)
    accuracy_rate: float = 0.0
    top_suppliers: list[dict[str, Any]] = Field(default_factory=list)


# =============================================================================
# Cache
# =============================================================================


class CacheEntry(BaseModel):
    """Serialized match results stored under a request fingerprint."""

    key: str
    value: str
    expires_at: datetime

    def is_expired(self, now: datetime | None = None) -> bool:
        """True once expires_at has passed."""
        return (now or _utcnow()) >= self.expires_at
