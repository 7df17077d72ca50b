"""
SQLAlchemy ORM Models
=====================

Tables owned by the matching engine: learned patterns and the append-only
matching history. Invoice and estimate tables belong to the host
application and are read with raw SQL (see ProjectLineItemsRepository).

Ids are UUID strings so the schema works on PostgreSQL and SQLite alike.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class UUIDMixin:
    """Mixin for string UUID primary key."""

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
        nullable=False,
    )


class MatchingPatternRow(Base, UUIDMixin):
    """
    Learned matching pattern.

    Keyword patterns store supplier_pattern or line_item_pattern; amount
    patterns store the [amount_range_min, amount_range_max) bucket.
    """

    __tablename__ = "matching_patterns"
    __table_args__ = (
        Index("idx_matching_patterns_user_project", "user_id", "project_id"),
        Index("idx_matching_patterns_type", "pattern_type"),
    )

    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    project_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    pattern_type: Mapped[str] = mapped_column(String(32), nullable=False)
    supplier_pattern: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    line_item_pattern: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    amount_range_min: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    amount_range_max: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    trade_id: Mapped[str] = mapped_column(String(64), nullable=False)
    estimate_line_item_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.7)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    success_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    last_used_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    def __repr__(self) -> str:
        return (
            f"<MatchingPatternRow(id={self.id}, type={self.pattern_type}, "
            f"trade={self.trade_id}, confidence={self.confidence})>"
        )


class MatchingHistoryRow(Base, UUIDMixin):
    """Append-only record of resolved, confirmed and corrected matches."""

    __tablename__ = "matching_history"
    __table_args__ = (
        Index("idx_matching_history_user_created", "user_id", "created_at"),
    )

    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    project_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    invoice_line_item_id: Mapped[str] = mapped_column(String(64), nullable=False)
    supplier_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    line_item_description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    amount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    trade_id: Mapped[str] = mapped_column(String(64), nullable=False)
    estimate_line_item_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    matching_method: Mapped[str] = mapped_column(String(16), nullable=False)
    matching_pattern_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("matching_patterns.id", ondelete="SET NULL"),
        nullable=True,
    )
    user_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    user_corrected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    parent_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("matching_history.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    def __repr__(self) -> str:
        return (
            f"<MatchingHistoryRow(id={self.id}, item={self.invoice_line_item_id}, "
            f"method={self.matching_method})>"
        )
