"""
Custom Exception Classes
========================

Application-specific exceptions for the matching engine.
"""

from typing import Any


class EstimateMatchError(Exception):
    """Base exception for the matching engine."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(EstimateMatchError):
    """Raised when configuration is invalid or credentials are missing."""

    pass


class LLMError(EstimateMatchError):
    """Raised when the semantic model call fails (transport or non-2xx)."""

    pass


class LLMResponseError(LLMError):
    """Raised when model output cannot be decoded into the expected shape."""

    pass


class MatchValidationError(EstimateMatchError):
    """Raised when a matching request is malformed."""

    pass


class PatternStoreError(EstimateMatchError):
    """Raised when pattern or history persistence fails."""

    pass


class CacheError(EstimateMatchError):
    """Raised when the result cache backend fails."""

    pass


class DatabaseError(EstimateMatchError):
    """Raised when database operations fail."""

    pass
