"""
Services Module
===============

Matching tiers, result cache, pattern learning and the orchestrator.
"""

from estimate_match.services.fallback_matcher import FallbackMatcher, FallbackWeights
from estimate_match.services.matching_service import MatchingService
from estimate_match.services.pattern_learning import PatternLearningConfig, PatternLearningService
from estimate_match.services.result_cache import RedisResultCache, ResultCache, fingerprint

__all__ = [
    "FallbackMatcher",
    "FallbackWeights",
    "MatchingService",
    "PatternLearningConfig",
    "PatternLearningService",
    "RedisResultCache",
    "ResultCache",
    "fingerprint",
]
