"""
Similarity Toolkit
==================

Pure scoring functions shared by the fallback matcher and the pattern store.

- string_similarity: normalized Levenshtein similarity (RapidFuzz)
- semantic_similarity: Jaccard index over extracted keywords
- price_similarity: relative closeness of two amounts
- extract_pattern_key: canonical keyword key used by pattern creation and lookup
"""

import math
import re
from collections.abc import Iterable

from rapidfuzz.distance import Levenshtein

# Stop words dropped when comparing descriptions
DESCRIPTION_STOP_WORDS: frozenset[str] = frozenset(
    {"the", "and", "for", "with", "from", "inc", "ltd", "pty"}
)

# Stop words dropped when building pattern keys
PATTERN_STOP_WORDS: frozenset[str] = frozenset(
    {"the", "and", "for", "ltd", "limited", "inc", "corp"}
)

PATTERN_KEY_WORDS = 3
MIN_KEYWORD_LENGTH = 3

_PUNCTUATION_RE = re.compile(r"[^\w\s]")


def extract_keywords(text: str, stop_words: Iterable[str] = DESCRIPTION_STOP_WORDS) -> list[str]:
    """
    Split text into lowercase keywords.

    Punctuation becomes whitespace, words shorter than three characters
    and stop words are dropped. Order is preserved.

    Args:
        text: Free text (description, supplier name)
        stop_words: Words to drop

    Returns:
        List of keywords in original order
    """
    stop = stop_words if isinstance(stop_words, (set, frozenset)) else set(stop_words)
    words = _PUNCTUATION_RE.sub(" ", (text or "").lower()).split()
    return [w for w in words if len(w) >= MIN_KEYWORD_LENGTH and w not in stop]


def extract_pattern_key(text: str) -> str:
    """
    Build the canonical pattern key for a supplier name or description.

    Keeps the first three keywords joined by single spaces. Pattern
    creation and pattern lookup both go through this function.

    Example:
        >>> extract_pattern_key("The Concrete Supply Co. Ltd")
        'concrete supply'
    """
    return " ".join(extract_keywords(text, PATTERN_STOP_WORDS)[:PATTERN_KEY_WORDS])


def string_similarity(a: str, b: str) -> float:
    """
    Normalized edit-distance similarity in [0, 1].

    Case-insensitive and trimmed. Two empty strings are identical (1.0);
    exactly one empty string scores 0.0.
    """
    s1 = (a or "").lower().strip()
    s2 = (b or "").lower().strip()

    if not s1 and not s2:
        return 1.0
    if not s1 or not s2:
        return 0.0
    if s1 == s2:
        return 1.0

    distance = Levenshtein.distance(s1, s2)
    return 1.0 - distance / max(len(s1), len(s2))


def semantic_similarity(a: str, b: str) -> float:
    """
    Jaccard index of the keyword sets of two descriptions.

    Both keyword sets empty scores 1.0; exactly one empty scores 0.0.
    """
    keywords1 = set(extract_keywords(a))
    keywords2 = set(extract_keywords(b))

    if not keywords1 and not keywords2:
        return 1.0
    if not keywords1 or not keywords2:
        return 0.0

    return len(keywords1 & keywords2) / len(keywords1 | keywords2)


def price_similarity(invoice_price: float, estimate_price: float) -> float:
    """
    Relative closeness of an invoice amount to an estimate amount.

    Returns 0.0 when the estimate price is zero or negative.
    """
    if estimate_price <= 0:
        return 0.0

    diff = abs(invoice_price - estimate_price) / max(invoice_price, estimate_price)
    return max(0.0, 1.0 - diff)


def word_jaccard(a: str, b: str) -> float:
    """Jaccard index over lowercase whitespace tokens."""
    set1 = set((a or "").lower().split())
    set2 = set((b or "").lower().split())
    union = set1 | set2
    if not union:
        return 0.0
    return len(set1 & set2) / len(union)


def amount_range(amount: float) -> tuple[float, float]:
    """
    Bucket an amount into the range used by amount patterns.

    Range width scales with the amount: 50 below 100, 200 below 1000,
    otherwise 1000.

    Example:
        >>> amount_range(2500)
        (2000.0, 3000.0)
    """
    if amount < 100:
        width = 50
    elif amount < 1000:
        width = 200
    else:
        width = 1000

    range_min = float(math.floor(amount / width) * width)
    return range_min, range_min + width


def relative_difference(a: float, b: float) -> float:
    """Absolute difference divided by the larger magnitude; 0.0 for two zeros."""
    denominator = max(abs(a), abs(b))
    if denominator == 0:
        return 0.0
    return abs(a - b) / denominator
