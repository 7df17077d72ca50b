"""
Unit Tests for Similarity Toolkit
=================================
"""

import pytest

from estimate_match.utils.similarity import (
    amount_range,
    extract_keywords,
    extract_pattern_key,
    price_similarity,
    relative_difference,
    semantic_similarity,
    string_similarity,
    word_jaccard,
)


class TestStringSimilarity:
    """Tests for normalized edit-distance similarity."""

    def test_identical_strings(self):
        assert string_similarity("Concrete", "concrete ") == 1.0

    def test_both_empty(self):
        assert string_similarity("", "") == 1.0

    def test_one_empty(self):
        assert string_similarity("concrete", "") == 0.0
        assert string_similarity("", "concrete") == 0.0

    def test_edit_distance(self):
        # kitten -> sitting is 3 edits over 7 characters
        assert string_similarity("kitten", "sitting") == pytest.approx(1 - 3 / 7)

    def test_is_symmetric(self):
        a, b = "timber framing", "wall framing timber"
        assert string_similarity(a, b) == string_similarity(b, a)


class TestSemanticSimilarity:
    """Tests for keyword Jaccard similarity."""

    def test_shared_keyword(self):
        # {concrete, pouring} vs {concrete, foundation}; "for" is a stop word
        assert semantic_similarity("Concrete pouring", "Concrete for foundation") == pytest.approx(1 / 3)

    def test_both_without_keywords(self):
        assert semantic_similarity("the and", "for") == 1.0

    def test_one_without_keywords(self):
        assert semantic_similarity("ab cd", "concrete") == 0.0

    def test_punctuation_ignored(self):
        assert semantic_similarity("Concrete, pouring!", "concrete pouring") == 1.0


class TestPriceSimilarity:
    """Tests for relative price closeness."""

    def test_close_prices(self):
        assert price_similarity(2500, 3000) == pytest.approx(1 - 500 / 3000)

    def test_equal_prices(self):
        assert price_similarity(100, 100) == 1.0

    @pytest.mark.parametrize("estimate_price", [0, -10])
    def test_non_positive_estimate(self, estimate_price):
        assert price_similarity(100, estimate_price) == 0.0

    def test_never_negative(self):
        assert price_similarity(10, 10_000) >= 0.0


class TestKeywords:
    """Tests for keyword and pattern key extraction."""

    def test_extract_keywords(self):
        assert extract_keywords("Concrete, pouring & finishing!") == [
            "concrete",
            "pouring",
            "finishing",
        ]

    def test_extract_keywords_drops_short_words_and_stop_words(self):
        assert extract_keywords("Pipe for the 2x4 wall with PVC") == ["pipe", "2x4", "wall", "pvc"]

    def test_pattern_key_drops_company_suffixes(self):
        assert extract_pattern_key("The Concrete Supply Co. Ltd") == "concrete supply"

    def test_pattern_key_keeps_first_three_keywords(self):
        assert extract_pattern_key("Ready mix concrete delivery north site") == "ready mix concrete"

    def test_pattern_key_empty(self):
        assert extract_pattern_key("") == ""
        assert extract_pattern_key("Inc. Ltd.") == ""


class TestWordJaccard:
    """Tests for whitespace-token Jaccard."""

    def test_partial_overlap(self):
        assert word_jaccard("ABC Concrete", "abc concrete supplies") == pytest.approx(2 / 3)

    def test_empty_union(self):
        assert word_jaccard("", "  ") == 0.0


class TestAmountRange:
    """Tests for amount bucketing."""

    @pytest.mark.parametrize(
        "amount,expected",
        [
            (0, (0.0, 50.0)),
            (75, (50.0, 100.0)),
            (100, (0.0, 200.0)),
            (450, (400.0, 600.0)),
            (1000, (1000.0, 2000.0)),
            (2500, (2000.0, 3000.0)),
        ],
    )
    def test_buckets(self, amount, expected):
        assert amount_range(amount) == expected

    def test_amount_inside_its_range(self):
        low, high = amount_range(1234.56)
        assert low <= 1234.56 < high


class TestRelativeDifference:
    def test_difference(self):
        assert relative_difference(100, 80) == pytest.approx(0.2)

    def test_zeros(self):
        assert relative_difference(0, 0) == 0.0
