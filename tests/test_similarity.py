"""Tests for name similarity and normalization."""

from __future__ import annotations

import pytest

from employer_dedup.models.enums import MatchConfidence
from employer_dedup.resolution.normalize import normalize_employer_name
from employer_dedup.resolution.similarity import (
    confidence_level,
    levenshtein_distance,
    match_score,
    similarity,
    token_similarity,
)


class TestLevenshtein:
    """Classic edit distance."""

    @pytest.mark.parametrize(
        ("a", "b", "expected"),
        [
            ("", "", 0),
            ("abc", "", 3),
            ("", "abc", 3),
            ("kitten", "sitting", 3),
            ("flaw", "lawn", 2),
            ("ABC Pty Ltd", "ABC Pty Ltd.", 1),
        ],
    )
    def test_distance(self, a: str, b: str, expected: int) -> None:
        assert levenshtein_distance(a, b) == expected


class TestSimilarity:
    """similarity() = 1 - distance / max(len)."""

    @pytest.mark.parametrize("name", ["a", "ABC Pty Ltd", "Café & Sons"])
    def test_identical_strings_score_one(self, name: str) -> None:
        assert similarity(name, name) == 1.0

    def test_both_empty_is_identical(self) -> None:
        assert similarity("", "") == 1.0

    def test_one_empty_scores_zero(self) -> None:
        assert similarity("abc", "") == 0.0

    @pytest.mark.parametrize(
        ("a", "b"),
        [
            ("ABC Pty Ltd", "ABC Pty Ltd."),
            ("kitten", "sitting"),
            ("Smith Builders", "Smyth Building"),
            ("", "x"),
        ],
    )
    def test_symmetric(self, a: str, b: str) -> None:
        assert similarity(a, b) == similarity(b, a)

    def test_trailing_period(self) -> None:
        score = similarity("ABC Pty Ltd", "ABC Pty Ltd.")
        assert score == pytest.approx(1 - 1 / 12)
        assert score < 1.0

    def test_bounded(self) -> None:
        assert 0.0 <= similarity("completely", "different") <= 1.0


class TestNormalize:
    """Comparison keys for employer names."""

    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("ABC Pty Ltd", "abc"),
            ("A.B.C. Pty. Ltd.", "a b c"),
            ("Café & Sons P/L", "cafe and sons"),
            ("The Builders Co", "builders"),
            ("  Smith   Plumbing  ", "smith plumbing"),
            ("", ""),
        ],
    )
    def test_normalize(self, name: str, expected: str) -> None:
        assert normalize_employer_name(name) == expected

    def test_suffix_only_name_is_kept(self) -> None:
        assert normalize_employer_name("Limited") == "limited"


class TestMatchScore:
    """Composite score used when the store gives no score."""

    def test_equal_after_normalization(self) -> None:
        assert match_score("ABC Pty Ltd", "abc pty. ltd.") == 1.0

    def test_containment_floor(self) -> None:
        assert match_score("Smith Plumbing", "Smith Plumbing Services") >= 0.9

    def test_unrelated_is_low(self) -> None:
        assert confidence_level(match_score("Acme Scaffolding", "Zenith Electrical")) == (
            MatchConfidence.LOW
        )

    def test_token_similarity_ignores_short_tokens(self) -> None:
        assert token_similarity("AB CD", "AB CD") == 0.0
        assert token_similarity("Smith Plumbing", "Plumbing Smith") == 1.0


class TestConfidenceLevel:
    @pytest.mark.parametrize(
        ("score", "expected"),
        [
            (1.0, MatchConfidence.EXACT),
            (0.95, MatchConfidence.EXACT),
            (0.9, MatchConfidence.HIGH),
            (0.85, MatchConfidence.HIGH),
            (0.7, MatchConfidence.MEDIUM),
            (0.69, MatchConfidence.LOW),
        ],
    )
    def test_bands(self, score: float, expected: MatchConfidence) -> None:
        assert confidence_level(score) == expected
