"""Tests for duplicate grouping."""

from __future__ import annotations

from uuid import uuid4

import pytest

from employer_dedup.models.enums import MatchType
from employer_dedup.records import CandidateMatch
from employer_dedup.resolution.grouping import (
    group_duplicate_candidates,
    group_pending_duplicates,
    names_look_duplicate,
)


def result(name: str, score: float = 90) -> CandidateMatch:
    return CandidateMatch(uuid4(), name, MatchType.FUZZY, score)


class TestNamesLookDuplicate:
    @pytest.mark.parametrize(
        ("a", "b", "expected"),
        [
            ("ABC Constructions Pty Ltd", "abc constructions", True),
            ("Smith Plumbing", "Smith Plumbing Services", True),
            ("Smyth Plumbing", "Smith Plumbing", True),
            ("ACME", "ACME Group Holdings", False),
            ("Acme Scaffolding", "Zenith Electrical", False),
            ("", "Anything", False),
        ],
    )
    def test_rules(self, a: str, b: str, expected: bool) -> None:
        assert names_look_duplicate(a, b) is expected


class TestGroupDuplicateCandidates:
    def test_groups_and_singletons(self) -> None:
        a1 = result("ABC Constructions Pty Ltd", 95)
        a2 = result("ABC Constructions", 85)
        other = result("Zenith Electrical", 70)

        groups = group_duplicate_candidates([a1, other, a2])

        assert [g.employer_ids for g in groups] == [
            [a1.employer_id, a2.employer_id],
            [other.employer_id],
        ]
        assert groups[0].score == pytest.approx(90)
        assert groups[0].is_high_confidence
        assert not groups[1].is_high_confidence

    def test_low_score_group_not_high_confidence(self) -> None:
        groups = group_duplicate_candidates(
            [result("Smith Plumbing", 60), result("Smith Plumbing Services", 70)]
        )

        assert len(groups) == 1
        assert not groups[0].is_high_confidence


class TestGroupPendingDuplicates:
    def test_greedy_first_seen(self, make_pending) -> None:
        first = make_pending("Smith Plumbing Pty Ltd")
        second = make_pending("Smith Plumbing")
        third = make_pending("Smyth Plumbing")
        unrelated = make_pending("Zenith Electrical")

        groups = group_pending_duplicates([first, unrelated, second, third])

        assert len(groups) == 1
        group = groups[0]
        assert group.canonical_id == first.id
        assert [m.pending.id for m in group.members] == [first.id, second.id, third.id]
        assert group.max_similarity == 100.0
        assert group.min_similarity == pytest.approx(92.9)

    def test_threshold(self, make_pending) -> None:
        rows = [make_pending("Smith Plumbing"), make_pending("Smyth Plumbing")]

        assert group_pending_duplicates(rows, threshold=95) == []
        assert len(group_pending_duplicates(rows, threshold=90)) == 1

    def test_no_groups_for_distinct_names(self, make_pending) -> None:
        rows = [make_pending("Acme Scaffolding"), make_pending("Zenith Electrical")]
        assert group_pending_duplicates(rows) == []
