"""Grouping of likely duplicates, for bulk review.

Two helpers:
- group_duplicate_candidates(): clusters search results that look like the
  same organisation, so they can be handed to the merge executor together.
- group_pending_duplicates(): clusters pending employers staged more than once
  (e.g., the same subcontractor on several imported projects).

Both are greedy and first-seen: an item joins the first group whose seed it
matches, and input order decides which item seeds a group.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from uuid import UUID

from employer_dedup.records import CandidateMatch
from employer_dedup.resolution.normalize import normalize_employer_name
from employer_dedup.resolution.similarity import similarity

if TYPE_CHECKING:
    from employer_dedup.models.pending import PendingEmployer


@dataclass
class CandidateGroup:
    """Search results that appear to be one organisation."""

    members: list[CandidateMatch]
    high_score: float = 80.0

    @property
    def employer_ids(self) -> list[UUID]:
        return [m.employer_id for m in self.members]

    @property
    def score(self) -> float:
        """Mean search score of the members."""
        if not self.members:
            return 0.0
        return sum(m.score for m in self.members) / len(self.members)

    @property
    def is_high_confidence(self) -> bool:
        return len(self.members) >= 2 and self.score >= self.high_score


def names_look_duplicate(
    a: str,
    b: str,
    *,
    similarity_threshold: float = 0.85,
    min_substring: int = 5,
) -> bool:
    """True when two employer names probably refer to the same organisation.

    Matches on equal normalized names, containment when the shorter name is
    longer than min_substring, or similarity at or above similarity_threshold.
    """
    left = normalize_employer_name(a)
    right = normalize_employer_name(b)
    if not left or not right:
        return False
    if left == right:
        return True
    shorter, longer = sorted((left, right), key=len)
    if len(shorter) > min_substring and shorter in longer:
        return True
    return similarity(left, right) >= similarity_threshold


def group_duplicate_candidates(
    matches: Sequence[CandidateMatch],
    *,
    similarity_threshold: float = 0.85,
    min_substring: int = 5,
    high_score: float = 80.0,
) -> list[CandidateGroup]:
    """Cluster search results whose names look like the same employer.

    Every match ends up in exactly one group; singletons are included.
    """
    groups: list[CandidateGroup] = []
    assigned: set[UUID] = set()

    for i, seed in enumerate(matches):
        if seed.employer_id in assigned:
            continue
        assigned.add(seed.employer_id)
        group = CandidateGroup(members=[seed], high_score=high_score)
        for other in matches[i + 1 :]:
            if other.employer_id in assigned:
                continue
            if names_look_duplicate(
                seed.name,
                other.name,
                similarity_threshold=similarity_threshold,
                min_substring=min_substring,
            ):
                assigned.add(other.employer_id)
                group.members.append(other)
        groups.append(group)

    groups.sort(key=lambda g: (not g.is_high_confidence, -g.score))
    return groups


@dataclass
class PendingDuplicateMember:
    pending: PendingEmployer
    similarity: float
    """Similarity to the group's canonical member, 0-100."""


@dataclass
class PendingDuplicateGroup:
    """Pending employers that look like one organisation staged several times."""

    canonical: PendingEmployer
    members: list[PendingDuplicateMember] = field(default_factory=list)

    @property
    def canonical_id(self) -> UUID:
        return self.canonical.id

    @property
    def canonical_name(self) -> str:
        return self.canonical.company_name

    @property
    def member_count(self) -> int:
        return len(self.members)

    @property
    def min_similarity(self) -> float:
        """Lowest similarity among non-canonical members."""
        return min((m.similarity for m in self.members[1:]), default=100.0)

    @property
    def max_similarity(self) -> float:
        return max((m.similarity for m in self.members[1:]), default=100.0)


def group_pending_duplicates(
    pendings: Sequence[PendingEmployer],
    *,
    threshold: float = 70.0,
) -> list[PendingDuplicateGroup]:
    """Cluster pending employers with similar normalized names.

    Args:
        pendings: Pending employers, typically everything not yet imported.
        threshold: Minimum similarity (0-100) to the group's canonical member.

    Returns:
        Groups with at least two members, the canonical member included with
        similarity 100. Largest groups first.
    """
    keys = [normalize_employer_name(p.company_name) for p in pendings]
    assigned = [False] * len(pendings)
    groups: list[PendingDuplicateGroup] = []

    for i, seed in enumerate(pendings):
        if assigned[i] or not keys[i]:
            continue
        assigned[i] = True
        group = PendingDuplicateGroup(
            canonical=seed, members=[PendingDuplicateMember(pending=seed, similarity=100.0)]
        )
        for j in range(i + 1, len(pendings)):
            if assigned[j] or not keys[j]:
                continue
            score = round(similarity(keys[i], keys[j]) * 100, 1)
            if score >= threshold:
                assigned[j] = True
                group.members.append(PendingDuplicateMember(pending=pendings[j], similarity=score))
        if group.member_count >= 2:
            groups.append(group)

    groups.sort(key=lambda g: -g.member_count)
    return groups
