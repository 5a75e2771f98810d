"""Candidate finder: canonical employers that may match a pending name.

Lookup order:
1. External id (authoritative). Any hit short-circuits the search.
2. Alias-aware ranked search on the name. Rows scoring at or above the high
   threshold are exact-equivalent; rows in [medium, high) are similar.
3. If nothing matched, the same search for each alias hint. Only rows that
   clear the high threshold are kept, and only for employers not seen yet.

Scores are on the 0-100 scale the store reports. Ties keep first-seen order.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from employer_dedup.errors import LookupFailed
from employer_dedup.models.enums import MatchType
from employer_dedup.records import CandidateMatch

if TYPE_CHECKING:
    from employer_dedup.store.base import CanonicalStore

logger = logging.getLogger(__name__)

EXTERNAL_ID_SCORE = 100.0


@dataclass
class CandidateSet:
    """Candidates for one name, split by confidence band."""

    exact: list[CandidateMatch] = field(default_factory=list)
    """Score >= high threshold, or an external-id hit."""

    similar: list[CandidateMatch] = field(default_factory=list)
    """Score in [medium, high). Needs human judgment."""

    @property
    def all(self) -> list[CandidateMatch]:
        return [*self.exact, *self.similar]

    @property
    def is_empty(self) -> bool:
        return not self.exact and not self.similar


def rank_candidates(matches: Iterable[CandidateMatch]) -> list[CandidateMatch]:
    """Drop repeat employer ids (first seen wins) and sort by score, descending.

    Equal scores keep their input order.
    """
    seen: set = set()
    unique: list[CandidateMatch] = []
    for match in matches:
        if match.employer_id in seen:
            continue
        seen.add(match.employer_id)
        unique.append(match)

    indexed = list(enumerate(unique))
    indexed.sort(key=lambda pair: (-pair[1].score, pair[0]))
    return [match for _, match in indexed]


class CandidateFinder:
    """Finds canonical employers that may be the same as a pending employer.

    Usage:
        finder = CandidateFinder(store, high_threshold=80, medium_threshold=60)
        candidates = await finder.find_partitioned("ABC Pty Ltd", external_id="INC-42")

    Read-only against the store. A failed lookup is logged and treated as
    "no candidates" so one bad search never aborts a batch.
    """

    def __init__(
        self,
        store: CanonicalStore,
        *,
        high_threshold: float = 80.0,
        medium_threshold: float = 60.0,
        similar_limit: int = 10,
        search_limit: int = 40,
    ) -> None:
        """Initialize the finder.

        Args:
            store: Canonical store to query.
            high_threshold: Minimum score (0-100) for an exact-equivalent match.
            medium_threshold: Minimum score (0-100) for a similar match.
            similar_limit: Maximum similar matches returned per name.
            search_limit: Rows requested from each store search.
        """
        if medium_threshold > high_threshold:
            raise ValueError("medium_threshold must not exceed high_threshold")
        self._store = store
        self.high_threshold = high_threshold
        self.medium_threshold = medium_threshold
        self._similar_limit = similar_limit
        self._search_limit = search_limit

    async def find_candidates(
        self,
        name: str,
        external_id: str | None = None,
        alias_hints: Sequence[str] | None = None,
    ) -> list[CandidateMatch]:
        """Return exact-equivalent matches followed by similar matches."""
        result = await self.find_partitioned(name, external_id, alias_hints)
        return result.all

    async def find_partitioned(
        self,
        name: str,
        external_id: str | None = None,
        alias_hints: Sequence[str] | None = None,
    ) -> CandidateSet:
        """Find candidates for a name, keeping the exact/similar split.

        Args:
            name: Pending employer name. Blank names yield no candidates.
            external_id: External-system id. Authoritative when it matches.
            alias_hints: Other names for the employer, searched only as a fallback.

        Returns:
            CandidateSet with both bands ranked by score.
        """
        name = (name or "").strip()
        if not name:
            return CandidateSet()

        if external_id:
            by_id = await self._lookup_external_id(external_id.strip())
            if by_id:
                return CandidateSet(exact=by_id)

        rows = await self._search(name)
        exact = [r for r in rows if r.score >= self.high_threshold]
        similar = [r for r in rows if self.medium_threshold <= r.score < self.high_threshold]

        exact = rank_candidates(exact)
        exact_ids = {m.employer_id for m in exact}
        similar = [m for m in rank_candidates(similar) if m.employer_id not in exact_ids]
        similar = similar[: self._similar_limit]

        if not exact and not similar:
            exact = await self._search_alias_hints(name, alias_hints or ())

        return CandidateSet(exact=exact, similar=similar)

    async def _lookup_external_id(self, external_id: str) -> list[CandidateMatch]:
        try:
            employers = await self._store.find_by_external_id(external_id)
        except LookupFailed as e:
            logger.error("External id lookup for %r failed: %s", external_id, e)
            return []

        return rank_candidates(
            CandidateMatch(
                employer_id=e.id,
                name=e.name,
                match_type=MatchType.EXTERNAL_ID,
                score=EXTERNAL_ID_SCORE,
                address=e.address,
            )
            for e in employers
        )

    async def _search(self, query: str) -> list[CandidateMatch]:
        try:
            return await self._store.search(query, limit=self._search_limit)
        except LookupFailed as e:
            logger.error("Candidate search for %r failed: %s", query, e)
            return []

    async def _search_alias_hints(
        self, name: str, alias_hints: Iterable[str]
    ) -> list[CandidateMatch]:
        found: list[CandidateMatch] = []
        seen: set = set()
        for hint in alias_hints:
            hint = (hint or "").strip()
            if not hint or hint.lower() == name.lower():
                continue
            for row in await self._search(hint):
                if row.score < self.high_threshold or row.employer_id in seen:
                    continue
                seen.add(row.employer_id)
                found.append(row)
        if found:
            logger.debug("Alias hints found %d candidate(s) for %r", len(found), name)
        return rank_candidates(found)


@dataclass
class MatchingStatistics:
    """Summary of candidate search results over a batch."""

    total: int
    by_type: dict[MatchType, int]
    no_match: int

    @property
    def matched(self) -> int:
        return self.total - self.no_match

    @property
    def match_rate(self) -> float:
        """Percentage of names with at least one candidate."""
        if self.total == 0:
            return 0.0
        return round(self.matched / self.total * 100, 1)


def matching_statistics(results: Sequence[CandidateSet]) -> MatchingStatistics:
    """Count how each name in a batch was matched, by its best candidate."""
    by_type: Counter[MatchType] = Counter()
    no_match = 0
    for result in results:
        best = result.all[0] if not result.is_empty else None
        if best is None:
            no_match += 1
        else:
            by_type[best.match_type] += 1
    return MatchingStatistics(total=len(results), by_type=dict(by_type), no_match=no_match)
