"""Duplicate detection: one DuplicateDetection per pending employer."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from uuid import UUID

from pydantic import ValidationError

from employer_dedup.errors import LookupFailed
from employer_dedup.models.enums import DecisionKind, ImportStatus
from employer_dedup.payloads import parse_payload
from employer_dedup.records import AliasRecord, CandidateMatch
from employer_dedup.resolution.cancel import CancelToken, is_cancelled
from employer_dedup.resolution.grouping import CandidateGroup, group_duplicate_candidates
from employer_dedup.resolution.normalize import normalize_employer_name

if TYPE_CHECKING:
    from employer_dedup.models.pending import PendingEmployer
    from employer_dedup.resolution.candidates import CandidateFinder
    from employer_dedup.resolution.decisions import Decision
    from employer_dedup.store.base import CanonicalStore

logger = logging.getLogger(__name__)


@dataclass
class DuplicateDetection:
    """Everything the reviewer needs to decide one pending employer."""

    pending: PendingEmployer
    exact_matches: list[CandidateMatch] = field(default_factory=list)
    similar_matches: list[CandidateMatch] = field(default_factory=list)
    """Only populated when there are no exact matches."""

    matching_aliases: list[AliasRecord] = field(default_factory=list)
    """Aliases whose normalized form equals the pending name's."""

    decision: Decision | None = None
    merged_primary_id: UUID | None = None
    """Primary chosen by the merge executor for this item's exact group."""

    duplicate_groups: list[CandidateGroup] = field(default_factory=list)
    """Exact matches clustered by name, high-confidence groups first."""

    @property
    def pending_id(self) -> UUID:
        return self.pending.id

    @property
    def candidate_ids(self) -> set[UUID]:
        ids = {m.employer_id for m in self.exact_matches}
        ids.update(m.employer_id for m in self.similar_matches)
        if self.merged_primary_id is not None:
            ids.add(self.merged_primary_id)
        return ids

    @property
    def has_exact_match(self) -> bool:
        return bool(self.exact_matches)

    @property
    def merge_candidate_ids(self) -> list[UUID]:
        """Exact matches to collapse when this row is merged.

        The leading high-confidence duplicate group when there is one; exact
        matches outside it keep their own records. Otherwise every distinct
        exact match.
        """
        for group in self.duplicate_groups:
            if group.is_high_confidence:
                return group.employer_ids
        return list(dict.fromkeys(m.employer_id for m in self.exact_matches))

    @property
    def has_duplicate_group(self) -> bool:
        return any(g.is_high_confidence for g in self.duplicate_groups)

    @property
    def target_id(self) -> UUID | None:
        """Employer the pending row will attach to, if one is known yet.

        The recorded decision wins. Without one, the best exact match is assumed.
        """
        if self.decision is not None and self.decision.kind in (
            DecisionKind.USE_EXISTING,
            DecisionKind.MERGED_INTO,
        ):
            return self.decision.target_id
        if self.decision is not None and self.decision.kind == DecisionKind.CREATE_NEW:
            return None
        if self.merged_primary_id is not None:
            return self.merged_primary_id
        if self.exact_matches:
            return self.exact_matches[0].employer_id
        return None

    @property
    def alias_conflicts(self) -> list[AliasRecord]:
        """Matching aliases owned by an employer other than the target."""
        target = self.target_id
        return [a for a in self.matching_aliases if a.employer_id != target]


class DuplicateDetector:
    """Builds DuplicateDetection results for pending employers.

    Usage:
        detector = DuplicateDetector(CandidateFinder(store), store)
        detections = await detector.detect_batch(pending_rows)
    """

    def __init__(
        self,
        finder: CandidateFinder,
        store: CanonicalStore,
        *,
        group_similarity: float = 0.85,
        group_min_substring: int = 5,
    ) -> None:
        """Initialize the detector.

        Args:
            finder: Candidate finder over the canonical store.
            store: Canonical store, for alias lookups.
            group_similarity: Name similarity (0-1) at which two exact matches
                are taken to be the same organisation.
            group_min_substring: Shorter name must be longer than this for
                containment to count as a duplicate.
        """
        self._finder = finder
        self._store = store
        self._group_similarity = group_similarity
        self._group_min_substring = group_min_substring

    async def detect(self, pending: PendingEmployer) -> DuplicateDetection:
        """Find exact and similar candidates and matching aliases for one row."""
        external_id: str | None = None
        alias_hints: list[str] = []
        try:
            payload = parse_payload(pending.source, pending.raw)
            external_id = payload.external_id
            alias_hints = payload.aliases
        except ValidationError as e:
            logger.warning(
                "Ignoring invalid payload for %r during detection: %s",
                pending.company_name,
                e.error_count(),
            )

        candidates = await self._finder.find_partitioned(
            pending.company_name, external_id, alias_hints
        )
        detection = DuplicateDetection(
            pending=pending,
            exact_matches=candidates.exact,
            similar_matches=[] if candidates.exact else candidates.similar,
            matching_aliases=await self._matching_aliases(pending.company_name),
        )
        if len({m.employer_id for m in detection.exact_matches}) >= 2:
            detection.duplicate_groups = group_duplicate_candidates(
                detection.exact_matches,
                similarity_threshold=self._group_similarity,
                min_substring=self._group_min_substring,
                high_score=self._finder.high_threshold,
            )

        if detection.alias_conflicts:
            logger.info(
                "%r matches %d alias(es) on other employers",
                pending.company_name,
                len(detection.alias_conflicts),
            )
        return detection

    async def detect_batch(
        self,
        pendings: Sequence[PendingEmployer],
        cancel: CancelToken | None = None,
    ) -> list[DuplicateDetection]:
        """Detect sequentially, one pending employer at a time.

        Rows already IMPORTED are tracked with an empty detection and no search,
        so a later commit can count them as already processed.
        """
        detections: list[DuplicateDetection] = []
        for pending in pendings:
            if is_cancelled(cancel):
                logger.info("Detection cancelled after %d item(s)", len(detections))
                break
            if pending.import_status == ImportStatus.IMPORTED:
                logger.debug("Not searching for imported pending employer %s", pending.id)
                detections.append(DuplicateDetection(pending=pending))
                continue
            detections.append(await self.detect(pending))
        return detections

    async def _matching_aliases(self, name: str) -> list[AliasRecord]:
        normalized = normalize_employer_name(name)
        if not normalized:
            return []
        try:
            return await self._store.find_aliases_by_normalized(normalized)
        except LookupFailed as e:
            logger.error("Alias lookup for %r failed: %s", name, e)
            return []
