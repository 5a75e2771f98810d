"""Merge executors.

MergeExecutor collapses duplicate canonical employers onto one primary. The
earliest-created employer in a group is the primary (ties broken by input
order). The store's merge RPC reassigns dependent rows from the duplicates.
Merges run one at a time; concurrent merges could race on the same rows.

PendingGroupMerger folds pending employers staged more than once into a
single pending row before any of them is imported.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from pydantic import ValidationError

from employer_dedup.errors import LookupFailed, StoreError
from employer_dedup.models.enums import ImportStatus
from employer_dedup.payloads import parse_payload
from employer_dedup.resolution.cancel import CancelToken, is_cancelled
from employer_dedup.resolution.normalize import normalize_employer_name

if TYPE_CHECKING:
    from employer_dedup.models.pending import PendingEmployer
    from employer_dedup.resolution.decisions import DecisionRecorder
    from employer_dedup.resolution.grouping import PendingDuplicateGroup
    from employer_dedup.store.base import CanonicalStore

logger = logging.getLogger(__name__)


@dataclass
class MergeGroup:
    """A set of duplicate employers with one designated primary."""

    primary_id: UUID
    duplicate_ids: list[UUID] = field(default_factory=list)
    merged: bool = False
    """True once the store accepted the merge."""

    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class MergeOutcome:
    """Result of merging one pending employer's exact-match group."""

    pending_id: UUID
    group: MergeGroup | None
    """None when the pending employer had fewer than two exact matches."""

    @property
    def ok(self) -> bool:
        return self.group is None or self.group.ok


@dataclass
class BulkMergeResult:
    """Aggregate result of a sequential bulk merge."""

    merged_count: int = 0
    outcomes: list[MergeOutcome] = field(default_factory=list)
    cancelled: bool = False

    @property
    def warnings(self) -> list[str]:
        return [o.group.error for o in self.outcomes if o.group is not None and o.group.error]


def _dedupe(ids: Sequence[UUID]) -> list[UUID]:
    seen: set[UUID] = set()
    ordered: list[UUID] = []
    for employer_id in ids:
        if employer_id not in seen:
            seen.add(employer_id)
            ordered.append(employer_id)
    return ordered


def choose_primary(ids: Sequence[UUID], created_at: dict[UUID, datetime]) -> UUID:
    """Earliest created_at wins; ids with no timestamp sort last; ties keep input order."""
    indexed = list(enumerate(ids))
    indexed.sort(
        key=lambda pair: (
            pair[1] not in created_at,
            created_at.get(pair[1]) or datetime.max,
            pair[0],
        )
    )
    return indexed[0][1]


class MergeExecutor:
    """Runs merges against the canonical store.

    Usage:
        executor = MergeExecutor(store)
        group = await executor.merge_group([id1, id2, id3])
        if not group.ok:
            print(group.error)
    """

    def __init__(self, store: CanonicalStore) -> None:
        self._store = store

    async def merge_group(self, candidate_ids: Sequence[UUID]) -> MergeGroup | None:
        """Merge a set of duplicate employers into the earliest-created one.

        Args:
            candidate_ids: Employers believed to be the same organisation.

        Returns:
            The MergeGroup, or None when no ids were given. A single id is its
            own primary and no merge is requested. Store failures are reported
            on MergeGroup.error, never raised.
        """
        ids = _dedupe(candidate_ids)
        if not ids:
            logger.debug("merge_group called with no ids")
            return None
        if len(ids) == 1:
            return MergeGroup(primary_id=ids[0])

        try:
            created_at = await self._store.get_created_at(ids)
        except LookupFailed as e:
            logger.warning("Could not read creation times, keeping input order: %s", e)
            created_at = {}

        primary_id = choose_primary(ids, created_at)
        duplicates = [i for i in ids if i != primary_id]
        group = MergeGroup(primary_id=primary_id, duplicate_ids=duplicates)

        try:
            await self._store.merge_employers(primary_id, duplicates)
        except StoreError as e:
            group.error = f"Merge into {primary_id} failed: {e}"
            logger.warning(group.error)
            return group

        group.merged = True
        logger.info("Merged %d duplicate(s) into %s", len(duplicates), primary_id)
        return group

    async def merge_for_detection(
        self, recorder: DecisionRecorder, pending_id: UUID
    ) -> MergeGroup | None:
        """Collapse one pending employer's duplicate group and update its decision.

        The group is the detection's merge_candidate_ids: its high-confidence
        duplicate group, or all exact matches when names did not cluster.

        A successful merge records merged_into(primary). A failed merge still
        points the decision at the intended primary with use_existing so the
        reviewer can carry on; the failure stays on the returned group.
        """
        detection = recorder.get(pending_id)
        group = await self.merge_group(detection.merge_candidate_ids)
        if group is None:
            return None

        if group.merged:
            recorder.record_merge(pending_id, group.primary_id)
        else:
            detection.merged_primary_id = group.primary_id
            recorder.use_existing(pending_id, group.primary_id)
        return group

    async def merge_batch(
        self,
        recorder: DecisionRecorder,
        pending_ids: Sequence[UUID],
        cancel: CancelToken | None = None,
    ) -> BulkMergeResult:
        """Merge the exact-match groups of several pending employers, one at a time.

        Items with fewer than two exact matches are reported with no group.
        """
        result = BulkMergeResult()
        for pending_id in pending_ids:
            if is_cancelled(cancel):
                result.cancelled = True
                logger.info("Bulk merge cancelled after %d item(s)", len(result.outcomes))
                break

            if len(recorder.get(pending_id).merge_candidate_ids) < 2:
                result.outcomes.append(MergeOutcome(pending_id=pending_id, group=None))
                continue

            group = await self.merge_for_detection(recorder, pending_id)
            result.outcomes.append(MergeOutcome(pending_id=pending_id, group=group))
            if group is not None and group.merged:
                result.merged_count += 1

        return result


# ── Pending-vs-pending merges ─────────────────────────────────────────────────

PENDING_MERGE_NOTE = "Merged into pending employer {name} ({id})"


@dataclass
class PendingMergeResult:
    """Result of folding one group of staged duplicates into its canonical row."""

    canonical_id: UUID
    merged_ids: list[UUID] = field(default_factory=list)
    aliases_added: list[str] = field(default_factory=list)
    projects_moved: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _payload_aliases(pending: PendingEmployer) -> list[str]:
    try:
        return list(parse_payload(pending.source, pending.raw).aliases)
    except ValidationError as e:
        logger.warning(
            "Ignoring aliases in invalid payload for %r: %d error(s)",
            pending.company_name,
            e.error_count(),
        )
        return []


def _association_key(association: dict[str, Any]) -> tuple[str, str]:
    return (str(association.get("project_id") or ""), str(association.get("csv_role") or ""))


class PendingGroupMerger:
    """Folds pending employers staged several times into one pending row.

    The canonical row keeps every member's name and payload aliases as
    aliases, so they become employer aliases at import, and takes over their
    project associations. Members are marked SKIPPED with a note naming the
    canonical row. Nothing is written to the canonical employer store.

    Usage:
        merger = PendingGroupMerger(store)
        groups = group_pending_duplicates(rows, threshold=70)
        results = await merger.merge_groups(groups, min_similarity=90)
    """

    def __init__(self, store: CanonicalStore) -> None:
        self._store = store

    async def merge_group(self, group: PendingDuplicateGroup) -> PendingMergeResult:
        """Fold one group's members into its canonical pending row.

        Imported members are left alone. Store failures are reported on
        PendingMergeResult.error and roll back the whole group.
        """
        canonical = group.canonical
        result = PendingMergeResult(canonical_id=canonical.id)
        if canonical.import_status == ImportStatus.IMPORTED:
            result.error = f"{canonical.company_name!r} is already imported"
            logger.warning("Not merging into %s: %s", canonical.id, result.error)
            return result

        members = [
            m.pending
            for m in group.members
            if m.pending.id != canonical.id and m.pending.import_status != ImportStatus.IMPORTED
        ]
        if not members:
            return result

        aliases = _payload_aliases(canonical)
        existing_alias_count = len(aliases)
        known = {normalize_employer_name(n) for n in [canonical.company_name, *aliases]}

        associations = list(canonical.project_associations or [])
        seen_projects = {_association_key(a) for a in associations}

        for member in members:
            for alias in [member.company_name, *_payload_aliases(member)]:
                key = normalize_employer_name(alias)
                if key and key not in known:
                    known.add(key)
                    aliases.append(alias)
            for association in member.project_associations or []:
                if _association_key(association) not in seen_projects:
                    seen_projects.add(_association_key(association))
                    associations.append(association)
                    result.projects_moved += 1

        raw = dict(canonical.raw or {})
        raw["aliases"] = aliases
        note = PENDING_MERGE_NOTE.format(name=canonical.company_name, id=canonical.id)

        try:
            async with self._store.item_scope():
                await self._store.update_pending_payload(
                    canonical.id, raw=raw, project_associations=associations
                )
                for member in members:
                    await self._store.update_pending(
                        member.id, status=ImportStatus.SKIPPED, notes=note
                    )
        except StoreError as e:
            result.error = f"Merging pending duplicates of {canonical.company_name!r} failed: {e}"
            result.projects_moved = 0
            logger.warning(result.error)
            return result

        canonical.raw = raw
        canonical.project_associations = associations
        for member in members:
            member.import_status = ImportStatus.SKIPPED
            member.import_notes = note
        result.merged_ids = [m.id for m in members]
        result.aliases_added = aliases[existing_alias_count:]
        logger.info(
            "Folded %d pending duplicate(s) into %r", len(members), canonical.company_name
        )
        return result

    async def merge_groups(
        self,
        groups: Sequence[PendingDuplicateGroup],
        *,
        min_similarity: float = 0.0,
        cancel: CancelToken | None = None,
    ) -> list[PendingMergeResult]:
        """Merge groups one at a time.

        Args:
            groups: Groups from group_pending_duplicates().
            min_similarity: Only groups whose least similar member reaches this
                (0-100) are merged. 90 is the auto-merge level.
            cancel: Checked before each group.

        Returns:
            One result per merged group, in input order.
        """
        results: list[PendingMergeResult] = []
        for group in groups:
            if is_cancelled(cancel):
                logger.info("Pending merge cancelled after %d group(s)", len(results))
                break
            if group.min_similarity < min_similarity:
                logger.debug(
                    "Leaving %r for review (min similarity %.1f)",
                    group.canonical_name,
                    group.min_similarity,
                )
                continue
            results.append(await self.merge_group(group))
        return results
