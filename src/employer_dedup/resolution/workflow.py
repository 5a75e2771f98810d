"""Orchestration of the duplicate review workflow.

    recorder = await detect_duplicates(detector, pending_rows)
    plan = record_review(recorder, read_review_file(path))
    result = await apply_decisions(
        recorder, merger=merger, committer=committer,
        merge_ids=plan.merge_ids, skip_ids=plan.skip_ids,
    )

Callers (CLI, HTTP app) own the store, the session and the decision input.
Nothing here reads configuration.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from uuid import UUID

from employer_dedup.errors import InvalidDecision
from employer_dedup.models.enums import AliasAction, ImportStatus
from employer_dedup.resolution.cancel import CancelToken, is_cancelled
from employer_dedup.resolution.committer import ImportResult
from employer_dedup.resolution.decisions import DecisionRecorder
from employer_dedup.resolution.merge import BulkMergeResult

if TYPE_CHECKING:
    from employer_dedup.models.pending import PendingEmployer
    from employer_dedup.resolution.committer import ImportCommitter
    from employer_dedup.resolution.detection import DuplicateDetector
    from employer_dedup.resolution.merge import MergeExecutor
    from employer_dedup.resolution.review_file import ReviewFile

logger = logging.getLogger(__name__)


@dataclass
class ReviewPlan:
    """What a review file asks for beyond the per-item decisions."""

    merge_ids: list[UUID] = field(default_factory=list)
    skip_ids: set[UUID] = field(default_factory=set)
    trade_overrides: dict[UUID, str] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)


@dataclass
class WorkflowResult:
    merges: BulkMergeResult
    commit: ImportResult
    reset_decisions: list[UUID] = field(default_factory=list)
    """Pending ids whose decision no longer applied after re-detection."""

    @property
    def warnings(self) -> list[str]:
        return [*self.merges.warnings, *self.commit.warnings]


async def detect_duplicates(
    detector: DuplicateDetector,
    pendings: Sequence[PendingEmployer],
    *,
    cancel: CancelToken | None = None,
) -> DecisionRecorder:
    """Run detection over pending employers and start a decision session."""
    detections = await detector.detect_batch(pendings, cancel)
    logger.info("Detected candidates for %d pending employer(s)", len(detections))
    return DecisionRecorder(detections)


def record_review(recorder: DecisionRecorder, review_file: ReviewFile) -> ReviewPlan:
    """Record the decisions from an edited review file.

    Entries that cannot be applied (unknown pending id, target that was never
    offered) are reported on ReviewPlan.errors and left unresolved.
    """
    plan = ReviewPlan()
    for entry in review_file.entries:
        try:
            detection = recorder.get(entry.pending_id)
            if detection.pending.import_status == ImportStatus.IMPORTED:
                logger.debug("Review entry for imported %r ignored", entry.pending_name)
                continue
            if entry.action == "use_existing":
                if entry.target_id is None:
                    raise InvalidDecision(f"{entry.pending_name!r}: use_existing needs a target_id")
                recorder.use_existing(entry.pending_id, entry.target_id)
            elif entry.action == "create_new":
                recorder.create_new(entry.pending_id)
            elif entry.action == "merge":
                plan.merge_ids.append(entry.pending_id)
            elif entry.action == "skip":
                plan.skip_ids.add(entry.pending_id)

            if entry.alias_action != AliasAction.KEEP_AS_ALIAS:
                recorder.set_alias_action(entry.pending_id, entry.alias_action, entry.alias_id)
        except InvalidDecision as e:
            logger.warning("Review entry not applied: %s", e)
            plan.errors.append(str(e))
            continue

        if entry.trade_type:
            plan.trade_overrides[entry.pending_id] = entry.trade_type
    return plan


async def apply_decisions(
    recorder: DecisionRecorder,
    *,
    merger: MergeExecutor,
    committer: ImportCommitter,
    merge_ids: Sequence[UUID] = (),
    skip_ids: Collection[UUID] = (),
    detector: DuplicateDetector | None = None,
    cancel: CancelToken | None = None,
) -> WorkflowResult:
    """Merge flagged duplicate groups, then commit every tracked pending employer.

    Args:
        recorder: Decision session from detect_duplicates().
        merger: Executes the bulk merge for merge_ids.
        committer: Applies the final decisions.
        merge_ids: Pending ids whose exact-match groups should be collapsed first.
        skip_ids: Pending ids to mark as skipped.
        detector: When given, detection is re-run after merges so candidate
            lists reflect the merged store. Decisions that still apply survive.
        cancel: Checked before each merge and each commit item.
    """
    merges = await merger.merge_batch(recorder, merge_ids, cancel)

    reset: list[UUID] = []
    if detector is not None and merges.merged_count and not is_cancelled(cancel):
        fresh = await detector.detect_batch(recorder.pendings(), cancel)
        reset = recorder.refresh(fresh)
        if reset:
            logger.warning("%d decision(s) reset after re-detection", len(reset))

    commit = await committer.commit(
        recorder.pendings(), recorder.decisions(), skip_ids=skip_ids, cancel=cancel
    )
    return WorkflowResult(merges=merges, commit=commit, reset_decisions=reset)
