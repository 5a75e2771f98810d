"""Per-pending-employer decisions, revisable until commit.

States: unresolved, use_existing(target), create_new, merged_into(target).
merged_into is only entered through record_merge(), which the merge executor
calls after collapsing an exact-match group. Every manual call replaces the
previous decision.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING
from uuid import UUID

from employer_dedup.errors import InvalidDecision
from employer_dedup.models.enums import AliasAction, DecisionKind, ImportStatus

if TYPE_CHECKING:
    from employer_dedup.models.pending import PendingEmployer
    from employer_dedup.resolution.detection import DuplicateDetection

logger = logging.getLogger(__name__)

# import_status mirrored onto the pending row for each decision kind
_STATUS_FOR_KIND = {
    DecisionKind.UNRESOLVED: ImportStatus.UNSET,
    DecisionKind.USE_EXISTING: ImportStatus.MATCHED,
    DecisionKind.MERGED_INTO: ImportStatus.MATCHED,
    DecisionKind.CREATE_NEW: ImportStatus.CREATE_NEW,
}


@dataclass(frozen=True)
class Decision:
    """A reviewer's decision for one pending employer."""

    kind: DecisionKind = DecisionKind.UNRESOLVED
    target_id: UUID | None = None
    alias_action: AliasAction = AliasAction.KEEP_AS_ALIAS
    alias_id: UUID | None = None
    """Alias to merge into, for MERGE_INTO_EXISTING_ALIAS."""

    @classmethod
    def unresolved(cls) -> Decision:
        return cls()

    @classmethod
    def use_existing(cls, target_id: UUID) -> Decision:
        return cls(kind=DecisionKind.USE_EXISTING, target_id=target_id)

    @classmethod
    def create_new(cls) -> Decision:
        return cls(kind=DecisionKind.CREATE_NEW)

    @classmethod
    def merged_into(cls, target_id: UUID) -> Decision:
        return cls(kind=DecisionKind.MERGED_INTO, target_id=target_id)

    @property
    def uses_existing(self) -> bool:
        return self.kind in (DecisionKind.USE_EXISTING, DecisionKind.MERGED_INTO)


class DecisionRecorder:
    """Holds the in-progress decision map for one review session.

    Usage:
        recorder = DecisionRecorder(detections)
        recorder.use_existing(pending.id, candidate.employer_id)
        recorder.set_alias_action(pending.id, AliasAction.PROMOTE_TO_CANONICAL)
        result = await committer.commit(recorder.pendings(), recorder.decisions())

    Single writer: the orchestrating flow owns this object.
    """

    def __init__(self, detections: Iterable[DuplicateDetection] = ()) -> None:
        self._detections: dict[UUID, DuplicateDetection] = {}
        for detection in detections:
            self._track(detection)

    def _track(self, detection: DuplicateDetection) -> None:
        if detection.decision is None:
            detection.decision = Decision.unresolved()
        self._detections[detection.pending_id] = detection

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get(self, pending_id: UUID) -> DuplicateDetection:
        try:
            return self._detections[pending_id]
        except KeyError:
            raise InvalidDecision(f"Unknown pending employer {pending_id}") from None

    def decision(self, pending_id: UUID) -> Decision:
        detection = self.get(pending_id)
        return detection.decision or Decision.unresolved()

    def decisions(self) -> dict[UUID, Decision]:
        return {pid: self.decision(pid) for pid in self._detections}

    def detections(self) -> list[DuplicateDetection]:
        return list(self._detections.values())

    def pendings(self) -> list[PendingEmployer]:
        return [d.pending for d in self._detections.values()]

    # -------------------------------------------------------------------------
    # Manual decisions
    # -------------------------------------------------------------------------

    def use_existing(self, pending_id: UUID, target_id: UUID) -> Decision:
        """Attach the pending employer to one of its surfaced candidates.

        Raises:
            InvalidDecision: If target_id was not offered for this pending employer.
        """
        detection = self.get(pending_id)
        if target_id not in detection.candidate_ids:
            raise InvalidDecision(
                f"{target_id} is not a candidate for {detection.pending.company_name!r}"
            )
        current = self.decision(pending_id)
        return self._set(
            detection,
            replace(current, kind=DecisionKind.USE_EXISTING, target_id=target_id),
        )

    def create_new(self, pending_id: UUID) -> Decision:
        """Reject all candidates; a new employer will be created at commit."""
        detection = self.get(pending_id)
        current = self.decision(pending_id)
        return self._set(
            detection, replace(current, kind=DecisionKind.CREATE_NEW, target_id=None)
        )

    def reset(self, pending_id: UUID) -> Decision:
        """Discard the decision, including the alias sub-decision."""
        return self._set(self.get(pending_id), Decision.unresolved())

    def set_alias_action(
        self, pending_id: UUID, action: AliasAction, alias_id: UUID | None = None
    ) -> Decision:
        """Choose what happens to the pending name on the target employer.

        Raises:
            InvalidDecision: If merging into an alias that was not surfaced.
        """
        detection = self.get(pending_id)
        if action == AliasAction.MERGE_INTO_EXISTING_ALIAS:
            known = {a.id for a in detection.matching_aliases}
            if alias_id is None or alias_id not in known:
                raise InvalidDecision(
                    f"Alias {alias_id} was not surfaced for {detection.pending.company_name!r}"
                )
        else:
            alias_id = None
        current = self.decision(pending_id)
        return self._set(detection, replace(current, alias_action=action, alias_id=alias_id))

    # -------------------------------------------------------------------------
    # Merge executor hook
    # -------------------------------------------------------------------------

    def record_merge(self, pending_id: UUID, primary_id: UUID) -> Decision:
        """Point the decision at the primary of a collapsed duplicate group."""
        detection = self.get(pending_id)
        detection.merged_primary_id = primary_id
        current = self.decision(pending_id)
        return self._set(
            detection, replace(current, kind=DecisionKind.MERGED_INTO, target_id=primary_id)
        )

    # -------------------------------------------------------------------------
    # Re-detection
    # -------------------------------------------------------------------------

    def refresh(self, detections: Iterable[DuplicateDetection]) -> list[UUID]:
        """Swap in fresh detection results, keeping decisions that still apply.

        A prior decision survives when its target is still offered by the new
        detection (merged primaries always survive). Decisions that no longer
        apply are reset and their pending ids returned.

        Returns:
            Pending ids whose decision was reset.
        """
        reset: list[UUID] = []
        for fresh in detections:
            previous = self._detections.get(fresh.pending_id)
            prior = previous.decision if previous is not None else None
            fresh.decision = None
            if previous is not None and previous.merged_primary_id is not None:
                fresh.merged_primary_id = previous.merged_primary_id
            self._track(fresh)

            if prior is None or prior.kind == DecisionKind.UNRESOLVED:
                continue
            if prior.target_id is not None and prior.target_id not in fresh.candidate_ids:
                logger.warning(
                    "Decision for %r reset: target %s no longer offered",
                    fresh.pending.company_name,
                    prior.target_id,
                )
                self._set(fresh, Decision.unresolved())
                reset.append(fresh.pending_id)
                continue
            if prior.alias_id is not None and prior.alias_id not in {
                a.id for a in fresh.matching_aliases
            }:
                prior = replace(prior, alias_action=AliasAction.KEEP_AS_ALIAS, alias_id=None)
            self._set(fresh, prior)
        return reset

    def _set(self, detection: DuplicateDetection, decision: Decision) -> Decision:
        pending = detection.pending
        if pending.import_status == ImportStatus.IMPORTED:
            raise InvalidDecision(f"{pending.company_name!r} is already imported")
        detection.decision = decision
        pending.import_status = _STATUS_FOR_KIND[decision.kind]
        logger.debug("Decision for %r: %s", pending.company_name, decision.kind.value)
        return decision
