"""Read and write duplicate review YAML files.

`employer-dedup detect --out review.yaml` writes one entry per pending employer
with its candidates and conflicting aliases. The reviewer edits each entry's
action (and target), then `employer-dedup commit review.yaml` applies it.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Literal
from uuid import UUID

import yaml
from pydantic import BaseModel, Field

from employer_dedup.models.enums import AliasAction, MatchConfidence
from employer_dedup.records import CandidateMatch
from employer_dedup.resolution.detection import DuplicateDetection
from employer_dedup.resolution.similarity import confidence_level

logger = logging.getLogger(__name__)

ReviewAction = Literal["undecided", "use_existing", "create_new", "merge", "skip"]


class ReviewCandidate(BaseModel):
    employer_id: UUID
    name: str
    match_type: str
    score: float
    confidence: MatchConfidence = MatchConfidence.LOW
    address: str = ""


class ReviewAlias(BaseModel):
    alias_id: UUID
    alias: str
    employer_id: UUID
    employer_name: str | None = None


class ReviewEntry(BaseModel):
    """One pending employer and the reviewer's choice for it."""

    pending_id: UUID
    pending_name: str
    action: ReviewAction = "undecided"
    target_id: UUID | None = None
    """Employer to use, for use_existing."""

    alias_action: AliasAction = AliasAction.KEEP_AS_ALIAS
    alias_id: UUID | None = None
    trade_type: str | None = None
    """Overrides the inferred trade for subcontractors."""

    exact_matches: list[ReviewCandidate] = Field(default_factory=list)
    duplicate_group: list[UUID] = Field(default_factory=list)
    """Exact matches that look like one organisation; what `merge` collapses."""

    similar_matches: list[ReviewCandidate] = Field(default_factory=list)
    conflicting_aliases: list[ReviewAlias] = Field(default_factory=list)


class ReviewFile(BaseModel):
    """Top-level model for a review YAML file."""

    entries: list[ReviewEntry] = Field(default_factory=list)

    @property
    def decided(self) -> list[ReviewEntry]:
        return [e for e in self.entries if e.action != "undecided"]


def _candidates(matches: Sequence[CandidateMatch]) -> list[ReviewCandidate]:
    return [
        ReviewCandidate(
            employer_id=m.employer_id,
            name=m.name,
            match_type=m.match_type.value,
            score=round(m.score, 1),
            confidence=confidence_level(m.score / 100.0),
            address=m.address,
        )
        for m in matches
    ]


def build_review_file(detections: Sequence[DuplicateDetection]) -> ReviewFile:
    """Turn detection results into an editable review file.

    Entries with exactly one exact match are pre-filled as use_existing.
    Entries whose exact matches cluster into a high-confidence duplicate group
    are pre-filled as merge. Several exact matches with unrelated names, and
    everything else, are left undecided.
    """
    entries: list[ReviewEntry] = []
    for detection in detections:
        entry = ReviewEntry(
            pending_id=detection.pending_id,
            pending_name=detection.pending.company_name,
            exact_matches=_candidates(detection.exact_matches),
            similar_matches=_candidates(detection.similar_matches),
            conflicting_aliases=[
                ReviewAlias(
                    alias_id=a.id,
                    alias=a.alias,
                    employer_id=a.employer_id,
                    employer_name=a.employer_name,
                )
                for a in detection.alias_conflicts
            ],
        )
        exact_ids = {m.employer_id for m in detection.exact_matches}
        if detection.has_duplicate_group:
            entry.duplicate_group = detection.merge_candidate_ids
            entry.action = "merge"
        elif len(exact_ids) == 1:
            entry.action = "use_existing"
            entry.target_id = detection.exact_matches[0].employer_id
        entries.append(entry)
    return ReviewFile(entries=entries)


def write_review_file(review_file: ReviewFile, path: Path) -> None:
    """Write a review file to YAML."""
    path.parent.mkdir(parents=True, exist_ok=True)
    data = review_file.model_dump(mode="json")
    with open(path, "w") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)
    logger.info("Wrote %d review entries to %s", len(review_file.entries), path)


def read_review_file(path: Path) -> ReviewFile:
    """Read a review file from YAML (JSON is valid YAML too)."""
    if not path.exists():
        return ReviewFile()
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return ReviewFile()
    return ReviewFile.model_validate(data)
