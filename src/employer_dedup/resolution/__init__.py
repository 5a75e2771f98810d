"""Duplicate detection and resolution for pending employers.

This package implements the review workflow:
- normalize: employer name comparison keys
- similarity: Levenshtein similarity and composite match scores
- candidates: candidate finder over the canonical store
- detection: per-pending-employer duplicate detection
- decisions: decision recorder (use existing, create new, merged)
- merge: merge executors for duplicate employer and pending groups
- committer: import committer applying decisions
- grouping: clustering of duplicate candidates and pending rows
- workflow: orchestration of the above
"""

from employer_dedup.resolution.cancel import CancelToken
from employer_dedup.resolution.candidates import (
    CandidateFinder,
    CandidateSet,
    MatchingStatistics,
    matching_statistics,
)
from employer_dedup.resolution.committer import ImportCommitter, ImportResult, ItemOutcome
from employer_dedup.resolution.decisions import Decision, DecisionRecorder
from employer_dedup.resolution.detection import DuplicateDetection, DuplicateDetector
from employer_dedup.resolution.grouping import (
    CandidateGroup,
    PendingDuplicateGroup,
    group_duplicate_candidates,
    group_pending_duplicates,
)
from employer_dedup.resolution.merge import (
    BulkMergeResult,
    MergeExecutor,
    MergeGroup,
    PendingGroupMerger,
    PendingMergeResult,
)
from employer_dedup.resolution.normalize import normalize_employer_name
from employer_dedup.resolution.similarity import match_score, similarity
from employer_dedup.resolution.workflow import (
    WorkflowResult,
    apply_decisions,
    detect_duplicates,
    record_review,
)

__all__ = [
    "BulkMergeResult",
    "CancelToken",
    "CandidateFinder",
    "CandidateGroup",
    "CandidateSet",
    "Decision",
    "DecisionRecorder",
    "DuplicateDetection",
    "DuplicateDetector",
    "ImportCommitter",
    "ImportResult",
    "ItemOutcome",
    "MatchingStatistics",
    "MergeExecutor",
    "MergeGroup",
    "PendingDuplicateGroup",
    "PendingGroupMerger",
    "PendingMergeResult",
    "WorkflowResult",
    "apply_decisions",
    "detect_duplicates",
    "group_duplicate_candidates",
    "group_pending_duplicates",
    "match_score",
    "matching_statistics",
    "normalize_employer_name",
    "record_review",
    "similarity",
]
