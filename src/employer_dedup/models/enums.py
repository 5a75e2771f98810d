"""Enumerations for the employer data model."""

from enum import Enum


class EmployerRole(str, Enum):
    """Role a pending employer plays on the projects it was imported from."""

    BUILDER = "builder"
    HEAD_CONTRACTOR = "head_contractor"
    SUBCONTRACTOR = "subcontractor"


class ImportStatus(str, Enum):
    """Resolution status of a PendingEmployer.

    UNSET → MATCHED | CREATE_NEW (user decision) → IMPORTED | ERROR | SKIPPED.
    IMPORTED is terminal.
    """

    UNSET = "unset"
    MATCHED = "matched"  # User picked an existing employer
    CREATE_NEW = "create_new"  # User rejected all candidates
    IMPORTED = "imported"
    ERROR = "error"
    SKIPPED = "skipped"


class MatchType(str, Enum):
    """How a candidate employer was found."""

    EXACT_NAME = "exact_name"
    ALIAS = "alias"
    EXTERNAL_ID = "external_id"
    FUZZY = "fuzzy"


class MatchConfidence(str, Enum):
    """Confidence band for a composite match score."""

    EXACT = "exact"  # >= 0.95
    HIGH = "high"  # >= 0.85
    MEDIUM = "medium"  # >= 0.70
    LOW = "low"


class DecisionKind(str, Enum):
    """State of the per-pending-employer decision machine."""

    UNRESOLVED = "unresolved"
    USE_EXISTING = "use_existing"
    CREATE_NEW = "create_new"
    MERGED_INTO = "merged_into"  # Set only by the merge executor


class AliasAction(str, Enum):
    """What to do with the pending name once a canonical target is chosen."""

    KEEP_AS_ALIAS = "keep_as_alias"
    PROMOTE_TO_CANONICAL = "promote_to_canonical"
    MERGE_INTO_EXISTING_ALIAS = "merge_into_existing_alias"


class AliasMatchMode(str, Enum):
    """Which aliases the search RPC may match against."""

    ANY = "any"
    AUTHORITATIVE = "authoritative"
    CANONICAL = "canonical"


class ProjectRole(str, Enum):
    """Role rows written to project_employer_roles."""

    HEAD_CONTRACTOR = "head_contractor"
    BUILDER = "builder"
