"""Plain records exchanged between the canonical store and the resolution core.

These are detached from any session, so the core can be driven by the SQL
store, a test double, or anything else implementing CanonicalStore.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from employer_dedup.models.enums import MatchType


@dataclass(frozen=True)
class EmployerRecord:
    """A canonical employer as seen by the resolution core."""

    id: UUID
    name: str
    created_at: datetime | None = None
    address_line_1: str | None = None
    suburb: str | None = None
    state: str | None = None
    external_id: str | None = None

    @property
    def address(self) -> str:
        parts = (self.address_line_1, self.suburb, self.state)
        return " ".join(p for p in parts if p).strip()


@dataclass(frozen=True)
class CandidateMatch:
    """A canonical employer offered as a match for a pending name. Never persisted."""

    employer_id: UUID
    name: str
    match_type: MatchType
    score: float
    """Confidence on a 0-100 scale, comparable across searches."""

    address: str = ""
    matched_alias: str | None = None
    """The alias text that matched, for ALIAS matches."""

    def with_score(self, score: float) -> CandidateMatch:
        return CandidateMatch(
            employer_id=self.employer_id,
            name=self.name,
            match_type=self.match_type,
            score=score,
            address=self.address,
            matched_alias=self.matched_alias,
        )


@dataclass(frozen=True)
class AliasRecord:
    """An alias row, joined with its owner's canonical name when available."""

    id: UUID
    employer_id: UUID
    alias: str
    alias_normalized: str
    is_authoritative: bool = False
    employer_name: str | None = None
    source_system: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class ProjectRecord:
    """The columns of a project needed to link an employer to it."""

    id: UUID
    name: str
    builder_id: UUID | None = None
