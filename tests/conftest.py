"""Shared pytest fixtures for employer-dedup tests."""

from __future__ import annotations

import copy
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

import pytest

from employer_dedup.errors import CommitFailed
from employer_dedup.models import EmployerRole, ImportStatus, MatchType, PendingEmployer
from employer_dedup.records import AliasRecord, CandidateMatch, EmployerRecord, ProjectRecord
from employer_dedup.resolution.normalize import normalize_employer_name
from employer_dedup.resolution.similarity import match_score

BASE_TIME = datetime(2024, 1, 1, tzinfo=UTC)


class InMemoryStore:
    """CanonicalStore test double holding everything in dicts.

    search() returns canned rows registered with set_search() when present,
    otherwise scores every employer and alias with match_score().
    item_scope() snapshots state and restores it if the block raises, like
    the savepoint the SQL store opens.
    """

    def __init__(self) -> None:
        self.employers: dict[UUID, EmployerRecord] = {}
        self.employer_fields: dict[UUID, dict[str, Any]] = {}
        self.aliases: dict[UUID, AliasRecord] = {}
        self.capabilities: list[tuple[UUID, str, bool]] = []
        self.projects: dict[UUID, ProjectRecord] = {}
        self.project_roles: list[tuple[UUID, UUID, str]] = []
        self.project_trades: dict[tuple[UUID, UUID], str] = {}
        self.pending_updates: dict[UUID, tuple[ImportStatus, UUID | None, str | None]] = {}
        self.agreements: list[tuple[UUID, dict[str, Any]]] = []
        self.merges: list[tuple[UUID, list[UUID]]] = []
        self.pending_payloads: dict[UUID, tuple[dict[str, Any], list[dict[str, Any]]]] = {}

        self.canned_search: dict[str, list[CandidateMatch]] = {}
        self.search_queries: list[str] = []
        self.fail_on: dict[str, Exception] = {}
        self.fail_create_names: set[str] = set()

    # ── Test setup helpers ───────────────────────────────────────────────────

    def add_employer(
        self,
        name: str,
        *,
        created_at: datetime | None = None,
        external_id: str | None = None,
        employer_id: UUID | None = None,
    ) -> EmployerRecord:
        record = EmployerRecord(
            id=employer_id or uuid4(),
            name=name,
            created_at=created_at or BASE_TIME + timedelta(days=len(self.employers)),
            external_id=external_id,
        )
        self.employers[record.id] = record
        return record

    def add_alias(
        self, employer_id: UUID, alias: str, *, authoritative: bool = False
    ) -> AliasRecord:
        record = AliasRecord(
            id=uuid4(),
            employer_id=employer_id,
            alias=alias,
            alias_normalized=normalize_employer_name(alias),
            is_authoritative=authoritative,
            employer_name=self.employers[employer_id].name,
        )
        self.aliases[record.id] = record
        return record

    def add_project(self, name: str, *, builder_id: UUID | None = None) -> ProjectRecord:
        project = ProjectRecord(id=uuid4(), name=name, builder_id=builder_id)
        self.projects[project.id] = project
        return project

    def set_search(self, query: str, rows: Sequence[CandidateMatch]) -> None:
        self.canned_search[query.lower()] = list(rows)

    def capability_count(self, employer_id: UUID, trade_type: str) -> int:
        return sum(1 for e, t, _ in self.capabilities if e == employer_id and t == trade_type)

    def _maybe_fail(self, method: str) -> None:
        if method in self.fail_on:
            raise self.fail_on[method]

    # ── Reads ────────────────────────────────────────────────────────────────

    async def find_by_external_id(self, external_id: str) -> list[EmployerRecord]:
        self._maybe_fail("find_by_external_id")
        return [e for e in self.employers.values() if e.external_id == external_id]

    async def find_by_exact_name(self, name: str) -> list[EmployerRecord]:
        self._maybe_fail("find_by_exact_name")
        return [e for e in self.employers.values() if e.name == name]

    async def search(self, query: str, *, limit: int) -> list[CandidateMatch]:
        self._maybe_fail("search")
        self.search_queries.append(query)
        if query.lower() in self.canned_search:
            return self.canned_search[query.lower()][:limit]

        rows: list[CandidateMatch] = []
        for employer in self.employers.values():
            score = match_score(query, employer.name) * 100
            match_type = MatchType.EXACT_NAME if score == 100 else MatchType.FUZZY
            rows.append(CandidateMatch(employer.id, employer.name, match_type, score))
        for alias in self.aliases.values():
            score = match_score(query, alias.alias) * 100
            owner = self.employers[alias.employer_id]
            rows.append(
                CandidateMatch(owner.id, owner.name, MatchType.ALIAS, score, matched_alias=alias.alias)
            )
        rows = [r for r in rows if r.score > 0]
        rows.sort(key=lambda r: -r.score)
        return rows[:limit]

    async def get_employer(self, employer_id: UUID) -> EmployerRecord | None:
        self._maybe_fail("get_employer")
        return self.employers.get(employer_id)

    async def get_created_at(self, employer_ids: Sequence[UUID]) -> dict[UUID, datetime]:
        self._maybe_fail("get_created_at")
        return {
            i: self.employers[i].created_at
            for i in employer_ids
            if i in self.employers and self.employers[i].created_at is not None
        }

    async def find_aliases_by_normalized(self, alias_normalized: str) -> list[AliasRecord]:
        self._maybe_fail("find_aliases_by_normalized")
        return [a for a in self.aliases.values() if a.alias_normalized == alias_normalized]

    async def get_alias(self, employer_id: UUID, alias_normalized: str) -> AliasRecord | None:
        for alias in self.aliases.values():
            if alias.employer_id == employer_id and alias.alias_normalized == alias_normalized:
                return alias
        return None

    async def has_capability(self, employer_id: UUID, trade_type: str) -> bool:
        return self.capability_count(employer_id, trade_type) > 0

    async def find_project(self, project_ref: str) -> ProjectRecord | None:
        for project in self.projects.values():
            if str(project.id) == project_ref:
                return project
        return None

    async def has_project_role(self, project_id: UUID, employer_id: UUID, role: str) -> bool:
        return (project_id, employer_id, role) in self.project_roles

    async def get_project_trade(self, project_id: UUID, employer_id: UUID) -> str | None:
        return self.project_trades.get((project_id, employer_id))

    # ── Writes ───────────────────────────────────────────────────────────────

    async def merge_employers(
        self, primary_id: UUID, duplicate_ids: Sequence[UUID]
    ) -> dict[str, Any]:
        self._maybe_fail("merge_employers")
        self.merges.append((primary_id, list(duplicate_ids)))
        for duplicate_id in duplicate_ids:
            self.employers.pop(duplicate_id, None)
        return {"primary_employer_id": str(primary_id), "merged": len(duplicate_ids)}

    async def create_employer(self, fields: dict[str, Any]) -> UUID:
        self._maybe_fail("create_employer")
        if fields["name"] in self.fail_create_names:
            raise CommitFailed(f"duplicate key value violates constraint for {fields['name']}")
        record = self.add_employer(fields["name"], external_id=fields.get("external_id"))
        self.employer_fields[record.id] = dict(fields)
        return record.id

    async def rename_employer(self, employer_id: UUID, new_name: str) -> str:
        previous = self.employers[employer_id]
        self.employers[employer_id] = EmployerRecord(
            id=previous.id,
            name=new_name,
            created_at=previous.created_at,
            external_id=previous.external_id,
        )
        return previous.name

    async def add_capability(
        self, employer_id: UUID, trade_type: str, *, is_primary: bool, notes: str | None
    ) -> None:
        self._maybe_fail("add_capability")
        self.capabilities.append((employer_id, trade_type, is_primary))

    async def insert_alias(
        self,
        employer_id: UUID,
        alias: str,
        alias_normalized: str,
        *,
        source_system: str | None,
        source_identifier: str | None,
        collected_by: str | None,
        is_authoritative: bool,
        notes: str | None,
    ) -> UUID:
        record = AliasRecord(
            id=uuid4(),
            employer_id=employer_id,
            alias=alias,
            alias_normalized=alias_normalized,
            is_authoritative=is_authoritative,
            source_system=source_system,
            notes=notes,
        )
        self.aliases[record.id] = record
        return record.id

    async def update_alias(self, alias_id: UUID, fields: dict[str, Any]) -> None:
        current = self.aliases[alias_id]
        self.aliases[alias_id] = AliasRecord(
            id=current.id,
            employer_id=current.employer_id,
            alias=current.alias,
            alias_normalized=current.alias_normalized,
            is_authoritative=fields.get("is_authoritative", current.is_authoritative),
            employer_name=current.employer_name,
            source_system=fields.get("source_system", current.source_system),
            notes=fields.get("notes", current.notes),
        )

    async def set_project_builder(self, project_id: UUID, employer_id: UUID) -> None:
        project = self.projects[project_id]
        self.projects[project_id] = ProjectRecord(project.id, project.name, employer_id)

    async def add_project_role(self, project_id: UUID, employer_id: UUID, role: str) -> None:
        self._maybe_fail("add_project_role")
        self.project_roles.append((project_id, employer_id, role))

    async def add_project_trade(
        self, project_id: UUID, employer_id: UUID, trade_type: str
    ) -> None:
        self.project_trades[(project_id, employer_id)] = trade_type

    async def update_pending(
        self,
        pending_id: UUID,
        *,
        status: ImportStatus,
        employer_id: UUID | None = None,
        notes: str | None = None,
    ) -> None:
        self._maybe_fail("update_pending")
        self.pending_updates[pending_id] = (status, employer_id, notes)

    async def update_pending_payload(
        self,
        pending_id: UUID,
        *,
        raw: dict[str, Any],
        project_associations: list[dict[str, Any]],
    ) -> None:
        self._maybe_fail("update_pending_payload")
        self.pending_payloads[pending_id] = (raw, project_associations)

    async def add_agreement_record(self, employer_id: UUID, fields: dict[str, Any]) -> UUID:
        self.agreements.append((employer_id, fields))
        return uuid4()

    _STATE = (
        "employers",
        "employer_fields",
        "aliases",
        "capabilities",
        "projects",
        "project_roles",
        "project_trades",
        "pending_updates",
        "agreements",
        "merges",
        "pending_payloads",
    )

    @asynccontextmanager
    async def item_scope(self) -> AsyncIterator[None]:
        snapshot = {name: copy.copy(getattr(self, name)) for name in self._STATE}
        try:
            yield
        except BaseException:
            for name, value in snapshot.items():
                setattr(self, name, value)
            raise


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


MakePending = Callable[..., PendingEmployer]


@pytest.fixture
def make_pending() -> MakePending:
    """Factory fixture for creating transient PendingEmployer instances."""

    def _make(
        name: str = "ABC Constructions Pty Ltd",
        *,
        pending_id: UUID | None = None,
        source: str = "bci_import",
        raw: dict[str, Any] | None = None,
        role: EmployerRole | None = EmployerRole.SUBCONTRACTOR,
        status: ImportStatus = ImportStatus.UNSET,
        inferred_trade_type: str | None = None,
        user_confirmed_trade_type: str | None = None,
        project_associations: list[dict[str, Any]] | None = None,
    ) -> PendingEmployer:
        return PendingEmployer(
            id=pending_id or uuid4(),
            company_name=name,
            source=source,
            raw=raw or {},
            our_role=role,
            import_status=status,
            inferred_trade_type=inferred_trade_type,
            user_confirmed_trade_type=user_confirmed_trade_type,
            project_associations=project_associations or [],
        )

    return _make
