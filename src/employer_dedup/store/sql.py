"""SQL implementation of CanonicalStore over an async SQLAlchemy session.

Plain reads and writes go through the ORM. Search and merge call the stored
procedures the hosted database already exposes; their bodies are owned by the
database, not by this package.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import bindparam, or_, select, text, update
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from employer_dedup.errors import CommitFailed, LookupFailed, MergeFailed, StoreError
from employer_dedup.models.agreement import AgreementRecord
from employer_dedup.models.alias import EmployerAlias
from employer_dedup.models.capability import TradeCapability
from employer_dedup.models.employer import Employer
from employer_dedup.models.enums import AliasMatchMode, ImportStatus, MatchType
from employer_dedup.models.pending import PendingEmployer
from employer_dedup.models.project import Project, ProjectContractorTrade, ProjectEmployerRole
from employer_dedup.records import AliasRecord, CandidateMatch, EmployerRecord, ProjectRecord
from employer_dedup.resolution.similarity import match_score

logger = logging.getLogger(__name__)

SEARCH_SQL = text(
    "SELECT * FROM search_employers_with_aliases("
    ":p_query, :p_limit, 0, true, :p_alias_match_mode)"
)

MERGE_SQL = text(
    "SELECT merge_employers(:p_primary_employer_id, :p_duplicate_employer_ids)"
).bindparams(
    bindparam("p_primary_employer_id", type_=PG_UUID(as_uuid=True)),
    bindparam("p_duplicate_employer_ids", type_=ARRAY(PG_UUID(as_uuid=True))),
)

# match_type strings returned by the search RPC
_RPC_MATCH_TYPES = {
    "canonical_name": MatchType.EXACT_NAME,
    "exact_name": MatchType.EXACT_NAME,
    "alias": MatchType.ALIAS,
    "external_id": MatchType.EXTERNAL_ID,
    "fuzzy": MatchType.FUZZY,
}


def normalize_search_score(raw: Any, scale: float = 1.0) -> float | None:
    """Bring an RPC search_score onto the 0-100 scale.

    Args:
        raw: The score column as returned, possibly NULL.
        scale: Highest score the RPC can return (1.0 for the 0-1 real
            version, 100.0 for the percentage version).

    Returns:
        The score clamped to 0-100, or None when the row carried no score.
    """
    if raw is None:
        return None
    score = float(raw) / scale * 100.0
    return max(0.0, min(100.0, score))


def candidate_from_row(
    row: Mapping[str, Any], query: str, *, score_scale: float = 1.0
) -> CandidateMatch:
    """Convert one search RPC row to a CandidateMatch.

    Rows without a search_score are scored locally with match_score() against
    the employer name and, for alias hits, the matched alias.
    """
    details = row.get("match_details") or {}
    matched_alias = details.get("matched_alias")
    address_parts = (row.get("address_line_1"), row.get("suburb"), row.get("state"))

    score = normalize_search_score(row.get("search_score"), score_scale)
    if score is None:
        names = [n for n in (row.get("name"), matched_alias) if n]
        score = max((match_score(query, n) for n in names), default=0.0) * 100.0

    return CandidateMatch(
        employer_id=row["id"],
        name=row["name"],
        match_type=_RPC_MATCH_TYPES.get(str(row.get("match_type") or ""), MatchType.FUZZY),
        score=score,
        address=" ".join(p for p in address_parts if p).strip(),
        matched_alias=matched_alias,
    )


def _employer_record(employer: Employer) -> EmployerRecord:
    return EmployerRecord(
        id=employer.id,
        name=employer.name,
        created_at=employer.created_at,
        address_line_1=employer.address_line_1,
        suburb=employer.suburb,
        state=employer.state,
        external_id=employer.external_id,
    )


def _alias_record(alias: EmployerAlias, employer_name: str | None = None) -> AliasRecord:
    return AliasRecord(
        id=alias.id,
        employer_id=alias.employer_id,
        alias=alias.alias,
        alias_normalized=alias.alias_normalized,
        is_authoritative=alias.is_authoritative,
        employer_name=employer_name,
        source_system=alias.source_system,
        notes=alias.notes,
    )


class SqlCanonicalStore:
    """CanonicalStore backed by the hosted Postgres database.

    Usage:
        async with unit_of_work() as session:
            store = SqlCanonicalStore(session)
            committer = ImportCommitter(store)
            result = await committer.commit(pending, decisions)

    The caller owns the transaction. item_scope() opens a savepoint so one
    failed pending employer does not poison the rest of the batch. Reads and
    the merge RPC run in savepoints of their own: in Postgres a failed
    statement aborts the whole transaction unless it is rolled back to one.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        alias_match_mode: AliasMatchMode = AliasMatchMode.ANY,
        score_scale: float = 1.0,
    ) -> None:
        """Initialize the store.

        Args:
            session: Session owning the outer transaction.
            alias_match_mode: How the search RPC matches aliases.
            score_scale: Highest search_score the search RPC returns. The
                deployed RPC returns 0-1 reals; use 100.0 for a percentage RPC.
        """
        if score_scale <= 0:
            raise ValueError(f"score_scale must be positive, got {score_scale}")
        self._session = session
        self._alias_match_mode = alias_match_mode
        self._score_scale = score_scale

    @asynccontextmanager
    async def item_scope(self) -> AsyncIterator[None]:
        try:
            async with self._session.begin_nested():
                yield
        except SQLAlchemyError as e:
            raise CommitFailed(f"item savepoint failed: {e}") from e

    @asynccontextmanager
    async def _statement_scope(
        self, what: str, error: type[StoreError] = LookupFailed
    ) -> AsyncIterator[None]:
        """Savepoint around one statement; database errors become `error`."""
        try:
            async with self._session.begin_nested():
                yield
        except SQLAlchemyError as e:
            raise error(f"{what} failed: {e}") from e

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def find_by_external_id(self, external_id: str) -> list[EmployerRecord]:
        stmt = (
            select(Employer)
            .where(Employer.external_id == external_id)
            .order_by(Employer.created_at)
        )
        return [_employer_record(e) for e in await self._scalars(stmt, "external id lookup")]

    async def find_by_exact_name(self, name: str) -> list[EmployerRecord]:
        stmt = select(Employer).where(Employer.name == name).order_by(Employer.created_at)
        return [_employer_record(e) for e in await self._scalars(stmt, "exact name lookup")]

    async def search(self, query: str, *, limit: int) -> list[CandidateMatch]:
        query = query.strip()
        async with self._statement_scope(f"search for {query!r}"):
            result = await self._session.execute(
                SEARCH_SQL,
                {
                    "p_query": query,
                    "p_limit": limit,
                    "p_alias_match_mode": self._alias_match_mode.value,
                },
            )
        return [
            candidate_from_row(row, query, score_scale=self._score_scale)
            for row in result.mappings().all()
        ]

    async def get_employer(self, employer_id: UUID) -> EmployerRecord | None:
        async with self._statement_scope("employer lookup"):
            employer = await self._session.get(Employer, employer_id)
        return _employer_record(employer) if employer is not None else None

    async def get_created_at(self, employer_ids: Sequence[UUID]) -> dict[UUID, datetime]:
        if not employer_ids:
            return {}
        stmt = select(Employer.id, Employer.created_at).where(Employer.id.in_(list(employer_ids)))
        async with self._statement_scope("created_at lookup"):
            result = await self._session.execute(stmt)
        return {row.id: row.created_at for row in result.all()}

    async def find_aliases_by_normalized(self, alias_normalized: str) -> list[AliasRecord]:
        stmt = (
            select(EmployerAlias, Employer.name)
            .join(Employer, Employer.id == EmployerAlias.employer_id)
            .where(EmployerAlias.alias_normalized == alias_normalized)
            .order_by(EmployerAlias.created_at)
        )
        async with self._statement_scope("alias lookup"):
            result = await self._session.execute(stmt)
        return [_alias_record(alias, name) for alias, name in result.all()]

    async def get_alias(self, employer_id: UUID, alias_normalized: str) -> AliasRecord | None:
        stmt = (
            select(EmployerAlias)
            .where(
                EmployerAlias.employer_id == employer_id,
                EmployerAlias.alias_normalized == alias_normalized,
            )
            .limit(1)
        )
        rows = await self._scalars(stmt, "alias lookup")
        return _alias_record(rows[0]) if rows else None

    async def has_capability(self, employer_id: UUID, trade_type: str) -> bool:
        stmt = (
            select(TradeCapability.id)
            .where(
                TradeCapability.employer_id == employer_id,
                TradeCapability.trade_type == trade_type,
            )
            .limit(1)
        )
        return bool(await self._scalars(stmt, "capability lookup"))

    async def find_project(self, project_ref: str) -> ProjectRecord | None:
        conditions = [Project.bci_project_id == project_ref]
        try:
            conditions.append(Project.id == UUID(project_ref))
        except ValueError:
            pass  # not a UUID, BCI id only
        stmt = select(Project).where(or_(*conditions)).limit(1)
        rows = await self._scalars(stmt, "project lookup")
        if not rows:
            return None
        project = rows[0]
        return ProjectRecord(id=project.id, name=project.name, builder_id=project.builder_id)

    async def has_project_role(self, project_id: UUID, employer_id: UUID, role: str) -> bool:
        stmt = (
            select(ProjectEmployerRole.id)
            .where(
                ProjectEmployerRole.project_id == project_id,
                ProjectEmployerRole.employer_id == employer_id,
                ProjectEmployerRole.role == role,
            )
            .limit(1)
        )
        return bool(await self._scalars(stmt, "project role lookup"))

    async def get_project_trade(self, project_id: UUID, employer_id: UUID) -> str | None:
        stmt = (
            select(ProjectContractorTrade.trade_type)
            .where(
                ProjectContractorTrade.project_id == project_id,
                ProjectContractorTrade.employer_id == employer_id,
            )
            .limit(1)
        )
        rows = await self._scalars(stmt, "project trade lookup")
        return rows[0] if rows else None

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def merge_employers(
        self, primary_id: UUID, duplicate_ids: Sequence[UUID]
    ) -> dict[str, Any]:
        # A rejected merge raises inside the savepoint so its partial work is undone
        async with self._statement_scope(f"merge into {primary_id}", MergeFailed):
            result = await self._session.execute(
                MERGE_SQL,
                {
                    "p_primary_employer_id": primary_id,
                    "p_duplicate_employer_ids": list(duplicate_ids),
                },
            )
            payload = result.scalar_one_or_none() or {}
            if isinstance(payload, dict) and payload.get("error"):
                raise MergeFailed(f"merge into {primary_id} rejected: {payload['error']}")
        return payload if isinstance(payload, dict) else {"result": payload}

    async def create_employer(self, fields: dict[str, Any]) -> UUID:
        employer = Employer(id=uuid4(), **fields)
        self._session.add(employer)
        await self._flush("create employer")
        return employer.id

    async def rename_employer(self, employer_id: UUID, new_name: str) -> str:
        async with self._statement_scope("rename", CommitFailed):
            employer = await self._session.get(Employer, employer_id)
        if employer is None:
            raise CommitFailed(f"employer {employer_id} not found")
        previous = employer.name
        employer.name = new_name
        await self._flush("rename employer")
        return previous

    async def add_capability(
        self, employer_id: UUID, trade_type: str, *, is_primary: bool, notes: str | None
    ) -> None:
        self._session.add(
            TradeCapability(
                id=uuid4(),
                employer_id=employer_id,
                trade_type=trade_type,
                is_primary=is_primary,
                notes=notes,
            )
        )
        await self._flush("add capability")

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
        row = EmployerAlias(
            id=uuid4(),
            employer_id=employer_id,
            alias=alias.strip(),
            alias_normalized=alias_normalized,
            source_system=source_system,
            source_identifier=source_identifier,
            collected_at=datetime.now(UTC),
            collected_by=collected_by,
            is_authoritative=is_authoritative,
            notes=notes,
        )
        self._session.add(row)
        await self._flush("insert alias")
        return row.id

    async def update_alias(self, alias_id: UUID, fields: dict[str, Any]) -> None:
        await self._execute_write(
            update(EmployerAlias).where(EmployerAlias.id == alias_id).values(**fields),
            "update alias",
        )

    async def set_project_builder(self, project_id: UUID, employer_id: UUID) -> None:
        await self._execute_write(
            update(Project).where(Project.id == project_id).values(builder_id=employer_id),
            "set project builder",
        )

    async def add_project_role(self, project_id: UUID, employer_id: UUID, role: str) -> None:
        self._session.add(
            ProjectEmployerRole(
                id=uuid4(), project_id=project_id, employer_id=employer_id, role=role
            )
        )
        await self._flush("add project role")

    async def add_project_trade(
        self, project_id: UUID, employer_id: UUID, trade_type: str
    ) -> None:
        self._session.add(
            ProjectContractorTrade(
                id=uuid4(), project_id=project_id, employer_id=employer_id, trade_type=trade_type
            )
        )
        await self._flush("add project trade")

    async def update_pending(
        self,
        pending_id: UUID,
        *,
        status: ImportStatus,
        employer_id: UUID | None = None,
        notes: str | None = None,
    ) -> None:
        values: dict[str, Any] = {"import_status": status, "import_notes": notes}
        if employer_id is not None:
            values["imported_employer_id"] = employer_id
        await self._execute_write(
            update(PendingEmployer).where(PendingEmployer.id == pending_id).values(**values),
            "update pending employer",
        )

    async def update_pending_payload(
        self,
        pending_id: UUID,
        *,
        raw: dict[str, Any],
        project_associations: list[dict[str, Any]],
    ) -> None:
        await self._execute_write(
            update(PendingEmployer)
            .where(PendingEmployer.id == pending_id)
            .values(raw=raw, project_associations=project_associations),
            "update pending payload",
        )

    async def add_agreement_record(self, employer_id: UUID, fields: dict[str, Any]) -> UUID:
        record = AgreementRecord(id=uuid4(), employer_id=employer_id, **fields)
        self._session.add(record)
        await self._flush("add agreement record")
        return record.id

    # -------------------------------------------------------------------------
    # Pending employer queue (used by the CLI)
    # -------------------------------------------------------------------------

    async def list_pending(
        self, statuses: Sequence[ImportStatus] | None = None
    ) -> list[PendingEmployer]:
        stmt = select(PendingEmployer).order_by(PendingEmployer.created_at.desc())
        if statuses:
            stmt = stmt.where(PendingEmployer.import_status.in_(list(statuses)))
        return list(await self._scalars(stmt, "pending employer listing"))

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _scalars(self, stmt: Any, what: str) -> list[Any]:
        async with self._statement_scope(what):
            result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def _flush(self, what: str) -> None:
        try:
            await self._session.flush()
        except SQLAlchemyError as e:
            raise CommitFailed(f"{what} failed: {e}") from e

    async def _execute_write(self, stmt: Any, what: str) -> None:
        # Status writes also run outside item_scope (skips, error marks)
        async with self._statement_scope(what, CommitFailed):
            await self._session.execute(stmt)
