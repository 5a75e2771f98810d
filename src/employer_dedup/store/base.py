"""Interface of the canonical store the resolution core talks to.

The store is the hosted database: exact and alias-aware lookups, the
merge RPC, and inserts/updates for employers, aliases, capability and project
rows. Every method is one blocking round-trip from the caller's point of view.
"""

from __future__ import annotations

from collections.abc import Sequence
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from employer_dedup.models.enums import ImportStatus
from employer_dedup.records import AliasRecord, CandidateMatch, EmployerRecord, ProjectRecord


class CanonicalStore(Protocol):
    """Query/RPC surface of the canonical employer store.

    Implementations raise employer_dedup.errors.StoreError subclasses:
    LookupFailed for reads, MergeFailed for merges, CommitFailed for writes.
    """

    # ── Reads ────────────────────────────────────────────────────────────────

    async def find_by_external_id(self, external_id: str) -> list[EmployerRecord]: ...

    async def find_by_exact_name(self, name: str) -> list[EmployerRecord]: ...

    async def search(self, query: str, *, limit: int) -> list[CandidateMatch]:
        """Alias-aware ranked search. Scores are on a 0-100 scale."""
        ...

    async def get_employer(self, employer_id: UUID) -> EmployerRecord | None: ...

    async def get_created_at(self, employer_ids: Sequence[UUID]) -> dict[UUID, datetime]: ...

    async def find_aliases_by_normalized(self, alias_normalized: str) -> list[AliasRecord]: ...

    async def get_alias(self, employer_id: UUID, alias_normalized: str) -> AliasRecord | None: ...

    async def has_capability(self, employer_id: UUID, trade_type: str) -> bool: ...

    async def find_project(self, project_ref: str) -> ProjectRecord | None:
        """Look up a project by id or by its BCI project id."""
        ...

    async def has_project_role(self, project_id: UUID, employer_id: UUID, role: str) -> bool: ...

    async def get_project_trade(self, project_id: UUID, employer_id: UUID) -> str | None: ...

    # ── Writes ───────────────────────────────────────────────────────────────

    async def merge_employers(
        self, primary_id: UUID, duplicate_ids: Sequence[UUID]
    ) -> dict[str, Any]:
        """Fold duplicates into primary, reassigning dependent rows."""
        ...

    async def create_employer(self, fields: dict[str, Any]) -> UUID: ...

    async def rename_employer(self, employer_id: UUID, new_name: str) -> str:
        """Set a new canonical name. Returns the previous name."""
        ...

    async def add_capability(
        self, employer_id: UUID, trade_type: str, *, is_primary: bool, notes: str | None
    ) -> None: ...

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
    ) -> UUID: ...

    async def update_alias(self, alias_id: UUID, fields: dict[str, Any]) -> None: ...

    async def set_project_builder(self, project_id: UUID, employer_id: UUID) -> None: ...

    async def add_project_role(self, project_id: UUID, employer_id: UUID, role: str) -> None: ...

    async def add_project_trade(
        self, project_id: UUID, employer_id: UUID, trade_type: str
    ) -> None: ...

    async def update_pending(
        self,
        pending_id: UUID,
        *,
        status: ImportStatus,
        employer_id: UUID | None = None,
        notes: str | None = None,
    ) -> None: ...

    async def update_pending_payload(
        self,
        pending_id: UUID,
        *,
        raw: dict[str, Any],
        project_associations: list[dict[str, Any]],
    ) -> None:
        """Replace a pending row's raw payload and project associations."""
        ...

    async def add_agreement_record(self, employer_id: UUID, fields: dict[str, Any]) -> UUID: ...

    def item_scope(self) -> AbstractAsyncContextManager[None]:
        """Scope for one pending employer's writes; rolled back if the item fails."""
        ...
