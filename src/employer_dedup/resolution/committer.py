"""Import committer: apply reviewed decisions to the canonical store.

Items are processed one at a time in input order. Each item's writes run in
their own store scope, so a failure marks that pending employer as ERROR and
the batch moves on. Rows already IMPORTED are skipped up front, and every
attachment is check-then-insert, so re-running a batch is safe.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from uuid import UUID

from pydantic import ValidationError

from employer_dedup.errors import CommitFailed, StoreError
from employer_dedup.models.enums import (
    AliasAction,
    DecisionKind,
    EmployerRole,
    ImportStatus,
    ProjectRole,
)
from employer_dedup.payloads import parse_payload
from employer_dedup.resolution.cancel import CancelToken, is_cancelled
from employer_dedup.resolution.decisions import Decision
from employer_dedup.resolution.normalize import normalize_employer_name

if TYPE_CHECKING:
    from employer_dedup.models.pending import PendingEmployer
    from employer_dedup.payloads import Payload
    from employer_dedup.store.base import CanonicalStore

logger = logging.getLogger(__name__)

DEFAULT_TRADE_TYPE = "general_construction"


@dataclass
class ItemOutcome:
    """What happened to one pending employer."""

    pending_id: UUID
    name: str
    status: ImportStatus
    employer_id: UUID | None = None
    created: bool = False
    relationships_created: int = 0
    aliases_written: int = 0
    error: str | None = None
    warnings: list[str] = field(default_factory=list)


@dataclass
class ImportResult:
    """Aggregate result of a commit run."""

    created: int = 0
    matched_existing: int = 0
    relationships_created: int = 0
    """Capability and project link rows inserted."""

    aliases_written: int = 0
    duplicates_resolved: int = 0
    """Items committed onto the primary of a merged duplicate group."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    skipped_already_imported: int = 0
    skipped: int = 0
    cancelled: bool = False
    outcomes: list[ItemOutcome] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def imported(self) -> int:
        return self.created + self.matched_existing


class ImportCommitter:
    """Creates or links canonical employers for reviewed pending employers.

    Usage:
        committer = ImportCommitter(store, default_trade_type="general_construction")
        result = await committer.commit(pending_rows, recorder.decisions())
        print(result.created, result.matched_existing, result.errors)
    """

    def __init__(
        self,
        store: CanonicalStore,
        *,
        default_trade_type: str = DEFAULT_TRADE_TYPE,
        actor: str | None = None,
        link_projects: bool = False,
        trade_overrides: Mapping[UUID, str] | None = None,
    ) -> None:
        """Initialize the committer.

        Args:
            store: Canonical store to write to.
            default_trade_type: Trade used when a subcontractor has none recorded.
            actor: Recorded as collected_by on alias rows.
            link_projects: Also link employers to the projects on each pending row.
            trade_overrides: Per-pending trade chosen during review.
        """
        self._store = store
        self._default_trade_type = default_trade_type
        self._actor = actor
        self._link_projects = link_projects
        self._trade_overrides = dict(trade_overrides or {})

    def effective_trade_type(self, pending: PendingEmployer) -> str:
        """Override, then confirmed, then inferred trade, then the default."""
        return (
            self._trade_overrides.get(pending.id)
            or pending.user_confirmed_trade_type
            or pending.inferred_trade_type
            or self._default_trade_type
        )

    async def commit(
        self,
        pendings: Sequence[PendingEmployer],
        decisions: Mapping[UUID, Decision],
        *,
        skip_ids: Collection[UUID] = (),
        cancel: CancelToken | None = None,
    ) -> ImportResult:
        """Apply decisions to pending employers, in order.

        Args:
            pendings: Pending employers to commit.
            decisions: Decision per pending id. Missing entries are unresolved.
            skip_ids: Pending ids the reviewer chose to skip.
            cancel: Checked before each item.

        Returns:
            ImportResult with per-item outcomes. Never raises for a per-item failure.
        """
        result = ImportResult()

        for pending in pendings:
            if is_cancelled(cancel):
                result.cancelled = True
                logger.info("Commit cancelled after %d item(s)", len(result.outcomes))
                break

            if pending.import_status == ImportStatus.IMPORTED:
                result.skipped_already_imported += 1
                result.outcomes.append(
                    ItemOutcome(
                        pending_id=pending.id,
                        name=pending.company_name,
                        status=ImportStatus.IMPORTED,
                        employer_id=pending.imported_employer_id,
                    )
                )
                continue

            if pending.id in skip_ids:
                outcome = await self._skip(pending)
            else:
                decision = decisions.get(pending.id) or Decision.unresolved()
                outcome = await self._commit_one(pending, decision)
                if outcome.status == ImportStatus.IMPORTED:
                    if outcome.created:
                        result.created += 1
                    else:
                        result.matched_existing += 1
                    if decision.kind == DecisionKind.MERGED_INTO:
                        result.duplicates_resolved += 1

            result.outcomes.append(outcome)
            result.relationships_created += outcome.relationships_created
            result.aliases_written += outcome.aliases_written
            result.warnings.extend(outcome.warnings)
            if outcome.status == ImportStatus.SKIPPED:
                result.skipped += 1
            if outcome.error:
                result.errors.append(f"{pending.company_name}: {outcome.error}")

        logger.info(
            "Commit finished: %d created, %d matched, %d error(s), %d already imported",
            result.created,
            result.matched_existing,
            len(result.errors),
            result.skipped_already_imported,
        )
        return result

    # -------------------------------------------------------------------------
    # Per item
    # -------------------------------------------------------------------------

    async def _commit_one(self, pending: PendingEmployer, decision: Decision) -> ItemOutcome:
        outcome = ItemOutcome(
            pending_id=pending.id, name=pending.company_name, status=ImportStatus.ERROR
        )
        try:
            async with self._store.item_scope():
                await self._apply(pending, decision, outcome)
                notes = "Created new employer" if outcome.created else "Matched existing employer"
                await self._store.update_pending(
                    pending.id,
                    status=ImportStatus.IMPORTED,
                    employer_id=outcome.employer_id,
                    notes=notes,
                )
        except (StoreError, ValidationError) as e:
            return await self._fail(pending, outcome, e)

        pending.import_status = ImportStatus.IMPORTED
        pending.imported_employer_id = outcome.employer_id
        outcome.status = ImportStatus.IMPORTED
        return outcome

    async def _apply(
        self, pending: PendingEmployer, decision: Decision, outcome: ItemOutcome
    ) -> None:
        payload = parse_payload(pending.source, pending.raw)
        name = pending.company_name.strip()
        if not name:
            raise CommitFailed("pending employer has no name")

        if decision.uses_existing:
            if decision.target_id is None:
                raise CommitFailed(f"{decision.kind.value} decision has no target")
            target = await self._store.get_employer(decision.target_id)
            if target is None:
                raise CommitFailed(f"target employer {decision.target_id} no longer exists")
            employer_id, canonical_name = target.id, target.name
        elif decision.kind == DecisionKind.CREATE_NEW:
            employer_id, canonical_name = await self._create(name, payload), name
            outcome.created = True
        else:
            existing = await self._store.find_by_exact_name(name)
            if existing:
                employer_id, canonical_name = existing[0].id, existing[0].name
            else:
                employer_id, canonical_name = await self._create(name, payload), name
                outcome.created = True
        outcome.employer_id = employer_id

        if pending.our_role == EmployerRole.SUBCONTRACTOR:
            outcome.relationships_created += await self._ensure_capability(
                employer_id, self.effective_trade_type(pending), pending, primary=outcome.created
            )

        if not outcome.created:
            canonical_name = await self._apply_alias_action(
                pending, decision, employer_id, canonical_name, outcome
            )

        for alias in payload.aliases:
            outcome.aliases_written += await self._ensure_alias(
                employer_id, alias, canonical_name, pending
            )

        if self._link_projects:
            await self._link_all_projects(pending, employer_id, outcome)

    async def _create(self, name: str, payload: Payload) -> UUID:
        fields: dict[str, Any] = {
            k: v for k, v in payload.to_employer_fields().items() if v is not None
        }
        fields["name"] = name
        employer_id = await self._store.create_employer(fields)
        logger.info("Created employer %s for %r", employer_id, name)
        return employer_id

    async def _skip(self, pending: PendingEmployer) -> ItemOutcome:
        outcome = ItemOutcome(
            pending_id=pending.id, name=pending.company_name, status=ImportStatus.SKIPPED
        )
        try:
            await self._store.update_pending(
                pending.id, status=ImportStatus.SKIPPED, notes="Skipped during review"
            )
        except StoreError as e:
            outcome.status = ImportStatus.ERROR
            outcome.error = str(e)
            logger.error("Could not mark %r as skipped: %s", pending.company_name, e)
            return outcome
        pending.import_status = ImportStatus.SKIPPED
        return outcome

    async def _fail(
        self, pending: PendingEmployer, outcome: ItemOutcome, error: Exception
    ) -> ItemOutcome:
        reason = str(error) or error.__class__.__name__
        logger.error("Import of %r failed: %s", pending.company_name, reason)
        outcome.status = ImportStatus.ERROR
        outcome.error = reason
        outcome.employer_id = None
        outcome.created = False
        outcome.relationships_created = 0
        outcome.aliases_written = 0
        outcome.warnings.clear()

        pending.import_status = ImportStatus.ERROR
        pending.import_notes = reason
        try:
            await self._store.update_pending(pending.id, status=ImportStatus.ERROR, notes=reason)
        except StoreError as e:
            logger.error("Could not record error status for %r: %s", pending.company_name, e)
            outcome.warnings.append(f"{pending.company_name}: error status not saved ({e})")
        return outcome

    # -------------------------------------------------------------------------
    # Attachments
    # -------------------------------------------------------------------------

    async def _ensure_capability(
        self, employer_id: UUID, trade_type: str, pending: PendingEmployer, *, primary: bool
    ) -> int:
        if await self._store.has_capability(employer_id, trade_type):
            return 0
        await self._store.add_capability(
            employer_id,
            trade_type,
            is_primary=primary,
            notes=f"Added from {pending.source} import",
        )
        return 1

    async def _ensure_alias(
        self,
        employer_id: UUID,
        alias: str,
        canonical_name: str,
        pending: PendingEmployer,
        *,
        authoritative: bool = False,
        notes: str | None = None,
    ) -> int:
        alias = (alias or "").strip()
        normalized = normalize_employer_name(alias)
        if not normalized or normalized == normalize_employer_name(canonical_name):
            return 0
        if await self._store.get_alias(employer_id, normalized) is not None:
            return 0
        await self._store.insert_alias(
            employer_id,
            alias,
            normalized,
            source_system=pending.source,
            source_identifier=str(pending.id),
            collected_by=self._actor,
            is_authoritative=authoritative,
            notes=notes,
        )
        return 1

    async def _apply_alias_action(
        self,
        pending: PendingEmployer,
        decision: Decision,
        employer_id: UUID,
        canonical_name: str,
        outcome: ItemOutcome,
    ) -> str:
        """Persist the alias sub-decision. Returns the employer's canonical name after it."""
        name = pending.company_name.strip()

        if decision.alias_action == AliasAction.PROMOTE_TO_CANONICAL:
            if name == canonical_name:
                return canonical_name
            previous = await self._store.rename_employer(employer_id, name)
            logger.info("Renamed employer %s from %r to %r", employer_id, previous, name)
            outcome.aliases_written += await self._ensure_alias(
                employer_id,
                previous,
                name,
                pending,
                authoritative=True,
                notes="Previous canonical name",
            )
            return name

        if decision.alias_action == AliasAction.MERGE_INTO_EXISTING_ALIAS:
            if decision.alias_id is None:
                raise CommitFailed("merge into existing alias requires an alias id")
            await self._store.update_alias(
                decision.alias_id,
                {
                    "source_system": pending.source,
                    "source_identifier": str(pending.id),
                    "collected_by": self._actor,
                    "notes": f"Merged from pending employer {name!r}",
                },
            )
            outcome.aliases_written += 1
            return canonical_name

        outcome.aliases_written += await self._ensure_alias(
            employer_id, name, canonical_name, pending
        )
        return canonical_name

    async def _link_all_projects(
        self, pending: PendingEmployer, employer_id: UUID, outcome: ItemOutcome
    ) -> None:
        for association in pending.project_associations or []:
            ref = association.get("project_id")
            if not ref:
                continue
            try:
                async with self._store.item_scope():
                    outcome.relationships_created += await self._link_project(
                        pending, employer_id, str(ref), outcome
                    )
            except StoreError as e:
                message = f"{pending.company_name}: project link {ref} failed ({e})"
                logger.warning(message)
                outcome.warnings.append(message)

    async def _link_project(
        self, pending: PendingEmployer, employer_id: UUID, ref: str, outcome: ItemOutcome
    ) -> int:
        project = await self._store.find_project(ref)
        if project is None:
            outcome.warnings.append(f"{pending.company_name}: project {ref} not found")
            return 0

        role = pending.our_role
        if role == EmployerRole.BUILDER:
            if project.builder_id is None:
                await self._store.set_project_builder(project.id, employer_id)
                return 1
            if project.builder_id != employer_id:
                outcome.warnings.append(
                    f"{pending.company_name}: {project.name} already has a different builder"
                )
            return 0

        if role == EmployerRole.HEAD_CONTRACTOR:
            role_name = ProjectRole.HEAD_CONTRACTOR.value
            if await self._store.has_project_role(project.id, employer_id, role_name):
                return 0
            await self._store.add_project_role(project.id, employer_id, role_name)
            return 1

        if role == EmployerRole.SUBCONTRACTOR:
            trade = self.effective_trade_type(pending)
            existing = await self._store.get_project_trade(project.id, employer_id)
            if existing is None:
                await self._store.add_project_trade(project.id, employer_id, trade)
                return 1
            if existing != trade:
                outcome.warnings.append(
                    f"{pending.company_name}: already on {project.name} as {existing}, not {trade}"
                )
        return 0
