"""CLI for employer-dedup.

Commands:
    init-db                  - Create missing tables
    pending                  - List pending employers
    detect                   - Find duplicate candidates, optionally write a review file
    commit <review.yaml>     - Apply a reviewed file (merge, create, link)
    merge <id> <id> ...      - Merge duplicate employers into the earliest-created one
    agreements <id> ...      - Search the agreement service for employers
    duplicates               - Group pending employers staged more than once
"""

from __future__ import annotations

import asyncio
import logging
import signal
from pathlib import Path
from typing import Annotated
from uuid import UUID

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from sqlalchemy.ext.asyncio import AsyncSession

from employer_dedup.clients.agreements import AgreementSearchClient, save_agreements
from employer_dedup.config import settings
from employer_dedup.db import async_session_factory, init_db, unit_of_work
from employer_dedup.models import ImportStatus
from employer_dedup.resolution import (
    CancelToken,
    CandidateFinder,
    DuplicateDetector,
    ImportCommitter,
    MergeExecutor,
    PendingGroupMerger,
    apply_decisions,
    detect_duplicates,
    group_pending_duplicates,
    matching_statistics,
    record_review,
)
from employer_dedup.resolution.candidates import CandidateSet
from employer_dedup.resolution.review_file import (
    build_review_file,
    read_review_file,
    write_review_file,
)
from employer_dedup.resolution.similarity import confidence_level
from employer_dedup.store import SqlCanonicalStore

app = typer.Typer(
    name="employer-dedup",
    help="Duplicate detection and merge workflow for pending employers",
    no_args_is_help=True,
)
console = Console()

# Statuses still waiting for an import decision
OPEN_STATUSES = [ImportStatus.UNSET, ImportStatus.MATCHED, ImportStatus.CREATE_NEW]


def run_async(coro):
    """Run an async coroutine in sync context."""
    return asyncio.run(coro)


def _setup_logging(verbose: bool = False) -> None:
    """Configure logging level."""
    level = logging.DEBUG if verbose else settings.log_level.upper()
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def _cancel_on_interrupt() -> CancelToken:
    """Ctrl-C stops batch loops before their next item instead of killing them."""
    token = CancelToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel)
    except NotImplementedError:
        # Windows event loops have no signal handlers; Ctrl-C interrupts as usual
        pass
    return token


def _short(value: UUID | None, full: bool = False) -> str:
    if value is None:
        return "-"
    return str(value) if full else str(value)[:8]


def _store(session: AsyncSession) -> SqlCanonicalStore:
    return SqlCanonicalStore(session, score_scale=settings.search_score_scale)


def _build_detector(store: SqlCanonicalStore) -> DuplicateDetector:
    finder = CandidateFinder(
        store,
        high_threshold=settings.match_high_threshold,
        medium_threshold=settings.match_medium_threshold,
        similar_limit=settings.similar_match_limit,
        search_limit=settings.search_limit,
    )
    return DuplicateDetector(
        finder,
        store,
        group_similarity=settings.duplicate_group_similarity,
        group_min_substring=settings.duplicate_group_min_substring,
    )


@app.callback()
def _main(
    verbose: Annotated[bool, typer.Option("-v", "--verbose", help="Verbose logging")] = False,
):
    _setup_logging(verbose)


@app.command("init-db")
def init_database():
    """Create any missing tables (does not touch existing ones)."""
    async def _init():
        await init_db()
        console.print("[green]Database initialized.[/green]")

    run_async(_init())


@app.command()
def pending(
    all_statuses: Annotated[
        bool, typer.Option("--all", "-a", help="Include imported, skipped and failed rows")
    ] = False,
    full_ids: Annotated[bool, typer.Option("--full-ids", "-f", help="Show full UUIDs")] = False,
):
    """List pending employers."""
    async def _pending():
        async with async_session_factory() as session:
            store = _store(session)
            rows = await store.list_pending(None if all_statuses else OPEN_STATUSES)

        if not rows:
            console.print("[yellow]No pending employers.[/yellow]")
            return

        table = Table(title=f"Pending employers ({len(rows)})")
        table.add_column("ID", no_wrap=full_ids)
        table.add_column("Name")
        table.add_column("Source")
        table.add_column("Role")
        table.add_column("Status")
        table.add_column("Notes")
        for row in rows:
            table.add_row(
                _short(row.id, full_ids),
                row.company_name,
                row.source,
                row.our_role.value if row.our_role else "-",
                (row.import_status or ImportStatus.UNSET).value,
                row.import_notes or "",
            )
        console.print(table)

    run_async(_pending())


@app.command()
def detect(
    out: Annotated[
        Path | None, typer.Option("--out", "-o", help="Write a review YAML file")
    ] = None,
    full_ids: Annotated[bool, typer.Option("--full-ids", "-f", help="Show full UUIDs")] = False,
):
    """Find exact and similar matches for every open pending employer."""
    async def _detect():
        async with async_session_factory() as session:
            store = _store(session)
            rows = await store.list_pending(OPEN_STATUSES)
            if not rows:
                console.print("[yellow]No pending employers to check.[/yellow]")
                return

            cancel = _cancel_on_interrupt()
            recorder = await detect_duplicates(_build_detector(store), rows, cancel=cancel)
            detections = recorder.detections()

        table = Table(title="Duplicate detection")
        table.add_column("Pending", no_wrap=True)
        table.add_column("Best match")
        table.add_column("Type")
        table.add_column("Score", justify="right")
        table.add_column("Confidence")
        table.add_column("Exact", justify="right")
        table.add_column("Similar", justify="right")
        table.add_column("Alias conflicts", justify="right")
        for detection in detections:
            matches = detection.exact_matches or detection.similar_matches
            best = matches[0] if matches else None
            conflicts = len(detection.alias_conflicts)
            table.add_row(
                detection.pending.company_name,
                f"{best.name} ({_short(best.employer_id, full_ids)})" if best else "-",
                best.match_type.value if best else "-",
                f"{best.score:.0f}" if best else "-",
                confidence_level(best.score / 100.0).value if best else "-",
                str(len(detection.exact_matches)),
                str(len(detection.similar_matches)),
                f"[red]{conflicts}[/red]" if conflicts else "0",
            )
        console.print(table)

        stats = matching_statistics(
            [CandidateSet(exact=d.exact_matches, similar=d.similar_matches) for d in detections]
        )
        console.print(
            f"Matched {stats.matched}/{stats.total} ({stats.match_rate}%), "
            f"no match: {stats.no_match}"
        )

        if out is not None:
            write_review_file(build_review_file(detections), out)
            console.print(f"[green]Review file written to {out}[/green]")

    run_async(_detect())


@app.command()
def commit(
    review_path: Annotated[Path, typer.Argument(help="Reviewed YAML (or JSON) file")],
    link_projects: Annotated[
        bool, typer.Option("--link-projects", help="Also link employers to their projects")
    ] = False,
):
    """Apply a reviewed file: merge flagged groups, then import every entry."""
    review_file = read_review_file(review_path)
    if not review_file.entries:
        console.print(f"[yellow]No entries in {review_path}[/yellow]")
        raise typer.Exit(0)

    async def _commit():
        async with unit_of_work() as session:
            store = _store(session)
            wanted = {entry.pending_id for entry in review_file.entries}
            rows = [r for r in await store.list_pending() if r.id in wanted]

            cancel = _cancel_on_interrupt()
            detector = _build_detector(store)
            recorder = await detect_duplicates(detector, rows, cancel=cancel)
            plan = record_review(recorder, review_file)

            committer = ImportCommitter(
                store,
                default_trade_type=settings.default_trade_type,
                actor=settings.import_actor,
                link_projects=link_projects,
                trade_overrides=plan.trade_overrides,
            )
            result = await apply_decisions(
                recorder,
                merger=MergeExecutor(store),
                committer=committer,
                merge_ids=plan.merge_ids,
                skip_ids=plan.skip_ids,
                detector=detector,
                cancel=cancel,
            )

        summary = result.commit
        lines = [
            f"Created: {summary.created}",
            f"Matched existing: {summary.matched_existing}",
            f"Merged groups: {result.merges.merged_count}",
            f"Relationships: {summary.relationships_created}",
            f"Aliases: {summary.aliases_written}",
            f"Skipped: {summary.skipped}",
            f"Already imported: {summary.skipped_already_imported}",
            f"Errors: {len(summary.errors)}",
        ]
        if summary.cancelled:
            lines.append("[yellow]Cancelled before finishing[/yellow]")
        style = "green" if summary.success and not plan.errors else "yellow"
        console.print(Panel("\n".join(lines), title="Import", border_style=style))

        for message in [*plan.errors, *summary.errors]:
            console.print(f"[red]✗[/red] {message}")
        for message in result.warnings:
            console.print(f"[yellow]![/yellow] {message}")

    run_async(_commit())


@app.command()
def merge(
    employer_ids: Annotated[list[str], typer.Argument(help="Employer IDs to merge")],
):
    """Merge duplicate employers into the earliest-created one."""
    try:
        ids = [UUID(value) for value in employer_ids]
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None

    async def _merge():
        async with unit_of_work() as session:
            group = await MergeExecutor(_store(session)).merge_group(ids)
            if group is None:
                return
            if group.error:
                console.print(f"[red]Merge failed:[/red] {group.error}")
                raise typer.Exit(1)

        if group.duplicate_ids:
            console.print(
                f"[green]Merged {len(group.duplicate_ids)} employer(s) into {group.primary_id}[/green]"
            )
        else:
            console.print(f"[yellow]Nothing to merge; {group.primary_id} is the only id.[/yellow]")

    run_async(_merge())


@app.command()
def agreements(
    employer_ids: Annotated[list[str], typer.Argument(help="Employer IDs to search for")],
    save: Annotated[
        bool, typer.Option("--save", help="Store results as agreement records")
    ] = False,
):
    """Search the agreement service for each employer (paced, one at a time)."""
    try:
        ids = [UUID(value) for value in employer_ids]
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None

    async def _agreements():
        async with unit_of_work() as session:
            store = _store(session)
            employers = []
            for employer_id in ids:
                employer = await store.get_employer(employer_id)
                if employer is None:
                    console.print(f"[yellow]Employer {employer_id} not found[/yellow]")
                else:
                    employers.append(employer)

            cancel = _cancel_on_interrupt()
            async with AgreementSearchClient(
                settings.agreement_search_url,
                timeout_seconds=settings.agreement_search_timeout_seconds,
                delay_seconds=settings.agreement_search_delay_seconds,
            ) as client:
                outcomes = await client.search_for_employers(employers, cancel)

            saved = 0
            for outcome in outcomes:
                if outcome.error:
                    console.print(f"[red]✗[/red] {outcome.employer_name}: {outcome.error}")
                    continue
                table = Table(title=f"{outcome.employer_name} ({len(outcome.results)})")
                table.add_column("Title")
                table.add_column("Status")
                table.add_column("Approved")
                table.add_column("Expires")
                for result in outcome.results:
                    table.add_row(
                        result.title,
                        result.status or "-",
                        result.approved_date or "-",
                        result.expiry_date or "-",
                    )
                console.print(table)
                if save and outcome.results:
                    saved += len(await save_agreements(store, outcome.employer_id, outcome.results))

        if save:
            console.print(f"[green]Saved {saved} agreement record(s).[/green]")

    run_async(_agreements())


@app.command()
def duplicates(
    threshold: Annotated[
        float | None, typer.Option(help="Similarity (0-100) needed to group")
    ] = None,
    merge_all: Annotated[
        bool, typer.Option("--merge", help="Fold every group into its first row")
    ] = False,
    auto: Annotated[
        bool,
        typer.Option(
            "--auto", help="Fold only groups whose members are all near-identical"
        ),
    ] = False,
):
    """Group open pending employers that look like the same organisation.

    With --merge or --auto, each group's other rows are folded into its first
    row: their names become aliases, their projects move over, and they are
    marked skipped.
    """
    async def _duplicates():
        async with unit_of_work() as session:
            store = _store(session)
            rows = await store.list_pending(OPEN_STATUSES)
            groups = group_pending_duplicates(
                rows,
                threshold=threshold if threshold is not None else settings.pending_group_similarity,
            )
            if not groups:
                console.print("[green]No duplicate pending employers.[/green]")
                return

            for group in groups:
                table = Table(
                    title=(
                        f"{group.canonical_name}: {group.member_count} rows "
                        f"({group.min_similarity:.0f}-{group.max_similarity:.0f}%)"
                    )
                )
                table.add_column("ID")
                table.add_column("Name")
                table.add_column("Source")
                table.add_column("Similarity", justify="right")
                for member in group.members:
                    table.add_row(
                        _short(member.pending.id),
                        member.pending.company_name,
                        member.pending.source,
                        f"{member.similarity:.0f}",
                    )
                console.print(table)

            if not (merge_all or auto):
                return

            # --merge wins over --auto
            min_similarity = 0.0 if merge_all else settings.pending_auto_merge_similarity
            results = await PendingGroupMerger(store).merge_groups(
                groups, min_similarity=min_similarity, cancel=_cancel_on_interrupt()
            )

        merged = [r for r in results if r.ok and r.merged_ids]
        console.print(
            f"[green]Folded {sum(len(r.merged_ids) for r in merged)} row(s) "
            f"into {len(merged)} canonical row(s).[/green]"
        )
        skipped = len(groups) - len(results)
        if skipped:
            console.print(f"[yellow]{skipped} group(s) left for review.[/yellow]")
        for r in results:
            if r.error:
                console.print(f"[red]✗[/red] {r.error}")

    run_async(_duplicates())


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
