"""Invariant tests that lock in the resolution engine's guarantees.

1. The resolution core takes its settings by injection, never from config
2. Imported pending employers are terminal
3. Candidate scores share one 0-100 scale

Run with: pytest tests/test_invariants.py -v
"""

from __future__ import annotations

import ast
from pathlib import Path
from uuid import uuid4

import pytest

import employer_dedup.resolution as resolution
from employer_dedup.errors import InvalidDecision
from employer_dedup.models import DecisionKind, ImportStatus
from employer_dedup.resolution import (
    CandidateFinder,
    DecisionRecorder,
    DuplicateDetection,
    ImportCommitter,
)
from employer_dedup.resolution.decisions import Decision

RESOLUTION_DIR = Path(resolution.__file__).parent


def _imported_modules(path: Path) -> set[str]:
    tree = ast.parse(path.read_text())
    modules: set[str] = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            modules.update(alias.name for alias in node.names)
        elif isinstance(node, ast.ImportFrom) and node.module:
            modules.add(node.module)
    return modules


class TestExplicitConfiguration:
    """The core never reaches for the module-level settings singleton."""

    @pytest.mark.parametrize(
        "path", sorted(RESOLUTION_DIR.glob("*.py")), ids=lambda p: p.name
    )
    def test_resolution_module_does_not_import_config(self, path: Path) -> None:
        imported = _imported_modules(path)
        assert "employer_dedup.config" not in imported, f"{path.name} imports config"
        assert "employer_dedup.db" not in imported, f"{path.name} imports db"


class TestImportedIsTerminal:
    def test_recorder_refuses_decisions_for_imported_rows(self, make_pending) -> None:
        pending = make_pending(status=ImportStatus.IMPORTED)
        recorder = DecisionRecorder([DuplicateDetection(pending=pending)])

        with pytest.raises(InvalidDecision):
            recorder.create_new(pending.id)
        assert pending.import_status == ImportStatus.IMPORTED

    async def test_commit_never_touches_imported_rows(self, store, make_pending) -> None:
        pending = make_pending(status=ImportStatus.IMPORTED)
        committer = ImportCommitter(store, default_trade_type="general_construction")

        result = await committer.commit([pending], {pending.id: Decision.create_new()})

        assert result.skipped_already_imported == 1
        assert store.employers == {}
        assert store.pending_updates == {}


class TestScoreScale:
    async def test_all_candidates_on_percent_scale(self, store) -> None:
        for name in ("ABC Constructions", "ABC Construction Group", "XYZ Plumbing"):
            store.add_employer(name)

        candidates = await CandidateFinder(store).find_candidates("ABC Constructions")

        assert candidates
        assert all(0.0 <= c.score <= 100.0 for c in candidates)

    def test_decision_kinds_are_mutually_exclusive(self) -> None:
        target = uuid4()
        decision = Decision.use_existing(target)
        assert decision.kind == DecisionKind.USE_EXISTING
        assert Decision.create_new().target_id is None
        assert Decision.unresolved().kind == DecisionKind.UNRESOLVED
