"""Tests for the SQL canonical store against a mocked session."""

from __future__ import annotations

from itertools import chain, repeat
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from employer_dedup.errors import CommitFailed, LookupFailed, MergeFailed
from employer_dedup.models import Employer, ImportStatus, MatchType
from employer_dedup.resolution.candidates import CandidateFinder
from employer_dedup.resolution.committer import ImportCommitter
from employer_dedup.store.sql import (
    SqlCanonicalStore,
    candidate_from_row,
    normalize_search_score,
)


def make_session() -> MagicMock:
    session = MagicMock()
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    session.get = AsyncMock()
    return session


def result_with_rows(rows: list[dict]) -> MagicMock:
    result = MagicMock()
    result.mappings.return_value.all.return_value = rows
    return result


class TestScoreNormalization:
    @pytest.mark.parametrize(
        ("raw", "scale", "expected"),
        [
            (None, 1.0, None),
            (1, 1.0, 100.0),
            (0.95, 1.0, 95.0),
            (-0.2, 1.0, 0.0),
            (1, 100.0, 1.0),
            (85, 100.0, 85.0),
            (120, 100.0, 100.0),
        ],
    )
    def test_scale(self, raw, scale, expected) -> None:
        assert normalize_search_score(raw, scale) == pytest.approx(expected)

    def test_row_conversion(self) -> None:
        employer_id = uuid4()
        row = {
            "id": employer_id,
            "name": "ABC Constructions",
            "address_line_1": "1 Main St",
            "suburb": "Carlton",
            "state": None,
            "search_score": 0.95,
            "match_type": "alias",
            "match_details": {"matched_alias": "ABC Cons"},
        }

        match = candidate_from_row(row, "ABC Cons")

        assert match.employer_id == employer_id
        assert match.match_type == MatchType.ALIAS
        assert match.score == pytest.approx(95.0)
        assert match.address == "1 Main St Carlton"
        assert match.matched_alias == "ABC Cons"

    def test_unknown_match_type_is_fuzzy(self) -> None:
        match = candidate_from_row({"id": uuid4(), "name": "X", "match_type": "trigram"}, "X")
        assert match.match_type == MatchType.FUZZY

    def test_row_without_score_is_scored_against_query(self) -> None:
        row = {"id": uuid4(), "name": "ABC Constructions Pty Ltd", "search_score": None}

        match = candidate_from_row(row, "ABC Constructions Pty Ltd")

        assert match.score == pytest.approx(100.0)

    def test_row_without_score_uses_matched_alias(self) -> None:
        row = {
            "id": uuid4(),
            "name": "Brightside Holdings",
            "match_type": "alias",
            "match_details": {"matched_alias": "Acme Scaffolding"},
        }

        match = candidate_from_row(row, "Acme Scaffolding")

        assert match.score == pytest.approx(100.0)


class TestScoreScale:
    async def test_percentage_rpc(self) -> None:
        session = make_session()
        session.execute.return_value = result_with_rows(
            [{"id": uuid4(), "name": "ABC", "search_score": 1, "match_type": "fuzzy"}]
        )

        (match,) = await SqlCanonicalStore(session, score_scale=100.0).search("ABC", limit=10)

        assert match.score == pytest.approx(1.0)

    def test_rejects_non_positive_scale(self) -> None:
        with pytest.raises(ValueError, match="score_scale"):
            SqlCanonicalStore(make_session(), score_scale=0)


class TestSearch:
    async def test_calls_rpc_with_parameters(self) -> None:
        session = make_session()
        session.execute.return_value = result_with_rows(
            [{"id": uuid4(), "name": "ABC", "search_score": 1.0, "match_type": "canonical_name"}]
        )

        matches = await SqlCanonicalStore(session).search("  ABC  ", limit=40)

        statement, params = session.execute.await_args.args
        assert "search_employers_with_aliases" in str(statement)
        assert params == {"p_query": "ABC", "p_limit": 40, "p_alias_match_mode": "any"}
        assert matches[0].match_type == MatchType.EXACT_NAME
        assert matches[0].score == 100.0

    async def test_database_error_becomes_lookup_failed(self) -> None:
        session = make_session()
        session.execute.side_effect = OperationalError("SELECT", {}, Exception("timeout"))

        with pytest.raises(LookupFailed):
            await SqlCanonicalStore(session).search("ABC", limit=10)


class TestMerge:
    async def test_passes_primary_and_duplicates(self) -> None:
        session = make_session()
        result = MagicMock()
        result.scalar_one_or_none.return_value = {"success": True}
        session.execute.return_value = result
        primary, dup = uuid4(), uuid4()

        payload = await SqlCanonicalStore(session).merge_employers(primary, (dup,))

        statement, params = session.execute.await_args.args
        assert "merge_employers" in str(statement)
        assert params == {"p_primary_employer_id": primary, "p_duplicate_employer_ids": [dup]}
        assert payload == {"success": True}

    async def test_error_payload_raises(self) -> None:
        session = make_session()
        result = MagicMock()
        result.scalar_one_or_none.return_value = {"error": "cannot merge employer into itself"}
        session.execute.return_value = result

        with pytest.raises(MergeFailed, match="itself"):
            await SqlCanonicalStore(session).merge_employers(uuid4(), [uuid4()])

    async def test_database_error_raises_merge_failed(self) -> None:
        session = make_session()
        session.execute.side_effect = IntegrityError("SELECT", {}, Exception("fk"))

        with pytest.raises(MergeFailed):
            await SqlCanonicalStore(session).merge_employers(uuid4(), [uuid4()])


class TestWrites:
    async def test_create_employer_flushes(self) -> None:
        session = make_session()

        employer_id = await SqlCanonicalStore(session).create_employer(
            {"name": "ABC", "suburb": "Carlton"}
        )

        (added,) = session.add.call_args.args
        assert isinstance(added, Employer)
        assert added.id == employer_id
        assert added.name == "ABC"
        session.flush.assert_awaited_once()

    async def test_flush_error_becomes_commit_failed(self) -> None:
        session = make_session()
        session.flush.side_effect = IntegrityError("INSERT", {}, Exception("duplicate"))

        with pytest.raises(CommitFailed):
            await SqlCanonicalStore(session).create_employer({"name": "ABC"})

    async def test_rename_returns_previous_name(self) -> None:
        session = make_session()
        employer = Employer(id=uuid4(), name="Old Name")
        session.get.return_value = employer

        previous = await SqlCanonicalStore(session).rename_employer(employer.id, "New Name")

        assert previous == "Old Name"
        assert employer.name == "New Name"

    async def test_rename_missing_employer(self) -> None:
        session = make_session()
        session.get.return_value = None

        with pytest.raises(CommitFailed):
            await SqlCanonicalStore(session).rename_employer(uuid4(), "New Name")

    async def test_update_pending_error_wrapped(self) -> None:
        session = make_session()
        session.execute.side_effect = OperationalError("UPDATE", {}, Exception("gone"))

        with pytest.raises(CommitFailed):
            await SqlCanonicalStore(session).update_pending(uuid4(), status=ImportStatus.ERROR)

    async def test_item_scope_uses_savepoint(self) -> None:
        session = make_session()

        async with SqlCanonicalStore(session).item_scope():
            pass

        session.begin_nested.assert_called_once()

    async def test_update_pending_payload(self) -> None:
        session = make_session()
        pending_id = uuid4()

        await SqlCanonicalStore(session).update_pending_payload(
            pending_id, raw={"aliases": ["ABC"]}, project_associations=[{"project_id": "p1"}]
        )

        (statement,) = session.execute.await_args.args
        assert "UPDATE pending_employers" in str(statement)
        session.begin_nested.assert_called_once()


def aborted() -> OperationalError:
    return OperationalError("SAVEPOINT", {}, Exception("current transaction is aborted"))


class TestSavepoints:
    async def test_item_scope_enter_error_becomes_commit_failed(self) -> None:
        session = make_session()
        session.begin_nested.return_value.__aenter__.side_effect = aborted()

        with pytest.raises(CommitFailed, match="savepoint"):
            async with SqlCanonicalStore(session).item_scope():
                pass

    async def test_item_scope_exit_error_becomes_commit_failed(self) -> None:
        session = make_session()
        session.begin_nested.return_value.__aexit__.side_effect = aborted()

        with pytest.raises(CommitFailed):
            async with SqlCanonicalStore(session).item_scope():
                pass

    async def test_failed_search_rolls_back_its_own_savepoint(self) -> None:
        session = make_session()
        session.execute.side_effect = aborted()

        with pytest.raises(LookupFailed):
            await SqlCanonicalStore(session).search("ABC", limit=10)

        session.begin_nested.assert_called_once()
        # The savepoint saw the error, so it was rolled back rather than released
        exit_args = session.begin_nested.return_value.__aexit__.await_args.args
        assert exit_args[0] is OperationalError

    async def test_merge_runs_in_savepoint(self) -> None:
        session = make_session()
        result = MagicMock()
        result.scalar_one_or_none.return_value = {"success": True}
        session.execute.return_value = result

        await SqlCanonicalStore(session).merge_employers(uuid4(), [uuid4()])

        session.begin_nested.assert_called_once()

    async def test_committer_survives_aborted_transaction(self, make_pending) -> None:
        session = make_session()
        session.begin_nested.return_value.__aenter__.side_effect = aborted()
        first = make_pending("ABC Constructions", role=None)
        second = make_pending("Brightside Holdings", role=None)

        result = await ImportCommitter(SqlCanonicalStore(session)).commit([first, second], {})

        assert len(result.errors) == 2
        assert first.import_status == ImportStatus.ERROR
        assert second.import_status == ImportStatus.ERROR

    async def test_failed_item_does_not_block_the_next(self, make_pending) -> None:
        session = make_session()
        # Only the first item's savepoint fails
        session.begin_nested.return_value.__aenter__.side_effect = chain(
            [aborted()], repeat(None)
        )
        first = make_pending("ABC Constructions", role=None)
        second = make_pending("Brightside Holdings", role=None)

        result = await ImportCommitter(SqlCanonicalStore(session)).commit([first, second], {})

        assert len(result.errors) == 1
        assert result.created == 1
        assert first.import_status == ImportStatus.ERROR
        assert second.import_status == ImportStatus.IMPORTED


class TestCandidateFinderIntegration:
    async def test_scoreless_row_is_still_a_candidate(self) -> None:
        session = make_session()
        employer_id = uuid4()
        session.execute.return_value = result_with_rows(
            [
                {
                    "id": employer_id,
                    "name": "ABC Constructions Pty Ltd",
                    "search_score": None,
                    "match_type": "fuzzy",
                }
            ]
        )

        matches = await CandidateFinder(SqlCanonicalStore(session)).find_candidates(
            "ABC Constructions Pty Ltd"
        )

        assert [m.employer_id for m in matches] == [employer_id]
        assert matches[0].score == pytest.approx(100.0)
