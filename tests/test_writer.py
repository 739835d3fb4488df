"""
Tests for portfolio_ingest/writer.py.

The Supabase query builder is replaced by a small recording chain so the
chunking, retry and error paths can be exercised without a network.
"""

from __future__ import annotations

import pytest

from portfolio_ingest.errors import ConfigurationError, DocumentWriteError
from portfolio_ingest.models import ComponentDocument, ProjectDocument
from portfolio_ingest.writer import (
    SupabaseDocumentStore,
    _should_retry,
    load_existing,
    write_documents,
)
from tests.fakes import FakeDocumentStore, FakeResponse


class FakeQuery:
    def __init__(self, table: "FakeTable", action: str, payload=None):
        self.table = table
        self.action = action
        self.payload = payload
        self.filters: list[tuple] = []

    def in_(self, column, values):
        self.filters.append(("in", column, list(values)))
        return self

    def neq(self, column, value):
        self.filters.append(("neq", column, value))
        return self

    def execute(self):
        self.table.executed.append(self)
        outcome = self.table.outcomes.pop(0) if self.table.outcomes else None
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, FakeResponse):
            return outcome
        if self.action == "select":
            ids = self.filters[0][2]
            return FakeResponse([self.table.rows[i] for i in ids if i in self.table.rows])
        if self.action == "delete":
            deleted = list(self.table.rows.values())
            self.table.rows.clear()
            return FakeResponse(deleted)
        return FakeResponse(list(self.payload))


class FakeTable:
    def __init__(self, rows=None, outcomes=None):
        self.rows = dict(rows or {})
        self.outcomes = list(outcomes or [])
        self.executed: list[FakeQuery] = []
        self.upsert_kwargs: list[dict] = []

    def select(self, columns):
        return FakeQuery(self, "select")

    def delete(self):
        return FakeQuery(self, "delete")

    def upsert(self, rows, **kwargs):
        self.upsert_kwargs.append(kwargs)
        return FakeQuery(self, "upsert", rows)


class FakeClient:
    def __init__(self, table: FakeTable):
        self._table = table
        self.table_names: list[str] = []

    def table(self, name):
        self.table_names.append(name)
        return self._table


def _document(project_id: str) -> ProjectDocument:
    return ProjectDocument(
        id=project_id,
        slug=f"{project_id}-house",
        name="House",
        category="kitchen",
        components=[ComponentDocument(id=f"{project_id}-kitchen", category="kitchen")],
    )


def _store(table: FakeTable, **kwargs) -> SupabaseDocumentStore:
    return SupabaseDocumentStore(FakeClient(table), "projects", base_delay=0.0, **kwargs)


class TestSupabaseDocumentStore:
    def test_upsert_chunks_on_id(self):
        table = FakeTable()
        store = _store(table, chunk_size=2)
        rows = [_document(str(i)).to_row() for i in range(5)]

        assert store.upsert(rows) == 5

        sizes = [len(query.payload) for query in table.executed]
        assert sizes == [2, 2, 1]
        assert all(kwargs == {"on_conflict": "id"} for kwargs in table.upsert_kwargs)

    def test_transient_error_is_retried(self):
        table = FakeTable(outcomes=[RuntimeError("status=503 upstream")])
        store = _store(table, max_attempts=3)

        assert store.upsert([_document("1").to_row()]) == 1
        assert len(table.executed) == 2

    def test_permanent_error_raises_with_chunk(self):
        table = FakeTable(outcomes=[RuntimeError("status=400 bad column")])
        store = _store(table, max_attempts=3)

        with pytest.raises(DocumentWriteError) as excinfo:
            store.upsert([_document("7").to_row()])

        assert len(table.executed) == 1
        assert [row["id"] for row in excinfo.value.chunk] == ["7"]
        assert "7" in str(excinfo.value)

    def test_response_error_is_a_failure(self):
        table = FakeTable(outcomes=[FakeResponse(error={"message": "denied"})])

        with pytest.raises(DocumentWriteError):
            _store(table, max_attempts=1).upsert([_document("1").to_row()])

    def test_fetch_existing_by_id(self):
        row = _document("3").to_row()
        table = FakeTable(rows={"3": row})
        store = _store(table, chunk_size=1)

        found = store.fetch_existing(["3", "4"])

        assert found == {"3": row}
        assert [query.filters for query in table.executed] == [
            [("in", "id", ["3"])],
            [("in", "id", ["4"])],
        ]

    def test_clear_deletes_every_row(self):
        table = FakeTable(rows={"1": {"id": "1"}, "2": {"id": "2"}})

        assert _store(table).clear() == 2
        assert table.rows == {}
        assert table.executed[0].filters == [("neq", "id", "")]

    def test_rejects_non_positive_chunk_size(self):
        with pytest.raises(ValueError):
            _store(FakeTable(), chunk_size=0)


@pytest.mark.parametrize(
    ("message", "expected"),
    [
        ("status=503 service unavailable", True),
        ("{'code': '429', 'message': 'slow down'}", True),
        ("read timed out", True),
        ("status=400 bad request", False),
        ("duplicate key value violates unique constraint", False),
    ],
)
def test_should_retry(message, expected):
    assert _should_retry(RuntimeError(message)) is expected


def test_write_documents_upserts_full_rows():
    store = FakeDocumentStore()

    written = write_documents(store, [_document("1"), _document("2")], dry_run=False)

    assert written == 2
    assert store.rows["1"]["components"][0]["id"] == "1-kitchen"
    assert len(store.upsert_calls) == 1


def test_write_documents_dry_run_touches_nothing():
    store = FakeDocumentStore()

    assert write_documents(store, [_document("1")], dry_run=True) == 0
    assert store.upsert_calls == []


def test_write_documents_requires_store():
    with pytest.raises(ConfigurationError):
        write_documents(None, [_document("1")], dry_run=False)


def test_write_documents_with_nothing_to_write():
    store = FakeDocumentStore()
    assert write_documents(store, [], dry_run=False) == 0
    assert store.upsert_calls == []


def test_load_existing_skips_unreadable_rows(caplog):
    store = FakeDocumentStore(rows={"1": _document("1").to_row(), "2": {"id": "2", "components": "nope"}})

    documents = load_existing(store, ["1", "2", "3"])

    assert list(documents) == ["1"]
    assert documents["1"].components[0].id == "1-kitchen"
    assert "existing_document_unreadable" in caplog.text
