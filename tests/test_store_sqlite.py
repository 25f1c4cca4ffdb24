"""Tests for SQLite storage backend."""

import sqlite3

import pytest

from context_engine.core.embedding import embed_text
from context_engine.storage import sqlite as sqlite_module
from context_engine.storage.sqlite import MIGRATIONS, SQLiteStore
from context_engine.types import DocumentChunk, HistoryTurn, RepoDocument, StorageError


def _make_doc(
    path: str = "src/app.py",
    content: str = "print('hello')\n",
    mtime: int = 1_000,
) -> RepoDocument:
    return RepoDocument(
        path=path,
        content=content,
        language="py",
        tokens_estimate=len(content) // 4,
        file_mtime_ms=mtime,
    )


def _make_chunk(
    path: str = "src/app.py",
    start: int = 1,
    end: int = 2,
    content: str = "alpha beta gamma",
) -> DocumentChunk:
    return DocumentChunk(
        id=f"{path}:{start}-{end}",
        path=path,
        language="py",
        content=content,
        start_line=start,
        end_line=end,
        tokens_estimate=4,
    )


def _store_chunks(store, path, chunks):
    return store.replace_chunks(path, chunks, [embed_text(c.content) for c in chunks])


class TestSchema:
    def test_all_migrations_applied(self, store):
        assert store.schema_version() == MIGRATIONS[-1][0]

    def test_reopen_is_noop(self, tmp_sqlite_db):
        s1 = SQLiteStore(tmp_sqlite_db)
        s1.upsert_document(_make_doc())
        s1.close()

        s2 = SQLiteStore(tmp_sqlite_db)
        count = s2._get_conn().execute("SELECT COUNT(*) FROM schema_migrations").fetchone()[0]
        assert count == len(MIGRATIONS)
        assert s2.get_document("src/app.py") is not None
        s2.close()

    def test_failed_migration_rolls_back(self, tmp_sqlite_db, monkeypatch):
        SQLiteStore(tmp_sqlite_db).close()
        broken = (
            "CREATE TABLE extra (x INTEGER);\n"
            "INSERT INTO missing_table VALUES (1);\n"
        )
        monkeypatch.setattr(sqlite_module, "MIGRATIONS", [*MIGRATIONS, (3, broken)])

        with pytest.raises(StorageError, match="Migration 3 failed"):
            SQLiteStore(tmp_sqlite_db)

        conn = sqlite3.connect(str(tmp_sqlite_db))
        version = conn.execute("SELECT MAX(version) FROM schema_migrations").fetchone()[0]
        extra = conn.execute(
            "SELECT name FROM sqlite_master WHERE name = 'extra'"
        ).fetchone()
        conn.close()
        assert version == MIGRATIONS[-1][0]
        assert extra is None

    def test_migration_rows_record_applied_at(self, store):
        rows = store._get_conn().execute(
            "SELECT version, applied_at FROM schema_migrations ORDER BY version"
        ).fetchall()
        assert [r["version"] for r in rows] == [v for v, _ in MIGRATIONS]
        assert all(r["applied_at"] for r in rows)


class TestDocuments:
    def test_insert_and_get(self, store):
        assert store.upsert_document(_make_doc()) is True
        doc = store.get_document("src/app.py")
        assert doc is not None
        assert doc.content == "print('hello')\n"
        assert doc.language == "py"
        assert doc.file_mtime_ms == 1_000

    def test_get_missing(self, store):
        assert store.get_document("nope.py") is None

    def test_newer_mtime_overwrites(self, store):
        store.upsert_document(_make_doc(content="old", mtime=1_000))
        assert store.upsert_document(_make_doc(content="new", mtime=2_000)) is True
        assert store.get_document("src/app.py").content == "new"

    def test_older_mtime_never_overwrites(self, store):
        store.upsert_document(_make_doc(content="new", mtime=2_000))
        assert store.upsert_document(_make_doc(content="old", mtime=1_000)) is False
        doc = store.get_document("src/app.py")
        assert doc.content == "new"
        assert doc.file_mtime_ms == 2_000

    def test_same_mtime_same_content_not_applied(self, store):
        store.upsert_document(_make_doc())
        assert store.upsert_document(_make_doc()) is False

    def test_same_mtime_new_content_applied(self, store):
        store.upsert_document(_make_doc(content="a"))
        assert store.upsert_document(_make_doc(content="b")) is True
        assert store.get_document("src/app.py").content == "b"

    def test_list_documents_sorted(self, store):
        store.upsert_document(_make_doc(path="b.py"))
        store.upsert_document(_make_doc(path="a.py"))
        assert [d.path for d in store.list_documents()] == ["a.py", "b.py"]


class TestChunks:
    def test_store_and_get(self, store):
        _store_chunks(store, "src/app.py", [_make_chunk()])
        chunk = store.get_chunk("src/app.py:1-2")
        assert chunk is not None
        assert chunk.content == "alpha beta gamma"
        assert chunk.start_line == 1
        assert chunk.end_line == 2

    def test_rewrite_same_ids_no_duplicates(self, store):
        chunks = [_make_chunk(start=1, end=2), _make_chunk(start=3, end=4)]
        _store_chunks(store, "src/app.py", chunks)
        _store_chunks(store, "src/app.py", chunks)
        assert store.get_stats().chunks == 2
        assert len(store.search_full_text("alpha", 10)) == 2

    def test_stale_chunks_pruned_with_index_entries(self, store):
        _store_chunks(store, "src/app.py", [
            _make_chunk(start=1, end=2, content="keep this"),
            _make_chunk(start=3, end=4, content="obsolete zebra"),
        ])
        _store_chunks(store, "src/app.py", [_make_chunk(start=1, end=2, content="keep this")])

        assert store.get_chunk("src/app.py:3-4") is None
        assert store.search_full_text("zebra", 10) == []
        assert [c.id for c in store.get_chunks_for_path("src/app.py")] == ["src/app.py:1-2"]

    def test_other_paths_untouched(self, store):
        _store_chunks(store, "a.py", [_make_chunk(path="a.py")])
        _store_chunks(store, "b.py", [_make_chunk(path="b.py")])
        _store_chunks(store, "a.py", [])
        assert store.get_chunk("b.py:1-2") is not None
        assert store.get_chunk("a.py:1-2") is None

    def test_index_follows_content_update(self, store):
        _store_chunks(store, "src/app.py", [_make_chunk(content="first walrus")])
        _store_chunks(store, "src/app.py", [_make_chunk(content="second narwhal")])
        assert store.search_full_text("walrus", 10) == []
        hits = store.search_full_text("narwhal", 10)
        assert [c.id for c, _ in hits] == ["src/app.py:1-2"]

    def test_mismatched_embeddings(self, store):
        with pytest.raises(ValueError):
            store.replace_chunks("src/app.py", [_make_chunk()], [])

    def test_embeddings_round_trip(self, store):
        _store_chunks(store, "src/app.py", [_make_chunk()])
        [(chunk, vector)] = list(store.iter_chunk_embeddings())
        assert chunk.id == "src/app.py:1-2"
        assert vector == pytest.approx(embed_text("alpha beta gamma"), abs=1e-6)

    def test_corrupted_embedding_decodes_empty(self, store):
        _store_chunks(store, "src/app.py", [_make_chunk()])
        store._get_conn().execute("UPDATE chunks SET embedding = X'010203'")
        [(chunk, vector)] = list(store.iter_chunk_embeddings())
        assert chunk.id == "src/app.py:1-2"
        assert vector == []


class TestFullTextSearch:
    def test_best_match_first(self, store):
        _store_chunks(store, "src/app.py", [
            _make_chunk(start=1, end=2, content="parser parser parser tokens"),
            _make_chunk(start=3, end=4, content="a long line about many other things and one parser"),
        ])
        hits = store.search_full_text("parser", 10)
        assert [c.id for c, _ in hits] == ["src/app.py:1-2", "src/app.py:3-4"]
        # bm25: lower is better
        assert hits[0][1] <= hits[1][1]

    def test_limit(self, store):
        _store_chunks(store, "src/app.py", [
            _make_chunk(start=i, end=i, content=f"shared term {i}") for i in range(1, 6)
        ])
        assert len(store.search_full_text("shared", 3)) == 3

    def test_bad_query_raises_storage_error(self, store):
        with pytest.raises(StorageError):
            store.search_full_text('"unterminated', 5)


class TestTransactions:
    def test_rollback_on_exception(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction():
                store.upsert_document(_make_doc())
                _store_chunks(store, "src/app.py", [_make_chunk()])
                raise RuntimeError("boom")
        assert store.get_document("src/app.py") is None
        assert store.get_chunk("src/app.py:1-2") is None
        assert store.search_full_text("alpha", 10) == []

    def test_sqlite_error_wrapped_and_rolled_back(self, store):
        with pytest.raises(StorageError):
            with store.transaction():
                store.upsert_document(_make_doc())
                store._get_conn().execute("INSERT INTO missing_table VALUES (1)")
        assert store.get_document("src/app.py") is None

    def test_error_after_engine_rollback_still_wrapped(self, store):
        with pytest.raises(StorageError, match="disk full"):
            with store.transaction():
                store.upsert_document(_make_doc())
                store._get_conn().execute("ROLLBACK")
                raise sqlite3.OperationalError("disk full")
        assert store.get_document("src/app.py") is None

    def test_exception_after_engine_rollback_propagates(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction():
                store._get_conn().execute("ROLLBACK")
                raise RuntimeError("boom")
        store.upsert_document(_make_doc())
        assert store.get_document("src/app.py") is not None

    def test_commit_persists_across_handles(self, store, tmp_sqlite_db):
        with store.transaction():
            store.upsert_document(_make_doc(path="a.py"))
            store.upsert_document(_make_doc(path="b.py"))
        other = SQLiteStore(tmp_sqlite_db)
        assert {d.path for d in other.list_documents()} == {"a.py", "b.py"}
        other.close()


class TestHistory:
    def test_append_and_load_chronological(self, store):
        store.append_history("s1", [
            HistoryTurn(role="user", content="first", priority=1),
            HistoryTurn(role="assistant", content="second"),
        ])
        store.append_history("s1", [HistoryTurn(role="user", content="third")])
        turns = store.load_history("s1")
        assert [t.content for t in turns] == ["first", "second", "third"]
        assert turns[0].priority == 1
        assert turns[0].created_at is not None

    def test_limit_keeps_most_recent(self, store):
        store.append_history("s1", [
            HistoryTurn(role="user", content=f"turn {i}") for i in range(5)
        ])
        turns = store.load_history("s1", limit=2)
        assert [t.content for t in turns] == ["turn 3", "turn 4"]

    def test_sessions_isolated(self, store):
        store.append_history("s1", [HistoryTurn(role="user", content="one")])
        store.append_history("s2", [HistoryTurn(role="user", content="two")])
        assert [t.content for t in store.load_history("s2")] == ["two"]
        assert store.load_history("missing") == []

    def test_append_empty(self, store):
        assert store.append_history("s1", []) == 0


def test_stats(store):
    store.upsert_document(_make_doc())
    _store_chunks(store, "src/app.py", [_make_chunk()])
    store.append_history("s1", [HistoryTurn(role="user", content="hi")])
    store.append_history("s2", [HistoryTurn(role="user", content="hi")])
    stats = store.get_stats()
    assert stats.documents == 1
    assert stats.chunks == 1
    assert stats.history_turns == 2
    assert stats.sessions == 2
    assert stats.schema_version == MIGRATIONS[-1][0]
