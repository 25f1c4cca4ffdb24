"""End-to-end tests through ContextEngine: index, retrieve, compile."""

import os

import pytest

from context_engine import ContextEngine, load_config
from context_engine.config import DB_PATH_ENV
from context_engine.types import ConfigError, HistoryTurn


def _bump_mtime(path, delta_ms: int, stored_mtime_ms: int) -> None:
    ts = (stored_mtime_ms + delta_ms) / 1000
    os.utime(path, (ts, ts))


class TestIndexing:
    def test_first_pass(self, engine, sample_repo):
        report = engine.index_repository(sample_repo)
        assert len(report.documents) == 4
        assert sorted(report.updated) == sorted(d.path for d in report.documents)
        # parser, server, README: 1 chunk each; big.py: 3
        assert report.chunks_written == 6
        assert engine.stats().chunks == 6
        assert report.skipped == []

    def test_second_pass_is_noop(self, engine, sample_repo):
        engine.index_repository(sample_repo)
        before = [(c.id, c.content) for c, _ in engine.store.iter_chunk_embeddings()]
        report = engine.index_repository(sample_repo)
        assert report.updated == []
        assert report.chunks_written == 0
        after = [(c.id, c.content) for c, _ in engine.store.iter_chunk_embeddings()]
        assert sorted(before) == sorted(after)

    def test_older_edit_ignored(self, engine, sample_repo):
        engine.index_repository(sample_repo)
        path = sample_repo / "src" / "parser.py"
        stored = engine.store.get_document(str(path))
        path.write_text("def rewritten():\n    pass\n")
        _bump_mtime(path, -60_000, stored.file_mtime_ms)

        report = engine.index_repository(sample_repo)
        assert report.updated == []
        [chunk] = engine.store.get_chunks_for_path(str(path))
        assert chunk.content.startswith("def parse_tokens")

    def test_newer_edit_rechunked(self, engine, sample_repo):
        engine.index_repository(sample_repo)
        path = sample_repo / "src" / "big.py"
        stored = engine.store.get_document(str(path))
        path.write_text("\n".join(f"row {i}" for i in range(1, 91)))
        _bump_mtime(path, 60_000, stored.file_mtime_ms)

        report = engine.index_repository(sample_repo)
        assert report.updated == [str(path)]
        assert report.chunks_written == 2
        chunks = engine.store.get_chunks_for_path(str(path))
        assert [(c.start_line, c.end_line) for c in chunks] == [(1, 80), (81, 90)]
        assert chunks[1].content.endswith("row 90")

    def test_force_rechunks_with_new_window(self, engine, sample_repo):
        engine.index_repository(sample_repo)
        narrow = ContextEngine(
            config=load_config(config_dict={"chunking": {"max_lines_per_chunk": 50}}),
            store=engine.store,
        )
        report = narrow.index_repository(sample_repo, force=True)
        assert len(report.updated) == 4
        big = str(sample_repo / "src" / "big.py")
        assert len(engine.store.get_chunks_for_path(big)) == 4

    def test_extension_override(self, engine, sample_repo):
        report = engine.index_repository(sample_repo, allowed_extensions=[".ts"])
        assert [os.path.basename(d.path) for d in report.documents] == ["server.ts"]


class TestCompile:
    def test_end_to_end(self, engine, sample_repo):
        engine.index_repository(sample_repo)
        parser = str(sample_repo / "src" / "parser.py")
        history = [
            HistoryTurn(role="user", content="The tokenizer drops punctuation.", priority=2),
            HistoryTurn(role="assistant", content="x" * 8000, priority=0),
        ]
        result = engine.compile(
            "fix tokenizer punctuation handling",
            changed_files=[parser],
            history=history,
            token_budget=2000,
            session_id="task-1",
        )
        assert result.chunks[0].path == parser
        assert f"({parser}:1-6)" in result.prompt
        assert [t.content for t in result.history] == ["The tokenizer drops punctuation."]
        assert sum(c.tokens_estimate for c in result.chunks) <= result.budget_breakdown["chunks"]
        assert result.budget_breakdown == {"available": 1600, "history": 320, "chunks": 1280}

        persisted = engine.load_history("task-1")
        assert [t.content for t in persisted] == ["The tokenizer drops punctuation."]

    def test_default_budget_and_session(self, engine, sample_repo):
        engine.index_repository(sample_repo)
        result = engine.compile("server port", history=[HistoryTurn(role="user", content="hi")])
        assert result.session_id == "default"
        assert result.budget_breakdown["available"] == 8000 - 400
        assert [t.content for t in engine.load_history()] == ["hi"]

    def test_empty_store(self, engine):
        result = engine.compile("anything at all", token_budget=1000)
        assert result.chunks == []
        assert result.prompt.endswith("Relevant Context:\n\n(none)")


class TestConstruction:
    def test_invalid_config_rejected(self, store):
        config = load_config(config_dict={"chunking": {"max_lines_per_chunk": 0}})
        with pytest.raises(ConfigError):
            ContextEngine(config=config, store=store)

    def test_builds_store_from_env(self, tmp_path, monkeypatch, sample_repo):
        db_path = tmp_path / "env" / "ctx.db"
        monkeypatch.setenv(DB_PATH_ENV, str(db_path))
        with ContextEngine(config=load_config(config_dict={})) as engine:
            engine.index_repository(sample_repo)
        assert db_path.exists()

        with ContextEngine(config=load_config(config_dict={})) as engine:
            assert engine.stats().documents == 4


class TestEmbeddingDimension:
    def test_mismatched_embedder_rolls_back_document(self, store, sample_repo):
        engine = ContextEngine(
            config=load_config(config_dict={}),
            store=store,
            embed_fn=lambda text: [1.0] * 5,
        )
        with pytest.raises(ValueError, match="expected 64"):
            engine.index_repository(sample_repo)
        assert store.get_stats().documents == 0
        assert store.get_stats().chunks == 0

    def test_configured_dimension(self, store, sample_repo):
        engine = ContextEngine(
            config=load_config(config_dict={"embedding": {"dimension": 5}}),
            store=store,
            embed_fn=lambda text: [1.0] * 5,
        )
        engine.index_repository(sample_repo)
        assert {len(v) for _, v in store.iter_chunk_embeddings()} == {5}


class TestRetrieveLimit:
    def test_zero_limit_returns_nothing(self, engine, sample_repo):
        engine.index_repository(sample_repo)
        assert engine.retrieve("parse tokens", limit=0) == []

    def test_default_limit(self, engine, sample_repo):
        engine.index_repository(sample_repo)
        assert len(engine.retrieve("parse tokens")) == 6
