"""Shared fixtures for context-engine tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from context_engine.config import DATA_DIR_ENV, DB_PATH_ENV, load_config
from context_engine.engine import ContextEngine
from context_engine.storage.sqlite import SQLiteStore


@pytest.fixture(autouse=True)
def _no_storage_env(monkeypatch):
    """Keep a developer's storage env vars from leaking into tests."""
    monkeypatch.delenv(DB_PATH_ENV, raising=False)
    monkeypatch.delenv(DATA_DIR_ENV, raising=False)


@pytest.fixture
def tmp_sqlite_db(tmp_path) -> Path:
    return tmp_path / "store" / "context.db"


@pytest.fixture
def store(tmp_sqlite_db):
    s = SQLiteStore(db_path=tmp_sqlite_db)
    yield s
    s.close()


@pytest.fixture
def engine(store):
    e = ContextEngine(config=load_config(config_dict={}), store=store)
    yield e
    e.close()


def numbered_lines(n: int, prefix: str = "line") -> str:
    return "\n".join(f"{prefix} {i}" for i in range(1, n + 1))


@pytest.fixture
def sample_repo(tmp_path) -> Path:
    """A small repository tree with files that should and should not be ingested."""
    root = tmp_path / "repo"
    (root / "src").mkdir(parents=True)
    (root / "docs").mkdir()
    (root / "node_modules" / "leftpad").mkdir(parents=True)
    (root / ".git").mkdir()
    (root / "dist").mkdir()

    (root / "src" / "parser.py").write_text(
        "def parse_tokens(source):\n"
        "    tokens = []\n"
        "    for word in source.split():\n"
        "        tokens.append(word)\n"
        "    return tokens\n"
    )
    (root / "src" / "server.ts").write_text(
        "export function startServer(port: number) {\n"
        "  console.log(`listening on ${port}`);\n"
        "}\n"
    )
    (root / "src" / "big.py").write_text(numbered_lines(200))
    (root / "docs" / "README.md").write_text("# Project\n\nThe tokenizer lives in parser.py.\n")
    (root / "docs" / "logo.png").write_bytes(b"\x89PNG\r\n")
    (root / "node_modules" / "leftpad" / "index.js").write_text("module.exports = 1;\n")
    (root / ".git" / "config.json").write_text("{}\n")
    (root / "dist" / "bundle.js").write_text("var x = 1;\n")
    return root
