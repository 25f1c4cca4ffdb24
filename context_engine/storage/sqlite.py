"""SQLiteStore: primary storage backend using stdlib sqlite3 and FTS5."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from ..core.embedding import pack_vector, unpack_vector
from ..core.store import ContextStore
from ..types import DocumentChunk, HistoryTurn, RepoDocument, StorageError, StoreStats
from .helpers import dt_to_str, str_to_dt, utc_now

logger = logging.getLogger(__name__)

MIGRATIONS_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS schema_migrations (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);
"""

SCHEMA_V1 = """\
CREATE TABLE IF NOT EXISTS documents (
    path TEXT PRIMARY KEY,
    language TEXT NOT NULL,
    content TEXT NOT NULL,
    tokens_estimate INTEGER NOT NULL,
    file_mtime_ms INTEGER NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS chunks (
    id TEXT PRIMARY KEY,
    path TEXT NOT NULL,
    language TEXT NOT NULL,
    content TEXT NOT NULL,
    start_line INTEGER NOT NULL,
    end_line INTEGER NOT NULL,
    tokens_estimate INTEGER NOT NULL,
    embedding BLOB NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE VIRTUAL TABLE IF NOT EXISTS chunks_fts USING fts5(
    id UNINDEXED,
    path,
    content
);

CREATE TABLE IF NOT EXISTS history_turns (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id TEXT NOT NULL,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    priority INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_chunks_path ON chunks(path);
CREATE INDEX IF NOT EXISTS idx_history_session ON history_turns(session_id, created_at);
"""

# load_history walks a session newest-first by rowid.
SCHEMA_V2 = """\
CREATE INDEX IF NOT EXISTS idx_history_session_id ON history_turns(session_id, id);
"""

MIGRATIONS: list[tuple[int, str]] = [
    (1, SCHEMA_V1),
    (2, SCHEMA_V2),
]

CHUNK_COLUMNS = "id, path, language, content, start_line, end_line, tokens_estimate"


def _split_statements(script: str) -> list[str]:
    """Split a migration script on ``;``. Scripts hold plain DDL only."""
    return [s.strip() for s in script.split(";") if s.strip()]


def _row_to_document(row: sqlite3.Row) -> RepoDocument:
    return RepoDocument(
        path=row["path"],
        content=row["content"],
        language=row["language"],
        tokens_estimate=row["tokens_estimate"],
        file_mtime_ms=row["file_mtime_ms"],
    )


def _row_to_chunk(row: sqlite3.Row) -> DocumentChunk:
    return DocumentChunk(
        id=row["id"],
        path=row["path"],
        language=row["language"],
        content=row["content"],
        start_line=row["start_line"],
        end_line=row["end_line"],
        tokens_estimate=row["tokens_estimate"],
    )


def _row_to_turn(row: sqlite3.Row) -> HistoryTurn:
    return HistoryTurn(
        role=row["role"],
        content=row["content"],
        priority=row["priority"] or 0,
        created_at=str_to_dt(row["created_at"]),
    )


class SQLiteStore(ContextStore):
    """SQLite-based storage with an FTS5 chunk index kept in lockstep with chunk rows."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        if str(db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None
        self._tx_depth = 0
        self._ensure_schema()

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            # Autocommit mode: transactions are opened explicitly in transaction().
            self._conn = sqlite3.connect(
                str(self.db_path), check_same_thread=False, isolation_level=None,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
        return self._conn

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        conn.executescript(MIGRATIONS_TABLE_SQL)
        current = self.schema_version()
        for version, sql in MIGRATIONS:
            if version <= current:
                continue
            try:
                with self.transaction():
                    for statement in _split_statements(sql):
                        conn.execute(statement)
                    conn.execute(
                        "INSERT INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                        (version, dt_to_str(utc_now())),
                    )
            except StorageError as e:
                raise StorageError(f"Migration {version} failed: {e}") from e.__cause__
            logger.info("Applied schema migration %d to %s", version, self.db_path)

    def schema_version(self) -> int:
        row = self._get_conn().execute(
            "SELECT MAX(version) AS version FROM schema_migrations"
        ).fetchone()
        return row["version"] or 0

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[None]:
        conn = self._get_conn()
        if self._tx_depth > 0:
            # Join the enclosing transaction; it owns commit and rollback.
            self._tx_depth += 1
            try:
                yield
            finally:
                self._tx_depth -= 1
            return

        conn.execute("BEGIN")
        self._tx_depth = 1
        try:
            yield
        except sqlite3.Error as e:
            self._rollback(conn)
            raise StorageError(str(e)) from e
        except BaseException:
            self._rollback(conn)
            raise
        else:
            try:
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                self._rollback(conn)
                raise StorageError(str(e)) from e
        finally:
            self._tx_depth = 0

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        # SQLite may already have rolled back on its own (e.g. SQLITE_FULL).
        if conn.in_transaction:
            conn.execute("ROLLBACK")

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def upsert_document(self, doc: RepoDocument) -> bool:
        with self.transaction():
            cursor = self._get_conn().execute(
                """INSERT INTO documents
                (path, language, content, tokens_estimate, file_mtime_ms, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(path) DO UPDATE SET
                    language = excluded.language,
                    content = excluded.content,
                    tokens_estimate = excluded.tokens_estimate,
                    file_mtime_ms = excluded.file_mtime_ms,
                    updated_at = excluded.updated_at
                WHERE excluded.file_mtime_ms > documents.file_mtime_ms
                   OR (excluded.file_mtime_ms = documents.file_mtime_ms
                       AND excluded.content != documents.content)""",
                (
                    doc.path,
                    doc.language,
                    doc.content,
                    doc.tokens_estimate,
                    int(doc.file_mtime_ms),
                    dt_to_str(utc_now()),
                ),
            )
        return cursor.rowcount > 0

    def get_document(self, path: str) -> RepoDocument | None:
        row = self._get_conn().execute(
            "SELECT * FROM documents WHERE path = ?", (path,)
        ).fetchone()
        if not row:
            return None
        return _row_to_document(row)

    def list_documents(self) -> list[RepoDocument]:
        rows = self._get_conn().execute(
            "SELECT * FROM documents ORDER BY path"
        ).fetchall()
        return [_row_to_document(r) for r in rows]

    # ------------------------------------------------------------------
    # Chunks + full-text index
    # ------------------------------------------------------------------

    def replace_chunks(
        self,
        path: str,
        chunks: list[DocumentChunk],
        embeddings: list[list[float]],
    ) -> int:
        if len(chunks) != len(embeddings):
            raise ValueError(
                f"Got {len(chunks)} chunks but {len(embeddings)} embeddings for {path}"
            )
        now = dt_to_str(utc_now())
        with self.transaction():
            conn = self._get_conn()
            for chunk, vector in zip(chunks, embeddings):
                conn.execute(
                    """INSERT INTO chunks
                    (id, path, language, content, start_line, end_line,
                     tokens_estimate, embedding, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        path = excluded.path,
                        language = excluded.language,
                        content = excluded.content,
                        start_line = excluded.start_line,
                        end_line = excluded.end_line,
                        tokens_estimate = excluded.tokens_estimate,
                        embedding = excluded.embedding,
                        updated_at = excluded.updated_at""",
                    (
                        chunk.id,
                        chunk.path,
                        chunk.language,
                        chunk.content,
                        chunk.start_line,
                        chunk.end_line,
                        chunk.tokens_estimate,
                        pack_vector(vector),
                        now,
                    ),
                )
                conn.execute("DELETE FROM chunks_fts WHERE id = ?", (chunk.id,))
                conn.execute(
                    "INSERT INTO chunks_fts (id, path, content) VALUES (?, ?, ?)",
                    (chunk.id, chunk.path, chunk.content),
                )

            # Drop ranges the document no longer produces (e.g. it shrank).
            keep = {c.id for c in chunks}
            stale = [
                r["id"] for r in conn.execute(
                    "SELECT id FROM chunks WHERE path = ?", (path,)
                ).fetchall()
                if r["id"] not in keep
            ]
            for chunk_id in stale:
                conn.execute("DELETE FROM chunks WHERE id = ?", (chunk_id,))
                conn.execute("DELETE FROM chunks_fts WHERE id = ?", (chunk_id,))
            if stale:
                logger.debug("Pruned %d stale chunks of %s", len(stale), path)
        return len(chunks)

    def get_chunk(self, chunk_id: str) -> DocumentChunk | None:
        row = self._get_conn().execute(
            f"SELECT {CHUNK_COLUMNS} FROM chunks WHERE id = ?", (chunk_id,)
        ).fetchone()
        if not row:
            return None
        return _row_to_chunk(row)

    def get_chunks_for_path(self, path: str) -> list[DocumentChunk]:
        rows = self._get_conn().execute(
            f"SELECT {CHUNK_COLUMNS} FROM chunks WHERE path = ? ORDER BY start_line",
            (path,),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def iter_chunk_embeddings(self) -> Iterator[tuple[DocumentChunk, list[float]]]:
        rows = self._get_conn().execute(
            f"SELECT {CHUNK_COLUMNS}, embedding FROM chunks ORDER BY rowid"
        ).fetchall()
        for row in rows:
            yield _row_to_chunk(row), unpack_vector(row["embedding"])

    def search_full_text(self, match_query: str, limit: int) -> list[tuple[DocumentChunk, float]]:
        try:
            rows = self._get_conn().execute(
                """SELECT c.id, c.path, c.language, c.content, c.start_line,
                          c.end_line, c.tokens_estimate, bm25(chunks_fts) AS rank
                   FROM chunks_fts
                   JOIN chunks c ON c.id = chunks_fts.id
                   WHERE chunks_fts MATCH ?
                   ORDER BY rank
                   LIMIT ?""",
                (match_query, limit),
            ).fetchall()
        except sqlite3.OperationalError as e:
            raise StorageError(f"Full-text query {match_query!r} failed: {e}") from e
        return [(_row_to_chunk(r), float(r["rank"])) for r in rows]

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def append_history(self, session_id: str, turns: list[HistoryTurn]) -> int:
        if not turns:
            return 0
        created_at = dt_to_str(utc_now())
        with self.transaction():
            conn = self._get_conn()
            for turn in turns:
                conn.execute(
                    """INSERT INTO history_turns
                    (session_id, role, content, priority, created_at)
                    VALUES (?, ?, ?, ?, ?)""",
                    (session_id, turn.role, turn.content, turn.priority or 0, created_at),
                )
        return len(turns)

    def load_history(self, session_id: str, limit: int = 50) -> list[HistoryTurn]:
        rows = self._get_conn().execute(
            """SELECT role, content, priority, created_at
               FROM history_turns
               WHERE session_id = ?
               ORDER BY id DESC
               LIMIT ?""",
            (session_id, limit),
        ).fetchall()
        return [_row_to_turn(r) for r in reversed(rows)]

    # ------------------------------------------------------------------
    # Stats / lifecycle
    # ------------------------------------------------------------------

    def get_stats(self) -> StoreStats:
        conn = self._get_conn()
        return StoreStats(
            documents=conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0],
            chunks=conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0],
            history_turns=conn.execute("SELECT COUNT(*) FROM history_turns").fetchone()[0],
            sessions=conn.execute(
                "SELECT COUNT(DISTINCT session_id) FROM history_turns"
            ).fetchone()[0],
            schema_version=self.schema_version(),
        )

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None
