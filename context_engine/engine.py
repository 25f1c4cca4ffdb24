"""ContextEngine: composition root wiring store, indexing, retrieval and compilation."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Iterable

from .config import load_config, resolve_db_path, validate_config
from .core.chunker import Chunker
from .core.compiler import ContextCompiler
from .core.embedding import create_embedder
from .core.ingestor import RepoIngestor
from .core.lexical_search import LexicalSearch
from .core.retriever import RetrievalFuser
from .core.store import ContextStore
from .core.vector_search import VectorSearch
from .storage.sqlite import SQLiteStore
from .token_counter import create_token_counter
from .types import (
    CompileResult,
    ConfigError,
    ContextEngineConfig,
    DocumentChunk,
    HistoryTurn,
    IndexReport,
    RepoDocument,
    ScoredChunk,
    StoreStats,
)

logger = logging.getLogger(__name__)


class ContextEngine:
    """Main entry point: index a repository, rank its chunks, compile prompts.

    The store is built once here (or injected) and handed to every component;
    nothing else opens its own handle.
    """

    def __init__(
        self,
        config: ContextEngineConfig | None = None,
        config_path: str | Path | None = None,
        store: ContextStore | None = None,
        token_counter: Callable[[str], int] | None = None,
        embed_fn: Callable[[str], list[float]] | None = None,
    ) -> None:
        self.config = config or load_config(config_path)
        errors = validate_config(self.config)
        if errors:
            raise ConfigError("Invalid configuration: " + "; ".join(errors))

        self.token_counter = token_counter or create_token_counter(self.config.token_counter)
        self.embed_fn = embed_fn or create_embedder(
            self.config.embedding.type, self.config.embedding.dimension,
        )

        if store is None:
            db_path = resolve_db_path(self.config)
            logger.info("Opening context store at %s", db_path)
            store = SQLiteStore(db_path)
        self.store = store

        self.ingestor = RepoIngestor(self.store, self.config.ingest, self.token_counter)
        self.chunker = Chunker(
            self.store,
            self.config.chunking,
            self.embed_fn,
            self.token_counter,
            dimension=self.config.embedding.dimension,
        )
        self.lexical = LexicalSearch(self.store, self.config.retrieval.fallback_term)
        self.vector = VectorSearch(self.store, self.embed_fn)
        self.fuser = RetrievalFuser(self.lexical, self.vector, self.config.retrieval)
        self.compiler = ContextCompiler(
            self.store,
            self.config.compiler,
            self.token_counter,
            default_session_id=self.config.session_id,
        )

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    def index_repository(
        self,
        root: str | Path,
        allowed_extensions: Iterable[str] | None = None,
        force: bool = False,
    ) -> IndexReport:
        """Ingest ``root`` and re-chunk every document whose stored copy changed.

        Each document and its chunks commit in one transaction. ``force``
        re-chunks unchanged documents too (e.g. after changing the window size).
        """
        report = IndexReport()

        def on_document(doc: RepoDocument) -> None:
            chunks = self.chunker.chunk([doc])
            report.updated.append(doc.path)
            report.chunks_written += len(chunks)

        report.documents = self.ingestor.ingest(root, allowed_extensions, on_document)
        report.skipped = list(self.ingestor.skipped)

        if force:
            updated = set(report.updated)
            for doc in report.documents:
                if doc.path in updated:
                    continue
                stored = self.store.get_document(doc.path)
                if stored is None:
                    continue
                report.chunks_written += len(self.chunker.chunk([stored]))
                report.updated.append(doc.path)

        logger.info(
            "Indexed %s: %d documents read, %d updated, %d chunks written",
            root, len(report.documents), len(report.updated), report.chunks_written,
        )
        return report

    # ------------------------------------------------------------------
    # Retrieval / compilation
    # ------------------------------------------------------------------

    def known_chunks_for(self, changed_files: Iterable[str]) -> list[DocumentChunk]:
        chunks: list[DocumentChunk] = []
        for path in changed_files:
            chunks.extend(self.store.get_chunks_for_path(path))
        return chunks

    def retrieve_scored(
        self,
        query: str,
        changed_files: Iterable[str] = (),
        limit: int | None = None,
        known_chunks: Iterable[DocumentChunk] | None = None,
    ) -> list[ScoredChunk]:
        changed = list(changed_files)
        if known_chunks is None:
            known_chunks = self.known_chunks_for(changed)
        return self.fuser.fuse_scored(
            query,
            changed,
            known_chunks,
            limit if limit is not None else self.config.retrieval.default_limit,
        )

    def retrieve(
        self,
        query: str,
        changed_files: Iterable[str] = (),
        limit: int | None = None,
        known_chunks: Iterable[DocumentChunk] | None = None,
    ) -> list[DocumentChunk]:
        """Ranked chunks for ``query``. Changed files' chunks are always candidates."""
        return [s.chunk for s in self.retrieve_scored(query, changed_files, limit, known_chunks)]

    def compile(
        self,
        objective: str,
        changed_files: Iterable[str] = (),
        history: Iterable[HistoryTurn] = (),
        token_budget: int | None = None,
        session_id: str | None = None,
        limit: int | None = None,
    ) -> CompileResult:
        """Retrieve chunks for ``objective`` and compile them with ``history``."""
        changed = list(changed_files)
        candidates = self.retrieve(objective, changed, limit)
        return self.compiler.compile(
            objective,
            changed,
            candidates,
            list(history),
            token_budget if token_budget is not None else self.config.compiler.default_token_budget,
            session_id=session_id,
        )

    def load_history(self, session_id: str | None = None, limit: int = 50) -> list[HistoryTurn]:
        return self.store.load_history(session_id or self.config.session_id, limit)

    def stats(self) -> StoreStats:
        return self.store.get_stats()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        self.store.close()

    def __enter__(self) -> ContextEngine:
        return self

    def __exit__(self, *exc) -> None:
        self.close()
