"""ContextStore abstract base class: the single persistence boundary."""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from typing import Iterator

from ..types import DocumentChunk, HistoryTurn, RepoDocument, StoreStats


class ContextStore(ABC):
    """Pluggable storage for documents, chunks, the full-text index and history."""

    @abstractmethod
    def transaction(self) -> AbstractContextManager[None]:
        """Atomic unit of work. All writes inside commit or none do.

        Nested use joins the outermost transaction.
        """

    @abstractmethod
    def schema_version(self) -> int:
        """Highest applied migration number."""

    @abstractmethod
    def upsert_document(self, doc: RepoDocument) -> bool:
        """Insert or update a document unless the stored copy has a newer mtime.

        Returns True if the stored row now holds ``doc``.
        """

    @abstractmethod
    def get_document(self, path: str) -> RepoDocument | None:
        """Point lookup by path. None if not found."""

    @abstractmethod
    def list_documents(self) -> list[RepoDocument]:
        """All documents, ordered by path."""

    @abstractmethod
    def replace_chunks(
        self,
        path: str,
        chunks: list[DocumentChunk],
        embeddings: list[list[float]],
    ) -> int:
        """Upsert the chunk set of one document with its full-text entries.

        Chunks of ``path`` whose ids are not in ``chunks`` are removed.
        Returns the number of chunks written.
        """

    @abstractmethod
    def get_chunk(self, chunk_id: str) -> DocumentChunk | None:
        """Point lookup by chunk id. None if not found."""

    @abstractmethod
    def get_chunks_for_path(self, path: str) -> list[DocumentChunk]:
        """All chunks of a document, ordered by start line."""

    @abstractmethod
    def iter_chunk_embeddings(self) -> Iterator[tuple[DocumentChunk, list[float]]]:
        """Every stored chunk with its decoded embedding."""

    @abstractmethod
    def search_full_text(self, match_query: str, limit: int) -> list[tuple[DocumentChunk, float]]:
        """Ranked full-text lookup. Returns (chunk, engine rank), best first.

        The engine rank is bm25: lower means more relevant.
        """

    @abstractmethod
    def append_history(self, session_id: str, turns: list[HistoryTurn]) -> int:
        """Append turns to a session's log. Returns count written."""

    @abstractmethod
    def load_history(self, session_id: str, limit: int = 50) -> list[HistoryTurn]:
        """Most recent ``limit`` turns of a session, oldest first."""

    @abstractmethod
    def get_stats(self) -> StoreStats:
        """Row counts and schema version."""

    def close(self) -> None:
        """Release the underlying handle."""
