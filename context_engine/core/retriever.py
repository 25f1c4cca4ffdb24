"""RetrievalFuser: blend lexical and vector candidates into one ranked list."""

from __future__ import annotations

import logging
from typing import Iterable

from ..types import DocumentChunk, RetrievalConfig, ScoredChunk
from .lexical_search import LexicalSearch
from .vector_search import VectorSearch

logger = logging.getLogger(__name__)


class RetrievalFuser:
    """Fuse both search channels with a boost for files the caller changed.

    score(chunk) = sum over channels that returned it of
        lexical:  rank * lexical_weight     + boost(path)
        vector:   similarity * vector_weight + boost(path)
    Known chunks that neither channel returned get ``boost(path)`` alone.
    """

    def __init__(
        self,
        lexical: LexicalSearch,
        vector: VectorSearch,
        config: RetrievalConfig | None = None,
    ) -> None:
        self.lexical = lexical
        self.vector = vector
        self.config = config or RetrievalConfig()

    def candidate_count(self, limit: int) -> int:
        return max(limit * self.config.oversample_factor, self.config.min_candidates)

    def changed_file_boost(self, path: str, changed_files: set[str]) -> float:
        return self.config.changed_file_boost if path in changed_files else 0.0

    def fuse_scored(
        self,
        query: str,
        changed_files: Iterable[str],
        known_chunks: Iterable[DocumentChunk],
        limit: int,
    ) -> list[ScoredChunk]:
        changed = set(changed_files)
        candidates = self.candidate_count(limit)
        lexical_hits = self.lexical.query(query, candidates)
        vector_hits = self.vector.query(query, candidates)

        # Dict insertion order: lexical first, then vector, then known chunks.
        by_id: dict[str, ScoredChunk] = {}
        for hit in lexical_hits:
            entry = by_id.setdefault(hit.chunk.id, ScoredChunk(chunk=hit.chunk))
            entry.score += (
                hit.rank * self.config.lexical_weight
                + self.changed_file_boost(hit.chunk.path, changed)
            )
        for hit in vector_hits:
            entry = by_id.setdefault(hit.chunk.id, ScoredChunk(chunk=hit.chunk))
            entry.score += (
                hit.similarity * self.config.vector_weight
                + self.changed_file_boost(hit.chunk.path, changed)
            )
        for chunk in known_chunks:
            if chunk.id not in by_id:
                by_id[chunk.id] = ScoredChunk(
                    chunk=chunk, score=self.changed_file_boost(chunk.path, changed),
                )

        ranked = sorted(by_id.values(), key=lambda s: s.score, reverse=True)
        logger.debug(
            "Fused %d lexical + %d vector hits into %d candidates",
            len(lexical_hits), len(vector_hits), len(ranked),
        )
        return ranked[:limit]

    def fuse(
        self,
        query: str,
        changed_files: Iterable[str],
        known_chunks: Iterable[DocumentChunk],
        limit: int,
    ) -> list[DocumentChunk]:
        return [s.chunk for s in self.fuse_scored(query, changed_files, known_chunks, limit)]
