"""Chunker: split documents into fixed line windows and index them."""

from __future__ import annotations

import logging
from typing import Callable

from ..token_counter import estimate_tokens
from ..types import ChunkingConfig, DocumentChunk, RepoDocument, make_chunk_id
from .embedding import DEFAULT_DIMENSION, embed_text
from .store import ContextStore

logger = logging.getLogger(__name__)


def split_document(
    doc: RepoDocument,
    max_lines_per_chunk: int,
    token_counter: Callable[[str], int] = estimate_tokens,
) -> list[DocumentChunk]:
    """Partition a document's lines into consecutive, non-overlapping windows.

    A document of L lines yields ceil(L / W) chunks covering 1..L; the last
    window holds the remainder.
    """
    if max_lines_per_chunk < 1:
        raise ValueError(f"max_lines_per_chunk must be >= 1, got {max_lines_per_chunk}")
    lines = doc.content.split("\n")
    chunks: list[DocumentChunk] = []
    for i in range(0, len(lines), max_lines_per_chunk):
        segment = "\n".join(lines[i:i + max_lines_per_chunk])
        start_line = i + 1
        end_line = min(i + max_lines_per_chunk, len(lines))
        chunks.append(DocumentChunk(
            id=make_chunk_id(doc.path, start_line, end_line),
            path=doc.path,
            language=doc.language,
            content=segment,
            start_line=start_line,
            end_line=end_line,
            tokens_estimate=token_counter(segment),
        ))
    return chunks


class Chunker:
    """Chunk, embed and persist documents, one atomic transaction per document."""

    def __init__(
        self,
        store: ContextStore,
        config: ChunkingConfig | None = None,
        embed_fn: Callable[[str], list[float]] | None = None,
        token_counter: Callable[[str], int] | None = None,
        dimension: int = DEFAULT_DIMENSION,
    ) -> None:
        self.store = store
        self.config = config or ChunkingConfig()
        self.embed_fn = embed_fn or embed_text
        self.token_counter = token_counter or estimate_tokens
        self.dimension = dimension

    def chunk(
        self,
        documents: list[RepoDocument],
        max_lines_per_chunk: int | None = None,
    ) -> list[DocumentChunk]:
        window = (
            max_lines_per_chunk if max_lines_per_chunk is not None
            else self.config.max_lines_per_chunk
        )
        all_chunks: list[DocumentChunk] = []
        for doc in documents:
            chunks = split_document(doc, window, self.token_counter)
            embeddings = [self.embed_fn(c.content) for c in chunks]
            for chunk, vector in zip(chunks, embeddings):
                if len(vector) != self.dimension:
                    raise ValueError(
                        f"Embedding for {chunk.id} has {len(vector)} dimensions, "
                        f"expected {self.dimension}"
                    )
            with self.store.transaction():
                self.store.replace_chunks(doc.path, chunks, embeddings)
            logger.debug("Chunked %s into %d chunks", doc.path, len(chunks))
            all_chunks.extend(chunks)
        return all_chunks
