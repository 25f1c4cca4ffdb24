"""Vector search: brute-force cosine scan over stored chunk embeddings.

Cost is O(chunk count) per query. A larger corpus needs an approximate
nearest-neighbour structure behind the same ``query`` contract.
"""

from __future__ import annotations

import logging
from typing import Callable

from ..types import VectorHit
from .embedding import embed_text
from .math_utils import cosine_similarity
from .store import ContextStore

logger = logging.getLogger(__name__)


class VectorSearch:
    def __init__(
        self,
        store: ContextStore,
        embed_fn: Callable[[str], list[float]] | None = None,
    ) -> None:
        self.store = store
        self.embed_fn = embed_fn or embed_text

    def query(self, query_text: str, limit: int) -> list[VectorHit]:
        query_vec = self.embed_fn(query_text)
        hits = [
            VectorHit(chunk=chunk, similarity=cosine_similarity(query_vec, vector))
            for chunk, vector in self.store.iter_chunk_embeddings()
        ]
        hits.sort(key=lambda h: h.similarity, reverse=True)
        logger.debug("Vector scan over %d chunks", len(hits))
        return hits[:limit]
