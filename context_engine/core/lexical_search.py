"""Lexical search over the FTS5 chunk index."""

from __future__ import annotations

import re

from ..types import LexicalHit
from .store import ContextStore

_SPLIT_RE = re.compile(r"[^a-z0-9_]+")

DEFAULT_FALLBACK_TERM = "context"


def sanitize_query(value: str, fallback: str = DEFAULT_FALLBACK_TERM) -> str:
    """Reduce free text to an OR-joined FTS5 query of safe bareword tokens.

    Tokens are lowercase ``[a-z0-9_]`` runs longer than two characters, so no
    FTS5 operator or quoting syntax survives. An empty token set falls back to
    ``fallback`` so the lookup never fails outright.
    """
    terms = [t for t in _SPLIT_RE.split(value.lower()) if len(t) > 2]
    if not terms:
        return fallback
    return " OR ".join(terms)


class LexicalSearch:
    def __init__(self, store: ContextStore, fallback_term: str = DEFAULT_FALLBACK_TERM) -> None:
        self.store = store
        self.fallback_term = fallback_term

    def query(self, query: str, limit: int) -> list[LexicalHit]:
        """Ranked full-text hits; higher ``rank`` means more relevant."""
        match_query = sanitize_query(query, self.fallback_term)
        rows = self.store.search_full_text(match_query, limit)
        # bm25 is lower-is-better; flip it so every channel ranks high-is-good.
        return [LexicalHit(chunk=chunk, rank=-bm25) for chunk, bm25 in rows]
