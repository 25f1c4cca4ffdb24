"""ContextCompiler: split a token budget between history and code, render the prompt."""

from __future__ import annotations

import logging
import math
from typing import Callable, Iterable

from ..token_counter import estimate_tokens
from ..types import CompileResult, CompilerConfig, DocumentChunk, HistoryTurn
from .history import HistoryCompressor
from .store import ContextStore

logger = logging.getLogger(__name__)

NONE_MARKER = "(none)"


class ContextCompiler:
    """Assemble the final prompt within a token budget.

    Budget split:
        available = max(0, token_budget - system_overhead_tokens)
        history   = floor(available * history_budget_ratio)
        chunks    = available - history

    Prompt layout (top to bottom):
    1. Objective
    2. Relevant History - selected turns, fit order
    3. Relevant Context - selected chunks, caller order
    """

    def __init__(
        self,
        store: ContextStore,
        config: CompilerConfig | None = None,
        token_counter: Callable[[str], int] | None = None,
        default_session_id: str = "default",
    ) -> None:
        self.store = store
        self.config = config or CompilerConfig()
        self.token_counter = token_counter or estimate_tokens
        self.history_compressor = HistoryCompressor(self.token_counter)
        self.default_session_id = default_session_id

    def compile(
        self,
        objective: str,
        changed_files: Iterable[str],
        candidate_chunks: list[DocumentChunk],
        history: list[HistoryTurn],
        token_budget: int,
        session_id: str | None = None,
    ) -> CompileResult:
        """Select history and chunks, persist the chosen history, render the prompt.

        ``candidate_chunks`` are taken in the given order; rank them first
        (RetrievalFuser). ``changed_files`` is accepted for callers that pass
        the same turn inputs here as to the fuser; ranking already used it.
        """
        session = session_id or self.default_session_id
        available = max(0, token_budget - self.config.system_overhead_tokens)
        history_budget = math.floor(available * self.config.history_budget_ratio)
        chunk_budget = available - history_budget

        selected_history = self.history_compressor.compress(history, history_budget)
        selected_chunks = self.fit_chunks(candidate_chunks, chunk_budget)
        self.store.append_history(session, selected_history)

        prompt = self.build_prompt(objective, selected_history, selected_chunks)
        token_estimate = self.token_counter(prompt)
        logger.info(
            "Compiled prompt for session %s: %d/%d turns, %d/%d chunks, ~%d tokens",
            session, len(selected_history), len(history),
            len(selected_chunks), len(candidate_chunks), token_estimate,
        )
        return CompileResult(
            chunks=selected_chunks,
            history=selected_history,
            prompt=prompt,
            token_estimate=token_estimate,
            session_id=session,
            budget_breakdown={
                "available": available,
                "history": history_budget,
                "chunks": chunk_budget,
            },
        )

    def fit_chunks(self, chunks: list[DocumentChunk], budget: int) -> list[DocumentChunk]:
        """Greedy fit in caller order; chunks that would overflow are skipped."""
        selected: list[DocumentChunk] = []
        total = 0
        for chunk in chunks:
            if total + chunk.tokens_estimate > budget:
                continue
            selected.append(chunk)
            total += chunk.tokens_estimate
        return selected

    def build_prompt(
        self,
        objective: str,
        history: list[HistoryTurn],
        chunks: list[DocumentChunk],
    ) -> str:
        header = f"Objective:\n{objective}\n"
        history_section = "\n\n".join(
            f"History {i} [{turn.role}]:\n{turn.content}"
            for i, turn in enumerate(history, 1)
        )
        chunk_section = "\n\n".join(
            f"Chunk {i} ({chunk.path}:{chunk.start_line}-{chunk.end_line}):\n{chunk.content}"
            for i, chunk in enumerate(chunks, 1)
        )
        return "\n\n".join([
            header,
            "Relevant History:",
            history_section or NONE_MARKER,
            "Relevant Context:",
            chunk_section or NONE_MARKER,
        ])
