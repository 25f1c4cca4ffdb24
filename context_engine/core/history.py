"""HistoryCompressor: priority-greedy selection of prior turns under a budget."""

from __future__ import annotations

import logging
from typing import Callable

from ..token_counter import estimate_tokens
from ..types import HistoryTurn

logger = logging.getLogger(__name__)


class HistoryCompressor:
    def __init__(self, token_counter: Callable[[str], int] | None = None) -> None:
        self.token_counter = token_counter or estimate_tokens

    def compress(self, turns: list[HistoryTurn], max_tokens: int) -> list[HistoryTurn]:
        """Keep the highest-priority turns that fit in ``max_tokens``.

        Turns are visited by priority (stable, so equal priorities keep their
        input order). A turn that would overflow is skipped and lower-priority
        turns are still considered. The result is in fit order, not
        chronological order.
        """
        ordered = sorted(turns, key=lambda t: t.priority or 0, reverse=True)
        selected: list[HistoryTurn] = []
        total = 0
        for turn in ordered:
            tokens = self.token_counter(turn.content)
            if total + tokens > max_tokens:
                logger.debug("Skipping %s turn (%d tokens) over budget", turn.role, tokens)
                continue
            selected.append(turn)
            total += tokens
        return selected
