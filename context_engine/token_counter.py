"""Token counting utilities."""

from __future__ import annotations

import math
from typing import Callable


def estimate_tokens(text: str) -> int:
    """Rough estimate: ~4 chars per token, rounded up.

    An approximation for budgeting. Swap in a model-specific tokenizer through
    ``create_token_counter`` without changing any caller.
    """
    return math.ceil(len(text) / 4)


def create_token_counter(mode: str = "estimate") -> Callable[[str], int]:
    """Factory for token counters.

    Modes:
        "estimate" - ceil(len(text) / 4) (zero deps)
        "tiktoken" - requires tiktoken package
        "callable:module.path:func" - custom callable
    """
    if mode == "estimate":
        return estimate_tokens

    if mode == "tiktoken":
        try:
            import tiktoken
            enc = tiktoken.encoding_for_model("gpt-4")
            return lambda text: len(enc.encode(text))
        except ImportError:
            raise ImportError(
                "tiktoken not installed. Install with: pip install context-engine[tiktoken]"
            )

    if mode.startswith("callable:"):
        return load_callable(mode)

    raise ValueError(f"Unknown token counter mode: {mode}")


def load_callable(spec: str) -> Callable:
    """Resolve a ``callable:module.path:func`` spec to the named attribute."""
    parts = spec[len("callable:"):].rsplit(":", 1)
    if len(parts) != 2 or not all(parts):
        raise ValueError(f"Invalid callable spec: {spec}. Expected callable:module:func")
    module_path, func_name = parts
    import importlib
    mod = importlib.import_module(module_path)
    return getattr(mod, func_name)
