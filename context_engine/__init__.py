"""context-engine: token-budgeted prompt compilation over an indexed code corpus."""

from .config import load_config
from .engine import ContextEngine
from .types import (
    CompileResult,
    ContextEngineConfig,
    ContextEngineError,
    DocumentChunk,
    HistoryTurn,
    IndexReport,
    RepoDocument,
    StorageError,
)

__version__ = "0.1.0"

__all__ = [
    "ContextEngine",
    "load_config",
    "CompileResult",
    "ContextEngineConfig",
    "ContextEngineError",
    "DocumentChunk",
    "HistoryTurn",
    "IndexReport",
    "RepoDocument",
    "StorageError",
]
