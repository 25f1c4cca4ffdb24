"""All dataclasses, type aliases and error types for context-engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Literal

Role = Literal["system", "user", "assistant", "tool"]

TokenCounter = Callable[[str], int]
EmbedFn = Callable[[str], list[float]]


# ---------------------------------------------------------------------------
# Corpus
# ---------------------------------------------------------------------------

@dataclass
class RepoDocument:
    path: str
    content: str
    language: str
    tokens_estimate: int = 0
    file_mtime_ms: int = 0


@dataclass
class DocumentChunk:
    """A fixed line-window slice of a document; the unit of retrieval."""
    id: str  # "{path}:{start_line}-{end_line}"
    path: str
    language: str
    content: str
    start_line: int
    end_line: int
    tokens_estimate: int = 0


def make_chunk_id(path: str, start_line: int, end_line: int) -> str:
    return f"{path}:{start_line}-{end_line}"


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------

@dataclass
class HistoryTurn:
    role: Role
    content: str
    priority: int = 0
    created_at: datetime | None = None  # set when persisted


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------

@dataclass
class LexicalHit:
    chunk: DocumentChunk
    rank: float  # higher is more relevant


@dataclass
class VectorHit:
    chunk: DocumentChunk
    similarity: float


@dataclass
class ScoredChunk:
    chunk: DocumentChunk
    score: float = 0.0


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class CompileResult:
    chunks: list[DocumentChunk]
    history: list[HistoryTurn]
    prompt: str
    token_estimate: int
    session_id: str = ""
    budget_breakdown: dict[str, int] = field(default_factory=dict)


@dataclass
class IndexReport:
    """Outcome of one indexing pass over a repository root."""
    documents: list[RepoDocument] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)   # paths re-chunked this pass
    chunks_written: int = 0
    skipped: list[str] = field(default_factory=list)   # unreadable paths


@dataclass
class StoreStats:
    documents: int = 0
    chunks: int = 0
    history_turns: int = 0
    sessions: int = 0
    schema_version: int = 0


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class ContextEngineError(Exception):
    """Base class for errors raised by context-engine."""


class StorageError(ContextEngineError):
    """A storage or schema operation failed; the transaction was rolled back."""


class IngestError(ContextEngineError):
    def __init__(self, message: str, path: str):
        super().__init__(message)
        self.path = path


class ConfigError(ContextEngineError):
    pass


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

DEFAULT_ALLOWED_EXTENSIONS: list[str] = [
    ".ts", ".tsx", ".js", ".jsx", ".py", ".go", ".rs", ".md", ".json", ".yaml", ".yml",
]

DEFAULT_EXCLUDE_DIRS: list[str] = [
    ".git", "node_modules", "dist", "build", "__pycache__", ".venv", "venv",
]


@dataclass
class StorageConfig:
    sqlite_path: str = ".context-engine/context.db"


@dataclass
class IngestConfig:
    allowed_extensions: list[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_EXTENSIONS))
    exclude_dirs: list[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE_DIRS))
    strict: bool = False  # True: one unreadable file aborts the walk


@dataclass
class ChunkingConfig:
    max_lines_per_chunk: int = 80


@dataclass
class EmbeddingConfig:
    type: str = "hash"  # "hash" or "callable:module.path:func"
    dimension: int = 64


@dataclass
class RetrievalConfig:
    lexical_weight: float = 0.55
    vector_weight: float = 0.45
    changed_file_boost: float = 2.5
    oversample_factor: int = 3
    min_candidates: int = 25
    fallback_term: str = "context"
    default_limit: int = 12


@dataclass
class CompilerConfig:
    system_overhead_tokens: int = 400
    history_budget_ratio: float = 0.2
    default_token_budget: int = 8000


@dataclass
class ContextEngineConfig:
    version: str = "0.1"
    token_counter: str = "estimate"
    session_id: str = "default"
    storage: StorageConfig = field(default_factory=StorageConfig)
    ingest: IngestConfig = field(default_factory=IngestConfig)
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    compiler: CompilerConfig = field(default_factory=CompilerConfig)
