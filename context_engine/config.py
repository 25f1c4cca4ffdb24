"""Configuration loading, validation, and defaults."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import yaml

from .types import (
    DEFAULT_ALLOWED_EXTENSIONS,
    DEFAULT_EXCLUDE_DIRS,
    ChunkingConfig,
    CompilerConfig,
    ConfigError,
    ContextEngineConfig,
    EmbeddingConfig,
    IngestConfig,
    RetrievalConfig,
    StorageConfig,
)

CONFIG_FILENAMES = [
    "context-engine.yaml",
    "context-engine.yml",
    "context-engine.json",
]

DB_PATH_ENV = "CONTEXT_ENGINE_DB_PATH"
DATA_DIR_ENV = "CONTEXT_ENGINE_DATA_DIR"


def _discover_config() -> Path | None:
    """Search CWD then parent dirs up to home for a config file."""
    cwd = Path.cwd()
    home = Path.home()
    search = cwd
    while True:
        for name in CONFIG_FILENAMES:
            candidate = search / name
            if candidate.is_file():
                return candidate
        if search == home or search == search.parent:
            break
        search = search.parent
    return None


def _normalize_extensions(exts: list[str]) -> list[str]:
    return [e.lower() if e.startswith(".") else f".{e.lower()}" for e in exts]


def _build_config(raw: dict[str, Any]) -> ContextEngineConfig:
    """Build a ContextEngineConfig from a raw dict."""
    storage_raw = raw.get("storage", {})
    storage = StorageConfig(
        sqlite_path=storage_raw.get("sqlite_path", StorageConfig.sqlite_path),
    )

    ingest_raw = raw.get("ingest", {})
    ingest = IngestConfig(
        allowed_extensions=_normalize_extensions(
            ingest_raw.get("allowed_extensions", DEFAULT_ALLOWED_EXTENSIONS)
        ),
        exclude_dirs=list(ingest_raw.get("exclude_dirs", DEFAULT_EXCLUDE_DIRS)),
        strict=ingest_raw.get("strict", False),
    )

    chunking_raw = raw.get("chunking", {})
    chunking = ChunkingConfig(
        max_lines_per_chunk=chunking_raw.get("max_lines_per_chunk", 80),
    )

    embedding_raw = raw.get("embedding", {})
    embedding = EmbeddingConfig(
        type=embedding_raw.get("type", "hash"),
        dimension=embedding_raw.get("dimension", 64),
    )

    retrieval_raw = raw.get("retrieval", {})
    retrieval = RetrievalConfig(
        lexical_weight=retrieval_raw.get("lexical_weight", 0.55),
        vector_weight=retrieval_raw.get("vector_weight", 0.45),
        changed_file_boost=retrieval_raw.get("changed_file_boost", 2.5),
        oversample_factor=retrieval_raw.get("oversample_factor", 3),
        min_candidates=retrieval_raw.get("min_candidates", 25),
        fallback_term=retrieval_raw.get("fallback_term", "context"),
        default_limit=retrieval_raw.get("default_limit", 12),
    )

    compiler_raw = raw.get("compiler", {})
    compiler = CompilerConfig(
        system_overhead_tokens=compiler_raw.get("system_overhead_tokens", 400),
        history_budget_ratio=compiler_raw.get("history_budget_ratio", 0.2),
        default_token_budget=compiler_raw.get("default_token_budget", 8000),
    )

    return ContextEngineConfig(
        version=str(raw.get("version", "0.1")),
        token_counter=raw.get("token_counter", "estimate"),
        session_id=raw.get("session_id", "default"),
        storage=storage,
        ingest=ingest,
        chunking=chunking,
        embedding=embedding,
        retrieval=retrieval,
        compiler=compiler,
    )


def validate_config(config: ContextEngineConfig) -> list[str]:
    """Validate a config. Returns list of error strings (empty = valid)."""
    errors: list[str] = []

    if config.chunking.max_lines_per_chunk < 1:
        errors.append("chunking.max_lines_per_chunk must be >= 1")

    if config.embedding.dimension < 1:
        errors.append("embedding.dimension must be >= 1")

    if not config.ingest.allowed_extensions:
        errors.append("ingest.allowed_extensions must not be empty")

    if not 0.0 <= config.compiler.history_budget_ratio <= 1.0:
        errors.append(
            f"compiler.history_budget_ratio ({config.compiler.history_budget_ratio}) "
            f"must be between 0 and 1"
        )

    if config.compiler.system_overhead_tokens < 0:
        errors.append("compiler.system_overhead_tokens must be >= 0")

    if config.retrieval.oversample_factor < 1:
        errors.append("retrieval.oversample_factor must be >= 1")

    if config.retrieval.default_limit < 1:
        errors.append("retrieval.default_limit must be >= 1")

    if not config.session_id:
        errors.append("session_id must not be empty")

    return errors


def resolve_db_path(config: ContextEngineConfig) -> Path:
    """Storage location: $CONTEXT_ENGINE_DB_PATH, then $CONTEXT_ENGINE_DATA_DIR/context.db,
    then ``storage.sqlite_path``. Read once when a store is built."""
    explicit = os.environ.get(DB_PATH_ENV)
    if explicit:
        return Path(explicit).expanduser()
    data_dir = os.environ.get(DATA_DIR_ENV)
    if data_dir:
        return Path(data_dir).expanduser() / "context.db"
    return Path(config.storage.sqlite_path).expanduser()


def load_config(
    config_path: str | Path | None = None,
    config_dict: dict | None = None,
) -> ContextEngineConfig:
    """Load config from dict, explicit path, or auto-discover."""
    if config_dict is not None:
        return _build_config(config_dict)

    if config_path is not None:
        path = Path(config_path)
    else:
        path = _discover_config()

    if path is None:
        # Return defaults
        return _build_config({})

    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    text = path.read_text()
    try:
        if path.suffix == ".json":
            raw = json.loads(text)
        else:
            raw = yaml.safe_load(text) or {}
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"Could not parse config file {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")

    return _build_config(raw)
