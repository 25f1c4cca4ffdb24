"""RepoIngestor: walk a repository and upsert its source files as documents."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable, Iterable

from ..token_counter import estimate_tokens
from ..types import IngestConfig, IngestError, RepoDocument
from .store import ContextStore

logger = logging.getLogger(__name__)


class RepoIngestor:
    """Read allow-listed files under a root and persist them mtime-guarded.

    Each document is upserted in its own transaction. ``on_document`` runs
    inside that transaction when the upsert was applied, so anything it writes
    (the document's chunks) commits or rolls back together with the document.
    """

    def __init__(
        self,
        store: ContextStore,
        config: IngestConfig | None = None,
        token_counter: Callable[[str], int] | None = None,
    ) -> None:
        self.store = store
        self.config = config or IngestConfig()
        self.token_counter = token_counter or estimate_tokens
        self.skipped: list[str] = []

    def ingest(
        self,
        root: str | Path,
        allowed_extensions: Iterable[str] | None = None,
        on_document: Callable[[RepoDocument], None] | None = None,
    ) -> list[RepoDocument]:
        """Walk ``root`` and return every document read on this pass.

        Unchanged files are included in the result. Unreadable files are
        logged and recorded in ``self.skipped`` unless ``config.strict`` is
        set, in which case the walk aborts with ``IngestError``.
        """
        allowed = {
            e.lower() if e.startswith(".") else f".{e.lower()}" for e in (
                allowed_extensions if allowed_extensions is not None
                else self.config.allowed_extensions
            )
        }
        self.skipped = []
        output: list[RepoDocument] = []

        for path in self._walk(Path(root), allowed):
            doc = self._read(path)
            if doc is None:
                continue
            output.append(doc)
            with self.store.transaction():
                applied = self.store.upsert_document(doc)
                if applied and on_document is not None:
                    on_document(doc)
            if not applied:
                logger.debug("Document %s unchanged or older than stored copy", doc.path)

        logger.info(
            "Ingested %d documents from %s (%d skipped)",
            len(output), root, len(self.skipped),
        )
        return output

    def _walk(self, root: Path, allowed: set[str]) -> Iterable[Path]:
        excluded = set(self.config.exclude_dirs)
        for dirpath, dirnames, filenames in os.walk(root):
            # Prune in place so os.walk never descends into excluded dirs.
            dirnames[:] = sorted(d for d in dirnames if d not in excluded)
            for name in sorted(filenames):
                if name in excluded:
                    continue
                if Path(name).suffix.lower() in allowed:
                    yield Path(dirpath) / name

    def _read(self, path: Path) -> RepoDocument | None:
        try:
            content = path.read_text(encoding="utf-8")
            mtime_ms = int(path.stat().st_mtime * 1000)
        except (OSError, UnicodeDecodeError) as e:
            if self.config.strict:
                raise IngestError(f"Failed to read {path}: {e}", str(path)) from e
            logger.warning("Skipping unreadable file %s: %s", path, e)
            self.skipped.append(str(path))
            return None
        return RepoDocument(
            path=str(path),
            content=content,
            language=path.suffix.lower().lstrip("."),
            tokens_estimate=self.token_counter(content),
            file_mtime_ms=mtime_ms,
        )
