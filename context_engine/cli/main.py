"""CLI: context-engine index, search, compile, history, status, config validate."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path

from ..config import load_config, resolve_db_path, validate_config
from ..engine import ContextEngine
from ..types import ContextEngineError, HistoryTurn


def _get_engine(args) -> ContextEngine:
    try:
        return ContextEngine(config_path=args.config)
    except (ContextEngineError, FileNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def _read_history(path: str | None) -> list[HistoryTurn]:
    """Read turns from a JSON file: [{"role": ..., "content": ..., "priority": ...}]."""
    if not path:
        return []
    text = sys.stdin.read() if path == "-" else Path(path).read_text()
    raw = json.loads(text)
    return [
        HistoryTurn(role=t["role"], content=t["content"], priority=t.get("priority", 0))
        for t in raw
    ]


def cmd_index(args):
    """Ingest and chunk a repository."""
    with _get_engine(args) as engine:
        try:
            report = engine.index_repository(
                args.root, allowed_extensions=args.ext, force=args.force,
            )
        except ContextEngineError as e:
            print(f"Indexing failed: {e}", file=sys.stderr)
            sys.exit(1)

    print(f"Documents read:  {len(report.documents)}")
    print(f"Updated:         {len(report.updated)}")
    print(f"Chunks written:  {report.chunks_written}")
    if report.skipped:
        print(f"Skipped:         {len(report.skipped)}")
        for path in report.skipped:
            print(f"  - {path}")


def cmd_search(args):
    """Show fused retrieval results for a query."""
    with _get_engine(args) as engine:
        results = engine.retrieve_scored(args.query, changed_files=args.changed, limit=args.limit)

    if not results:
        print("No chunks indexed yet. Run `context-engine index <root>` first.")
        return

    print(f"{'Score':>8}  {'Chunk'}")
    print("-" * 60)
    for r in results:
        print(f"{r.score:>8.3f}  {r.chunk.id}")


def cmd_compile(args):
    """Compile a prompt for an objective."""
    try:
        history = _read_history(args.history)
    except (OSError, json.JSONDecodeError, KeyError, TypeError) as e:
        print(f"Error reading history: {e}", file=sys.stderr)
        sys.exit(1)

    with _get_engine(args) as engine:
        result = engine.compile(
            args.objective,
            changed_files=args.changed,
            history=history,
            token_budget=args.budget,
            session_id=args.session,
            limit=args.limit,
        )

    if args.json:
        print(json.dumps({
            "session_id": result.session_id,
            "token_estimate": result.token_estimate,
            "budget": result.budget_breakdown,
            "chunks": [asdict(c) for c in result.chunks],
            "history": [
                {"role": t.role, "content": t.content, "priority": t.priority}
                for t in result.history
            ],
            "prompt": result.prompt,
        }, indent=2))
    else:
        print(result.prompt)


def cmd_history(args):
    """Show persisted history for a session."""
    with _get_engine(args) as engine:
        turns = engine.load_history(args.session, limit=args.limit)

    if not turns:
        print(f"No history for session: {args.session}")
        return

    for t in turns:
        stamp = t.created_at.strftime("%Y-%m-%d %H:%M") if t.created_at else "n/a"
        print(f"[{stamp}] {t.role} (priority {t.priority})")
        print(t.content)
        print()


def cmd_status(args):
    """Show store location and row counts."""
    with _get_engine(args) as engine:
        stats = engine.stats()
        db_path = resolve_db_path(engine.config)

    print(f"Storage:        {db_path}")
    print(f"Schema version: {stats.schema_version}")
    print(f"Documents:      {stats.documents:,}")
    print(f"Chunks:         {stats.chunks:,}")
    print(f"History turns:  {stats.history_turns:,} ({stats.sessions} sessions)")


def cmd_config_validate(args):
    """Validate config file."""
    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    errors = validate_config(config)
    if errors:
        print("Config validation errors:")
        for err in errors:
            print(f"  - {err}")
        sys.exit(1)
    else:
        print("Config is valid.")
        print(f"  Storage: {resolve_db_path(config)}")
        print(f"  Chunk window: {config.chunking.max_lines_per_chunk} lines")
        print(f"  Embedding: {config.embedding.type} ({config.embedding.dimension} dims)")
        print(f"  Token counter: {config.token_counter}")


def main():
    parser = argparse.ArgumentParser(
        prog="context-engine",
        description="Token-budgeted prompt compilation over an indexed code corpus",
    )
    parser.add_argument("--config", "-c", help="Path to config file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command")

    # index
    index_parser = subparsers.add_parser("index", help="Ingest and chunk a repository")
    index_parser.add_argument("root", help="Repository root")
    index_parser.add_argument(
        "--ext", action="append", help="Allowed extension (repeatable, e.g. --ext .py)",
    )
    index_parser.add_argument(
        "--force", action="store_true", help="Re-chunk unchanged documents too",
    )

    # search
    search_parser = subparsers.add_parser("search", help="Show ranked chunks for a query")
    search_parser.add_argument("query", help="Query text")
    search_parser.add_argument("--changed", action="append", default=[], help="Changed file path")
    search_parser.add_argument("--limit", "-n", type=int, help="Max results")

    # compile
    compile_parser = subparsers.add_parser("compile", help="Compile a prompt for an objective")
    compile_parser.add_argument("objective", help="Task objective")
    compile_parser.add_argument("--changed", action="append", default=[], help="Changed file path")
    compile_parser.add_argument("--history", help="JSON file of history turns ('-' for stdin)")
    compile_parser.add_argument("--budget", type=int, help="Token budget override")
    compile_parser.add_argument("--session", help="Session id for persisted history")
    compile_parser.add_argument("--limit", "-n", type=int, help="Max candidate chunks")
    compile_parser.add_argument("--json", action="store_true", help="Emit JSON instead of the prompt")

    # history
    history_parser = subparsers.add_parser("history", help="Show persisted history for a session")
    history_parser.add_argument("session", help="Session id")
    history_parser.add_argument("--limit", "-n", type=int, default=50, help="Max turns")

    # status
    subparsers.add_parser("status", help="Show store location and row counts")

    # config
    config_parser = subparsers.add_parser("config", help="Config operations")
    config_sub = config_parser.add_subparsers(dest="config_command")
    config_sub.add_parser("validate", help="Validate config file")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "index":
        cmd_index(args)
    elif args.command == "search":
        cmd_search(args)
    elif args.command == "compile":
        cmd_compile(args)
    elif args.command == "history":
        cmd_history(args)
    elif args.command == "status":
        cmd_status(args)
    elif args.command == "config":
        if args.config_command == "validate":
            cmd_config_validate(args)
        else:
            print("Usage: context-engine config validate")
            sys.exit(1)


if __name__ == "__main__":
    main()
