# =============================================================================
# src/cli/ingest.py — CLI for corpus management and questions
# =============================================================================
#
# Standalone CLI over the same components the web app builds (see
# src/main.py build_components).  Logs go to stderr; results are printed
# to stdout, as JSON with --json.
#
# Supported subcommands:
#
#   ingest    — Ingest a file or every supported file under a directory
#   ask       — Answer a question from the corpus, with citations
#   repair    — Retry embedding of chunks left embedding_pending
#   reconcile — Delete vectors whose chunk record no longer exists
#   stats     — Display corpus statistics
#
# Usage examples:
#   python -m src.cli ingest notes/resume.pdf --project hiring --tag cv
#   python -m src.cli ingest docs/ --project handbook
#   python -m src.cli ask "Summarize the resume"
#   python -m src.cli repair --limit 100
#   python -m src.cli stats --json
# =============================================================================

"""Command-line interface for the knowchat corpus.

Usage::

    python -m src.cli ingest path/to/file-or-dir [--title T] [--project P] [--tag X]
    python -m src.cli ask "question" [--prior "previous turn"]
    python -m src.cli repair [--limit N]
    python -m src.cli reconcile
    python -m src.cli stats
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from src.config.settings import Settings
from src.utils.errors import KnowChatError
from src.utils.logging import configure_logging


def _build(app_settings: Settings) -> dict[str, Any]:
    # Deferred so `--help` does not construct providers.
    from src.main import build_components

    return build_components(app_settings)


def _print(payload: Any, as_json: bool) -> None:
    if as_json:
        print(json.dumps(payload, indent=2, default=str))
        return
    if isinstance(payload, dict):
        for key, value in payload.items():
            print(f"{key}: {value}")
    else:
        print(payload)


# ---------------------------------------------------------------------------
# Subcommand handlers
# ---------------------------------------------------------------------------


async def _cmd_ingest(args: argparse.Namespace, components: dict[str, Any]) -> int:
    service = components["ingestion_service"]
    path = Path(args.path)
    if not path.exists():
        print(f"Error: {path} does not exist", file=sys.stderr)
        return 1

    if path.is_dir():
        results = await service.ingest_directory(
            path, project=args.project, tags=args.tag, recursive=not args.no_recursive
        )
    else:
        results = [
            await service.ingest_file(path, title=args.title, project=args.project, tags=args.tag)
        ]

    rows = [
        {
            "document_id": r.document.document_id,
            "title": r.document.title,
            "chunks": r.chunks_created,
            "pending": r.chunks_pending,
            "unchanged": r.unchanged,
        }
        for r in results
    ]
    if args.json:
        _print(rows, as_json=True)
    else:
        for row in rows:
            status = "unchanged" if row["unchanged"] else f"{row['chunks']} chunks"
            if row["pending"]:
                status += f", {row['pending']} pending"
            print(f"{row['title']}  [{status}]")
        print(f"\n{len(rows)} document(s) ingested")
    return 0


async def _cmd_ask(args: argparse.Namespace, components: dict[str, Any]) -> int:
    engine = components["query_engine"]
    response = await engine.answer(args.question, prior_context=args.prior)

    if args.json:
        _print(response.model_dump(mode="json"), as_json=True)
        return 0

    print(response.answer)
    print()
    if response.unsupported_by_corpus:
        print("(no supporting passages found in the corpus)")
    for i, citation in enumerate(response.citations, start=1):
        print(
            f"[{i}] {citation.document_title} "
            f"({citation.source_locator}, chunk {citation.position}, "
            f"score {citation.similarity_score:.3f})"
        )
    provider = response.provider_used
    if response.failed_over:
        provider += f" (failover from {response.provider_requested})"
    print(f"\ncategory: {response.category.value}  provider: {provider}")
    return 0


async def _cmd_repair(args: argparse.Namespace, components: dict[str, Any]) -> int:
    report = await components["ingestion_service"].reembed_pending(limit=args.limit)
    _print(report.model_dump(), as_json=args.json)
    return 0 if report.still_pending == 0 else 2


async def _cmd_reconcile(args: argparse.Namespace, components: dict[str, Any]) -> int:
    report = await components["ingestion_service"].reconcile_orphans()
    _print(report.model_dump(), as_json=args.json)
    return 0


async def _cmd_stats(args: argparse.Namespace, components: dict[str, Any]) -> int:
    stats = await components["ingestion_service"].get_corpus_stats()
    _print(stats.model_dump(), as_json=args.json)
    return 0


_HANDLERS = {
    "ingest": _cmd_ingest,
    "ask": _cmd_ask,
    "repair": _cmd_repair,
    "reconcile": _cmd_reconcile,
    "stats": _cmd_stats,
}


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m src.cli",
        description="Manage the knowchat corpus and ask questions.",
    )
    parser.add_argument("--json", action="store_true", help="Print results as JSON")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    p_ingest = sub.add_parser("ingest", help="Ingest a file or directory")
    p_ingest.add_argument("path", help="File or directory to ingest")
    p_ingest.add_argument("--title", default=None, help="Title (files only; default: file name)")
    p_ingest.add_argument("--project", default=None, help="Project label")
    p_ingest.add_argument("--tag", action="append", default=[], help="Tag (repeatable)")
    p_ingest.add_argument(
        "--no-recursive", action="store_true", help="Do not descend into subdirectories"
    )

    p_ask = sub.add_parser("ask", help="Answer a question from the corpus")
    p_ask.add_argument("question")
    p_ask.add_argument("--prior", default=None, help="Previous conversational turn")

    p_repair = sub.add_parser("repair", help="Retry embedding of pending chunks")
    p_repair.add_argument("--limit", type=int, default=None)

    sub.add_parser("reconcile", help="Delete vectors with no chunk record")
    sub.add_parser("stats", help="Show corpus statistics")
    return parser


async def _run(args: argparse.Namespace, app_settings: Settings) -> int:
    components = _build(app_settings)
    await components["metadata_store"].initialize()
    return await _HANDLERS[args.command](args, components)


def main(argv: list[str] | None = None) -> int:
    """Parse *argv*, run the subcommand and return the process exit code."""
    args = build_parser().parse_args(argv)
    app_settings = Settings()
    configure_logging(
        log_level=args.log_level or app_settings.log_level,
        json_output=app_settings.app_env == "production",
        stream=sys.stderr,
    )
    try:
        return asyncio.run(_run(args, app_settings))
    except KnowChatError as exc:
        print(f"Error ({exc.code}): {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
