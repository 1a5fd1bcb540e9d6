# =============================================================================
# src/cli/ingest.py -- Operator CLI for the transcript ingestion core
# =============================================================================
#
# Supported subcommands:
#
#   sync     -- Pull recent transcripts from the source and queue them
#              (or, with --queue, leave a sync task for the workers)
#   enqueue  -- Queue every unprocessed document that has no active task
#   work     -- Run workers until the task queue has nothing runnable
#   search   -- Query the index (semantic by default, --text for substring)
#   reset    -- Return a failed task to pending
#   cleanup  -- Purge old finished tasks and webhook events
#   stats    -- Show corpus and queue statistics
#
# A typical scheduled run (cron, systemd timer...) is:
#   python -m src.cli.ingest sync && python -m src.cli.ingest work
#
# The CLI builds the same object graph as the web server
# (src.main.build_services), so both always agree on the embedding model
# and the database.
# =============================================================================

"""Standalone CLI for syncing, indexing and searching transcripts.

Usage::

    python -m src.cli.ingest sync --limit 25
    python -m src.cli.ingest work --concurrency 2
    python -m src.cli.ingest search "budget approval" --category planning
    python -m src.cli.ingest stats
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import datetime, timezone
from typing import Any

from src.models.pipeline import TaskType
from src.models.rag import ChunkType, SearchFilters
from src.utils.errors import TranscriptRAGError


def _parse_datetime(value: str) -> datetime:
    """argparse type for ISO dates; naive values are taken as UTC."""
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"not an ISO date: {value!r}") from exc
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)  # noqa: UP017


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


async def _handle_sync(args: argparse.Namespace, services: dict[str, Any]) -> int:
    orchestrator = services["orchestrator"]
    if args.queue:
        task = await services["queue"].enqueue(
            TaskType.SYNC,
            payload={"limit": args.limit} if args.limit else {},
            run_at=datetime.now(tz=timezone.utc),  # noqa: UP017
        )
        print(f"Queued sync task {task.task_id}")
        return 0

    report = await orchestrator.sync_from_source(limit=args.limit, since=args.since)
    print("Sync complete:")
    print(f"  Listed:     {report.listed}")
    print(f"  Succeeded:  {report.succeeded}")
    print(f"  Failed:     {report.failed}")
    print(f"  Enqueued:   {report.enqueued}")
    for transcript_id, error in report.errors.items():
        print(f"    {transcript_id}: {error}")
    return 1 if report.failed and report.failed == report.listed else 0


async def _handle_enqueue(args: argparse.Namespace, services: dict[str, Any]) -> int:
    queued = await services["orchestrator"].enqueue_unprocessed(batch_size=args.batch_size)
    print(f"Queued {queued} document(s) for indexing")
    return 0


async def _handle_work(args: argparse.Namespace, services: dict[str, Any]) -> int:
    orchestrator = services["orchestrator"]
    if args.max_tasks is not None:
        handled = await orchestrator.run_worker(args.worker_id, max_tasks=args.max_tasks)
    else:
        handled = await orchestrator.drain(concurrency=args.concurrency)
    print(f"Processed {handled} task(s)")
    return 0


async def _handle_search(args: argparse.Namespace, services: dict[str, Any]) -> int:
    engine = services["search_engine"]
    filters = SearchFilters(
        date_from=args.date_from,
        date_to=args.date_to,
        category=args.category,
        project=args.project,
        department=args.department,
        speaker=args.speaker,
        tags=args.tag or [],
        chunk_types=args.chunk_type or [],
    )
    if args.text:
        results = await engine.text_search(args.query, filters, args.limit)
    else:
        results = await engine.search(args.query, filters, args.limit)

    if not results:
        print("No results.")
        return 0

    for rank, result in enumerate(results, start=1):
        chunk = result.chunk
        date = result.document_date.date().isoformat() if result.document_date else "undated"
        print(f"{rank:>2}. [{result.similarity:.3f}] {result.document_title or chunk.document_id} ({date})")
        label = f"{chunk.chunk_type.value}"
        if chunk.speaker:
            label += f" / {chunk.speaker}"
        print(f"    {label}")
        body = result.highlighted_content or chunk.content
        print(f"    {body[:300].replace(chr(10), ' ')}")
        if result.context:
            print(f"    (+{len(result.context)} context chunk(s))")
    return 0


async def _handle_reset(args: argparse.Namespace, services: dict[str, Any]) -> int:
    task = await services["queue"].reset(args.task_id, datetime.now(tz=timezone.utc))  # noqa: UP017
    print(f"Task {task.task_id} is {task.status.value} again")
    return 0


async def _handle_cleanup(args: argparse.Namespace, services: dict[str, Any]) -> int:
    report = await services["orchestrator"].cleanup()
    print("Cleanup complete:")
    print(f"  Tasks purged:           {report.tasks_purged}")
    print(f"  Webhook events purged:  {report.webhook_events_purged}")
    return 0


async def _handle_stats(args: argparse.Namespace, services: dict[str, Any]) -> int:
    stats = await services["orchestrator"].get_statistics()
    print("Corpus Statistics")
    print("=" * 40)
    print(f"  Documents:        {stats.total_documents} ({stats.processed_documents} processed)")
    print(f"  Chunks:           {stats.total_chunks} ({stats.embedded_chunks} embedded)")
    print(f"  Failures (24h):   {stats.recent_failures}")
    if stats.pending_tasks:
        print("\n  Pending tasks:")
        for task_type, count in sorted(stats.pending_tasks.items()):
            print(f"    {task_type:<16} {count}")
    if stats.last_sync is not None:
        sync = stats.last_sync
        finished = sync.finished_at.isoformat() if sync.finished_at else "in progress"
        print(f"\n  Last sync:        {finished}")
        print(f"    listed={sync.listed} succeeded={sync.succeeded} failed={sync.failed}")
    return 0


_HANDLERS = {
    "sync": _handle_sync,
    "enqueue": _handle_enqueue,
    "work": _handle_work,
    "search": _handle_search,
    "reset": _handle_reset,
    "cleanup": _handle_cleanup,
    "stats": _handle_stats,
}


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the ingestion CLI."""
    parser = argparse.ArgumentParser(
        prog="python -m src.cli.ingest",
        description="Sync, index and search meeting transcripts.",
    )
    parser.add_argument(
        "--config", default="config/config.yaml", help="YAML configuration file"
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # -- sync --
    sync_parser = subparsers.add_parser("sync", help="Pull recent transcripts from the source")
    sync_parser.add_argument("--limit", type=int, default=None, help="Transcripts to list")
    sync_parser.add_argument(
        "--since", type=_parse_datetime, default=None, help="Skip transcripts dated before this"
    )
    sync_parser.add_argument(
        "--queue", action="store_true", help="Queue a sync task instead of syncing now"
    )

    # -- enqueue --
    enqueue_parser = subparsers.add_parser("enqueue", help="Queue unprocessed documents")
    enqueue_parser.add_argument("--batch-size", type=int, default=None, dest="batch_size")

    # -- work --
    work_parser = subparsers.add_parser("work", help="Process queued tasks until idle")
    work_parser.add_argument("--concurrency", type=int, default=None, help="Parallel workers")
    work_parser.add_argument(
        "--max-tasks", type=int, default=None, dest="max_tasks",
        help="Stop a single worker after this many tasks",
    )
    work_parser.add_argument("--worker-id", default="cli-worker", dest="worker_id")

    # -- search --
    search_parser = subparsers.add_parser("search", help="Search indexed chunks")
    search_parser.add_argument("query", help="Search query")
    search_parser.add_argument("--limit", type=int, default=None)
    search_parser.add_argument("--text", action="store_true", help="Substring search")
    search_parser.add_argument("--from", type=_parse_datetime, default=None, dest="date_from")
    search_parser.add_argument("--to", type=_parse_datetime, default=None, dest="date_to")
    search_parser.add_argument("--category")
    search_parser.add_argument("--project")
    search_parser.add_argument("--department")
    search_parser.add_argument("--speaker")
    search_parser.add_argument("--tag", action="append", help="Repeatable")
    search_parser.add_argument(
        "--chunk-type", action="append", type=ChunkType, dest="chunk_type",
        choices=list(ChunkType), help="Repeatable",
    )

    # -- reset --
    reset_parser = subparsers.add_parser("reset", help="Return a failed task to pending")
    reset_parser.add_argument("task_id")

    # -- cleanup / stats --
    subparsers.add_parser("cleanup", help="Purge old tasks and webhook events")
    subparsers.add_parser("stats", help="Show corpus and queue statistics")

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


async def _run(args: argparse.Namespace) -> int:
    # Deferred so `--help` does not pay for building providers.
    from src.main import build_services, close_services, initialize_services, load_settings
    from src.utils.logging import configure_logging

    app_settings = load_settings(args.config)
    configure_logging(log_level=app_settings.log_level)
    services = build_services(app_settings)
    try:
        await initialize_services(services)
        return await _HANDLERS[args.command](args, services)
    except TranscriptRAGError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        await close_services(services)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point: parse the subcommand and dispatch to its handler."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
