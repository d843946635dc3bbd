"""Command line entry point: `notion-mirror sync|stats|cleanup|serve`."""

import argparse
import asyncio
import json
import logging
import sys

from notion_mirror.core.config import SyncConfig, get_settings
from notion_mirror.core.database import close_db, engine, init_db
from notion_mirror.core.exceptions import NotionMirrorError
from notion_mirror.core.logging_config import setup_logging
from notion_mirror.services.sync import build_sync_service

logger = logging.getLogger(__name__)


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="notion-mirror",
        description="Mirror a Notion database into a relational table.",
    )
    subparsers = parser.add_subparsers(dest="command")

    sync_parser = subparsers.add_parser("sync", help="Run one sync (default).")
    sync_parser.add_argument("--full", action="store_true", help="Ignore the checkpoint and fetch every record.")
    sync_parser.add_argument("--dry-run", action="store_true", help="Fetch and transform without writing.")
    sync_parser.add_argument("--max-records", type=_positive_int, default=None, help="Stop after this many records.")

    subparsers.add_parser("stats", help="Print checkpoint and table row count.")

    cleanup_parser = subparsers.add_parser("cleanup", help="Delete checkpoints older than --days.")
    cleanup_parser.add_argument("--days", type=int, default=30)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API and scheduler.")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=8000)

    return parser


async def _run(args: argparse.Namespace) -> int:
    config = SyncConfig.from_settings(get_settings())
    await init_db()
    service = build_sync_service(config, engine)
    try:
        command = args.command or "sync"
        if command == "sync":
            await service.initialize()
            result = await service.sync(
                force_full_sync=getattr(args, "full", False),
                dry_run=getattr(args, "dry_run", False),
                max_records=getattr(args, "max_records", None),
            )
            print(result.model_dump_json(indent=2))
        elif command == "stats":
            stats = await service.get_sync_stats()
            print(stats.model_dump_json(indent=2))
        elif command == "cleanup":
            deleted = await service.cleanup(args.days)
            print(json.dumps({"days_to_keep": args.days, "deleted": deleted}))
        return 0
    finally:
        await service.close()
        await close_db()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    setup_logging(settings.log_level)

    if args.command == "serve":
        import uvicorn

        uvicorn.run(
            "notion_mirror.main:app",
            host=args.host,
            port=args.port,
            log_level=settings.log_level.lower(),
        )
        return 0

    try:
        return asyncio.run(_run(args))
    except NotionMirrorError as e:
        logger.error(f"{e.kind} error: {e}")
        print(json.dumps({"success": False, **e.to_dict()}), file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
