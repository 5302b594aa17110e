"""Command line entry point: ``python -m serum_order_indexer``."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from collections.abc import Iterable

from pydantic import ValidationError

from serum_order_indexer import __version__
from serum_order_indexer.config import Settings, get_settings
from serum_order_indexer.pipeline import Pipeline, PipelineError
from serum_order_indexer.storage.database import DatabaseManager

logger = logging.getLogger("serum_order_indexer")


def _setup_logging(level: int) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    for noisy in ("httpx", "httpcore", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _install_signal_handlers(loop: asyncio.AbstractEventLoop, pipeline: Pipeline) -> set[asyncio.Task[None]]:
    """Stop ``pipeline`` on SIGINT/SIGTERM.

    Returns the set holding the pending stop tasks; the loop only keeps weak
    references to tasks.
    """
    stop_tasks: set[asyncio.Task[None]] = set()

    def request_stop() -> None:
        task = loop.create_task(pipeline.stop())
        stop_tasks.add(task)
        task.add_done_callback(stop_tasks.discard)

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_stop)
        except NotImplementedError:
            # Not available on Windows event loops.
            pass
    return stop_tasks


async def _run(settings: Settings, *, from_slot: int | None, once: bool) -> None:
    pipeline = Pipeline(settings)
    stop_tasks = _install_signal_handlers(asyncio.get_running_loop(), pipeline)
    await pipeline.run(from_slot=from_slot, once=once)
    if stop_tasks:
        await asyncio.gather(*stop_tasks)
    stats = pipeline.stats
    logger.info(
        "Indexed %d batches: %d instructions, %d orders upserted, %d unknown, %d dropped, last slot %s",
        stats.batches_processed,
        stats.instructions_processed,
        stats.orders_upserted,
        stats.unknown_events,
        stats.dropped_events,
        stats.last_slot,
    )


async def _init_db(settings: Settings) -> None:
    db = DatabaseManager(settings.database.url)
    try:
        await db.init_schema_async()
    finally:
        await db.dispose_async()


def _run_command(args: argparse.Namespace, settings: Settings) -> int:
    try:
        asyncio.run(_run(settings, from_slot=args.from_slot, once=args.once))
    except PipelineError as e:
        logger.error("Indexer stopped: %s", e)
        return 1
    except KeyboardInterrupt:
        return 130
    return 0


def _init_db_command(args: argparse.Namespace, settings: Settings) -> int:
    asyncio.run(_init_db(settings))
    logger.info("Schema created for %s", settings.redacted_summary()["database_url"])
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="serum_order_indexer",
        description="Index Serum DEX order lifecycles from Solana blocks",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--log-level",
        choices=("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"),
        default=None,
        help="Override LOG_LEVEL",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Index blocks into the order store")
    run.add_argument(
        "--from-slot",
        type=int,
        default=None,
        help="Start at this slot instead of the stored checkpoint",
    )
    run.add_argument(
        "--once",
        action="store_true",
        help="Exit after catching up with the finalized tip",
    )
    run.set_defaults(func=_run_command)

    init_db = sub.add_parser("init-db", help="Create the database schema without migrations")
    init_db.set_defaults(func=_init_db_command)
    return parser


def cli(argv: Iterable[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    try:
        settings = get_settings()
    except ValidationError as e:
        parser.error(f"invalid configuration: {e}")
    level = getattr(logging, args.log_level) if args.log_level else settings.get_logging_level()
    _setup_logging(level)
    logger.debug("Settings: %s", settings.redacted_summary())
    return int(args.func(args, settings))


def main() -> None:
    raise SystemExit(cli())


if __name__ == "__main__":
    main()
