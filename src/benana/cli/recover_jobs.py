"""CLI command for requeueing generation jobs orphaned in running state.

A job stays ``running`` if the studio process exits while it is in flight. The
server requeues such jobs on startup; this command does the same offline.

Usage:
    python -m benana.cli.recover_jobs [OPTIONS]

Examples:
    # Requeue all orphaned jobs
    python -m benana.cli.recover_jobs

    # Dry run (no database writes)
    python -m benana.cli.recover_jobs --dry-run

    # Verbose logging
    python -m benana.cli.recover_jobs -v
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace
from typing import Optional, Sequence

import structlog

from benana.core import timezone  # noqa: F401
from benana.core.config import Settings, configure_logging
from benana.core.database import create_engine, init_db, setup_db_session
from benana.models.queue_job import QueueStatus
from benana.uow import create_uow_factory

logger = structlog.get_logger()


def parse_args(argv: Optional[Sequence[str]] = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        description="Requeue generation jobs left in running state",
        epilog="Stop the studio server before running this command",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List orphaned jobs without database writes",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


async def async_main(argv: Optional[Sequence[str]] = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]

    if args.verbose:
        settings.log_level = "DEBUG"

    configure_logging(settings)

    logger.info("cli.started", dry_run=args.dry_run, home=str(settings.home))

    engine = create_engine(settings.resolved_database_url)
    try:
        await init_db(engine)
        uow_factory = create_uow_factory(setup_db_session(engine))

        async with await uow_factory() as uow:
            counts = await uow.queue_jobs.count_by_status()
            running = await uow.queue_jobs.list_by_status(QueueStatus.RUNNING)
            requeued = 0 if args.dry_run else await uow.queue_jobs.requeue_running()

        # Print summary
        print("\n" + "=" * 60)
        print("Queue Recovery Summary")
        print("=" * 60)
        for queue_status in QueueStatus:
            print(f"{queue_status.value.capitalize():<10} {counts.get(queue_status, 0)}")
        print(f"\nOrphaned running jobs: {len(running)}")
        for job in running[:10]:
            print(f"  - {job.id} (started {job.started_at})")
        if len(running) > 10:
            print(f"  ... and {len(running) - 10} more jobs")
        print(f"Jobs requeued: {requeued}")

        if args.dry_run:
            print("\n[DRY RUN] No changes were persisted to database")

        print("=" * 60 + "\n")

        logger.info("cli.completed", orphaned=len(running), requeued=requeued)
        return 0

    except KeyboardInterrupt:
        logger.info("cli.interrupted")
        print("\nRecovery interrupted by user", file=sys.stderr)
        return 130

    except Exception as e:
        logger.error(
            "cli.unexpected_error",
            error=str(e),
            error_type=type(e).__name__,
        )
        print(f"\nUnexpected error: {e}", file=sys.stderr)
        return 1

    finally:
        await engine.dispose()


def main() -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
