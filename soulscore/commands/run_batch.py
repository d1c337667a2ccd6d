#!/usr/bin/env python3
# soulscore/commands/run_batch.py
"""
Batch recalculation command for SoulScore.

Creates a batch run, enqueues DNA and originality jobs for every user that
needs recalculation, drains the queue with a worker pool, finalizes the run
and prints a summary.

Usage:
    # Daily incremental run with the default pool size
    python -m soulscore.commands.run_batch --run-type scheduled_daily

    # Weekly full recalculation with 8 workers, creating tables first
    python -m soulscore.commands.run_batch --run-type weekly_full --workers 8 --init-db

Exit status is 0 when the run completed, 1 when it failed or was left
running because jobs were still outstanding at the drain timeout.
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from ..config import settings
from ..jobs.scheduler import BatchResult, batch_scheduler
from ..services.batch_run_service import RunType
from ..services.database_service import database_service

logger = logging.getLogger("soulscore.commands.run_batch")


def format_summary(result: BatchResult) -> str:
    """Render a finished (or still running) batch for the console."""
    run = result.run
    stats = result.stats
    lines = [
        f"Batch run {run.id} ({run.run_type})",
        f"  Status:        {run.status}",
        f"  Jobs:          {run.total_jobs} total, {run.completed_jobs} completed, {run.failed_jobs} failed",
        f"  Executions:    {stats.processed} ({stats.retried} retried, {stats.lost} lost)",
        f"  Tokens used:   {run.tokens_used}",
        f"  API cost:      {run.api_cost_cents} cents",
    ]
    if run.duration_seconds is not None:
        lines.append(f"  Duration:      {run.duration_seconds}s")
    if not result.drained:
        lines.append("  Warning:       drain timeout reached; run left open")
    for error in run.errors[:10]:
        lines.append(f"  Error (job {error.job_id}): {error.error}")
    return "\n".join(lines)


async def run_batch(
    run_type: str,
    workers: Optional[int] = None,
    init_db: bool = False,
    drain_timeout: Optional[float] = None,
) -> BatchResult:
    """Run one batch end to end and close the database engine."""
    try:
        if init_db:
            await database_service.init_db()
        return await batch_scheduler.run_batch(
            run_type,
            concurrency=workers,
            drain_timeout=drain_timeout,
        )
    finally:
        await database_service.close()


def main():
    """Main entry point for the run_batch command."""
    parser = argparse.ArgumentParser(
        description="Run a SoulScore batch recalculation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Run types:
  manual           Operator-triggered incremental run
  scheduled_daily  Users with new activity or stale originality scores
  weekly_full      Every user with behavioral snapshots or content

Environment Variables:
  DATABASE_URL     SQLAlchemy async URL (default: sqlite+aiosqlite:///./data/soulscore.db)
  OPENAI_API_KEY   Required for content embeddings
  WORKER_CONCURRENCY  Default pool size
        """,
    )

    parser.add_argument(
        "--run-type",
        choices=[run_type.value for run_type in RunType],
        default=RunType.MANUAL.value,
        help="Kind of batch run (default: manual)",
    )

    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help=f"Concurrent workers (default: {settings.worker_concurrency})",
    )

    parser.add_argument(
        "--init-db",
        action="store_true",
        help="Create database tables before running",
    )

    parser.add_argument(
        "--drain-timeout",
        type=float,
        default=None,
        help=f"Seconds to wait for retries to drain (default: {settings.batch_drain_timeout_seconds})",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        result = asyncio.run(
            run_batch(
                args.run_type,
                workers=args.workers,
                init_db=args.init_db,
                drain_timeout=args.drain_timeout,
            )
        )
    except Exception as e:
        logger.error(f"Batch run failed: {e}", exc_info=True)
        sys.exit(1)

    print(format_summary(result))
    sys.exit(0 if result.run.status == "completed" else 1)


if __name__ == "__main__":
    main()
