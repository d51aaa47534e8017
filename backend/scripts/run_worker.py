"""Poll for queued suggestion jobs and run them.

Each poll first fails running jobs whose heartbeat went stale, so a crashed
runner does not block its saga.

Usage (from backend directory):
    python scripts/run_worker.py
    python scripts/run_worker.py --refresh-all --once
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from saga_suggestions.config import get_settings
from saga_suggestions.db.session import SessionLocal
from saga_suggestions.services.background_jobs import run_pending_jobs
from saga_suggestions.services.batch_jobs import enqueue_refresh_all
from saga_suggestions.services.entity_store import SqlEntityStore

logger = logging.getLogger("saga_suggestions.worker")


def parse_args() -> argparse.Namespace:
    """Parse script CLI arguments."""

    parser = argparse.ArgumentParser(description="Run queued relationship suggestion jobs.")
    parser.add_argument(
        "--refresh-all",
        action="store_true",
        help="Queue a generation job for every saga that is not rate limited before polling.",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Drain the queue once and exit instead of polling forever.",
    )
    parser.add_argument(
        "--poll-seconds",
        type=float,
        default=None,
        help="Seconds between polls (default: WORKER_POLL_SECONDS setting).",
    )
    return parser.parse_args()


def main() -> None:
    """Run the worker loop until interrupted."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    args = parse_args()
    poll_seconds = args.poll_seconds if args.poll_seconds is not None else get_settings().worker_poll_seconds

    if args.refresh_all:
        with SessionLocal() as db:
            queued = enqueue_refresh_all(db, SqlEntityStore(db))
        skipped = sorted(saga_id for saga_id, job_id in queued.items() if job_id is None)
        logger.info("worker.refresh_all queued=%d skipped=%d", len(queued) - len(skipped), len(skipped))

    try:
        while True:
            results = run_pending_jobs()
            for result in results:
                logger.info(
                    "worker.job_done saga_id=%s job_id=%s status=%s created=%d",
                    result.saga_id,
                    result.job_id,
                    result.status,
                    result.suggestions_created,
                )
            if args.once:
                break
            time.sleep(max(0.5, poll_seconds))
    except KeyboardInterrupt:
        logger.info("worker.stopped")


if __name__ == "__main__":
    main()
