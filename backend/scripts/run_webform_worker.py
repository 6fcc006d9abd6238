#!/usr/bin/env python3
"""
Webform Worker Loop
Polls the webform queue and runs one batch per interval.

Usage:
    python -m scripts.run_webform_worker [--interval SECONDS] [--once]

Example:
    python -m scripts.run_webform_worker --interval 30
"""
import argparse
import logging
import os
import sys
import time

# Add the parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.database import SessionLocal, init_db
from app.services.automation import WebformWorker

logger = logging.getLogger("webform_worker")


def run_once() -> dict:
    db = SessionLocal()
    try:
        return WebformWorker(db).run_batch()
    finally:
        db.close()


def poll_forever(interval: float, run=run_once, sleep=time.sleep) -> None:
    """Run a batch every interval. A failed batch is logged and the loop carries on."""
    while True:
        try:
            run()
        except Exception:
            logger.exception("Webform batch failed, retrying next interval")
        sleep(max(1.0, interval))


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Drain the webform job queue")
    parser.add_argument("--interval", type=float, default=30.0, help="seconds between batches")
    parser.add_argument("--once", action="store_true", help="run a single batch and exit")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    init_db()

    if args.once:
        summary = run_once()
        print(f"claimed={summary['claimed']} succeeded={summary['succeeded']} "
              f"retried={summary['retried']} failed={summary['failed']}")
        return 0

    logger.info(f"Webform worker polling every {args.interval}s")
    try:
        poll_forever(args.interval)
    except KeyboardInterrupt:
        logger.info("Webform worker stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
