#!/usr/bin/env python3
"""
Tick Runner - drives the mission orchestrator on a fixed interval.

Usage:
    python scripts/run_tick.py            # loop every TICK_INTERVAL_SECONDS
    python scripts/run_tick.py --once     # single tick, print the summary

Environment variables:
    MISSION_DB_PATH, TICK_BATCH_SIZE, TICK_INTERVAL_SECONDS, LOG_LEVEL, LOG_FORMAT

Exit codes:
    0 - OK
    1 - configuration invalid
"""

import argparse
import json
import logging
import os
import sys
import time

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from mission_engine import config
from mission_engine.db.init_db import init_db
from mission_engine.logging_config import setup_logging
from mission_engine.tick import TickDriver

logger = logging.getLogger("mission_engine.runner")


def run_loop(interval: int, batch_size: int = None):
    driver = TickDriver(config={"batch_size": batch_size} if batch_size else None)
    logger.info("Tick loop started (worker=%s, interval=%ss)", driver.worker_id, interval)
    while True:
        started = time.monotonic()
        try:
            driver.run()
        except Exception:
            # A broken tick (e.g. locked database) must not kill the loop
            logger.exception("Tick failed")
        elapsed = time.monotonic() - started
        time.sleep(max(0.0, interval - elapsed))


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the mission orchestrator tick")
    parser.add_argument("--once", action="store_true", help="Run a single tick and exit")
    parser.add_argument("--interval", type=int, default=config.TICK_INTERVAL_SECONDS,
                        help=f"Seconds between ticks (default: {config.TICK_INTERVAL_SECONDS})")
    parser.add_argument("--batch-size", type=int, default=None,
                        help=f"Tasks claimed per tick (default: {config.TICK_BATCH_SIZE})")
    args = parser.parse_args()

    setup_logging()
    errors = config.validate()
    if errors:
        for err in errors:
            print(f"[config] {err}")
        sys.exit(1)

    init_db()
    if args.once:
        summary = TickDriver(config={"batch_size": args.batch_size} if args.batch_size else None).run()
        print(json.dumps(summary, indent=2))
    else:
        try:
            run_loop(args.interval, args.batch_size)
        except KeyboardInterrupt:
            print("\n[tick] Stopped.")
