#!/usr/bin/env python3
"""Run the reminder, delivery, bulk-send and webhook-retry cycle.

    python scripts/run_workers.py --once
    python scripts/run_workers.py --loop --interval 30

Settings come from the environment (DATABASE_URL, WORKER_*).
"""

import argparse
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from notifier.config import get_settings
from notifier.workers import (
    configure_worker_logging,
    run_worker_loop,
    run_worker_once,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument("--once", action="store_true", help="one cycle, then exit")
    mode.add_argument("--loop", action="store_true", help="cycle until SIGINT/SIGTERM")
    parser.add_argument("--interval", type=int, help="seconds between cycles")
    parser.add_argument("--max-iterations", type=int)
    parser.add_argument("--batch-size", type=int)
    parser.add_argument("-v", "--verbose", action="store_true")
    parser.add_argument("-q", "--quiet", action="store_true")
    return parser


def main() -> int:
    args = build_parser().parse_args()
    level = logging.DEBUG if args.verbose else logging.WARNING if args.quiet else logging.INFO
    configure_worker_logging(level)
    logger = logging.getLogger(__name__)

    try:
        get_settings().validate()
        if args.once:
            result = run_worker_once(batch_size=args.batch_size)
            summary = {
                name: {k: v for k, v in worker.to_dict().items() if k != "items"}
                for name, worker in result.worker_results.items()
            }
            print(json.dumps({"errors": result.errors, "workers": summary}, indent=2, default=str))
            return 1 if result.errors else 0

        run_worker_loop(
            interval_seconds=args.interval,
            max_iterations=args.max_iterations,
            batch_size=args.batch_size,
        )
        return 0
    except KeyboardInterrupt:
        return 0
    except Exception:
        logger.exception("Worker run aborted")
        return 1


if __name__ == "__main__":
    sys.exit(main())
