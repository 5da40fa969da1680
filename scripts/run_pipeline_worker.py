"""
Drain the import task queue from CLI.
"""

from __future__ import annotations

import argparse
import json
import logging
import time

from app.scheduler.jobs import build_task_queue
from app.services.scheduled_imports import get_scheduled_import_manager


def main() -> int:
    parser = argparse.ArgumentParser(description="Run queued import pipeline tasks.")
    parser.add_argument(
        "--schedules",
        action="store_true",
        help="Trigger due scheduled imports before draining the queue.",
    )
    parser.add_argument(
        "--loop",
        action="store_true",
        help="Keep polling instead of exiting once the queue is idle.",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=5.0,
        help="Seconds between polls when --loop is set.",
    )
    parser.add_argument(
        "--max-rounds",
        type=int,
        default=100,
        help="Upper bound on queue rounds per pass.",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    queue = build_task_queue()

    while True:
        payload: dict[str, object] = {}
        if args.schedules:
            payload["schedules"] = get_scheduled_import_manager().run_due_schedules()
        payload["tasks"] = queue.run_until_idle(max_rounds=args.max_rounds).to_dict()
        print(json.dumps(payload, indent=2, default=str))
        if not args.loop:
            return 0
        time.sleep(args.interval)


if __name__ == "__main__":
    raise SystemExit(main())
