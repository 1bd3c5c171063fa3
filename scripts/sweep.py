#!/usr/bin/env python3
"""
Runs the overdue sweep once, outside the API server's scheduler.

Useful from cron or by hand after restoring a database:
    python scripts/sweep.py
    python scripts/sweep.py --dry-run
"""
import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from circulate.core import db
from circulate.core.notifier import Notifier
from circulate.core.sweep import compute_overdue_actions, run_overdue_sweep, snapshot_active_loans
from circulate.core.utils import Clock

logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Run the Circulate overdue sweep once")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=False,
        help="Print the actions the sweep would take without applying them"
    )
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO)

    session = db.init()
    if session is None:
        print("Error: database unavailable")
        sys.exit(1)

    now = Clock().now()
    try:
        if args.dry_run:
            snapshots, totals = snapshot_active_loans(session, now)
            for action in compute_overdue_actions(now, snapshots, totals):
                print(action)
            return
        report = run_overdue_sweep(session, now, Notifier(session))
        if report is None:
            print("Another sweep is already running")
        else:
            print(f"Overdue alerts: {report.alerts}")
            print(f"Due soon reminders: {report.due_soon}")
            print(f"Users blocked: {', '.join(map(str, report.blocked)) or 'none'}")
            print(f"Pickup offers passed on: {report.offers_passed_on}")
    finally:
        db.session.remove()


if __name__ == "__main__":
    main()
