#!/usr/bin/env python3
"""
Startup Sourcing Pipeline
=========================

Finds newly incorporated UK tech companies on Companies House, enriches
their founders, scores and qualifies them, matches them to VC connections
and queues first-touch outreach. A separate queue cycle delivers one
message per user every half hour.

Usage:
    python main.py                     # One pipeline sweep for the configured user
    python main.py --once              # Same, explicitly
    python main.py --process-queue     # One outreach queue cycle
    python main.py --schedule          # Sweep every few hours, drain the queue every 30 min
    python main.py --dry-run           # Preview without writing or sending
    python main.py --summary           # Email the run summary afterwards
    python main.py --user alice        # Act for another user id
"""

import argparse
import logging
import sys
import os

# Ensure project root is on the path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from sourcing import config
from sourcing.db import init_db
from sourcing.pipeline import AutoPipeline
from sourcing.outreach import (
    process_queue,
    send_summary_email,
    init_outreach_db,
    OUTREACH_CONFIG,
)


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # Quieten noisy libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)


def run_once(user_id: str, dry_run: bool = False, summary: bool = False) -> dict:
    """Run a single pipeline sweep."""
    logger = logging.getLogger("main")
    init_db()
    init_outreach_db()

    report = AutoPipeline(user_id, dry_run=dry_run).run()
    if report.skipped:
        print(f"\n  Sourcing run for {user_id} skipped: {report.skipped}\n")
        return report.to_dict()

    print(f"\n{'=' * 60}")
    print(f"  Sourcing run for {user_id}{' [DRY RUN]' if dry_run else ''}")
    print(f"  {report.discover.get('saved', 0)} new startups, "
          f"{report.enrich.get('enriched', 0)} enriched, "
          f"{report.qualify.get('qualified', 0)} qualified, "
          f"{report.queue.get('queued', 0)} queued")
    print(f"{'=' * 60}\n")

    for detail in report.match.get('details', []):
        print(f"  {detail['company_name']}")
        for m in detail['matches'][:3]:
            print(f"      -> {m['name']} ({m['firm']}) score {m['score']}: {', '.join(m['reasons'])}")
    if report.errors:
        print(f"\n  {len(report.errors)} errors:")
        for error in report.errors:
            print(f"    [{error['step']}] {error['entity'] or '-'}: {error['error']}")
    print()

    if summary:
        if send_summary_email(user_id, report=report.to_dict(), dry_run=dry_run):
            logger.info("Summary email sent")

    return report.to_dict()


def run_queue_cycle(dry_run: bool = False) -> dict:
    """Deliver at most one due message per user."""
    logger = logging.getLogger("main")
    init_db()
    init_outreach_db()

    results = process_queue(dry_run=dry_run)
    logger.info(
        "Queue cycle: %d sent, %d retrying, %d failed",
        results['sent'], results['retrying'], results['failed'],
    )
    for error in results['errors']:
        logger.error("User %s: %s", error['user_id'], error['error'])
    return results


def run_scheduled(user_id: str, dry_run: bool = False) -> None:
    """Run the pipeline and the queue processor on a schedule."""
    import schedule
    import time

    logger = logging.getLogger("main")
    interval_minutes = OUTREACH_CONFIG['PROCESS_INTERVAL_MINUTES']
    logger.info(
        "Scheduling pipeline every %d hours and queue cycle every %d minutes",
        config.PIPELINE_INTERVAL_HOURS, interval_minutes,
    )

    schedule.every(config.PIPELINE_INTERVAL_HOURS).hours.do(run_once, user_id=user_id, dry_run=dry_run)
    schedule.every(interval_minutes).minutes.do(run_queue_cycle, dry_run=dry_run)

    # Also run immediately on startup
    run_once(user_id, dry_run=dry_run)
    run_queue_cycle(dry_run=dry_run)

    while True:
        schedule.run_pending()
        time.sleep(30)


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Startup Sourcing – find, qualify and contact new UK founders"
    )
    parser.add_argument(
        "--user", type=str, default=config.DEFAULT_USER_ID,
        help="User id to act for (overrides SOURCING_USER_ID)",
    )
    parser.add_argument(
        "--once", action="store_true",
        help="Run one pipeline sweep and exit (default)",
    )
    parser.add_argument(
        "--process-queue", action="store_true",
        help="Run one outreach queue cycle instead of a pipeline sweep",
    )
    parser.add_argument(
        "--schedule", action="store_true",
        help="Run pipeline and queue on a schedule (stays running)",
    )
    parser.add_argument(
        "--dry-run", action="store_true",
        help="Preview without writing results or sending messages",
    )
    parser.add_argument(
        "--summary", action="store_true",
        help="Email the run summary after the sweep",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()
    setup_logging(args.verbose)

    if args.schedule:
        run_scheduled(args.user, dry_run=args.dry_run)
    elif args.process_queue:
        run_queue_cycle(dry_run=args.dry_run)
    else:
        run_once(args.user, dry_run=args.dry_run, summary=args.summary)


if __name__ == "__main__":
    main()
