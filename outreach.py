#!/usr/bin/env python3
"""
Outreach CLI - Command-line interface for the founder outreach queue.

Usage:
    python outreach.py status                  Show funnel and queue status
    python outreach.py queue [--status S]      List queue items
    python outreach.py preview <id>            Preview a queued message
    python outreach.py enqueue <founder_id>    Queue a message for one founder
    python outreach.py batch <ids...> -t <id>  Queue a template for several founders
    python outreach.py cancel <id>             Cancel a queued item
    python outreach.py retry <id>              Requeue a failed item
    python outreach.py clear-failed            Delete all failed items
    python outreach.py process [--dry-run]     Run one queue cycle
    python outreach.py sent <id>               Record a manually sent message (e.g. LinkedIn)
    python outreach.py stage <id> <stage>      Move a startup to a stage
    python outreach.py history                 Show send history
    python outreach.py seed-templates          Store the built-in templates
"""

import argparse
import logging
import sys
from datetime import datetime, timezone

from sourcing import config, db, stages
from sourcing.outreach.db import (
    init_outreach_db,
    enqueue,
    cancel,
    retry,
    clear_failed,
    claim_item,
    mark_sent,
    get_item,
    list_items,
    get_history,
    OutreachQueueError,
    CHANNELS,
    STATUSES,
)
from sourcing.outreach.batcher import enqueue_batch
from sourcing.outreach.processor import process_queue
from sourcing.outreach.summary import print_status
from sourcing.outreach.templates import seed_default_templates

logging.basicConfig(
    level=logging.INFO,
    format='%(message)s',
)
logger = logging.getLogger(__name__)


def _fmt_ms(value) -> str:
    if not value:
        return "-"
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).strftime("%d %b %H:%M")


def _init():
    db.init_db()
    init_outreach_db()


def cmd_status(args):
    """Show funnel and queue status."""
    _init()
    print_status(args.user)


def cmd_queue(args):
    """List queue items."""
    _init()

    items = list_items(args.user, status=args.status)
    if not items:
        label = f"{args.status} " if args.status else ""
        print(f"\n✓ No {label}items in the queue\n")
        return

    print()
    print("╔" + "═" * 76 + "╗")
    print(f"║{'OUTREACH QUEUE - ' + str(len(items)) + ' items':^76}║")
    print("╠" + "═" * 76 + "╣")

    for item in items:
        founder = db.get_founder(item.founder_id)
        name = founder.full_name if founder else f"founder {item.founder_id}"
        print("║" + " " * 76 + "║")
        print(f"║  #{item.id:<5} {item.status:<8} {item.channel:<9} {name[:35]:<35} p{item.priority:<5}    ║")
        print(f"║         Due: {_fmt_ms(item.scheduled_for):<14} Attempts: {item.attempts}/{item.max_attempts:<33}  ║")
        if item.last_error:
            print(f"║         Error: {item.last_error[:59]:<59}  ║")

    print("║" + " " * 76 + "║")
    print("╠" + "═" * 76 + "╣")
    print("║  Commands: preview <id> | cancel <id> | retry <id> | clear-failed | process ║")
    print("╚" + "═" * 76 + "╝")
    print()


def cmd_preview(args):
    """Preview a queued message."""
    _init()

    item = get_item(args.item_id)
    if not item or item.user_id != args.user:
        print(f"\n✗ Item #{args.item_id} not found\n")
        return

    founder = db.get_founder(item.founder_id)
    to = (founder.email or founder.linkedin_url or 'N/A') if founder else 'N/A'

    print()
    print("╔" + "═" * 76 + "╗")
    print(f"║{'MESSAGE PREVIEW - Item #' + str(item.id):^76}║")
    print("╠" + "═" * 76 + "╣")
    print("║" + " " * 76 + "║")
    print(f"║  To:      {to[:63]:<63}  ║")
    print(f"║  Channel: {item.channel:<63}  ║")
    if item.subject:
        print(f"║  Subject: {item.subject[:63]:<63}  ║")
    print("║" + " " * 76 + "║")
    print("║  " + "─" * 72 + "  ║")
    print("║" + " " * 76 + "║")

    for line in item.message.split('\n'):
        while len(line) > 70:
            print(f"║  {line[:70]}    ║")
            line = line[70:]
        print(f"║  {line:<70}    ║")

    print("║" + " " * 76 + "║")
    print("╠" + "═" * 76 + "╣")
    print(f"║  Status: {item.status:<66}║")
    print("╚" + "═" * 76 + "╝")
    print()


def cmd_enqueue(args):
    """Queue a message for one founder."""
    _init()
    try:
        item_id = enqueue(
            args.user,
            args.founder_id,
            args.channel,
            args.message,
            subject=args.subject,
        )
    except OutreachQueueError as e:
        print(f"\n✗ {e}\n")
        return
    print(f"\n✓ Queued item #{item_id}\n")


def cmd_batch(args):
    """Queue a stored template for several founders."""
    _init()

    template = db.get_template(args.template)
    if not template or template.user_id != args.user:
        print(f"\n✗ Template #{args.template} not found\n")
        return

    delay_ms = args.delay_minutes * 60 * 1000 if args.delay_minutes is not None else None
    result = enqueue_batch(args.user, args.founder_ids, template, inter_delay_ms=delay_ms)

    print(f"\n✓ Queued {result.queued} messages")
    if result.queued:
        print(f"  First send: {_fmt_ms(result.first_send_at)}")
        print(f"  Last send:  {_fmt_ms(result.last_send_at)}")
    for founder_id in result.skipped_ids:
        print(f"  ✗ Skipped founder {founder_id}: {result.reasons[founder_id]}")
    print()


def cmd_cancel(args):
    """Cancel a queued item."""
    _init()
    try:
        cancel(args.item_id, args.user)
    except OutreachQueueError as e:
        print(f"\n✗ {e}\n")
        return
    print(f"\n✓ Cancelled item #{args.item_id}\n")


def cmd_retry(args):
    """Requeue a failed item."""
    _init()
    try:
        retry(args.item_id, args.user)
    except OutreachQueueError as e:
        print(f"\n✗ {e}\n")
        return
    print(f"\n✓ Item #{args.item_id} requeued\n")


def cmd_clear_failed(args):
    """Delete all failed items."""
    _init()
    count = clear_failed(args.user)
    print(f"\n✓ Removed {count} failed items\n")


def cmd_process(args):
    """Run one queue cycle."""
    _init()

    if args.dry_run:
        print("\n🔍 DRY RUN MODE - No messages will be sent\n")

    results = process_queue(dry_run=args.dry_run)

    print(f"\n{'[DRY RUN] ' if args.dry_run else ''}Results:")
    print(f"  Users with due items: {results['users']}")
    print(f"  ✓ Sent: {results['sent']}")
    if results['retrying']:
        print(f"  ↻ Retrying: {results['retrying']}")
    if results['failed']:
        print(f"  ✗ Failed: {results['failed']}")
    if results['released']:
        print(f"  ⚠ Released stale items: {len(results['released'])}")
    for error in results['errors']:
        print(f"  ✗ {error['user_id']}: {error['error']}")
    print()


def cmd_sent(args):
    """Record that a queued message was sent by hand."""
    _init()
    try:
        item = claim_item(args.item_id, args.user)
        mark_sent(item.id)
    except OutreachQueueError as e:
        print(f"\n✗ {e}\n")
        return
    if item.startup_id:
        stages.mark_contacted(item.startup_id)
    print(f"\n✓ Item #{item.id} recorded as sent\n")


def cmd_stage(args):
    """Move one of the user's startups to a stage by hand."""
    _init()
    try:
        previous = stages.set_stage(args.startup_id, args.stage, user_id=args.user)
    except LookupError as e:
        print(f"\n✗ {e}\n")
        return
    print(f"\n✓ Startup #{args.startup_id}: {previous} -> {args.stage}\n")


def cmd_history(args):
    """Show send history."""
    _init()

    records = get_history(args.user, limit=args.limit)
    if not records:
        print("\n✓ Nothing sent yet\n")
        return

    print()
    print("╔" + "═" * 76 + "╗")
    print(f"║{'SEND HISTORY':^76}║")
    print("╠" + "═" * 76 + "╣")

    for record in records:
        founder = db.get_founder(record.founder_id)
        name = founder.full_name if founder else f"founder {record.founder_id}"
        subject = record.subject or '(no subject)'
        print(f"║  {_fmt_ms(record.sent_at):<13} {record.channel:<9} {name[:22]:<22} {subject[:27]:<27} ║")

    print("╚" + "═" * 76 + "╝")
    print()


def cmd_seed_templates(args):
    """Store the built-in templates for the user."""
    _init()
    created = seed_default_templates(args.user)
    if created:
        print(f"\n✓ Created {created} templates\n")
    else:
        print("\n✓ Templates already present\n")
    for template in db.list_templates(args.user):
        default = " (default)" if template.is_default else ""
        print(f"  #{template.id:<4} {template.type:<9} {template.name}{default}")
    print()


def main():
    parser = argparse.ArgumentParser(
        description="Outreach CLI - Founder outreach queue",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument('--user', '-u', default=config.DEFAULT_USER_ID, help='User id to act for')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # status
    subparsers.add_parser('status', help='Show funnel and queue status')

    # queue
    queue_parser = subparsers.add_parser('queue', help='List queue items')
    queue_parser.add_argument('--status', '-s', choices=STATUSES, help='Only items in this status')

    # preview
    preview_parser = subparsers.add_parser('preview', help='Preview a queued message')
    preview_parser.add_argument('item_id', type=int, help='Queue item ID')

    # enqueue
    enqueue_parser = subparsers.add_parser('enqueue', help='Queue a message for one founder')
    enqueue_parser.add_argument('founder_id', type=int, help='Founder ID')
    enqueue_parser.add_argument('--message', '-m', required=True, help='Message body')
    enqueue_parser.add_argument('--subject', help='Email subject')
    enqueue_parser.add_argument('--channel', '-c', choices=CHANNELS, default='email', help='Delivery channel')

    # batch
    batch_parser = subparsers.add_parser('batch', help='Queue a template for several founders')
    batch_parser.add_argument('founder_ids', type=int, nargs='+', help='Founder IDs')
    batch_parser.add_argument('--template', '-t', type=int, required=True, help='Template ID')
    batch_parser.add_argument('--delay-minutes', type=int, help='Gap between sends')

    # cancel
    cancel_parser = subparsers.add_parser('cancel', help='Cancel a queued item')
    cancel_parser.add_argument('item_id', type=int, help='Queue item ID')

    # retry
    retry_parser = subparsers.add_parser('retry', help='Requeue a failed item')
    retry_parser.add_argument('item_id', type=int, help='Queue item ID')

    # clear-failed
    subparsers.add_parser('clear-failed', help='Delete all failed items')

    # process
    process_parser = subparsers.add_parser('process', help='Run one queue cycle')
    process_parser.add_argument('--dry-run', action='store_true', help='Preview without sending')

    # sent
    sent_parser = subparsers.add_parser('sent', help='Record a manually sent message')
    sent_parser.add_argument('item_id', type=int, help='Queue item ID')

    # stage
    stage_parser = subparsers.add_parser('stage', help='Move a startup to a stage')
    stage_parser.add_argument('startup_id', type=int, help='Startup ID')
    stage_parser.add_argument('stage', choices=stages.STAGES, help='New stage')

    # history
    history_parser = subparsers.add_parser('history', help='Show send history')
    history_parser.add_argument('--limit', '-l', type=int, default=50, help='Max entries')

    # seed-templates
    subparsers.add_parser('seed-templates', help='Store the built-in templates')

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    # Command dispatch
    commands = {
        'status': cmd_status,
        'queue': cmd_queue,
        'preview': cmd_preview,
        'enqueue': cmd_enqueue,
        'batch': cmd_batch,
        'cancel': cmd_cancel,
        'retry': cmd_retry,
        'clear-failed': cmd_clear_failed,
        'process': cmd_process,
        'sent': cmd_sent,
        'stage': cmd_stage,
        'history': cmd_history,
        'seed-templates': cmd_seed_templates,
    }

    cmd_func = commands.get(args.command)
    if cmd_func:
        cmd_func(args)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
