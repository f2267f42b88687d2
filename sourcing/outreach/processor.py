"""
Outreach queue processor.

Run once per cycle (every PROCESS_INTERVAL_MINUTES). Each cycle:

1. Releases items stuck in 'sending' (a previous run died mid-delivery)
2. For every user with due items, claims exactly one and delivers it
3. On success marks the item sent and the startup contacted; on failure
   feeds the retry path

One user's failure never stops the others. Only channels the delivery
collaborator can send are claimed; LinkedIn items wait for the user to
send them by hand.
"""

import logging
from typing import Callable, Optional

from sourcing import db, stages
from sourcing.outreach.config import OUTREACH_CONFIG, validate_config
from sourcing.outreach.db import (
    MINUTE_MS,
    claim_due,
    get_users_with_due_items,
    mark_failed,
    mark_sent,
    next_due_item,
    now_ms,
    release_stale_sending,
)
from sourcing.outreach.sender import SendResult, send_email

logger = logging.getLogger(__name__)


class QueueProcessor:
    """
    Drains the outreach queue one item per user per cycle.

    Usage:
        processor = QueueProcessor()
        results = processor.process()
    """

    def __init__(self, dry_run: bool = False, sender: Optional[Callable[..., SendResult]] = None):
        """
        Args:
            dry_run: Report what would be sent without claiming or sending
            sender: Delivery function (to_email, subject, body) -> SendResult
        """
        self.dry_run = dry_run or OUTREACH_CONFIG.get('DRY_RUN', False)
        self.sender = sender or send_email
        self.channels = OUTREACH_CONFIG.get('DELIVERY_CHANNELS') or ['email']

        if not self.dry_run:
            for error in validate_config():
                logger.warning("Config issue: %s", error)

    def process(self, now: Optional[int] = None) -> dict:
        now = now_ms() if now is None else now
        results = {
            'users': 0,
            'sent': 0,
            'retrying': 0,
            'failed': 0,
            'released': [],
            'errors': [],
            'details': [],
        }

        if not self.dry_run:
            stale_ms = OUTREACH_CONFIG['STALE_SENDING_MINUTES'] * MINUTE_MS
            results['released'] = release_stale_sending(stale_ms, now=now)

        users = get_users_with_due_items(now=now, channels=self.channels)
        results['users'] = len(users)
        if not users:
            logger.info("No due outreach items")
            return results

        for user_id in users:
            try:
                detail = self._process_user(user_id, now)
            except Exception as exc:
                logger.exception("Queue processing failed for user %s", user_id)
                results['errors'].append({'user_id': user_id, 'error': str(exc)})
                continue
            if detail is None:
                continue
            results['details'].append(detail)
            outcome = detail['outcome']
            if outcome in ('sent', 'retrying', 'failed'):
                results[outcome] += 1

        logger.info(
            "Queue cycle: %d users, %d sent, %d retrying, %d failed, %d errors",
            results['users'], results['sent'], results['retrying'],
            results['failed'], len(results['errors']),
        )
        return results

    def _process_user(self, user_id: str, now: int) -> Optional[dict]:
        if self.dry_run:
            item = next_due_item(user_id, channels=self.channels, now=now)
            if item is None:
                return None
            logger.info("[DRY RUN] Would send item %d to founder %d", item.id, item.founder_id)
            return {'user_id': user_id, 'item_id': item.id, 'outcome': 'dry_run'}

        claimed = claim_due(1, user_id=user_id, channels=self.channels, now=now)
        if not claimed:
            return None
        item = claimed[0]

        founder = db.get_founder(item.founder_id)
        if founder is None or not founder.email:
            status = mark_failed(item.id, "founder has no email address", now=now, permanent=True)
            return self._failure_detail(user_id, item.id, status, "founder has no email address")

        result = self.sender(founder.email, item.subject or "", item.message)
        if not result.success:
            error = result.error or result.message or "send failed"
            status = mark_failed(item.id, error, now=now)
            return self._failure_detail(user_id, item.id, status, error)

        mark_sent(item.id, now=now)
        moved = stages.mark_contacted(item.startup_id) if item.startup_id else False
        return {
            'user_id': user_id,
            'item_id': item.id,
            'outcome': 'sent',
            'to': founder.email,
            'startup_contacted': moved,
        }

    @staticmethod
    def _failure_detail(user_id: str, item_id: int, status: str, error: str) -> dict:
        return {
            'user_id': user_id,
            'item_id': item_id,
            'outcome': 'retrying' if status == 'queued' else 'failed',
            'error': error,
        }


def process_queue(now: Optional[int] = None, dry_run: bool = False) -> dict:
    """Run one processing cycle. Entry point for the scheduler and CLIs."""
    return QueueProcessor(dry_run=dry_run).process(now=now)
