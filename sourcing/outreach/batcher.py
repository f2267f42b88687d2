"""
Batch enqueueing for outreach.

Takes a list of founders and a template, personalizes the message for each
and queues them spaced out in time, so a batch drains one message per
processing cycle instead of all at once.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from sourcing import db
from sourcing.models import Template
from sourcing.outreach.config import OUTREACH_CONFIG
from sourcing.outreach.db import MINUTE_MS, OutreachQueueError, enqueue, now_ms
from sourcing.outreach.templates import render_for_founder

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    """Outcome of a batch enqueue."""
    queued: int = 0
    skipped: int = 0
    first_send_at: Optional[int] = None
    last_send_at: Optional[int] = None
    queued_ids: list = field(default_factory=list)     # founder ids
    skipped_ids: list = field(default_factory=list)    # founder ids
    item_ids: list = field(default_factory=list)       # queue item ids
    reasons: dict = field(default_factory=dict)        # founder id -> why it was skipped

    def to_dict(self) -> dict:
        return {
            'queued': self.queued,
            'skipped': self.skipped,
            'first_send_at': self.first_send_at,
            'last_send_at': self.last_send_at,
            'queued_ids': self.queued_ids,
            'skipped_ids': self.skipped_ids,
            'reasons': self.reasons,
        }


def enqueue_personalized(
    user_id: str,
    founder_id: int,
    template: Template,
    scheduled_for: Optional[int] = None,
    priority: Optional[int] = None,
    now: Optional[int] = None,
) -> int:
    """Personalize ``template`` for one founder and queue it. Returns the item id."""
    founder = db.get_founder(founder_id)
    if founder is None or founder.user_id != user_id:
        # Let enqueue raise the not-found error
        return enqueue(user_id, founder_id, template.type, template.body, now=now)

    startup = db.get_startup(founder.startup_id) if founder.startup_id else None
    subject, message = render_for_founder(template, founder, startup)
    return enqueue(
        user_id,
        founder_id,
        template.type,
        message,
        subject=subject,
        startup_id=founder.startup_id,
        scheduled_for=scheduled_for,
        priority=priority,
        now=now,
    )


def enqueue_batch(
    user_id: str,
    founder_ids: list[int],
    template: Template,
    inter_delay_ms: Optional[int] = None,
    now: Optional[int] = None,
) -> BatchResult:
    """
    Queue ``template`` for each founder, in input order.

    The k-th founder actually queued (0-based) is scheduled at
    now + k * inter_delay_ms with priority DEFAULT_PRIORITY + k. Founders
    that fail a guard (unknown, no email, already active) are skipped and
    do not take a slot.
    """
    now = now_ms() if now is None else now
    if inter_delay_ms is None:
        inter_delay_ms = OUTREACH_CONFIG['BATCH_DELAY_MINUTES'] * MINUTE_MS
    base_priority = OUTREACH_CONFIG['DEFAULT_PRIORITY']

    result = BatchResult()
    for founder_id in founder_ids:
        k = result.queued
        scheduled_for = now + k * inter_delay_ms
        try:
            item_id = enqueue_personalized(
                user_id,
                founder_id,
                template,
                scheduled_for=scheduled_for,
                priority=base_priority + k,
                now=now,
            )
        except OutreachQueueError as exc:
            logger.info("Skipping founder %s: %s", founder_id, exc)
            result.skipped += 1
            result.skipped_ids.append(founder_id)
            result.reasons[founder_id] = type(exc).__name__
            continue

        result.queued += 1
        result.queued_ids.append(founder_id)
        result.item_ids.append(item_id)
        if result.first_send_at is None:
            result.first_send_at = scheduled_for
        result.last_send_at = scheduled_for

    logger.info(
        "Batch complete: %d queued, %d skipped",
        result.queued, result.skipped,
    )
    return result
