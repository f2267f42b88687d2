"""
Outreach queue for contacting founders.

This module handles:
- Queueing personalized messages, one active item per founder
- Spacing batches out over processing cycles
- Claiming due items and delivering them over SMTP
- Retrying failed deliveries with exponential backoff
- Keeping an immutable record of everything sent
"""

from sourcing.outreach.db import (
    init_outreach_db,
    enqueue,
    claim_due,
    mark_sent,
    mark_failed,
    cancel,
    retry,
    clear_failed,
    QueueItem,
    OutreachRecord,
    OutreachQueueError,
    QueueItemNotFound,
    DuplicateOutreach,
    MissingEmailAddress,
    InvalidTransition,
)
from sourcing.outreach.batcher import enqueue_batch, enqueue_personalized, BatchResult
from sourcing.outreach.processor import QueueProcessor, process_queue
from sourcing.outreach.sender import send_email, SendResult
from sourcing.outreach.summary import send_summary_email, print_status
from sourcing.outreach.config import OUTREACH_CONFIG

__all__ = [
    'init_outreach_db',
    'enqueue',
    'claim_due',
    'mark_sent',
    'mark_failed',
    'cancel',
    'retry',
    'clear_failed',
    'QueueItem',
    'OutreachRecord',
    'OutreachQueueError',
    'QueueItemNotFound',
    'DuplicateOutreach',
    'MissingEmailAddress',
    'InvalidTransition',
    'enqueue_batch',
    'enqueue_personalized',
    'BatchResult',
    'QueueProcessor',
    'process_queue',
    'send_email',
    'SendResult',
    'send_summary_email',
    'print_status',
    'OUTREACH_CONFIG',
]
