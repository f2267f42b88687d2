"""
SQLite outreach queue.

Tables:
- outreach_queue: messages waiting to go out, being sent, sent or failed
- outreach_history: immutable record of every message actually sent

Queue item lifecycle:

    queued --claim--> sending --mark_sent--> sent
      ^                  |
      |             mark_failed
      |                  |
      +---- attempts < max_attempts (rescheduled with backoff)
                         |
                      failed --retry--> queued
                         |
                    clear_failed (deleted)

A founder has at most one item in queued/sending at any time. The guard is a
check-then-insert inside one write transaction, backed by a partial unique
index. Queue timestamps are epoch milliseconds.
"""

import logging
import sqlite3
import time
from dataclasses import dataclass
from typing import Optional

from sourcing.db import _connect, transaction
from sourcing.outreach.config import OUTREACH_CONFIG

logger = logging.getLogger(__name__)

CHANNELS = ('email', 'linkedin')
STATUSES = ('queued', 'sending', 'sent', 'failed')
ACTIVE_STATUSES = ('queued', 'sending')

MINUTE_MS = 60 * 1000


class OutreachQueueError(Exception):
    """Base class for rejected queue operations."""


class QueueItemNotFound(OutreachQueueError):
    pass


class DuplicateOutreach(OutreachQueueError):
    """The founder already has a queued or sending item."""


class MissingEmailAddress(OutreachQueueError):
    pass


class InvalidTransition(OutreachQueueError):
    """The item is not in a status this operation can move it from."""


@dataclass
class QueueItem:
    id: Optional[int] = None
    user_id: str = ""
    founder_id: Optional[int] = None
    startup_id: Optional[int] = None
    channel: str = "email"
    subject: Optional[str] = None
    message: str = ""
    status: str = "queued"
    priority: int = 100
    scheduled_for: int = 0
    attempts: int = 0
    max_attempts: int = 3
    last_attempt_at: Optional[int] = None
    last_error: Optional[str] = None
    created_at: int = 0
    sent_at: Optional[int] = None


@dataclass
class OutreachRecord:
    id: Optional[int] = None
    user_id: str = ""
    founder_id: Optional[int] = None
    startup_id: Optional[int] = None
    queue_item_id: Optional[int] = None
    channel: str = "email"
    status: str = "sent"
    subject: Optional[str] = None
    message: str = ""
    created_at: int = 0
    sent_at: int = 0


def now_ms() -> int:
    return int(time.time() * 1000)


def backoff_ms(attempts: int) -> int:
    """Delay before the next try after ``attempts`` failures: base * 2^(attempts - 1)."""
    base = OUTREACH_CONFIG['RETRY_BASE_MINUTES'] * MINUTE_MS
    return base * (2 ** max(0, attempts - 1))


def init_outreach_db() -> None:
    """Initialize the queue and history tables."""
    conn = _connect()
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS outreach_queue (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                founder_id INTEGER NOT NULL,
                startup_id INTEGER,
                channel TEXT NOT NULL,
                subject TEXT,
                message TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'queued',
                priority INTEGER NOT NULL DEFAULT 100,
                scheduled_for INTEGER NOT NULL,
                attempts INTEGER NOT NULL DEFAULT 0,
                max_attempts INTEGER NOT NULL DEFAULT 3,
                last_attempt_at INTEGER,
                last_error TEXT,
                created_at INTEGER NOT NULL,
                sent_at INTEGER
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_queue_status_scheduled "
            "ON outreach_queue(status, scheduled_for)"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_queue_user_founder "
            "ON outreach_queue(user_id, founder_id)"
        )
        conn.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS idx_queue_one_active_per_founder "
            "ON outreach_queue(founder_id) WHERE status IN ('queued', 'sending')"
        )

        conn.execute("""
            CREATE TABLE IF NOT EXISTS outreach_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                founder_id INTEGER NOT NULL,
                startup_id INTEGER,
                queue_item_id INTEGER UNIQUE,
                channel TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'sent',
                subject TEXT,
                message TEXT,
                created_at INTEGER NOT NULL,
                sent_at INTEGER NOT NULL
            )
        """)

        conn.commit()
    finally:
        conn.close()


def _get_row(conn: sqlite3.Connection, item_id: int, user_id: Optional[str] = None) -> sqlite3.Row:
    if user_id is None:
        row = conn.execute("SELECT * FROM outreach_queue WHERE id = ?", (item_id,)).fetchone()
    else:
        row = conn.execute(
            "SELECT * FROM outreach_queue WHERE id = ? AND user_id = ?", (item_id, user_id)
        ).fetchone()
    if row is None:
        raise QueueItemNotFound(f"Queue item {item_id} not found")
    return row


def _has_active_item(conn: sqlite3.Connection, founder_id: int) -> bool:
    row = conn.execute(
        "SELECT 1 FROM outreach_queue WHERE founder_id = ? AND status IN (?, ?)",
        (founder_id, *ACTIVE_STATUSES),
    ).fetchone()
    return row is not None


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

def enqueue(
    user_id: str,
    founder_id: int,
    channel: str,
    message: str,
    subject: Optional[str] = None,
    startup_id: Optional[int] = None,
    scheduled_for: Optional[int] = None,
    priority: Optional[int] = None,
    now: Optional[int] = None,
) -> int:
    """
    Queue a message for a founder. Returns the new item id.

    Raises:
        QueueItemNotFound: the founder does not belong to ``user_id``
        DuplicateOutreach: the founder already has a queued/sending item
        MissingEmailAddress: email channel and the founder has no address
    """
    if channel not in CHANNELS:
        raise ValueError(f"Unknown channel: {channel!r}")
    now = now_ms() if now is None else now

    try:
        with transaction() as conn:
            founder = conn.execute(
                "SELECT id, email, startup_id FROM founders WHERE id = ? AND user_id = ?",
                (founder_id, user_id),
            ).fetchone()
            if founder is None:
                raise QueueItemNotFound(f"Founder {founder_id} not found")
            if _has_active_item(conn, founder_id):
                raise DuplicateOutreach(f"Founder {founder_id} already has an active queue item")
            if channel == 'email' and not founder["email"]:
                raise MissingEmailAddress(f"Founder {founder_id} has no email address")

            cursor = conn.execute(
                """
                INSERT INTO outreach_queue
                (user_id, founder_id, startup_id, channel, subject, message, status,
                 priority, scheduled_for, attempts, max_attempts, created_at)
                VALUES (?, ?, ?, ?, ?, ?, 'queued', ?, ?, 0, ?, ?)
                """,
                (
                    user_id,
                    founder_id,
                    startup_id if startup_id is not None else founder["startup_id"],
                    channel,
                    subject,
                    message,
                    OUTREACH_CONFIG['DEFAULT_PRIORITY'] if priority is None else priority,
                    now if scheduled_for is None else scheduled_for,
                    OUTREACH_CONFIG['MAX_ATTEMPTS'],
                    now,
                ),
            )
            item_id = cursor.lastrowid
    except sqlite3.IntegrityError as exc:
        raise DuplicateOutreach(f"Founder {founder_id} already has an active queue item") from exc

    logger.debug("Queued %s item %d for founder %d", channel, item_id, founder_id)
    return item_id


def claim_due(
    limit: int,
    user_id: Optional[str] = None,
    channels: Optional[list[str]] = None,
    now: Optional[int] = None,
) -> list[QueueItem]:
    """
    Move up to ``limit`` due items from queued to sending and return them.

    Due means scheduled_for <= now. Order: priority, then scheduled_for.
    Each row is claimed with a compare-and-swap on its status, so two
    callers never get the same item.
    """
    now = now_ms() if now is None else now
    query = "SELECT * FROM outreach_queue WHERE status = 'queued' AND scheduled_for <= ?"
    params: list = [now]
    if user_id is not None:
        query += " AND user_id = ?"
        params.append(user_id)
    if channels:
        query += f" AND channel IN ({', '.join('?' for _ in channels)})"
        params.extend(channels)
    query += " ORDER BY priority ASC, scheduled_for ASC, id ASC LIMIT ?"
    params.append(limit)

    claimed = []
    with transaction() as conn:
        for row in conn.execute(query, params).fetchall():
            cursor = conn.execute(
                "UPDATE outreach_queue SET status = 'sending', last_attempt_at = ? "
                "WHERE id = ? AND status = 'queued'",
                (now, row["id"]),
            )
            if cursor.rowcount == 1:
                item = QueueItem(**dict(row))
                item.status = 'sending'
                item.last_attempt_at = now
                claimed.append(item)
    return claimed


def claim_item(item_id: int, user_id: Optional[str] = None, now: Optional[int] = None) -> QueueItem:
    """Claim one specific queued item regardless of its schedule."""
    now = now_ms() if now is None else now
    with transaction() as conn:
        row = _get_row(conn, item_id, user_id)
        cursor = conn.execute(
            "UPDATE outreach_queue SET status = 'sending', last_attempt_at = ? "
            "WHERE id = ? AND status = 'queued'",
            (now, item_id),
        )
        if cursor.rowcount != 1:
            raise InvalidTransition(f"Item {item_id} is {row['status']}, not queued")
    item = QueueItem(**dict(row))
    item.status = 'sending'
    item.last_attempt_at = now
    return item


def mark_sent(item_id: int, history: Optional[dict] = None, now: Optional[int] = None) -> int:
    """
    sending -> sent, and write the history record in the same transaction.

    ``history`` may override the subject/message recorded (what actually went
    out). Returns the history record id.
    """
    now = now_ms() if now is None else now
    history = history or {}
    with transaction() as conn:
        row = _get_row(conn, item_id)
        cursor = conn.execute(
            "UPDATE outreach_queue SET status = 'sent', sent_at = ? "
            "WHERE id = ? AND status = 'sending'",
            (now, item_id),
        )
        if cursor.rowcount != 1:
            raise InvalidTransition(f"Item {item_id} is {row['status']}, not sending")

        cursor = conn.execute(
            """
            INSERT INTO outreach_history
            (user_id, founder_id, startup_id, queue_item_id, channel, status,
             subject, message, created_at, sent_at)
            VALUES (?, ?, ?, ?, ?, 'sent', ?, ?, ?, ?)
            """,
            (
                row["user_id"],
                row["founder_id"],
                row["startup_id"],
                item_id,
                row["channel"],
                history.get('subject', row["subject"]),
                history.get('message', row["message"]),
                now,
                now,
            ),
        )
        record_id = cursor.lastrowid

    logger.info("Item %d sent (founder %d)", item_id, row["founder_id"])
    return record_id


def mark_failed(item_id: int, error: str, now: Optional[int] = None, permanent: bool = False) -> str:
    """
    Record a failed delivery attempt. Returns the new status.

    With attempts left the item goes back to queued, rescheduled by
    backoff_ms(attempts); otherwise it becomes failed. ``permanent`` marks a
    failure no retry can fix (e.g. no address) and goes straight to failed.
    """
    now = now_ms() if now is None else now
    with transaction() as conn:
        row = _get_row(conn, item_id)
        if row["status"] != 'sending':
            raise InvalidTransition(f"Item {item_id} is {row['status']}, not sending")

        attempts = row["attempts"] + 1
        if attempts < row["max_attempts"] and not permanent:
            status = 'queued'
            scheduled_for = now + backoff_ms(attempts)
        else:
            status = 'failed'
            scheduled_for = row["scheduled_for"]

        conn.execute(
            """
            UPDATE outreach_queue
            SET status = ?, attempts = ?, last_error = ?, scheduled_for = ?
            WHERE id = ? AND status = 'sending'
            """,
            (status, attempts, error, scheduled_for, item_id),
        )

    if status == 'failed':
        logger.warning("Item %d failed permanently after %d attempts: %s", item_id, attempts, error)
    else:
        logger.info("Item %d attempt %d failed, retrying in %d min: %s",
                    item_id, attempts, backoff_ms(attempts) // MINUTE_MS, error)
    return status


def cancel(item_id: int, user_id: str) -> None:
    """Delete a queued item. Items already sending or finished cannot be cancelled."""
    with transaction() as conn:
        row = _get_row(conn, item_id, user_id)
        cursor = conn.execute(
            "DELETE FROM outreach_queue WHERE id = ? AND status = 'queued'", (item_id,)
        )
        if cursor.rowcount != 1:
            raise InvalidTransition(f"Item {item_id} is {row['status']}, only queued items can be cancelled")
    logger.info("Cancelled item %d", item_id)


def retry(item_id: int, user_id: str, now: Optional[int] = None) -> None:
    """failed -> queued with a fresh attempt budget, due immediately."""
    now = now_ms() if now is None else now
    try:
        with transaction() as conn:
            row = _get_row(conn, item_id, user_id)
            if row["status"] != 'failed':
                raise InvalidTransition(f"Item {item_id} is {row['status']}, not failed")
            if _has_active_item(conn, row["founder_id"]):
                raise DuplicateOutreach(
                    f"Founder {row['founder_id']} already has an active queue item"
                )
            conn.execute(
                """
                UPDATE outreach_queue
                SET status = 'queued', attempts = 0, last_error = NULL, scheduled_for = ?
                WHERE id = ? AND status = 'failed'
                """,
                (now, item_id),
            )
    except sqlite3.IntegrityError as exc:
        raise DuplicateOutreach(f"Item {item_id}: founder already has an active queue item") from exc
    logger.info("Item %d requeued", item_id)


def clear_failed(user_id: str) -> int:
    """Delete all failed items for a user. Returns how many were removed."""
    with transaction() as conn:
        cursor = conn.execute(
            "DELETE FROM outreach_queue WHERE user_id = ? AND status = 'failed'", (user_id,)
        )
        count = cursor.rowcount
    logger.info("Cleared %d failed items for %s", count, user_id)
    return count


def release_stale_sending(older_than_ms: int, now: Optional[int] = None) -> list[tuple[int, str]]:
    """
    Fail items claimed more than ``older_than_ms`` ago that never finished.

    They go through mark_failed like any other failed delivery, so they
    retry or fail according to their attempt budget. Returns
    [(item_id, new_status)].
    """
    now = now_ms() if now is None else now
    conn = _connect()
    try:
        rows = conn.execute(
            "SELECT id FROM outreach_queue WHERE status = 'sending' AND last_attempt_at <= ?",
            (now - older_than_ms,),
        ).fetchall()
    finally:
        conn.close()

    released = []
    for row in rows:
        try:
            status = mark_failed(row["id"], "delivery interrupted", now=now)
        except InvalidTransition:
            # Finished by its original sender in the meantime
            continue
        released.append((row["id"], status))
    if released:
        logger.warning("Released %d stale sending items", len(released))
    return released


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def get_item(item_id: int) -> Optional[QueueItem]:
    conn = _connect()
    try:
        row = conn.execute("SELECT * FROM outreach_queue WHERE id = ?", (item_id,)).fetchone()
        return QueueItem(**dict(row)) if row else None
    finally:
        conn.close()


def list_items(user_id: str, status: Optional[str] = None, limit: Optional[int] = None) -> list[QueueItem]:
    query = "SELECT * FROM outreach_queue WHERE user_id = ?"
    params: list = [user_id]
    if status:
        query += " AND status = ?"
        params.append(status)
    query += " ORDER BY priority ASC, scheduled_for ASC, id ASC"
    if limit is not None:
        query += " LIMIT ?"
        params.append(limit)

    conn = _connect()
    try:
        return [QueueItem(**dict(row)) for row in conn.execute(query, params).fetchall()]
    finally:
        conn.close()


def get_queue_stats(user_id: str) -> dict:
    """Counts per status plus the next scheduled send."""
    conn = _connect()
    try:
        rows = conn.execute(
            "SELECT status, COUNT(*) AS n FROM outreach_queue WHERE user_id = ? GROUP BY status",
            (user_id,),
        ).fetchall()
        next_row = conn.execute(
            "SELECT MIN(scheduled_for) AS next_at FROM outreach_queue "
            "WHERE user_id = ? AND status = 'queued'",
            (user_id,),
        ).fetchone()
        sent_total = conn.execute(
            "SELECT COUNT(*) FROM outreach_history WHERE user_id = ?", (user_id,)
        ).fetchone()[0]
    finally:
        conn.close()

    stats = {status: 0 for status in STATUSES}
    for row in rows:
        stats[row["status"]] = row["n"]
    stats['total'] = sum(stats[s] for s in STATUSES)
    stats['next_scheduled_for'] = next_row["next_at"]
    stats['history_total'] = sent_total
    return stats


def get_history(user_id: str, limit: Optional[int] = None) -> list[OutreachRecord]:
    query = "SELECT * FROM outreach_history WHERE user_id = ? ORDER BY sent_at DESC, id DESC"
    params: list = [user_id]
    if limit is not None:
        query += " LIMIT ?"
        params.append(limit)
    conn = _connect()
    try:
        return [OutreachRecord(**dict(row)) for row in conn.execute(query, params).fetchall()]
    finally:
        conn.close()


def next_due_item(
    user_id: str,
    channels: Optional[list[str]] = None,
    now: Optional[int] = None,
) -> Optional[QueueItem]:
    """The item claim_due would pick next for a user, without claiming it."""
    now = now_ms() if now is None else now
    query = ("SELECT * FROM outreach_queue "
             "WHERE status = 'queued' AND scheduled_for <= ? AND user_id = ?")
    params: list = [now, user_id]
    if channels:
        query += f" AND channel IN ({', '.join('?' for _ in channels)})"
        params.extend(channels)
    query += " ORDER BY priority ASC, scheduled_for ASC, id ASC LIMIT 1"
    conn = _connect()
    try:
        row = conn.execute(query, params).fetchone()
        return QueueItem(**dict(row)) if row else None
    finally:
        conn.close()


def get_users_with_due_items(now: Optional[int] = None, channels: Optional[list[str]] = None) -> list[str]:
    now = now_ms() if now is None else now
    query = "SELECT DISTINCT user_id FROM outreach_queue WHERE status = 'queued' AND scheduled_for <= ?"
    params: list = [now]
    if channels:
        query += f" AND channel IN ({', '.join('?' for _ in channels)})"
        params.extend(channels)
    query += " ORDER BY user_id"
    conn = _connect()
    try:
        return [row["user_id"] for row in conn.execute(query, params).fetchall()]
    finally:
        conn.close()


def get_contacted_founder_ids(user_id: str) -> set[int]:
    """Founders that were ever queued (in any status) or have a sent record."""
    conn = _connect()
    try:
        rows = conn.execute(
            """
            SELECT founder_id FROM outreach_queue WHERE user_id = ?
            UNION
            SELECT founder_id FROM outreach_history WHERE user_id = ?
            """,
            (user_id, user_id),
        ).fetchall()
        return {row["founder_id"] for row in rows}
    finally:
        conn.close()
