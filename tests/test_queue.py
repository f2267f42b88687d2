"""Outreach queue: guards, claiming, delivery outcomes and user actions."""

import sqlite3
import threading

import pytest

from sourcing import config
from sourcing.outreach import db as queue
from sourcing.outreach.db import (
    DuplicateOutreach,
    InvalidTransition,
    MissingEmailAddress,
    QueueItemNotFound,
)

from tests.conftest import MINUTE, NOW, OTHER_USER, USER, make_founder, make_startup


def _active_count(founder_id):
    conn = sqlite3.connect(config.DB_PATH)
    try:
        return conn.execute(
            "SELECT COUNT(*) FROM outreach_queue WHERE founder_id = ? "
            "AND status IN ('queued', 'sending')",
            (founder_id,),
        ).fetchone()[0]
    finally:
        conn.close()


class TestEnqueue:

    def test_enqueue_defaults(self, founder_id, startup_id):
        item_id = queue.enqueue(USER, founder_id, "email", "Hello", subject="Hi", now=NOW)

        item = queue.get_item(item_id)
        assert item.status == "queued"
        assert item.scheduled_for == NOW
        assert item.priority == 100
        assert item.attempts == 0
        assert item.max_attempts == 3
        assert item.startup_id == startup_id

    def test_email_requires_address(self, startup_id):
        founder_id = make_founder(startup_id, email=None)

        with pytest.raises(MissingEmailAddress):
            queue.enqueue(USER, founder_id, "email", "Hello", now=NOW)
        assert queue.list_items(USER) == []

    def test_linkedin_does_not_need_email(self, startup_id):
        founder_id = make_founder(startup_id, email=None)
        item_id = queue.enqueue(USER, founder_id, "linkedin", "Hello", now=NOW)
        assert queue.get_item(item_id).channel == "linkedin"

    def test_one_active_item_per_founder(self, founder_id):
        queue.enqueue(USER, founder_id, "email", "First", now=NOW)

        with pytest.raises(DuplicateOutreach):
            queue.enqueue(USER, founder_id, "linkedin", "Second", now=NOW)
        assert _active_count(founder_id) == 1

    def test_founder_of_another_user(self, founder_id):
        with pytest.raises(QueueItemNotFound):
            queue.enqueue(OTHER_USER, founder_id, "email", "Hello", now=NOW)

    def test_unknown_channel(self, founder_id):
        with pytest.raises(ValueError):
            queue.enqueue(USER, founder_id, "fax", "Hello", now=NOW)

    def test_storage_index_backs_the_guard(self, founder_id):
        queue.enqueue(USER, founder_id, "email", "First", now=NOW)
        conn = sqlite3.connect(config.DB_PATH)
        try:
            with pytest.raises(sqlite3.IntegrityError):
                conn.execute(
                    "INSERT INTO outreach_queue (user_id, founder_id, channel, message, "
                    "status, scheduled_for, created_at) VALUES (?, ?, 'email', 'x', 'queued', ?, ?)",
                    (USER, founder_id, NOW, NOW),
                )
        finally:
            conn.close()


class TestClaimDue:

    def test_order_and_due_filter(self, startup_id):
        f1 = make_founder(startup_id, email="a@example.com")
        f2 = make_founder(startup_id, email="b@example.com")
        f3 = make_founder(startup_id, email="c@example.com")
        f4 = make_founder(startup_id, email="d@example.com")
        late = queue.enqueue(USER, f1, "email", "m", scheduled_for=NOW - 1 * MINUTE, priority=100, now=NOW)
        early = queue.enqueue(USER, f2, "email", "m", scheduled_for=NOW - 5 * MINUTE, priority=100, now=NOW)
        urgent = queue.enqueue(USER, f3, "email", "m", scheduled_for=NOW, priority=1, now=NOW)
        queue.enqueue(USER, f4, "email", "m", scheduled_for=NOW + MINUTE, priority=0, now=NOW)

        claimed = queue.claim_due(10, now=NOW)

        assert [i.id for i in claimed] == [urgent, early, late]
        assert all(i.status == "sending" for i in claimed)
        assert all(queue.get_item(i.id).last_attempt_at == NOW for i in claimed)

    def test_two_claims_never_overlap(self, startup_id):
        ids = [
            queue.enqueue(USER, make_founder(startup_id, email=f"f{n}@example.com"), "email", "m", now=NOW)
            for n in range(5)
        ]

        first = queue.claim_due(3, now=NOW)
        second = queue.claim_due(3, now=NOW)

        first_ids = {i.id for i in first}
        second_ids = {i.id for i in second}
        assert not first_ids & second_ids
        assert first_ids | second_ids == set(ids)
        assert queue.claim_due(3, now=NOW) == []

    def test_concurrent_claims_never_overlap(self, startup_id):
        ids = [
            queue.enqueue(USER, make_founder(startup_id, email=f"f{n}@example.com"), "email", "m", now=NOW)
            for n in range(6)
        ]
        barrier = threading.Barrier(2)
        results = []
        errors = []

        def worker():
            barrier.wait()
            try:
                results.append([i.id for i in queue.claim_due(4, now=NOW)])
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert errors == []
        first, second = results
        assert not set(first) & set(second)
        assert sorted(first + second) == sorted(ids)
        assert queue.get_queue_stats(USER)["sending"] == 6

    def test_channel_filter(self, startup_id):
        email_founder = make_founder(startup_id, email="a@example.com")
        linkedin_founder = make_founder(startup_id, email=None)
        queue.enqueue(USER, email_founder, "email", "m", now=NOW)
        queue.enqueue(USER, linkedin_founder, "linkedin", "m", now=NOW)

        claimed = queue.claim_due(10, channels=["email"], now=NOW)

        assert [i.channel for i in claimed] == ["email"]

    def test_claim_item_ignores_schedule(self, founder_id):
        item_id = queue.enqueue(USER, founder_id, "linkedin", "m", scheduled_for=NOW + 60 * MINUTE, now=NOW)

        item = queue.claim_item(item_id, USER, now=NOW)
        assert item.status == "sending"
        with pytest.raises(InvalidTransition):
            queue.claim_item(item_id, USER, now=NOW)


class TestMarkSent:

    def test_writes_exactly_one_history_record(self, founder_id):
        item_id = queue.enqueue(USER, founder_id, "email", "Hello", subject="Hi", now=NOW)
        queue.claim_due(1, now=NOW)

        queue.mark_sent(item_id, now=NOW + 1000)

        item = queue.get_item(item_id)
        assert item.status == "sent"
        assert item.sent_at == NOW + 1000
        history = queue.get_history(USER)
        assert len(history) == 1
        assert history[0].queue_item_id == item_id
        assert history[0].subject == "Hi"
        assert history[0].message == "Hello"

        with pytest.raises(InvalidTransition):
            queue.mark_sent(item_id, now=NOW + 2000)
        assert len(queue.get_history(USER)) == 1

    def test_permanent_failure_skips_retries(self, founder_id):
        item_id = queue.enqueue(USER, founder_id, "email", "Hello", now=NOW)
        queue.claim_due(1, now=NOW)

        assert queue.mark_failed(item_id, "no address", now=NOW, permanent=True) == "failed"
        item = queue.get_item(item_id)
        assert item.attempts == 1
        assert item.scheduled_for == NOW
        assert queue.claim_due(1, now=NOW + 120 * MINUTE) == []

    def test_requires_sending(self, founder_id):
        item_id = queue.enqueue(USER, founder_id, "email", "Hello", now=NOW)
        with pytest.raises(InvalidTransition):
            queue.mark_sent(item_id, now=NOW)
        assert queue.get_history(USER) == []

    def test_founder_can_be_queued_again_after_send(self, founder_id):
        item_id = queue.enqueue(USER, founder_id, "email", "Hello", now=NOW)
        queue.claim_due(1, now=NOW)
        queue.mark_sent(item_id, now=NOW)

        assert queue.enqueue(USER, founder_id, "email", "Follow up", now=NOW)


class TestMarkFailed:

    def test_three_failures_end_in_failed(self, founder_id):
        item_id = queue.enqueue(USER, founder_id, "email", "Hello", now=NOW)

        queue.claim_due(1, now=NOW)
        assert queue.mark_failed(item_id, "timeout", now=NOW) == "queued"
        item = queue.get_item(item_id)
        assert item.attempts == 1
        assert item.scheduled_for == NOW + 30 * MINUTE
        assert item.last_error == "timeout"

        # Not due before the backoff has passed
        assert queue.claim_due(1, now=NOW + 29 * MINUTE) == []

        second = NOW + 30 * MINUTE
        queue.claim_due(1, now=second)
        assert queue.mark_failed(item_id, "timeout", now=second) == "queued"
        item = queue.get_item(item_id)
        assert item.attempts == 2
        assert item.scheduled_for == second + 60 * MINUTE

        third = second + 60 * MINUTE
        queue.claim_due(1, now=third)
        assert queue.mark_failed(item_id, "refused", now=third) == "failed"
        item = queue.get_item(item_id)
        assert item.status == "failed"
        assert item.attempts == 3
        assert item.last_error == "refused"
        assert queue.get_history(USER) == []

    def test_backoff_never_decreases(self):
        delays = [queue.backoff_ms(n) for n in range(1, 6)]
        assert delays == sorted(delays)
        assert delays[0] == 30 * MINUTE

    def test_requires_sending(self, founder_id):
        item_id = queue.enqueue(USER, founder_id, "email", "Hello", now=NOW)
        with pytest.raises(InvalidTransition):
            queue.mark_failed(item_id, "boom", now=NOW)


def _failed_item(founder_id):
    item_id = queue.enqueue(USER, founder_id, "email", "Hello", now=NOW)
    for _ in range(3):
        queue.claim_item(item_id, now=NOW)
        queue.mark_failed(item_id, "boom", now=NOW)
    assert queue.get_item(item_id).status == "failed"
    return item_id


class TestUserActions:

    def test_cancel_queued(self, founder_id):
        item_id = queue.enqueue(USER, founder_id, "email", "Hello", now=NOW)
        queue.cancel(item_id, USER)
        assert queue.get_item(item_id) is None

    def test_cancel_rejects_sending(self, founder_id):
        item_id = queue.enqueue(USER, founder_id, "email", "Hello", now=NOW)
        queue.claim_due(1, now=NOW)
        with pytest.raises(InvalidTransition):
            queue.cancel(item_id, USER)
        assert queue.get_item(item_id).status == "sending"

    def test_cancel_other_users_item(self, founder_id):
        item_id = queue.enqueue(USER, founder_id, "email", "Hello", now=NOW)
        with pytest.raises(QueueItemNotFound):
            queue.cancel(item_id, OTHER_USER)

    def test_retry_failed(self, founder_id):
        item_id = _failed_item(founder_id)

        queue.retry(item_id, USER, now=NOW + MINUTE)

        item = queue.get_item(item_id)
        assert item.status == "queued"
        assert item.attempts == 0
        assert item.last_error is None
        assert item.scheduled_for == NOW + MINUTE

    def test_retry_only_from_failed(self, founder_id):
        item_id = queue.enqueue(USER, founder_id, "email", "Hello", now=NOW)
        with pytest.raises(InvalidTransition):
            queue.retry(item_id, USER, now=NOW)

    def test_retry_keeps_single_active_item(self, founder_id):
        item_id = _failed_item(founder_id)
        queue.enqueue(USER, founder_id, "email", "Newer", now=NOW)

        with pytest.raises(DuplicateOutreach):
            queue.retry(item_id, USER, now=NOW)
        assert _active_count(founder_id) == 1

    def test_clear_failed(self, startup_id):
        _failed_item(make_founder(startup_id, email="a@example.com"))
        _failed_item(make_founder(startup_id, email="b@example.com"))
        queue.enqueue(USER, make_founder(startup_id, email="c@example.com"), "email", "m", now=NOW)

        assert queue.clear_failed(USER) == 2
        assert [i.status for i in queue.list_items(USER)] == ["queued"]

    def test_clear_failed_is_per_user(self, founder_id):
        _failed_item(founder_id)
        assert queue.clear_failed(OTHER_USER) == 0
        assert queue.get_queue_stats(USER)["failed"] == 1


def test_release_stale_sending(startup_id):
    stale = queue.enqueue(USER, make_founder(startup_id, email="a@example.com"), "email", "m", now=NOW)
    fresh = queue.enqueue(USER, make_founder(startup_id, email="b@example.com"), "email", "m", now=NOW)
    queue.claim_item(stale, now=NOW)
    queue.claim_item(fresh, now=NOW + 50 * MINUTE)

    released = queue.release_stale_sending(60 * MINUTE, now=NOW + 61 * MINUTE)

    assert released == [(stale, "queued")]
    assert queue.get_item(stale).attempts == 1
    assert queue.get_item(fresh).status == "sending"


def test_queue_stats_and_contacted_founders(startup_id):
    sent_founder = make_founder(startup_id, email="a@example.com")
    queued_founder = make_founder(startup_id, email="b@example.com")
    sent = queue.enqueue(USER, sent_founder, "email", "m", now=NOW)
    queue.claim_item(sent, now=NOW)
    queue.mark_sent(sent, now=NOW)
    queue.enqueue(USER, queued_founder, "email", "m", scheduled_for=NOW + MINUTE, now=NOW)

    stats = queue.get_queue_stats(USER)

    assert stats["sent"] == 1
    assert stats["queued"] == 1
    assert stats["total"] == 2
    assert stats["history_total"] == 1
    assert stats["next_scheduled_for"] == NOW + MINUTE
    assert queue.get_contacted_founder_ids(USER) == {sent_founder, queued_founder}
