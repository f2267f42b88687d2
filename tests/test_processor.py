"""Queue processor cycles with a stubbed delivery collaborator."""

from unittest.mock import MagicMock, patch

from sourcing import db, stages
from sourcing.models import FounderPatch
from sourcing.outreach import db as queue
from sourcing.outreach.processor import QueueProcessor, process_queue
from sourcing.outreach.sender import SendResult

from tests.conftest import MINUTE, NOW, OTHER_USER, USER, make_founder, make_startup


def _ok(*args, **kwargs):
    return SendResult(success=True, message="sent")


def _qualified_startup(user_id=USER, number="12345678"):
    startup_id = make_startup(user_id=user_id, number=number, officers=[])
    stages.set_stage(startup_id, "qualified")
    return startup_id


def test_sends_one_item_per_user_per_cycle():
    startup_id = _qualified_startup()
    a = make_founder(startup_id, email="a@example.com")
    b = make_founder(startup_id, email="b@example.com")
    first = queue.enqueue(USER, a, "email", "Hello A", subject="Hi", priority=1, now=NOW)
    queue.enqueue(USER, b, "email", "Hello B", subject="Hi", priority=2, now=NOW)
    sender = MagicMock(side_effect=_ok)

    results = QueueProcessor(sender=sender).process(now=NOW)

    assert results["users"] == 1
    assert results["sent"] == 1
    sender.assert_called_once_with("a@example.com", "Hi", "Hello A")
    assert queue.get_item(first).status == "sent"
    assert queue.get_queue_stats(USER)["queued"] == 1
    assert db.get_startup(startup_id).stage == "contacted"


def test_each_user_gets_their_own_item():
    a = make_founder(_qualified_startup(), email="a@example.com")
    b = make_founder(_qualified_startup(OTHER_USER, "87654321"), user_id=OTHER_USER, email="b@example.com")
    queue.enqueue(USER, a, "email", "Hello", now=NOW)
    queue.enqueue(OTHER_USER, b, "email", "Hello", now=NOW)

    results = QueueProcessor(sender=_ok).process(now=NOW)

    assert results["users"] == 2
    assert results["sent"] == 2


def test_one_user_failing_does_not_stop_others():
    a = make_founder(_qualified_startup(), email="a@example.com")
    b = make_founder(_qualified_startup(OTHER_USER, "87654321"), user_id=OTHER_USER, email="b@example.com")
    queue.enqueue(USER, a, "email", "Hello", now=NOW)
    other_item = queue.enqueue(OTHER_USER, b, "email", "Hello", now=NOW)

    def sender(to_email, subject, body):
        if to_email == "a@example.com":
            raise RuntimeError("provider exploded")
        return SendResult(success=True)

    results = QueueProcessor(sender=sender).process(now=NOW)

    assert results["sent"] == 1
    assert results["errors"] == [{"user_id": USER, "error": "provider exploded"}]
    assert queue.get_item(other_item).status == "sent"


def test_failed_delivery_is_rescheduled():
    startup_id = _qualified_startup()
    item_id = queue.enqueue(USER, make_founder(startup_id), "email", "Hello", now=NOW)

    def sender(to_email, subject, body):
        return SendResult(success=False, error="timeout: timed out", error_type="timeout")

    results = QueueProcessor(sender=sender).process(now=NOW)

    assert results["retrying"] == 1
    item = queue.get_item(item_id)
    assert item.status == "queued"
    assert item.attempts == 1
    assert item.scheduled_for == NOW + 30 * MINUTE
    assert item.last_error == "timeout: timed out"
    assert db.get_startup(startup_id).stage == "qualified"
    assert queue.get_history(USER) == []


def test_founder_without_email_fails_at_once():
    founder_id = make_founder(_qualified_startup())
    item_id = queue.enqueue(USER, founder_id, "email", "Hello", now=NOW)
    db.update_founder(founder_id, FounderPatch(email=None))
    sender = MagicMock(side_effect=_ok)

    results = QueueProcessor(sender=sender).process(now=NOW)

    assert results["failed"] == 1
    sender.assert_not_called()
    item = queue.get_item(item_id)
    assert item.status == "failed"
    assert item.attempts == 1
    assert item.last_error == "founder has no email address"


def test_linkedin_items_are_left_for_manual_sending(startup_id):
    item_id = queue.enqueue(USER, make_founder(startup_id, email=None), "linkedin", "Hi", now=NOW)
    sender = MagicMock(side_effect=_ok)

    results = QueueProcessor(sender=sender).process(now=NOW)

    assert results["users"] == 0
    sender.assert_not_called()
    assert queue.get_item(item_id).status == "queued"


def test_dry_run_changes_nothing(founder_id):
    item_id = queue.enqueue(USER, founder_id, "email", "Hello", now=NOW)
    sender = MagicMock(side_effect=_ok)

    results = QueueProcessor(dry_run=True, sender=sender).process(now=NOW)

    assert results["details"] == [{"user_id": USER, "item_id": item_id, "outcome": "dry_run"}]
    sender.assert_not_called()
    assert queue.get_item(item_id).status == "queued"


def test_contact_transition_only_from_qualified():
    startup_id = _qualified_startup()
    stages.set_stage(startup_id, "meeting")
    queue.enqueue(USER, make_founder(startup_id), "email", "Hello", now=NOW)

    QueueProcessor(sender=_ok).process(now=NOW)

    assert db.get_startup(startup_id).stage == "meeting"


def test_process_queue_uses_smtp_sender(founder_id):
    item_id = queue.enqueue(USER, founder_id, "email", "Hello", subject="Hi", now=NOW)

    with patch("sourcing.outreach.processor.send_email", side_effect=_ok) as send:
        results = process_queue(now=NOW)

    assert results["sent"] == 1
    send.assert_called_once_with("jane@example.com", "Hi", "Hello")
    assert queue.get_item(item_id).status == "sent"
