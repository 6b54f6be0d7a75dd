"""Unit tests for the retry scheduler.

Each test dispatches one event to a single webhook target (recipient
channels are switched off) and then drives the scheduler with a fake clock.
"""

from datetime import timedelta

import pytest

from modules.delivery.models import Channel, DeliveryOutcome, DeliveryStatus
from modules.delivery.retry import redeliver
from tests.factories.delivery import (
    START,
    FakeDispatcher,
    make_attempt,
    make_event,
    make_stack,
    make_target,
    make_targets_only_preference,
    server_error,
    unauthorized,
)

pytestmark = pytest.mark.unit

NO_RECIPIENT_CHANNELS = make_targets_only_preference()


def _webhook_stack(clock, outcomes):
    webhook = FakeDispatcher(Channel.WEBHOOK, outcomes=outcomes)
    stack = make_stack(
        dispatchers=[webhook],
        targets=[make_target()],
        preferences=[NO_RECIPIENT_CHANNELS],
        clock=clock,
    )
    summary = stack.coordinator.dispatch(make_event())
    return stack, webhook, summary.deliveries[0].attempt_id


class TestRetryScheduler:
    """Tests for RetryScheduler.process_due() and run_pool()."""

    def test_three_server_errors_exhaust_the_budget(self, clock):
        stack, webhook, attempt_id = _webhook_stack(
            clock, [server_error(), server_error(), server_error()]
        )

        assert stack.attempts.get(attempt_id).next_retry_at == START + timedelta(seconds=1)
        clock.advance(1)
        assert stack.scheduler.process_due()["retried"] == 1
        assert stack.attempts.get(attempt_id).next_retry_at == START + timedelta(seconds=3)
        clock.advance(2)
        stats = stack.scheduler.process_due()

        attempt = stack.attempts.get(attempt_id)
        assert stats["exhausted"] == 1
        assert attempt.status == DeliveryStatus.EXHAUSTED
        assert attempt.attempt_number == 3
        assert len(webhook.calls) == 3
        assert {c["attempt_id"] for c in webhook.calls} == {attempt_id}
        statuses = [e.status for e in stack.history.for_attempt(attempt_id)]
        assert statuses == [
            DeliveryStatus.FAILED,
            DeliveryStatus.FAILED,
            DeliveryStatus.FAILED,
            DeliveryStatus.EXHAUSTED,
        ]
        assert stack.attempts.list_failures(10)[0].id == attempt_id

    def test_retry_waits_for_backoff(self, clock):
        stack, webhook, attempt_id = _webhook_stack(clock, [server_error()])

        assert stack.scheduler.process_due()["processed"] == 0
        clock.advance(1)
        stats = stack.scheduler.process_due()

        attempt = stack.attempts.get(attempt_id)
        assert stats["sent"] == 1
        assert attempt.status == DeliveryStatus.SENT
        assert attempt.attempt_number == 2
        assert attempt.claim_worker is None
        assert len(webhook.calls) == 2

    def test_retry_resends_identical_payload(self, clock):
        stack, webhook, _ = _webhook_stack(clock, [server_error()])
        clock.advance(1)

        stack.scheduler.process_due()

        first, second = (c["message"] for c in webhook.calls)
        assert first.payload == second.payload

    def test_terminal_failure_is_not_retried(self, clock):
        stack, webhook, attempt_id = _webhook_stack(clock, [unauthorized()])
        clock.advance(600)

        assert stack.scheduler.process_due()["processed"] == 0
        assert stack.attempts.get(attempt_id).status == DeliveryStatus.FAILED
        assert len(webhook.calls) == 1

    def test_deleted_target_fails_terminally(self, clock):
        stack, webhook, attempt_id = _webhook_stack(clock, [server_error()])
        stack.targets.remove("target-1")
        clock.advance(1)

        stats = stack.scheduler.process_due()

        attempt = stack.attempts.get(attempt_id)
        assert stats["failed"] == 1
        assert attempt.status == DeliveryStatus.FAILED
        assert attempt.error_code == "TARGET_NOT_FOUND"
        assert len(webhook.calls) == 1

    def test_deactivated_target_is_still_retried(self, clock):
        stack, webhook, attempt_id = _webhook_stack(clock, [server_error()])
        stack.targets.add(make_target(is_active=False))
        clock.advance(1)

        stack.scheduler.process_due()

        assert stack.attempts.get(attempt_id).status == DeliveryStatus.SENT
        assert len(webhook.calls) == 2

    def test_retry_after_is_honoured(self, clock):
        rate_limited = DeliveryOutcome.failed(
            "Webhook rate limited", "RATE_LIMITED", is_retryable=True, status_code=429, retry_after=30
        )
        stack, webhook, attempt_id = _webhook_stack(clock, [rate_limited])

        clock.advance(29)
        assert stack.scheduler.process_due()["processed"] == 0
        clock.advance(1)
        assert stack.scheduler.process_due()["sent"] == 1

    def test_orphaned_claim_is_recovered(self, clock):
        stack, webhook, attempt_id = _webhook_stack(clock, [server_error()])
        clock.advance(1)
        assert stack.attempts.claim(attempt_id, "crashed-worker", 330, clock())

        assert stack.scheduler.process_due()["processed"] == 0
        clock.advance(331)
        stats = stack.scheduler.process_due()

        attempt = stack.attempts.get(attempt_id)
        assert stats["sent"] == 1
        assert attempt.attempt_number == 3

    def test_pool_processes_each_attempt_once(self, clock):
        stack, webhook, attempt_id = _webhook_stack(clock, [server_error()])
        clock.advance(1)

        totals = stack.scheduler.run_pool(workers=4)

        assert totals["processed"] == 1
        assert totals["sent"] == 1
        assert len(webhook.calls) == 2
        assert stack.attempts.get(attempt_id).status == DeliveryStatus.SENT


class TestRedeliver:
    """Tests for redeliver()."""

    def test_recipient_snapshot_is_used(self, stack):
        attempt = make_attempt(
            channel=Channel.EMAIL,
            target={"user_id": "user-1", "email": "user1@example.com", "push_tokens": []},
            payload={"channel": "email", "subject": "s", "text": "t"},
        )

        outcome = redeliver(attempt, stack.registry, stack.targets)

        assert outcome.success
        sent_to = stack.dispatchers[Channel.EMAIL].calls[0]["target"]
        assert sent_to.email == "user1@example.com"

    def test_attempt_without_snapshot(self, stack):
        attempt = make_attempt(channel=Channel.EMAIL, target={}, payload={})

        outcome = redeliver(attempt, stack.registry, stack.targets)

        assert outcome.error_code == "CONFIGURATION_ERROR"
        assert stack.dispatchers[Channel.EMAIL].calls == []
