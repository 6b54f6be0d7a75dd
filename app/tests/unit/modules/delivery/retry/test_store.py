"""Unit tests for the in-memory attempt store."""

import threading
from datetime import timedelta

import pytest

from modules.delivery.models import DeliveryStatus
from modules.delivery.retry import InMemoryAttemptStore
from modules.delivery.retry.store import claim_changes, is_claimable
from tests.factories.delivery import START, make_attempt

pytestmark = pytest.mark.unit


def _retrying(due_in=0, **overrides):
    return make_attempt(
        status=DeliveryStatus.RETRYING,
        next_retry_at=START + timedelta(seconds=due_in),
        **overrides,
    )


class TestCompareAndSet:
    """Tests for compare_and_set()."""

    def test_applies_changes_when_status_matches(self):
        store = InMemoryAttemptStore()
        attempt = make_attempt()
        store.save(attempt)

        changed = store.compare_and_set(
            attempt.id, DeliveryStatus.PENDING, status=DeliveryStatus.SENT, updated_at=START
        )

        assert changed
        stored = store.get(attempt.id)
        assert stored.status == DeliveryStatus.SENT
        assert stored.updated_at == START

    def test_rejects_stale_status(self):
        store = InMemoryAttemptStore()
        attempt = make_attempt(status=DeliveryStatus.SENT)
        store.save(attempt)

        assert not store.compare_and_set(
            attempt.id, DeliveryStatus.PENDING, status=DeliveryStatus.FAILED
        )
        assert store.get(attempt.id).status == DeliveryStatus.SENT

    def test_unknown_attempt(self):
        assert not InMemoryAttemptStore().compare_and_set(
            "missing", DeliveryStatus.PENDING, status=DeliveryStatus.SENT
        )

    def test_get_returns_a_copy(self):
        store = InMemoryAttemptStore()
        attempt = make_attempt()
        store.save(attempt)

        store.get(attempt.id).status = DeliveryStatus.SENT

        assert store.get(attempt.id).status == DeliveryStatus.PENDING


class TestClaim:
    """Tests for fetch_due() and claim()."""

    def test_fetch_due_orders_by_next_retry(self):
        store = InMemoryAttemptStore()
        later = _retrying(due_in=-1)
        earlier = _retrying(due_in=-5)
        future = _retrying(due_in=10)
        for attempt in (later, earlier, future, make_attempt()):
            store.save(attempt)

        due = store.fetch_due(START, limit=10)

        assert [a.id for a in due] == [earlier.id, later.id]
        assert [a.id for a in store.fetch_due(START, limit=1)] == [earlier.id]

    def test_claim_moves_to_pending_and_counts_try(self):
        store = InMemoryAttemptStore()
        attempt = _retrying(attempt_number=1)
        store.save(attempt)

        assert store.claim(attempt.id, "w1", 330, START)

        claimed = store.get(attempt.id)
        assert claimed.status == DeliveryStatus.PENDING
        assert claimed.attempt_number == 2
        assert claimed.claim_worker == "w1"
        assert claimed.claim_expires_at == START + timedelta(seconds=330)
        assert claimed.next_retry_at == claimed.claim_expires_at

    def test_second_claim_is_rejected(self):
        store = InMemoryAttemptStore()
        attempt = _retrying()
        store.save(attempt)

        assert store.claim(attempt.id, "w1", 330, START)
        assert not store.claim(attempt.id, "w2", 330, START)
        assert store.fetch_due(START, limit=10) == []

    def test_concurrent_claims_have_one_winner(self):
        store = InMemoryAttemptStore()
        attempt = _retrying()
        store.save(attempt)
        results = []

        def claim(worker_id):
            results.append(store.claim(attempt.id, worker_id, 330, START))

        threads = [threading.Thread(target=claim, args=(f"w{i}",)) for i in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results.count(True) == 1

    def test_expired_claim_is_due_again(self):
        store = InMemoryAttemptStore()
        attempt = _retrying(attempt_number=1)
        store.save(attempt)
        store.claim(attempt.id, "crashed", 330, START)

        later = START + timedelta(seconds=331)
        due = store.fetch_due(later, limit=10)

        assert [a.id for a in due] == [attempt.id]
        assert store.claim(attempt.id, "w2", 330, later)
        assert store.get(attempt.id).attempt_number == 3

    def test_not_yet_due_is_not_claimable(self):
        store = InMemoryAttemptStore()
        attempt = _retrying(due_in=5)
        store.save(attempt)

        assert not store.claim(attempt.id, "w1", 330, START)

    @pytest.mark.parametrize(
        "status", [DeliveryStatus.SENT, DeliveryStatus.FAILED, DeliveryStatus.EXHAUSTED]
    )
    def test_terminal_states_are_not_claimable(self, status):
        attempt = make_attempt(status=status, next_retry_at=START)

        assert not is_claimable(attempt, START)

    def test_claim_changes(self):
        changes = claim_changes(make_attempt(attempt_number=2), "w1", 60, START)

        assert changes["attempt_number"] == 3
        assert changes["status"] == DeliveryStatus.PENDING
        assert changes["next_retry_at"] == START + timedelta(seconds=60)


class TestListFailures:
    """Tests for list_failures()."""

    def test_failed_and_exhausted_newest_first(self):
        store = InMemoryAttemptStore()
        old = make_attempt(status=DeliveryStatus.FAILED, updated_at=START)
        new = make_attempt(
            status=DeliveryStatus.EXHAUSTED, updated_at=START + timedelta(minutes=1)
        )
        for attempt in (old, new, make_attempt(status=DeliveryStatus.SENT), _retrying()):
            store.save(attempt)

        failures = store.list_failures(limit=10)

        assert [a.id for a in failures] == [new.id, old.id]
        assert [a.id for a in store.list_failures(limit=1)] == [new.id]
