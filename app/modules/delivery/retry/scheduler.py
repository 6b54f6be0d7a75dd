"""Retry scheduler: polls the attempt store and re-runs due attempts.

A retry re-invokes the single dispatcher for the attempt's channel and
target with the payload stored on the attempt. Preferences are never
re-resolved, so scheduled retries still run after a preference is revoked
or a target deactivated. A target deleted outright fails terminally.
"""

import concurrent.futures
from datetime import datetime
from typing import Callable, Dict, Optional

from pydantic import ValidationError

from infrastructure.logging import bind_delivery_context, get_module_logger
from modules.delivery.directory import TargetStore
from modules.delivery.dispatchers.registry import DispatcherRegistry
from modules.delivery.errors import ConfigurationError
from modules.delivery.models import (
    DeliveryAttempt,
    DeliveryOutcome,
    DeliveryStatus,
    Recipient,
    RenderedMessage,
    utc_now,
)
from modules.delivery.retry.recorder import AttemptRecorder
from modules.delivery.retry.store import AttemptStore

logger = get_module_logger()


def redeliver(
    attempt: DeliveryAttempt, registry: DispatcherRegistry, targets: TargetStore
) -> DeliveryOutcome:
    """Send the stored payload of ``attempt`` to the same target again."""
    try:
        if attempt.channel.uses_target:
            target = targets.get(attempt.target["id"])
            if target is None:
                return DeliveryOutcome.failed(
                    f"Target {attempt.target_ref} no longer exists",
                    "TARGET_NOT_FOUND",
                    is_retryable=False,
                )
        else:
            target = Recipient.model_validate(attempt.target)
        message = RenderedMessage.model_validate(attempt.payload)
        dispatcher = registry.get(attempt.channel)
    except ConfigurationError as e:
        return DeliveryOutcome.configuration_error(e.message)
    except (KeyError, ValidationError) as e:
        # Attempts that failed while planning carry no addressable snapshot
        return DeliveryOutcome.configuration_error(
            f"Attempt {attempt.id} has no deliverable payload: {e}"
        )
    return dispatcher.send(message, target, attempt.id)


class RetryScheduler:
    """Process due attempts across a fixed worker pool.

    Attributes:
        store: AttemptStore holding RETRYING attempts
        registry: DispatcherRegistry used to re-send
        targets: TargetStore used to re-read Slack/Teams/webhook targets
        recorder: AttemptRecorder applying the state machine
    """

    def __init__(
        self,
        store: AttemptStore,
        registry: DispatcherRegistry,
        targets: TargetStore,
        recorder: AttemptRecorder,
        batch_size: int = 25,
        claim_lease_seconds: int = 330,
        workers: int = 4,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.registry = registry
        self.targets = targets
        self.recorder = recorder
        self.batch_size = batch_size
        self.claim_lease_seconds = claim_lease_seconds
        self.workers = workers
        self.clock = clock

    def process_due(self, worker_id: str = "retry-worker-1") -> Dict[str, int]:
        """Claim and process one batch of due attempts.

        Returns:
            Dictionary with processing statistics:
                - processed: attempts re-sent
                - sent: attempts that succeeded
                - retried: attempts rescheduled
                - exhausted: attempts whose budget ran out
                - failed: attempts that failed terminally
                - skipped: attempts another worker claimed first
        """
        log = logger.bind(component="retry_scheduler", worker_id=worker_id)
        stats = {"processed": 0, "sent": 0, "retried": 0, "exhausted": 0, "failed": 0, "skipped": 0}

        due = self.store.fetch_due(self.clock(), self.batch_size)
        if not due:
            log.debug("retry_batch_no_attempts")
            return stats

        for candidate in due:
            if not self.store.claim(
                candidate.id, worker_id, self.claim_lease_seconds, self.clock()
            ):
                stats["skipped"] += 1
                continue

            attempt = self.store.get(candidate.id)
            if attempt is None or attempt.status != DeliveryStatus.PENDING:
                stats["skipped"] += 1
                continue

            with bind_delivery_context(
                event_id=attempt.event_id,
                notification_type=attempt.event_type,
                attempt_id=attempt.id,
                channel=attempt.channel.value,
            ):
                log.info("retry_attempt_started", attempt_number=attempt.attempt_number)
                outcome = redeliver(attempt, self.registry, self.targets)
                status = self.recorder.record(attempt, outcome)

            stats["processed"] += 1
            if status == DeliveryStatus.SENT:
                stats["sent"] += 1
            elif status == DeliveryStatus.RETRYING:
                stats["retried"] += 1
            elif status == DeliveryStatus.EXHAUSTED:
                stats["exhausted"] += 1
            else:
                stats["failed"] += 1

        log.info("retry_batch_complete", **stats)
        return stats

    def run_pool(self, workers: Optional[int] = None) -> Dict[str, int]:
        """Run one tick of ``process_due`` on each worker of the pool."""
        workers = workers or self.workers
        totals: Dict[str, int] = {}
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="retry-worker"
        ) as executor:
            futures = [
                executor.submit(self.process_due, f"retry-worker-{i + 1}")
                for i in range(workers)
            ]
            for future in concurrent.futures.as_completed(futures):
                for key, value in future.result().items():
                    totals[key] = totals.get(key, 0) + value
        return totals
