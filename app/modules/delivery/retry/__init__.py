"""Durable retries for failed delivery attempts."""

from modules.delivery.retry.dynamodb_store import DynamoDBAttemptStore
from modules.delivery.retry.policy import RetryPolicy
from modules.delivery.retry.recorder import AttemptRecorder
from modules.delivery.retry.scheduler import RetryScheduler, redeliver
from modules.delivery.retry.store import AttemptStore, InMemoryAttemptStore

__all__ = [
    "AttemptRecorder",
    "AttemptStore",
    "DynamoDBAttemptStore",
    "InMemoryAttemptStore",
    "RetryPolicy",
    "RetryScheduler",
    "redeliver",
]
