"""Test data factories for deterministic test data generation."""

from tests.factories.delivery import (
    ConcurrencyGauge,
    FakeClock,
    FakeDispatcher,
    make_attempt,
    make_event,
    make_preference,
    make_recipient,
    make_stack,
    make_target,
)

__all__ = [
    "ConcurrencyGauge",
    "FakeClock",
    "FakeDispatcher",
    "make_attempt",
    "make_event",
    "make_preference",
    "make_recipient",
    "make_stack",
    "make_target",
]
