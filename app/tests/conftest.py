import sys
from pathlib import Path

# Ensure the application package root is on sys.path so importing application
# modules (e.g. `modules.delivery`) works during pytest collection regardless
# of the directory pytest is invoked from.
project_root = str(Path(__file__).resolve().parents[1])
if project_root not in sys.path:
    sys.path.insert(0, project_root)

import pytest
import structlog

from tests.factories.delivery import FakeClock, make_stack


@pytest.fixture(autouse=True)
def clear_log_context():
    """Keep structlog context from leaking between tests."""
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def stack(clock):
    """In-memory delivery stack with one fake dispatcher per channel."""
    return make_stack(clock=clock)
