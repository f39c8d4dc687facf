"""
Shared fixtures for wallet watch tests.
"""

from datetime import datetime, timezone

import pytest

from wallet_watch.clock import MockClock
from wallet_watch.state import PipelineState


START_TIME = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    """Mock clock at a fixed mid-day instant."""
    return MockClock(START_TIME)


@pytest.fixture
def state():
    """Fresh pipeline state."""
    return PipelineState()
