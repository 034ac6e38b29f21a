"""
Root conftest.py for all backend tests.

This file makes fixtures available to all test files across all apps.
"""
import pytest
from datetime import datetime, timezone as dt_timezone


# ============================================================================
# CLOCK FIXTURES
# ============================================================================

class FrozenClock:
    """
    Callable clock injected into services so date windows are deterministic.

    Usage:
        def test_expired(frozen_clock):
            frozen_clock.now = frozen_clock.now + timedelta(days=60)
    """

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def frozen_clock():
    return FrozenClock(datetime(2024, 6, 1, 12, 0, tzinfo=dt_timezone.utc))


# ============================================================================
# IMPORT ALL FIXTURES FROM core_backend/tests/fixtures.py
# ============================================================================
from core_backend.tests.fixtures import *  # noqa: E402,F401,F403
