"""Shared fixtures for the test suite."""

import pytest

from olmed_gateway.config import clear_config_cache
from tests.helpers import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    """Clock starting at T0."""
    return FakeClock()


@pytest.fixture(autouse=True)
def _reset_config_cache():
    """Keep the global configuration from leaking between tests."""
    clear_config_cache()
    yield
    clear_config_cache()
