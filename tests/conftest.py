"""Pytest configuration and shared fixtures."""
import os
import sys

import pytest

# Ensure taskq is on path when running tests from project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tests.fakes import FakePool  # noqa: E402


@pytest.fixture
def fake_pool():
    """Empty scripted pool; tests append results before calling the store."""
    return FakePool()
