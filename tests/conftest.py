"""Shared fixtures for the recent-calls test suite."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

import pytest
from _test_helpers import NOW


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: NOW
