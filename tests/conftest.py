# tests/conftest.py
"""Pytest configuration and fixtures"""
import sys
from pathlib import Path

import pytest

# Add project root and this directory (for tests/fakes.py) to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))
sys.path.insert(0, str(Path(__file__).parent))

from notifier.infra.metrics import get_metrics_collector  # noqa: E402


@pytest.fixture(autouse=True)
def reset_metrics():
    """Each test starts from empty counters"""
    get_metrics_collector().reset()
    yield
