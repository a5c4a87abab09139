"""Pytest configuration and shared fixtures."""

import sys
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Drop the cached settings so env changes in a test take effect."""
    from src.settings import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
