"""Root pytest configuration for all tests."""

from __future__ import annotations

import pytest

from gittyup.config import reset_config
from gittyup.session import SessionStore

# Redundant with pyproject.toml but ensures it's set
pytest_plugins = ("pytest_asyncio",)


@pytest.fixture(autouse=True)
def reset_global_config() -> None:
    """Reset the global config cache before each test."""
    reset_config()


@pytest.fixture
def store() -> SessionStore:
    return SessionStore()
