"""Pytest configuration and shared fixtures."""

import pytest

from pacman_console.config import ClientConfig
from pacman_console.process import MockSpawner

BACKEND = "/usr/libexec/cockpit-pacman/cockpit-pacman-backend"


@pytest.fixture
def config() -> ClientConfig:
    """Config pointing at the default backend path, no escalation."""
    return ClientConfig(backend_path=BACKEND, timeout=1.0, escalation_command=())


@pytest.fixture
def spawner() -> MockSpawner:
    """In-memory spawner; close() fails the process like a terminated one."""
    return MockSpawner()
