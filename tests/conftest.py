"""Shared fixtures and utilities for Traefiker tests."""

from pathlib import Path
from typing import Dict
from unittest.mock import MagicMock

import pytest
import yaml

from traefiker.compose_runner import ComposeRunner
from traefiker.compose_store import ComposeStore
from traefiker.manager import ServiceManager
from traefiker.settings import Settings


@pytest.fixture
def compose_path(tmp_path):
    """Path of a docker-compose.yml inside a temporary directory."""
    return tmp_path / "docker-compose.yml"


@pytest.fixture
def write_compose(compose_path):
    """Helper to create docker-compose.yml files with the given services."""

    def _write_compose(services: Dict, **extra) -> Path:
        with open(compose_path, "w", encoding="utf-8") as f:
            yaml.safe_dump({**extra, "services": services}, f, sort_keys=False)
        return compose_path

    return _write_compose


@pytest.fixture
def read_compose(compose_path):
    """Helper to load the current docker-compose.yml as a dict."""

    def _read_compose() -> Dict:
        with open(compose_path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f)

    return _read_compose


@pytest.fixture
def settings(compose_path):
    return Settings(compose_file=compose_path, lock_timeout=1.0)


@pytest.fixture
def store(settings):
    return ComposeStore(settings.compose_file, lock_timeout=settings.lock_timeout)


@pytest.fixture
def mock_runner():
    """A ComposeRunner double that reports no containers."""
    runner = MagicMock(spec=ComposeRunner)
    runner.status.return_value = {}
    return runner


@pytest.fixture
def manager(store, mock_runner, settings):
    return ServiceManager(store, mock_runner, settings)
