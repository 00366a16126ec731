"""
Pytest configuration and shared fixtures for the OTA hot update tests.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator

import pytest
from fakes import FakeActivationService, FakeArchiveTransport, MemoryVersionStore

# Configure pytest-asyncio mode
pytest_plugins = ["pytest_asyncio"]


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (deselect with '-m \"not integration\"')",
    )


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def store() -> MemoryVersionStore:
    """Version store holding version 3."""
    return MemoryVersionStore(version="3")


@pytest.fixture
def activation() -> FakeActivationService:
    """Activation service that accepts every bundle."""
    return FakeActivationService()


@pytest.fixture
def archive_transport() -> FakeArchiveTransport:
    """Archive transport returning /tmp/b.zip."""
    return FakeArchiveTransport()


@pytest.fixture(autouse=True)
def _cleanup_loggers() -> Iterator[None]:
    """Drop handlers installed on the package logger by setup_logging."""
    yield

    logger = logging.getLogger("ota_hotupdate")
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
