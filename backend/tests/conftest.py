"""
Shared Test Fixtures and Configuration

This module provides pytest fixtures used across unit tests.
"""

import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator
from unittest.mock import AsyncMock, MagicMock

import pytest
from dotenv import load_dotenv

# Add the backend directory to the path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

# Load .env file from project root BEFORE any fixtures run
_project_root = Path(__file__).parent.parent.parent
_env_file = _project_root / ".env"
if _env_file.exists():
    load_dotenv(_env_file)


# ============================================================================
# Environment Configuration
# ============================================================================


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment() -> Generator[None, None, None]:
    """
    Set up test environment variables before any tests run.

    Overrides values from .env files so tests run with predictable
    configuration.
    """
    original_env = os.environ.copy()

    test_env = {
        "POSTGRES_HOST": os.environ.get("POSTGRES_HOST", "localhost"),
        "POSTGRES_PORT": os.environ.get("POSTGRES_PORT", "5432"),
        "POSTGRES_USER": os.environ.get("POSTGRES_TEST_USER", "testuser"),
        "POSTGRES_PASSWORD": os.environ.get("POSTGRES_TEST_PASSWORD", "testpass"),
        "POSTGRES_DB": os.environ.get("POSTGRES_TEST_DB", "testdb"),
        "OPENAI_API_KEY": os.environ.get("OPENAI_API_KEY", "test-api-key"),
        "DEBUG": "true",
    }
    os.environ.update(test_env)

    yield

    os.environ.clear()
    os.environ.update(original_env)


# ============================================================================
# Scheduler Fixtures
# ============================================================================


@pytest.fixture
def now() -> datetime:
    """Fixed 'current time' (midday UTC so day boundaries are far away)."""
    return datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def scheduler_config():
    """Scheduler configuration with the production defaults."""
    from pattern_recall.services.learning.sm2 import SchedulerConfig

    return SchedulerConfig()


@pytest.fixture
def engine(scheduler_config):
    """Interval engine with default configuration."""
    from pattern_recall.services.learning.sm2 import IntervalEngine

    return IntervalEngine(scheduler_config)


@pytest.fixture
def repository():
    """Empty in-memory card repository."""
    from tests.fakes import InMemoryCardRepository

    return InMemoryCardRepository()


# ============================================================================
# Database Session Mocks
# ============================================================================


@pytest.fixture
def mock_db_session() -> MagicMock:
    """
    Provide a mock async database session.

    execute/commit/rollback/refresh are AsyncMocks; add is synchronous.
    """
    session = MagicMock()
    session.execute = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.refresh = AsyncMock()
    session.get = AsyncMock(return_value=None)
    session.add = MagicMock()
    return session
