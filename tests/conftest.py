"""
Pytest Configuration and Shared Fixtures

Provides common test fixtures and configuration for the entire test suite.
"""

from pathlib import Path

import pytest

from bookmatch.core.config import MatchingConfig
from bookmatch.core.dates import FinancialDate
from bookmatch.matching.repository import InMemoryMatchRepository


@pytest.fixture
def temp_dir(tmp_path) -> Path:
    """Temporary directory for test files."""
    return tmp_path


@pytest.fixture
def cfg() -> MatchingConfig:
    """Default matching configuration."""
    return MatchingConfig()


@pytest.fixture
def now() -> FinancialDate:
    """Fixed evaluation date so lifecycle results do not depend on the calendar."""
    return FinancialDate.from_string("2024-03-20")


@pytest.fixture
def repo() -> InMemoryMatchRepository:
    return InMemoryMatchRepository()


@pytest.fixture(autouse=True)
def setup_test_environment(monkeypatch, tmp_path):
    """Set up test environment variables."""
    # Ensure tests don't use production data
    monkeypatch.setenv("BOOKMATCH_ENV", "test")
    monkeypatch.setenv("BOOKMATCH_DATA_DIR", str(tmp_path / "bookmatch_data"))
    monkeypatch.setenv("LOG_LEVEL", "INFO")
    monkeypatch.delenv("MATCH_DEBUG_HARD", raising=False)
    monkeypatch.delenv("MATCH_AMOUNT_TOLERANCE_CENTS", raising=False)

    # Force get_config() to re-read the environment
    monkeypatch.setattr("bookmatch.core.config._config", None)


# Test markers for categorizing tests
def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests for individual components")
    config.addinivalue_line("markers", "integration: Integration tests for complete workflows")
    config.addinivalue_line("markers", "e2e: End-to-end tests through the command line")
    config.addinivalue_line("markers", "matching: Tests for the matching pipeline stages")
    config.addinivalue_line("markers", "lifecycle: Tests for unmatched document and transaction classification")
    config.addinivalue_line("markers", "persistence: Tests for persistence projection and repositories")
    config.addinivalue_line("markers", "currency: Tests for amount handling and precision")
    config.addinivalue_line("markers", "slow: Tests that take significant time to run")
