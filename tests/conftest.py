"""Pytest configuration and fixtures for breathflow tests."""

import tempfile

from datetime import datetime
from pathlib import Path

import pytest


def pytest_configure(config):
    """Register custom test markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests that do not require external dependencies"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests combining multiple components"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take significant time (>5 seconds)"
    )
    config.addinivalue_line(
        "markers", "requires_audio: Tests that need a working audio input device"
    )


# =============================================================================
# Database Test Fixtures
# =============================================================================


@pytest.fixture
def temp_db():
    """Create a temporary database path for testing."""
    temp_dir = Path(tempfile.gettempdir())
    db_path = temp_dir / f"test_breathflow_{datetime.now().timestamp()}.db"

    yield db_path

    # Cleanup
    if db_path.exists():
        db_path.unlink()
    # Also clean up WAL files if they exist
    for ext in ["-wal", "-shm"]:
        wal_file = Path(str(db_path) + ext)
        if wal_file.exists():
            wal_file.unlink()


@pytest.fixture
def store():
    """In-memory model store with its own engine."""
    from breathflow.database.session import create_sqlite_engine
    from breathflow.database.store import ModelStore

    engine = create_sqlite_engine(":memory:")

    yield ModelStore(engine)

    engine.dispose()


@pytest.fixture
def initialized_db(temp_db):
    """Initialize the global database for code that uses the default engine."""
    from breathflow.database.session import cleanup_database, init_database

    init_database(str(temp_db))

    yield temp_db

    cleanup_database()


# =============================================================================
# Classifier Fixtures
# =============================================================================


@pytest.fixture(scope="session")
def quick_model():
    """Small, briefly trained model shared across tests that only need a working network."""
    from breathflow.ml.classifier import train

    model, _ = train(dataset_size=64, epochs=1, validation_split=0.25, seed=7)
    return model


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    """Point the config file at a temporary location."""
    path = tmp_path / "config.toml"
    monkeypatch.setattr("breathflow.config.get_config_path", lambda: path)
    monkeypatch.setattr("breathflow.cli.get_config_path", lambda: path)
    return path
