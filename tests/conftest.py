"""
Pytest configuration and shared fixtures for Maintenance Engine tests
"""

import pytest
import sys
import tempfile
from pathlib import Path
from datetime import datetime

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from tests.utils.harness import EngineHarness, FakeClock, RecordingNotifier, memory_database


@pytest.fixture
def fixed_clock():
    """Clock pinned to 2024-01-15 09:00 UTC"""
    return FakeClock(datetime(2024, 1, 15, 9, 0, 0))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def memory_db():
    """In-memory database with all tables created"""
    db = memory_database()
    yield db
    db.close()


@pytest.fixture
def harness():
    """Fully wired engine over an in-memory database"""
    h = EngineHarness()
    yield h
    h.close()


@pytest.fixture
def temp_dir():
    with tempfile.TemporaryDirectory() as directory:
        yield Path(directory)


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without I/O beyond SQLite")
    config.addinivalue_line("markers", "integration: end-to-end flows across services")
