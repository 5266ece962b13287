"""
Pytest configuration and fixtures
"""
import os
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("JWT_SECRET", "test-secret-for-unit-tests")
os.environ.pop("CLOUDWATCH_LOG_GROUP", None)

# Never ship test logs to CloudWatch
watchtower_patcher = patch("watchtower.CloudWatchLogHandler")
watchtower_patcher.start()

from src.coursework import config  # noqa: E402
from src.coursework.principal import Principal, Role  # noqa: E402
from src.coursework.store import InMemoryStore  # noqa: E402
from tests.factories import COURSES, NOW, SleepRecorder  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def cleanup_watchtower_patch():
    """Stop the global watchtower patch at the end of the session"""
    yield
    watchtower_patcher.stop()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def student():
    return Principal(id="stu-1", role=Role.RESTRICTED)


@pytest.fixture
def instructor():
    return Principal(id="inst-1", role=Role.ELEVATED, department="cs")


@pytest.fixture
def other_instructor():
    return Principal(id="inst-2", role=Role.ELEVATED, department="math")


@pytest.fixture
def admin():
    return Principal(id="admin-1", role=Role.ADMINISTRATIVE)


@pytest.fixture
def store():
    """In-memory store seeded with three courses"""
    store = InMemoryStore(page_size=25)
    store.put_many(config.COURSES_TABLE, COURSES)
    return store


@pytest.fixture
def no_sleep():
    return SleepRecorder()
