"""
Runtime configuration for the coursework service.

Values come from the environment (optionally seeded from a `.env` file at the
repository root). Numeric settings that fail to parse fall back to their
defaults with a warning rather than failing the import.
"""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_env_path = Path(__file__).resolve().parents[2] / ".env"
if _env_path.exists():
    load_dotenv(_env_path, encoding="utf-8-sig")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {name}={raw!r}, using default {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Invalid number for {name}={raw!r}, using default {default}")
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# Store
STORE_BACKEND = os.getenv("STORE_BACKEND", "dynamodb").lower()
ASSIGNMENTS_TABLE = os.getenv("ASSIGNMENTS_TABLE", "assignments")
SUBMISSIONS_TABLE = os.getenv("SUBMISSIONS_TABLE", "submissions")
COURSES_TABLE = os.getenv("COURSES_TABLE", "courses")

# Secondary indexes
ASSIGNMENT_COURSE_INDEX = "CourseStatusIndex"
ASSIGNMENT_INSTRUCTOR_INDEX = "InstructorCreatedIndex"
SUBMISSION_COURSE_INDEX = "CourseSubmittedIndex"
SUBMISSION_USER_INDEX = "UserSubmittedIndex"
COURSE_INSTRUCTOR_INDEX = "InstructorIndex"

# Primary keys per table, in key-schema order
TABLE_KEYS = {
    ASSIGNMENTS_TABLE: ("assignmentId",),
    SUBMISSIONS_TABLE: ("assignmentId", "userId"),
    COURSES_TABLE: ("courseId",),
}

# Paged fetch loop
FETCH_MAX_RECORDS = _env_int("FETCH_MAX_RECORDS", 10000)
FETCH_EARLY_EXIT = _env_bool("FETCH_EARLY_EXIT", False)
FETCH_EARLY_EXIT_MULTIPLIER = _env_int("FETCH_EARLY_EXIT_MULTIPLIER", 3)

# Pagination
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
MAX_PAGE = 10000
PAGE_WINDOW = 5

# Grading
GRADE_MAX_ATTEMPTS = _env_int("GRADE_MAX_ATTEMPTS", 3)
CONFLICT_BACKOFF_BASE_SECONDS = _env_float("CONFLICT_BACKOFF_BASE_SECONDS", 1.0)
CONFLICT_BACKOFF_CAP_SECONDS = _env_float("CONFLICT_BACKOFF_CAP_SECONDS", 5.0)
THROTTLE_BACKOFF_BASE_SECONDS = _env_float("THROTTLE_BACKOFF_BASE_SECONDS", 2.0)
THROTTLE_BACKOFF_CAP_SECONDS = _env_float("THROTTLE_BACKOFF_CAP_SECONDS", 10.0)
RUBRIC_TOLERANCE = 5
BULK_GRADE_MAX_ITEMS = 50
