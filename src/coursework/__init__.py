"""
Coursework package.

Query planning, paged retrieval, filtering, sorting and pagination for
assignments, submissions and grades, plus the optimistic-concurrency grading
write. Records live in DynamoDB (or the in-memory store for local runs).
"""

from .errors import CourseworkError  # noqa: F401
from .principal import Principal, Role  # noqa: F401
