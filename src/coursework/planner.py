"""
Query planning: pick exactly one access path per request.

Plans are plain values; the same inputs always produce the same plan. The
store adapters interpret them (`DynamoStore` as DynamoDB expressions,
`InMemoryStore` through `evaluate`).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from . import config
from .filters import AssignmentFilter
from .principal import Role

VISIBLE_STATUSES = ("published", "active")


class AccessPath(str, Enum):
    PRIMARY_KEY = "primary_key"
    INDEX_QUERY = "index_query"
    SCAN = "scan"


@dataclass(frozen=True)
class Condition:
    attr: str
    op: str  # eq | in | exists | not_exists | gte | lte
    value: Any = None


@dataclass(frozen=True)
class QueryPlan:
    access_path: AccessPath
    table: str
    index_name: Optional[str] = None
    key_conditions: Tuple[Tuple[str, Any], ...] = ()
    filter_conditions: Tuple[Condition, ...] = ()
    page_size_hint: Optional[int] = None

    @property
    def key(self) -> Dict[str, Any]:
        return dict(self.key_conditions)


def evaluate(condition: Condition, item: Mapping[str, Any]) -> bool:
    present = condition.attr in item and item[condition.attr] is not None
    if condition.op == "exists":
        return present
    if condition.op == "not_exists":
        return not present
    if not present:
        return False
    value = item[condition.attr]
    if condition.op == "eq":
        return value == condition.value
    if condition.op == "in":
        return value in condition.value
    if condition.op == "gte":
        return value >= condition.value
    if condition.op == "lte":
        return value <= condition.value
    raise ValueError(f"Unsupported condition operator: {condition.op}")


def plan_assignment_query(
    filters: AssignmentFilter,
    role: Role,
    page_size_hint: Optional[int] = None,
) -> QueryPlan:
    """
    Course index first, then instructor index, else a full scan.

    A single requested status narrows the course index range key. Restricted
    callers get the visibility condition on a scan only: `status` is the course
    index range key and DynamoDB rejects filters on key attributes. Index
    results are narrowed in memory by the service.
    """
    if filters.course_id:
        key: Tuple[Tuple[str, Any], ...] = (("courseId", filters.course_id),)
        if filters.status and not filters.statuses:
            key += (("status", filters.status),)
        return QueryPlan(
            access_path=AccessPath.INDEX_QUERY,
            table=config.ASSIGNMENTS_TABLE,
            index_name=config.ASSIGNMENT_COURSE_INDEX,
            key_conditions=key,
            page_size_hint=page_size_hint,
        )

    if filters.instructor_id:
        return QueryPlan(
            access_path=AccessPath.INDEX_QUERY,
            table=config.ASSIGNMENTS_TABLE,
            index_name=config.ASSIGNMENT_INSTRUCTOR_INDEX,
            key_conditions=(("instructorId", filters.instructor_id),),
            page_size_hint=page_size_hint,
        )

    conditions: Tuple[Condition, ...] = ()
    if role is Role.RESTRICTED:
        conditions = (Condition("status", "in", VISIBLE_STATUSES),)
    return QueryPlan(
        access_path=AccessPath.SCAN,
        table=config.ASSIGNMENTS_TABLE,
        filter_conditions=conditions,
        page_size_hint=page_size_hint,
    )


def plan_submission_query(
    student_id: Optional[str] = None,
    assignment_id: Optional[str] = None,
    course_id: Optional[str] = None,
    graded_only: bool = False,
    course_scope: Optional[Sequence[str]] = None,
    page_size_hint: Optional[int] = None,
) -> QueryPlan:
    """
    Plan a submissions read.

    Priority: primary key (assignment + student), assignment partition,
    course index, student index, scan. `course_scope` limits results to the
    given courses; `graded_only` keeps only submissions with a grade.
    """
    conditions = []
    if graded_only:
        conditions.append(Condition("grade", "exists"))
    if course_scope is not None:
        conditions.append(Condition("courseId", "in", tuple(course_scope)))

    table = config.SUBMISSIONS_TABLE
    if assignment_id and student_id:
        return QueryPlan(
            access_path=AccessPath.PRIMARY_KEY,
            table=table,
            key_conditions=(("assignmentId", assignment_id), ("userId", student_id)),
            filter_conditions=tuple(conditions),
            page_size_hint=page_size_hint,
        )
    if assignment_id:
        return QueryPlan(
            access_path=AccessPath.INDEX_QUERY,
            table=table,
            key_conditions=(("assignmentId", assignment_id),),
            filter_conditions=tuple(conditions),
            page_size_hint=page_size_hint,
        )
    if course_id:
        if student_id:
            conditions.append(Condition("userId", "eq", student_id))
        return QueryPlan(
            access_path=AccessPath.INDEX_QUERY,
            table=table,
            index_name=config.SUBMISSION_COURSE_INDEX,
            key_conditions=(("courseId", course_id),),
            filter_conditions=tuple(conditions),
            page_size_hint=page_size_hint,
        )
    if student_id:
        return QueryPlan(
            access_path=AccessPath.INDEX_QUERY,
            table=table,
            index_name=config.SUBMISSION_USER_INDEX,
            key_conditions=(("userId", student_id),),
            filter_conditions=tuple(conditions),
            page_size_hint=page_size_hint,
        )
    return QueryPlan(
        access_path=AccessPath.SCAN,
        table=table,
        filter_conditions=tuple(conditions),
        page_size_hint=page_size_hint,
    )


def plan_instructor_courses(instructor_id: str) -> QueryPlan:
    return QueryPlan(
        access_path=AccessPath.INDEX_QUERY,
        table=config.COURSES_TABLE,
        index_name=config.COURSE_INSTRUCTOR_INDEX,
        key_conditions=(("instructorId", instructor_id),),
    )
