"""
Request orchestration for coursework reads and grading.

Every read follows the same pipeline: access checks, query plan, paged
fetch, in-memory filtering, sorting, then offset or cursor pagination.
Grading validates the request, checks the caller may grade the assignment
and hands the write to the optimistic-concurrency updater.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Type, TypeVar

from pydantic import ValidationError as ModelValidationError
from pydantic.alias_generators import to_camel

from . import config
from .aggregates import grade_aggregates
from .errors import (
    AccessDenied,
    CourseworkError,
    NotFound,
    StoreError,
    ValidationError,
    translate_store_error,
)
from .fetch_loop import FetchResult, fetch_all
from .filters import (
    AssignmentFilter,
    GradeFilter,
    SubmissionFilter,
    filter_assignments,
    matches_grade,
    matches_submission,
)
from .grading import apply_grade, prepare_grade
from .paging import (
    ASSIGNMENT_SORT_KEYS,
    GRADE_SORT_KEYS,
    SUBMISSION_SORT_KEYS,
    build_cursors,
    build_pagination,
    clamp_page_size,
    paginate_by_cursor,
    paginate_offset,
    sort_records,
)
from .planner import (
    VISIBLE_STATUSES,
    QueryPlan,
    plan_assignment_query,
    plan_instructor_courses,
    plan_submission_query,
)
from .principal import Principal
from .records import Assignment, Course, Grade, Submission, VersionedEntity
from .schemas import (
    BulkGradeItemResult,
    BulkGradeRequest,
    BulkGradeResponse,
    BulkGradeSummary,
    GradeResponse,
    GradeSubmissionRequest,
    PagedResponse,
)
from .store import CourseworkStore

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=VersionedEntity)


@dataclass(frozen=True)
class PageRequest:
    page: int = 1
    limit: int = config.DEFAULT_PAGE_SIZE
    sort_by: Optional[str] = None
    sort_order: Optional[str] = None
    pagination_type: str = "offset"
    cursor: Optional[str] = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


# Store access


def _fetch(store: CourseworkStore, plan: QueryPlan) -> FetchResult:
    try:
        return fetch_all(store, plan)
    except StoreError as e:
        logger.error(f"Fetch from {plan.table} failed: {type(e).__name__}: {e}")
        raise translate_store_error(e) from e


def _get(store: CourseworkStore, table: str, key: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    try:
        return store.get_by_key(table, key)
    except StoreError as e:
        logger.error(f"Read from {table} failed: {type(e).__name__}: {e}")
        raise translate_store_error(e) from e


def _parse(model: Type[E], items: Iterable[Dict[str, Any]]) -> List[E]:
    records = []
    for item in items:
        try:
            records.append(model.from_item(item))
        except ModelValidationError as e:
            logger.warning(f"Skipping malformed {model.__name__} item: {e.error_count()} validation error(s)")
    return records


def _load_course(store: CourseworkStore, course_id: str) -> Optional[Course]:
    item = _get(store, config.COURSES_TABLE, {"courseId": course_id})
    return Course.from_item(item) if item else None


def _load_assignment(store: CourseworkStore, assignment_id: str) -> Optional[Assignment]:
    item = _get(store, config.ASSIGNMENTS_TABLE, {"assignmentId": assignment_id})
    return Assignment.from_item(item) if item else None


def _instructor_course_ids(store: CourseworkStore, instructor_id: str) -> List[str]:
    courses = _parse(Course, _fetch(store, plan_instructor_courses(instructor_id)).items)
    return sorted({c.course_id for c in courses})


# Access rules


def check_course_access(store: CourseworkStore, principal: Principal, course_id: str) -> None:
    """
    Raise AccessDenied unless the caller may read `course_id`.

    Administrators may read any course. Restricted callers carrying a scope
    may only read their scoped course. Elevated callers need to teach the
    course or share its department.
    """
    if principal.is_admin:
        return
    if principal.is_restricted:
        if principal.scope_id and principal.scope_id != course_id:
            raise AccessDenied("You are not enrolled in this course", code="NOT_ENROLLED")
        return
    course = _load_course(store, course_id)
    if course is None:
        raise AccessDenied("Course not found", code="COURSE_NOT_FOUND")
    if course.instructor_id == principal.id:
        return
    if principal.department and course.department == principal.department:
        return
    raise AccessDenied("You do not have access to this course", code="COURSE_ACCESS_DENIED")


def check_assignment_access(store: CourseworkStore, principal: Principal, assignment_id: str) -> Assignment:
    assignment = _load_assignment(store, assignment_id)
    if assignment is None:
        raise NotFound("Assignment not found", code="ASSIGNMENT_NOT_FOUND")
    if principal.is_admin or assignment.instructor_id == principal.id:
        return assignment
    if assignment.course_id:
        check_course_access(store, principal, assignment.course_id)
        return assignment
    raise AccessDenied("You do not have access to this assignment", code="ASSIGNMENT_ACCESS_DENIED")


# Response assembly


def _applied_filters(filters: Any, page: PageRequest, sort_by: str, sort_order: str) -> Dict[str, Any]:
    applied: Dict[str, Any] = {}
    for name, value in asdict(filters).items():
        if value is None or value == ():
            continue
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, tuple):
            value = list(value)
        applied[to_camel(name)] = value
    applied["sortBy"] = sort_by
    applied["sortOrder"] = sort_order
    applied["paginationType"] = page.pagination_type
    applied["limit"] = clamp_page_size(page.limit)
    if page.pagination_type == "offset":
        applied["page"] = page.page
    return applied


def _paginate(
    records: List[E],
    page: PageRequest,
    truncated: bool,
    applied_filters: Dict[str, Any],
    aggregates: Optional[Dict[str, Any]] = None,
) -> PagedResponse:
    size = clamp_page_size(page.limit)
    cursors = None
    if page.pagination_type == "cursor":
        cursor_page = paginate_by_cursor(records, page.cursor, size)
        pagination = build_pagination(
            cursor_page.start_index // size + 1, size, len(records), is_total_exact=not truncated
        )
        items = cursor_page.items
        cursors = build_cursors(cursor_page)
    else:
        pagination = build_pagination(page.page, size, len(records), is_total_exact=not truncated)
        items = paginate_offset(records, pagination)
    return PagedResponse(
        items=[r.to_item() for r in items],
        pagination=pagination,
        applied_filters=applied_filters,
        cursors=cursors,
        aggregates=aggregates,
    )


def _empty(page: PageRequest, applied_filters: Dict[str, Any]) -> PagedResponse:
    return _paginate([], page, False, applied_filters)


def _enrich(store: CourseworkStore, records: List[E]) -> List[E]:
    """Fill assignment title, course name and instructor name from their tables."""
    assignments: Dict[str, Optional[Assignment]] = {}
    courses: Dict[str, Optional[Course]] = {}
    enriched = []
    for record in records:
        if record.assignment_id not in assignments:
            assignments[record.assignment_id] = _load_assignment(store, record.assignment_id)
        assignment = assignments[record.assignment_id]
        update: Dict[str, Any] = {}
        if assignment is not None:
            update["assignment_title"] = record.assignment_title or assignment.title
            update["course_id"] = record.course_id or assignment.course_id
        course_id = update.get("course_id") or record.course_id
        if course_id:
            if course_id not in courses:
                courses[course_id] = _load_course(store, course_id)
            course = courses[course_id]
            if course is not None:
                update["course_name"] = record.course_name or course.name
                update["instructor_name"] = record.instructor_name or course.instructor_name
        enriched.append(record.model_copy(update=update) if update else record)
    return enriched


# Reads


def fetch_assignments(
    store: CourseworkStore,
    principal: Principal,
    filters: AssignmentFilter,
    page: PageRequest,
    now: Optional[datetime] = None,
) -> PagedResponse:
    now = now or _now()
    if principal.is_restricted and not filters.course_id:
        raise ValidationError("courseId is required for students", code="COURSE_ID_REQUIRED")
    if (
        not principal.is_restricted
        and not principal.is_admin
        and filters.instructor_id
        and filters.instructor_id != principal.id
    ):
        raise AccessDenied("Instructors can only view their own assignments", code="INSTRUCTOR_MISMATCH")
    if filters.course_id:
        check_course_access(store, principal, filters.course_id)

    plan = plan_assignment_query(filters, principal.role, page_size_hint=clamp_page_size(page.limit))
    fetched = _fetch(store, plan)
    records = filter_assignments(_parse(Assignment, fetched.items), filters, now)
    if principal.is_restricted:
        records = [r for r in records if r.status in VISIBLE_STATUSES]
    sort_by = page.sort_by or "dueDate"
    sort_order = page.sort_order or "asc"
    ordered = sort_records(records, sort_by, sort_order, ASSIGNMENT_SORT_KEYS)
    logger.info(
        f"Assignments for {principal.id}: {len(fetched.items)} fetched via {plan.access_path.value}, "
        f"{len(ordered)} matched"
    )
    return _paginate(ordered, page, fetched.truncated, _applied_filters(filters, page, sort_by, sort_order))


def _submission_scope(store: CourseworkStore, principal: Principal, filters):
    """
    Apply role scoping shared by submission and grade reads.

    Returns the (possibly narrowed) filters and the course scope to push
    into the plan; a course scope of () means the caller can see nothing.
    """
    if principal.is_restricted:
        if filters.student_id and filters.student_id != principal.id:
            raise AccessDenied("Students can only view their own records", code="STUDENT_MISMATCH")
        filters = replace(filters, student_id=principal.id)
        if filters.course_id:
            check_course_access(store, principal, filters.course_id)
        return filters, None

    if principal.is_admin:
        return filters, None

    if filters.course_id:
        check_course_access(store, principal, filters.course_id)
        return filters, None
    if filters.assignment_id:
        check_assignment_access(store, principal, filters.assignment_id)
        return filters, None
    return filters, tuple(_instructor_course_ids(store, principal.id))


def fetch_submissions(
    store: CourseworkStore,
    principal: Principal,
    filters: SubmissionFilter,
    page: PageRequest,
) -> PagedResponse:
    filters, course_scope = _submission_scope(store, principal, filters)
    sort_by = page.sort_by or "submittedAt"
    sort_order = page.sort_order or "desc"
    applied = _applied_filters(filters, page, sort_by, sort_order)
    if course_scope == ():
        logger.info(f"Instructor {principal.id} has no courses, returning no submissions")
        return _empty(page, applied)

    plan = plan_submission_query(
        student_id=filters.student_id,
        assignment_id=filters.assignment_id,
        course_id=filters.course_id,
        course_scope=course_scope,
        page_size_hint=clamp_page_size(page.limit),
    )
    fetched = _fetch(store, plan)
    records = [r for r in _parse(Submission, fetched.items) if matches_submission(r, filters)]
    if sort_by == "assignmentTitle":
        records = _enrich(store, records)
    ordered = sort_records(records, sort_by, sort_order, SUBMISSION_SORT_KEYS)
    logger.info(
        f"Submissions for {principal.id}: {len(fetched.items)} fetched via {plan.access_path.value}, "
        f"{len(ordered)} matched"
    )
    return _paginate(ordered, page, fetched.truncated, applied)


def fetch_grades(
    store: CourseworkStore,
    principal: Principal,
    filters: GradeFilter,
    page: PageRequest,
    include_aggregates: bool = False,
    group_by: Optional[str] = None,
) -> PagedResponse:
    filters, course_scope = _submission_scope(store, principal, filters)
    sort_by = page.sort_by or "gradedAt"
    sort_order = page.sort_order or "desc"
    applied = _applied_filters(filters, page, sort_by, sort_order)
    if include_aggregates:
        applied["includeAggregates"] = True
        if group_by:
            applied["groupBy"] = group_by
    if course_scope == ():
        logger.info(f"Instructor {principal.id} has no courses, returning no grades")
        aggregates = grade_aggregates([], group_by) if include_aggregates else None
        return _paginate([], page, False, applied, aggregates)

    plan = plan_submission_query(
        student_id=filters.student_id,
        assignment_id=filters.assignment_id,
        course_id=filters.course_id,
        graded_only=True,
        course_scope=course_scope,
        page_size_hint=clamp_page_size(page.limit),
    )
    fetched = _fetch(store, plan)
    graded = [item for item in fetched.items if item.get("grade") is not None]
    records = [r for r in _parse(Grade, graded) if matches_grade(r, filters)]
    records = _enrich(store, records)
    ordered = sort_records(records, sort_by, sort_order, GRADE_SORT_KEYS)
    aggregates = grade_aggregates(ordered, group_by) if include_aggregates else None
    logger.info(
        f"Grades for {principal.id}: {len(fetched.items)} fetched via {plan.access_path.value}, "
        f"{len(ordered)} matched"
    )
    return _paginate(ordered, page, fetched.truncated, applied, aggregates)


# Writes


async def grade_submission(
    store: CourseworkStore,
    principal: Principal,
    request: GradeSubmissionRequest,
    now: Optional[datetime] = None,
    common_notes: Optional[str] = None,
    sleep=asyncio.sleep,
) -> GradeResponse:
    if principal.is_restricted:
        raise AccessDenied("Only instructors can grade submissions", code="INSUFFICIENT_PERMISSIONS")

    assignment = await asyncio.to_thread(_load_assignment, store, request.assignment_id)
    if assignment is None:
        raise NotFound("Assignment not found", code="ASSIGNMENT_NOT_FOUND")
    if not principal.is_admin and assignment.instructor_id != principal.id:
        raise AccessDenied(
            "You can only grade assignments for your own courses", code="NOT_ASSIGNMENT_INSTRUCTOR"
        )

    fields = prepare_grade(request, principal, now=now, common_notes=common_notes)
    key = {"assignmentId": request.assignment_id, "userId": request.student_id}
    outcome = await apply_grade(store, key, fields, version_token=request.expected_version, sleep=sleep)
    if not outcome.ok:
        logger.warning(
            f"Grading {key} by {principal.id} failed after {outcome.attempts} attempt(s): "
            f"{outcome.error.value}"
        )
    outcome.raise_for_error()

    saved = Submission.from_item(outcome.record)
    return GradeResponse(
        submission_id=request.submission_id or saved.entity_id,
        assignment_id=saved.assignment_id,
        student_id=saved.user_id,
        grade=saved.grade,
        feedback=saved.feedback,
        graded_at=saved.graded_at,
        graded_by=saved.graded_by,
        version=outcome.version,
        rubric_scores=saved.rubric_scores,
        total_rubric_score=saved.total_rubric_score,
        max_rubric_score=saved.max_rubric_score,
        allow_resubmission=bool(saved.allow_resubmission),
        resubmission_deadline=saved.resubmission_deadline,
    )


async def bulk_grade(
    store: CourseworkStore,
    principal: Principal,
    request: BulkGradeRequest,
    now: Optional[datetime] = None,
    sleep=asyncio.sleep,
) -> BulkGradeResponse:
    """Grade each submission independently; one failure does not stop the batch."""
    if principal.is_restricted:
        raise AccessDenied("Only instructors can grade submissions", code="INSUFFICIENT_PERMISSIONS")

    results: List[BulkGradeItemResult] = []
    for item in request.submissions:
        submission_id = item.submission_id or f"{item.assignment_id}#{item.student_id}"
        try:
            graded = await grade_submission(
                store, principal, item, now=now, common_notes=request.grading_notes, sleep=sleep
            )
        except CourseworkError as e:
            results.append(
                BulkGradeItemResult(
                    submission_id=submission_id,
                    success=False,
                    error=e.message,
                    error_type=e.kind.value,
                )
            )
            continue
        results.append(
            BulkGradeItemResult(
                submission_id=submission_id,
                success=True,
                grade=graded.grade,
                version=graded.version,
            )
        )

    grades = [r.grade for r in results if r.success]
    summary = BulkGradeSummary(
        total_processed=len(results),
        successful=len(grades),
        failed=len(results) - len(grades),
        average_grade=round(sum(grades) / len(grades), 2) if grades else 0.0,
    )
    logger.info(
        f"Bulk grading by {principal.id}: {summary.successful}/{summary.total_processed} succeeded"
    )
    return BulkGradeResponse(results=results, summary=summary)
