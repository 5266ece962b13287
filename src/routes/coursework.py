from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Literal, Optional, Tuple

from fastapi import APIRouter, Body, Depends, Query, Request

from ..coursework import config
from ..coursework.errors import ValidationError
from ..coursework.filters import (
    AssignmentFilter,
    Difficulty,
    GradeBucket,
    GradeFilter,
    GradingMode,
    SubmissionFilter,
    SubmissionMode,
)
from ..coursework.principal import Principal
from ..coursework.schemas import (
    BulkGradeRequest,
    BulkGradeResponse,
    GradeResponse,
    GradeSubmissionRequest,
    PagedResponse,
)
from ..coursework.service import (
    PageRequest,
    bulk_grade,
    fetch_assignments,
    fetch_grades,
    fetch_submissions,
    grade_submission,
)
from ..coursework.store import CourseworkStore
from ..coursework.weeks import parse_instant
from ..utils.auth import current_principal

router = APIRouter(tags=["Coursework"])

SUBMISSION_STATUSES = ("uploading", "processing", "completed", "failed", "rejected")

SortOrder = Literal["asc", "desc"]
PaginationType = Literal["offset", "cursor"]


def get_store(request: Request) -> CourseworkStore:
    return request.app.state.store


def _csv(value: Optional[str]) -> Tuple[str, ...]:
    if not value:
        return ()
    return tuple(part.strip() for part in value.split(",") if part.strip())


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    return parse_instant(value) if value is not None else None


def _page(
    page: int = Query(1, ge=1, le=config.MAX_PAGE),
    limit: int = Query(config.DEFAULT_PAGE_SIZE, ge=1, le=config.MAX_PAGE_SIZE),
    sort_order: Optional[SortOrder] = Query(None, alias="sortOrder"),
    pagination_type: PaginationType = Query("offset", alias="paginationType"),
    cursor: Optional[str] = Query(None),
) -> PageRequest:
    return PageRequest(
        page=page,
        limit=limit,
        sort_order=sort_order,
        pagination_type=pagination_type,
        cursor=cursor,
    )


def _with_correlation(request: Request, response):
    return response.model_copy(update={"correlation_id": getattr(request.state, "correlation_id", None)})


@router.get("/assignments", response_model=PagedResponse, response_model_exclude_none=True)
def list_assignments(
    request: Request,
    course_id: Optional[str] = Query(None, alias="courseId"),
    instructor_id: Optional[str] = Query(None, alias="instructorId"),
    status: Optional[str] = Query(None),
    statuses: Optional[str] = Query(None, description="Comma-separated statuses"),
    type: Optional[str] = Query(None),
    due_date_from: Optional[datetime] = Query(None, alias="dueDateFrom"),
    due_date_to: Optional[datetime] = Query(None, alias="dueDateTo"),
    week_number: Optional[int] = Query(None, alias="weekNumber", ge=1, le=53),
    week_year: Optional[int] = Query(None, alias="weekYear", ge=1970, le=9999),
    week_start: Optional[datetime] = Query(None, alias="weekStart"),
    week_end: Optional[datetime] = Query(None, alias="weekEnd"),
    difficulty: Optional[Difficulty] = Query(None),
    submission_type: Optional[SubmissionMode] = Query(None, alias="submissionType"),
    grading_type: Optional[GradingMode] = Query(None, alias="gradingType"),
    tags: Optional[str] = Query(None, description="Comma-separated tags"),
    search: Optional[str] = Query(None, min_length=1, max_length=200),
    sort_by: Optional[Literal["dueDate", "createdAt", "title", "points", "status"]] = Query(None, alias="sortBy"),
    page: PageRequest = Depends(_page),
    principal: Principal = Depends(current_principal),
    store: CourseworkStore = Depends(get_store),
):
    filters = AssignmentFilter(
        course_id=course_id,
        instructor_id=instructor_id,
        status=status,
        statuses=_csv(statuses),
        type=type,
        due_date_from=_utc(due_date_from),
        due_date_to=_utc(due_date_to),
        week_number=week_number,
        week_year=week_year,
        week_start=_utc(week_start),
        week_end=_utc(week_end),
        difficulty=difficulty,
        submission_type=submission_type,
        grading_type=grading_type,
        tags=_csv(tags),
        search=search,
    )
    page = replace(page, sort_by=sort_by)
    return _with_correlation(request, fetch_assignments(store, principal, filters, page))


@router.get("/submissions", response_model=PagedResponse, response_model_exclude_none=True)
def list_submissions(
    request: Request,
    student_id: Optional[str] = Query(None, alias="studentId"),
    assignment_id: Optional[str] = Query(None, alias="assignmentId"),
    course_id: Optional[str] = Query(None, alias="courseId"),
    status: Optional[Literal["uploading", "processing", "completed", "failed", "rejected"]] = Query(None),
    statuses: Optional[str] = Query(None, description="Comma-separated statuses"),
    has_grade: Optional[bool] = Query(None, alias="hasGrade"),
    min_grade: Optional[float] = Query(None, alias="minGrade", ge=0, le=100),
    max_grade: Optional[float] = Query(None, alias="maxGrade", ge=0, le=100),
    submitted_after: Optional[datetime] = Query(None, alias="submittedAfter"),
    submitted_before: Optional[datetime] = Query(None, alias="submittedBefore"),
    sort_by: Optional[Literal["submittedAt", "grade", "status", "assignmentTitle"]] = Query(None, alias="sortBy"),
    page: PageRequest = Depends(_page),
    principal: Principal = Depends(current_principal),
    store: CourseworkStore = Depends(get_store),
):
    wanted = _csv(statuses)
    unknown = [s for s in wanted if s not in SUBMISSION_STATUSES]
    if unknown:
        raise ValidationError(f"Unknown submission status: {', '.join(unknown)}", code="INVALID_STATUS")
    if min_grade is not None and max_grade is not None and min_grade > max_grade:
        raise ValidationError("minGrade cannot exceed maxGrade", code="INVALID_GRADE_RANGE")
    filters = SubmissionFilter(
        student_id=student_id,
        assignment_id=assignment_id,
        course_id=course_id,
        status=status,
        statuses=wanted,
        has_grade=has_grade,
        min_grade=min_grade,
        max_grade=max_grade,
        submitted_after=_utc(submitted_after),
        submitted_before=_utc(submitted_before),
    )
    page = replace(page, sort_by=sort_by)
    return _with_correlation(request, fetch_submissions(store, principal, filters, page))


@router.get("/grades", response_model=PagedResponse, response_model_exclude_none=True)
def list_grades(
    request: Request,
    student_id: Optional[str] = Query(None, alias="studentId"),
    assignment_id: Optional[str] = Query(None, alias="assignmentId"),
    course_id: Optional[str] = Query(None, alias="courseId"),
    graded_after: Optional[datetime] = Query(None, alias="gradedAfter"),
    graded_before: Optional[datetime] = Query(None, alias="gradedBefore"),
    submitted_after: Optional[datetime] = Query(None, alias="submittedAfter"),
    submitted_before: Optional[datetime] = Query(None, alias="submittedBefore"),
    min_grade: Optional[float] = Query(None, alias="minGrade", ge=0, le=100),
    max_grade: Optional[float] = Query(None, alias="maxGrade", ge=0, le=100),
    grade_range: Optional[GradeBucket] = Query(None, alias="gradeRange"),
    has_feedback: Optional[bool] = Query(None, alias="hasFeedback"),
    has_rubric_scores: Optional[bool] = Query(None, alias="hasRubricScores"),
    allow_resubmission: Optional[bool] = Query(None, alias="allowResubmission"),
    search_term: Optional[str] = Query(None, alias="searchTerm", min_length=1, max_length=200),
    include_aggregates: bool = Query(False, alias="includeAggregates"),
    group_by: Optional[Literal["course", "assignment", "week"]] = Query(None, alias="groupBy"),
    sort_by: Optional[
        Literal["grade", "gradedAt", "submittedAt", "assignmentTitle", "courseName", "instructorName"]
    ] = Query(None, alias="sortBy"),
    page: PageRequest = Depends(_page),
    principal: Principal = Depends(current_principal),
    store: CourseworkStore = Depends(get_store),
):
    if min_grade is not None and max_grade is not None and min_grade > max_grade:
        raise ValidationError("minGrade cannot exceed maxGrade", code="INVALID_GRADE_RANGE")
    filters = GradeFilter(
        student_id=student_id,
        assignment_id=assignment_id,
        course_id=course_id,
        graded_after=_utc(graded_after),
        graded_before=_utc(graded_before),
        submitted_after=_utc(submitted_after),
        submitted_before=_utc(submitted_before),
        min_grade=min_grade,
        max_grade=max_grade,
        grade_range=grade_range,
        has_feedback=has_feedback,
        has_rubric_scores=has_rubric_scores,
        allow_resubmission=allow_resubmission,
        search_term=search_term,
    )
    page = replace(page, sort_by=sort_by)
    response = fetch_grades(
        store,
        principal,
        filters,
        page,
        include_aggregates=include_aggregates,
        group_by=group_by,
    )
    return _with_correlation(request, response)


@router.post("/submissions/grade", response_model=GradeResponse, response_model_exclude_none=True)
async def grade_one(
    request: Request,
    payload: GradeSubmissionRequest = Body(...),
    principal: Principal = Depends(current_principal),
    store: CourseworkStore = Depends(get_store),
):
    response = await grade_submission(store, principal, payload)
    return _with_correlation(request, response)


@router.post("/submissions/grade/bulk", response_model=BulkGradeResponse, response_model_exclude_none=True)
async def grade_bulk(
    request: Request,
    payload: BulkGradeRequest = Body(...),
    principal: Principal = Depends(current_principal),
    store: CourseworkStore = Depends(get_store),
):
    response = await bulk_grade(store, principal, payload)
    return _with_correlation(request, response)
