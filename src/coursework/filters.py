"""
In-memory predicates for the conditions the store cannot express.

Each filter is built once per request. A field left as None (or an
empty tuple) imposes no constraint; a record passes when every supplied
constraint holds.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Literal, Optional, Tuple, get_args

from .records import Assignment, Grade, Submission
from .weeks import date_in_week, parse_instant

Difficulty = Literal["easy", "medium", "hard"]
SubmissionMode = Literal["individual", "group"]
GradingMode = Literal["auto", "manual", "peer", "rubric"]
GradeBucket = Literal["excellent", "good", "average", "below_average", "failing"]

GRADE_BUCKETS = get_args(GradeBucket)


@dataclass(frozen=True)
class AssignmentFilter:
    course_id: Optional[str] = None
    instructor_id: Optional[str] = None
    status: Optional[str] = None
    statuses: Tuple[str, ...] = ()
    type: Optional[str] = None
    due_date_from: Optional[datetime] = None
    due_date_to: Optional[datetime] = None
    week_number: Optional[int] = None
    week_year: Optional[int] = None
    week_start: Optional[datetime] = None
    week_end: Optional[datetime] = None
    difficulty: Optional[str] = None
    submission_type: Optional[str] = None
    grading_type: Optional[str] = None
    tags: Tuple[str, ...] = ()
    search: Optional[str] = None

    @property
    def status_set(self) -> Tuple[str, ...]:
        """Statuses to accept; the multi-value form wins over the single one."""
        if self.statuses:
            return self.statuses
        if self.status:
            return (self.status,)
        return ()


@dataclass(frozen=True)
class SubmissionFilter:
    student_id: Optional[str] = None
    assignment_id: Optional[str] = None
    course_id: Optional[str] = None
    status: Optional[str] = None
    statuses: Tuple[str, ...] = ()
    has_grade: Optional[bool] = None
    min_grade: Optional[float] = None
    max_grade: Optional[float] = None
    submitted_after: Optional[datetime] = None
    submitted_before: Optional[datetime] = None

    @property
    def status_set(self) -> Tuple[str, ...]:
        if self.statuses:
            return self.statuses
        if self.status:
            return (self.status,)
        return ()


@dataclass(frozen=True)
class GradeFilter:
    student_id: Optional[str] = None
    assignment_id: Optional[str] = None
    course_id: Optional[str] = None
    graded_after: Optional[datetime] = None
    graded_before: Optional[datetime] = None
    submitted_after: Optional[datetime] = None
    submitted_before: Optional[datetime] = None
    min_grade: Optional[float] = None
    max_grade: Optional[float] = None
    grade_range: Optional[str] = None
    has_feedback: Optional[bool] = None
    has_rubric_scores: Optional[bool] = None
    allow_resubmission: Optional[bool] = None
    search_term: Optional[str] = None


def difficulty_of(points: Optional[float]) -> Optional[str]:
    if points is None:
        return None
    if points <= 50:
        return "easy"
    if points <= 100:
        return "medium"
    return "hard"


def submission_mode_of(assignment: Assignment) -> str:
    return "individual" if assignment.individual_submission else "group"


def grading_mode_of(assignment: Assignment) -> str:
    if assignment.auto_grade:
        return "auto"
    if assignment.peer_review:
        return "peer"
    if assignment.rubric:
        return "rubric"
    return "manual"


def grade_bucket(grade: float) -> str:
    if grade >= 90:
        return "excellent"
    if grade >= 80:
        return "good"
    if grade >= 70:
        return "average"
    if grade >= 60:
        return "below_average"
    return "failing"


def _within(value: Optional[str], low: Optional[datetime], high: Optional[datetime]) -> bool:
    """Inclusive range check; a missing or unparseable value fails any bound."""
    if low is None and high is None:
        return True
    instant = parse_instant(value)
    if instant is None:
        return False
    if low is not None and instant < low:
        return False
    if high is not None and instant > high:
        return False
    return True


def _contains(needle: str, *haystacks: Optional[str]) -> bool:
    text = " ".join(h for h in haystacks if h).lower()
    return needle.lower() in text


def matches(record: Assignment, criteria: AssignmentFilter, reference_date: datetime) -> bool:
    """True iff the assignment satisfies every constraint in `criteria`."""
    if criteria.course_id and record.course_id != criteria.course_id:
        return False
    if criteria.instructor_id and record.instructor_id != criteria.instructor_id:
        return False

    statuses = criteria.status_set
    if statuses and record.status not in statuses:
        return False

    if criteria.type and record.type != criteria.type:
        return False

    if not _within(record.due_date, criteria.due_date_from, criteria.due_date_to):
        return False

    if criteria.week_number is not None:
        due = parse_instant(record.due_date)
        year = criteria.week_year or reference_date.year
        if due is None or not date_in_week(due, criteria.week_number, year):
            return False

    if not _within(record.due_date, criteria.week_start, criteria.week_end):
        return False

    if criteria.difficulty and difficulty_of(record.points) != criteria.difficulty:
        return False

    if criteria.submission_type and submission_mode_of(record) != criteria.submission_type:
        return False

    if criteria.grading_type and grading_mode_of(record) != criteria.grading_type:
        return False

    if criteria.tags:
        record_tags = [t.lower() for t in record.tags or []]
        if not any(wanted.lower() in tag for wanted in criteria.tags for tag in record_tags):
            return False

    if criteria.search and not _contains(
        criteria.search, record.searchable_text, record.title, record.description
    ):
        return False

    return True


def matches_submission(record: Submission, criteria: SubmissionFilter) -> bool:
    if criteria.student_id and record.user_id != criteria.student_id:
        return False
    if criteria.assignment_id and record.assignment_id != criteria.assignment_id:
        return False
    if criteria.course_id and record.course_id != criteria.course_id:
        return False

    statuses = criteria.status_set
    if statuses and record.status not in statuses:
        return False

    if criteria.has_grade is not None and (record.grade is not None) != criteria.has_grade:
        return False

    if criteria.min_grade is not None or criteria.max_grade is not None:
        if record.grade is None:
            return False
        if criteria.min_grade is not None and record.grade < criteria.min_grade:
            return False
        if criteria.max_grade is not None and record.grade > criteria.max_grade:
            return False

    return _within(record.submitted_at, criteria.submitted_after, criteria.submitted_before)


def matches_grade(record: Grade, criteria: GradeFilter) -> bool:
    if criteria.student_id and record.user_id != criteria.student_id:
        return False
    if criteria.assignment_id and record.assignment_id != criteria.assignment_id:
        return False
    if criteria.course_id and record.course_id != criteria.course_id:
        return False

    if not _within(record.graded_at, criteria.graded_after, criteria.graded_before):
        return False
    if not _within(record.submitted_at, criteria.submitted_after, criteria.submitted_before):
        return False

    if criteria.min_grade is not None and record.grade < criteria.min_grade:
        return False
    if criteria.max_grade is not None and record.grade > criteria.max_grade:
        return False
    if criteria.grade_range and grade_bucket(record.grade) != criteria.grade_range:
        return False

    if criteria.has_feedback is not None:
        if bool(record.feedback and record.feedback.strip()) != criteria.has_feedback:
            return False
    if criteria.has_rubric_scores is not None:
        if bool(record.rubric_scores) != criteria.has_rubric_scores:
            return False
    if criteria.allow_resubmission is not None:
        if bool(record.allow_resubmission) != criteria.allow_resubmission:
            return False

    if criteria.search_term and not _contains(criteria.search_term, record.feedback, record.grading_notes):
        return False

    return True


def filter_assignments(
    records: Iterable[Assignment], criteria: AssignmentFilter, reference_date: datetime
) -> List[Assignment]:
    return [r for r in records if matches(r, criteria, reference_date)]
