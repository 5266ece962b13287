from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from . import config
from .paging import Pagination
from .records import RubricScore


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GradeSubmissionRequest(CamelModel):
    submission_id: Optional[str] = None
    assignment_id: str = Field(..., min_length=1)
    student_id: str = Field(..., min_length=1)
    grade: float = Field(..., ge=0, le=100)
    feedback: str = Field(..., min_length=1, max_length=2000)
    rubric_scores: List[RubricScore] = Field(default_factory=list)
    grading_notes: Optional[str] = Field(None, max_length=1000)
    graded_at: Optional[datetime] = None
    allow_resubmission: bool = False
    resubmission_deadline: Optional[datetime] = None
    expected_version: Optional[int] = Field(None, ge=0)


class BulkGradeRequest(CamelModel):
    submissions: List[GradeSubmissionRequest] = Field(..., min_length=1, max_length=config.BULK_GRADE_MAX_ITEMS)
    grading_notes: Optional[str] = Field(None, max_length=1000)


class GradeResponse(CamelModel):
    success: bool = True
    submission_id: str
    assignment_id: str
    student_id: str
    grade: float
    feedback: str
    graded_at: str
    graded_by: str
    version: int
    rubric_scores: List[RubricScore] = Field(default_factory=list)
    total_rubric_score: Optional[float] = None
    max_rubric_score: Optional[float] = None
    allow_resubmission: bool = False
    resubmission_deadline: Optional[str] = None
    correlation_id: Optional[str] = None


class BulkGradeItemResult(CamelModel):
    submission_id: str
    success: bool
    grade: Optional[float] = None
    version: Optional[int] = None
    error: Optional[str] = None
    error_type: Optional[str] = None


class BulkGradeSummary(CamelModel):
    total_processed: int
    successful: int
    failed: int
    average_grade: float


class BulkGradeResponse(CamelModel):
    success: bool = True
    results: List[BulkGradeItemResult]
    summary: BulkGradeSummary
    correlation_id: Optional[str] = None


class PagedResponse(CamelModel):
    success: bool = True
    items: List[Dict[str, Any]]
    pagination: Pagination
    applied_filters: Dict[str, Any] = Field(default_factory=dict)
    cursors: Optional[Dict[str, str]] = None
    aggregates: Optional[Dict[str, Any]] = None
    correlation_id: Optional[str] = None
