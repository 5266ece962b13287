from __future__ import annotations

from abc import abstractmethod
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _plain(value: Any) -> Any:
    """Convert DynamoDB Decimals left in extra attributes to int or float."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


class VersionedEntity(BaseModel):
    """Base for stored records: identity, optional version and modification stamp."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    version: Optional[int] = None
    last_modified: Optional[str] = None

    @property
    @abstractmethod
    def entity_id(self) -> str:
        """Stable identifier used by cursors and grade responses."""

    @property
    def cursor_timestamp(self) -> Optional[str]:
        return None

    @classmethod
    def from_item(cls, item: Dict[str, Any]):
        return cls.model_validate(item)

    def to_item(self) -> Dict[str, Any]:
        return _plain(self.model_dump(by_alias=True, exclude_none=True))


class Assignment(VersionedEntity):
    assignment_id: str
    course_id: Optional[str] = None
    instructor_id: Optional[str] = None
    title: str = ""
    description: Optional[str] = None
    searchable_text: Optional[str] = None
    status: Optional[str] = None
    type: Optional[str] = None
    due_date: Optional[str] = None
    created_at: Optional[str] = None
    points: Optional[float] = None
    tags: List[str] = Field(default_factory=list)
    individual_submission: Optional[bool] = None
    auto_grade: Optional[bool] = None
    peer_review: Optional[bool] = None
    rubric: Optional[Any] = None

    @property
    def entity_id(self) -> str:
        return self.assignment_id

    @property
    def cursor_timestamp(self) -> Optional[str]:
        return self.created_at


class RubricScore(BaseModel):
    criterion: str = Field(..., min_length=1)
    score: float = Field(..., ge=0, le=100)
    max_score: float = Field(..., ge=1, alias="maxScore")
    comments: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class Submission(VersionedEntity):
    assignment_id: str
    user_id: str
    submission_id: Optional[str] = None
    course_id: Optional[str] = None
    status: Optional[str] = None
    submitted_at: Optional[str] = None
    grade: Optional[float] = None
    feedback: Optional[str] = None
    grading_notes: Optional[str] = None
    graded_at: Optional[str] = None
    graded_by: Optional[str] = None
    rubric_scores: List[RubricScore] = Field(default_factory=list)
    total_rubric_score: Optional[float] = None
    max_rubric_score: Optional[float] = None
    allow_resubmission: Optional[bool] = None
    resubmission_deadline: Optional[str] = None
    assignment_title: Optional[str] = None
    course_name: Optional[str] = None
    instructor_name: Optional[str] = None

    @property
    def entity_id(self) -> str:
        return self.submission_id or f"{self.assignment_id}#{self.user_id}"

    @property
    def cursor_timestamp(self) -> Optional[str]:
        return self.submitted_at

    @property
    def key(self) -> Dict[str, str]:
        return {"assignmentId": self.assignment_id, "userId": self.user_id}


class Grade(Submission):
    """A submission that carries a grade."""

    grade: float

    @property
    def cursor_timestamp(self) -> Optional[str]:
        return self.graded_at


class Course(VersionedEntity):
    course_id: str
    name: Optional[str] = None
    instructor_id: Optional[str] = None
    instructor_name: Optional[str] = None
    department: Optional[str] = None

    @property
    def entity_id(self) -> str:
        return self.course_id
