"""
Grading writes under optimistic concurrency.

`apply_grade` reads the submission, captures its version and writes the
grade with a conditional update that only succeeds if nobody graded or
modified the record in between. Version conflicts and throttling are retried
a bounded number of times with capped exponential backoff; every other
outcome is returned as a `GradeOutcome` rather than raised.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

from . import config
from .errors import (
    ERROR_BY_KIND,
    ConditionFailed,
    ErrorKind,
    StoreError,
    ThrottleExceeded,
    ValidationError,
)
from .principal import Principal
from .records import RubricScore
from .schemas import GradeSubmissionRequest
from .store import CourseworkStore

logger = logging.getLogger(__name__)

GRADABLE_STATUS = "completed"

Sleep = Callable[[float], Awaitable[Any]]


@dataclass
class GradeOutcome:
    ok: bool
    record: Optional[Dict[str, Any]] = None
    version: Optional[int] = None
    error: Optional[ErrorKind] = None
    message: Optional[str] = None
    attempts: int = 0

    def raise_for_error(self) -> None:
        if not self.ok:
            raise ERROR_BY_KIND[self.error](self.message or self.error.value)


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Seconds to wait after failed attempt number `attempt` (1-based)."""
    return min(base * 2 ** (attempt - 1), cap)


def rubric_totals(scores: List[RubricScore]) -> Tuple[float, float]:
    return sum(s.score for s in scores), sum(s.max_score for s in scores)


def prepare_grade(
    request: GradeSubmissionRequest,
    principal: Principal,
    now: Optional[datetime] = None,
    common_notes: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Validate a grading request and build the attributes to write.

    Raises ValidationError when rubric scores disagree with the overall
    grade by more than the tolerance, or when a resubmission deadline is not
    in the future.
    """
    now = now or datetime.now(timezone.utc)
    fields: Dict[str, Any] = {
        "grade": request.grade,
        "feedback": request.feedback,
        "gradedAt": (request.graded_at or now).isoformat(),
        "gradedBy": principal.id,
        "allowResubmission": request.allow_resubmission,
    }

    if request.rubric_scores:
        total, maximum = rubric_totals(request.rubric_scores)
        if abs(total - request.grade) > config.RUBRIC_TOLERANCE:
            raise ValidationError(
                f"Rubric scores total ({total:g}) does not match the overall grade "
                f"({request.grade:g})",
                code="RUBRIC_MISMATCH",
            )
        fields["rubricScores"] = [s.model_dump(by_alias=True, exclude_none=True) for s in request.rubric_scores]
        fields["totalRubricScore"] = total
        fields["maxRubricScore"] = maximum

    notes = request.grading_notes or common_notes
    if notes:
        fields["gradingNotes"] = notes

    if request.resubmission_deadline is not None:
        deadline = request.resubmission_deadline
        if deadline.tzinfo is None:
            deadline = deadline.replace(tzinfo=timezone.utc)
        if request.allow_resubmission and deadline <= now:
            raise ValidationError(
                "Resubmission deadline must be in the future", code="INVALID_DEADLINE"
            )
        fields["resubmissionDeadline"] = deadline.isoformat()

    return fields


def _failed(kind: ErrorKind, message: str, attempts: int) -> GradeOutcome:
    return GradeOutcome(ok=False, error=kind, message=message, attempts=attempts)


async def apply_grade(
    store: CourseworkStore,
    key: Mapping[str, Any],
    fields: Mapping[str, Any],
    version_token: Optional[int] = None,
    max_attempts: Optional[int] = None,
    sleep: Sleep = asyncio.sleep,
) -> GradeOutcome:
    """
    Write a grade to the submission at `key` if it is still ungraded.

    `version_token`, when given, is the version the caller last saw; a
    mismatch on the first read is reported as a concurrent modification
    without retrying.
    """
    table = config.SUBMISSIONS_TABLE
    limit = max_attempts or config.GRADE_MAX_ATTEMPTS
    conflict_seen = False
    attempt = 0

    while attempt < limit:
        attempt += 1
        try:
            current = await asyncio.to_thread(store.get_by_key, table, key)
            if current is None:
                return _failed(ErrorKind.NOT_FOUND, "Submission not found", attempt)

            graded = current.get("grade") is not None
            if graded and conflict_seen:
                return _failed(
                    ErrorKind.ALREADY_GRADED_BY_OTHER,
                    "Submission was graded by another process",
                    attempt,
                )
            if current.get("status") != GRADABLE_STATUS:
                return _failed(
                    ErrorKind.NOT_GRADABLE,
                    f"Submission is not ready for grading (status: {current.get('status')})",
                    attempt,
                )
            if graded:
                return _failed(ErrorKind.ALREADY_GRADED, "Submission has already been graded", attempt)

            captured = current.get("version")
            captured = int(captured) if captured is not None else None
            if attempt == 1 and version_token is not None and version_token != (captured or 0):
                return _failed(
                    ErrorKind.CONCURRENT_MODIFICATION,
                    "Submission has changed since it was read, refresh and retry",
                    attempt,
                )

            update = dict(fields)
            update["lastModified"] = datetime.now(timezone.utc).isoformat()
            updated = await asyncio.to_thread(
                store.conditional_update, table, key, captured, update, ("grade",)
            )
            version = int(updated.get("version", (captured or 0) + 1))
            logger.info(f"Graded submission {dict(key)} at version {version} (attempt {attempt})")
            return GradeOutcome(ok=True, record=updated, version=version, attempts=attempt)

        except ConditionFailed:
            conflict_seen = True
            logger.warning(f"Version conflict grading {dict(key)} (attempt {attempt}/{limit})")
            if attempt >= limit:
                return _failed(
                    ErrorKind.CONCURRENT_MODIFICATION,
                    "Submission was modified concurrently, please retry",
                    attempt,
                )
            await sleep(
                backoff_delay(
                    attempt, config.CONFLICT_BACKOFF_BASE_SECONDS, config.CONFLICT_BACKOFF_CAP_SECONDS
                )
            )
        except ThrottleExceeded:
            logger.warning(f"Store throttled grading {dict(key)} (attempt {attempt}/{limit})")
            if attempt >= limit:
                return _failed(
                    ErrorKind.STORE_UNAVAILABLE,
                    "Grading is temporarily unavailable due to high load, please retry",
                    attempt,
                )
            await sleep(
                backoff_delay(
                    attempt, config.THROTTLE_BACKOFF_BASE_SECONDS, config.THROTTLE_BACKOFF_CAP_SECONDS
                )
            )
        except StoreError as e:
            logger.error(f"Store error grading {dict(key)}: {e}")
            return _failed(ErrorKind.STORE_ERROR, "Failed to save grade", attempt)

    return _failed(ErrorKind.CONCURRENT_MODIFICATION, "Submission was modified concurrently", attempt)
