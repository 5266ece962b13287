"""
Unit tests for optimistic-concurrency grading
"""
import asyncio
import threading
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from src.coursework import config
from src.coursework.errors import (
    AlreadyGraded,
    ConditionFailed,
    ErrorKind,
    StoreError,
    ThrottleExceeded,
    ValidationError,
)
from src.coursework.grading import apply_grade, backoff_delay, prepare_grade, rubric_totals
from src.coursework.records import RubricScore
from src.coursework.schemas import GradeSubmissionRequest
from src.coursework.store import InMemoryStore
from tests.factories import NOW, SleepRecorder, make_submission

KEY = {"assignmentId": "a-001", "userId": "stu-1"}
FIELDS = {"grade": 85, "feedback": "Good", "gradedBy": "inst-1"}


def _seeded(**overrides):
    store = InMemoryStore()
    store.put(config.SUBMISSIONS_TABLE, make_submission("a-001", "stu-1", **overrides))
    return store


def _request(**overrides):
    body = {"assignmentId": "a-001", "studentId": "stu-1", "grade": 85, "feedback": "Good"}
    body.update(overrides)
    return GradeSubmissionRequest.model_validate(body)


class CompetingWriteStore(InMemoryStore):
    """Lets another grader win the race just before our conditional write"""

    def conditional_update(self, table, key, expected_version, fields, absent=()):
        if not getattr(self, "_raced", False):
            self._raced = True
            super().conditional_update(table, key, expected_version, {"grade": 60, "gradedBy": "inst-2"}, absent)
        return super().conditional_update(table, key, expected_version, fields, absent)


class SimultaneousReadStore(InMemoryStore):
    """Holds the first two reads until both have started, so both graders see the ungraded record"""

    def __init__(self):
        super().__init__()
        self._barrier = threading.Barrier(2, timeout=5)
        self._reads = 0
        self._reads_lock = threading.Lock()

    def get_by_key(self, table, key):
        with self._reads_lock:
            self._reads += 1
            first_round = self._reads <= 2
        item = super().get_by_key(table, key)
        if first_round:
            self._barrier.wait()
        return item


class TestBackoffDelay:
    """Test backoff_delay"""

    def test_conflict_schedule(self):
        """Test 1s base doubling up to a 5s cap"""
        assert [backoff_delay(n, 1, 5) for n in range(1, 6)] == [1, 2, 4, 5, 5]

    def test_throttle_schedule(self):
        """Test 2s base doubling up to a 10s cap"""
        assert [backoff_delay(n, 2, 10) for n in range(1, 5)] == [2, 4, 8, 10]


class TestApplyGrade:
    """Test apply_grade"""

    @pytest.mark.asyncio
    async def test_first_grade_sets_version_one(self):
        """Test an unversioned submission is graded at version 1"""
        store = _seeded()
        outcome = await apply_grade(store, KEY, FIELDS, sleep=SleepRecorder())
        assert outcome.ok
        assert outcome.version == 1
        assert outcome.attempts == 1
        stored = store.get_by_key(config.SUBMISSIONS_TABLE, KEY)
        assert stored["grade"] == 85
        assert stored["version"] == 1
        assert "lastModified" in stored

    @pytest.mark.asyncio
    async def test_existing_version_incremented(self):
        """Test version 4 becomes version 5"""
        store = _seeded(version=4)
        outcome = await apply_grade(store, KEY, FIELDS, sleep=SleepRecorder())
        assert outcome.version == 5

    @pytest.mark.asyncio
    async def test_missing_submission(self):
        """Test a missing record is NOT_FOUND"""
        outcome = await apply_grade(InMemoryStore(), KEY, FIELDS, sleep=SleepRecorder())
        assert not outcome.ok
        assert outcome.error is ErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_not_completed_is_not_gradable(self):
        """Test submissions still processing cannot be graded"""
        store = _seeded(status="processing")
        outcome = await apply_grade(store, KEY, FIELDS, sleep=SleepRecorder())
        assert outcome.error is ErrorKind.NOT_GRADABLE
        assert "processing" in outcome.message

    @pytest.mark.asyncio
    async def test_already_graded(self):
        """Test a second grade is rejected without writing"""
        store = _seeded(grade=70, version=1)
        outcome = await apply_grade(store, KEY, FIELDS, sleep=SleepRecorder())
        assert outcome.error is ErrorKind.ALREADY_GRADED
        assert store.get_by_key(config.SUBMISSIONS_TABLE, KEY)["grade"] == 70

    @pytest.mark.asyncio
    async def test_raise_for_error(self):
        """Test failed outcomes raise the matching error class"""
        store = _seeded(grade=70)
        outcome = await apply_grade(store, KEY, FIELDS, sleep=SleepRecorder())
        with pytest.raises(AlreadyGraded):
            outcome.raise_for_error()

    @pytest.mark.asyncio
    async def test_stale_version_token(self):
        """Test a caller-supplied version that no longer matches is a concurrent modification"""
        store = _seeded(version=3)
        sleep = SleepRecorder()
        outcome = await apply_grade(store, KEY, FIELDS, version_token=2, sleep=sleep)
        assert outcome.error is ErrorKind.CONCURRENT_MODIFICATION
        assert outcome.attempts == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_matching_version_token(self):
        """Test a current version token is accepted"""
        store = _seeded(version=3)
        outcome = await apply_grade(store, KEY, FIELDS, version_token=3, sleep=SleepRecorder())
        assert outcome.ok and outcome.version == 4

    @pytest.mark.asyncio
    async def test_lost_race_reports_graded_by_other(self):
        """Test losing the write race to another grader"""
        store = CompetingWriteStore()
        store.put(config.SUBMISSIONS_TABLE, make_submission("a-001", "stu-1"))
        sleep = SleepRecorder()

        outcome = await apply_grade(store, KEY, FIELDS, sleep=sleep)

        assert outcome.error is ErrorKind.ALREADY_GRADED_BY_OTHER
        assert outcome.attempts == 2
        assert sleep.delays == [1.0]
        stored = store.get_by_key(config.SUBMISSIONS_TABLE, KEY)
        assert stored["grade"] == 60
        assert stored["version"] == 1

    @pytest.mark.asyncio
    async def test_concurrent_graders_exactly_one_wins(self):
        """Test two graders reading the same ungraded record: one wins, the other sees it graded by another"""
        store = SimultaneousReadStore()
        store.put(config.SUBMISSIONS_TABLE, make_submission("a-001", "stu-1"))
        outcomes = await asyncio.gather(
            apply_grade(store, KEY, {**FIELDS, "grade": 90}, sleep=SleepRecorder()),
            apply_grade(store, KEY, {**FIELDS, "grade": 40}, sleep=SleepRecorder()),
        )
        winners = [o for o in outcomes if o.ok]
        losers = [o for o in outcomes if not o.ok]
        assert len(winners) == 1
        assert losers[0].error is ErrorKind.ALREADY_GRADED_BY_OTHER
        assert losers[0].attempts == 2
        stored = store.get_by_key(config.SUBMISSIONS_TABLE, KEY)
        assert stored["version"] == 1
        assert stored["grade"] == winners[0].record["grade"]

    @pytest.mark.asyncio
    async def test_conflicts_exhaust_attempts(self):
        """Test persistent version conflicts give up after three attempts"""
        store = MagicMock()
        store.get_by_key.return_value = make_submission("a-001", "stu-1", version=2)
        store.conditional_update.side_effect = ConditionFailed("conflict")
        sleep = SleepRecorder()

        outcome = await apply_grade(store, KEY, FIELDS, sleep=sleep)

        assert outcome.error is ErrorKind.CONCURRENT_MODIFICATION
        assert outcome.attempts == 3
        assert store.conditional_update.call_count == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_conditional_write_uses_captured_version(self):
        """Test the write is conditioned on the version read and requires grade absent"""
        store = MagicMock()
        store.get_by_key.return_value = make_submission("a-001", "stu-1", version=7)
        store.conditional_update.return_value = {"version": 8}

        outcome = await apply_grade(store, KEY, FIELDS, sleep=SleepRecorder())

        table, key, expected, fields, absent = store.conditional_update.call_args.args
        assert table == config.SUBMISSIONS_TABLE
        assert key == KEY
        assert expected == 7
        assert fields["grade"] == 85
        assert absent == ("grade",)
        assert outcome.version == 8

    @pytest.mark.asyncio
    async def test_throttling_exhausts_attempts(self):
        """Test persistent throttling reports the store unavailable"""
        store = MagicMock()
        store.get_by_key.side_effect = ThrottleExceeded("slow down")
        sleep = SleepRecorder()

        outcome = await apply_grade(store, KEY, FIELDS, sleep=sleep)

        assert outcome.error is ErrorKind.STORE_UNAVAILABLE
        assert outcome.attempts == 3
        assert sleep.delays == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_throttle_then_success(self):
        """Test a throttled attempt is retried"""
        store = MagicMock()
        store.get_by_key.return_value = make_submission("a-001", "stu-1")
        store.conditional_update.side_effect = [ThrottleExceeded("slow down"), {"version": 1}]
        sleep = SleepRecorder()

        outcome = await apply_grade(store, KEY, FIELDS, sleep=sleep)

        assert outcome.ok
        assert outcome.attempts == 2
        assert sleep.delays == [2.0]

    @pytest.mark.asyncio
    async def test_other_store_errors_not_retried(self):
        """Test non-retryable store failures stop immediately"""
        store = MagicMock()
        store.get_by_key.side_effect = StoreError("boom")
        sleep = SleepRecorder()

        outcome = await apply_grade(store, KEY, FIELDS, sleep=sleep)

        assert outcome.error is ErrorKind.STORE_ERROR
        assert store.get_by_key.call_count == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_max_attempts_override(self):
        """Test the attempt budget can be lowered"""
        store = MagicMock()
        store.get_by_key.return_value = make_submission("a-001", "stu-1")
        store.conditional_update.side_effect = ConditionFailed("conflict")
        outcome = await apply_grade(store, KEY, FIELDS, max_attempts=1, sleep=SleepRecorder())
        assert outcome.error is ErrorKind.CONCURRENT_MODIFICATION
        assert outcome.attempts == 1


class TestPrepareGrade:
    """Test prepare_grade"""

    def test_basic_fields(self, instructor):
        """Test the attributes written for a plain grade"""
        fields = prepare_grade(_request(), instructor, now=NOW)
        assert fields["grade"] == 85
        assert fields["gradedBy"] == "inst-1"
        assert fields["gradedAt"] == NOW.isoformat()
        assert fields["allowResubmission"] is False
        assert "rubricScores" not in fields

    def test_rubric_totals_recorded(self, instructor):
        """Test rubric scores within tolerance are accepted and totalled"""
        request = _request(rubricScores=[
            {"criterion": "correctness", "score": 50, "maxScore": 60},
            {"criterion": "style", "score": 32, "maxScore": 40},
        ])
        fields = prepare_grade(request, instructor, now=NOW)
        assert fields["totalRubricScore"] == 82
        assert fields["maxRubricScore"] == 100
        assert fields["rubricScores"][0]["maxScore"] == 60

    def test_rubric_mismatch_rejected(self, instructor):
        """Test rubric totals more than five points from the grade are rejected"""
        request = _request(rubricScores=[{"criterion": "all", "score": 70, "maxScore": 100}])
        with pytest.raises(ValidationError) as exc_info:
            prepare_grade(request, instructor, now=NOW)
        assert exc_info.value.code == "RUBRIC_MISMATCH"

    def test_past_deadline_rejected(self, instructor):
        """Test a resubmission deadline in the past is rejected"""
        request = _request(allowResubmission=True, resubmissionDeadline=(NOW - timedelta(days=1)).isoformat())
        with pytest.raises(ValidationError) as exc_info:
            prepare_grade(request, instructor, now=NOW)
        assert exc_info.value.code == "INVALID_DEADLINE"

    def test_future_deadline_kept(self, instructor):
        """Test a future deadline is stored"""
        deadline = NOW + timedelta(days=7)
        request = _request(allowResubmission=True, resubmissionDeadline=deadline.isoformat())
        fields = prepare_grade(request, instructor, now=NOW)
        assert fields["resubmissionDeadline"] == deadline.isoformat()

    def test_common_notes_fallback(self, instructor):
        """Test bulk notes apply when the item has none"""
        assert prepare_grade(_request(), instructor, NOW, common_notes="Batch 1")["gradingNotes"] == "Batch 1"
        own = prepare_grade(_request(gradingNotes="Mine"), instructor, NOW, common_notes="Batch 1")
        assert own["gradingNotes"] == "Mine"

    def test_rubric_totals_helper(self):
        """Test rubric_totals sums scores and maxima"""
        scores = [RubricScore(criterion="a", score=10, max_score=20), RubricScore(criterion="b", score=5, max_score=10)]
        assert rubric_totals(scores) == (15, 30)
