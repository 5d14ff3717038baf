"""
services/result_service.py

Test loader, scoring and the result sink.
In-memory stores; scoring functions are pure.
"""

import logging
import uuid
from typing import Dict, List

from config import MIN_PASSING_SCORE
from samajh_proctor.models.question_model import Assessment, Question
from samajh_proctor.models.result_model import (
    CreateResultResponse, ResultRecord, SubmissionPayload,
)

logger = logging.getLogger(__name__)


class AssessmentNotFound(LookupError):
    pass


class ResultNotFound(LookupError):
    pass


# ── Scoring ─────────────────────────────────────────────────────────────────

def count_correct(questions: List[Question], answers: Dict[str, int]) -> int:
    return sum(1 for q in questions if answers.get(q.id) == q.correct_answer)


def calculate_score(questions: List[Question], answers: Dict[str, int]) -> int:
    """
    Percentage of correct answers, rounded to an integer.

    Unanswered questions count as wrong. An empty question list scores 0.
    """
    if not questions:
        return 0
    return round(count_correct(questions, answers) / len(questions) * 100)


def get_incorrect_questions(questions: List[Question], answers: Dict[str, int]) -> List[Question]:
    """Wrong or unanswered questions, in original order."""
    return [q for q in questions if answers.get(q.id) != q.correct_answer]


def is_passed(score: float, pass_score: float = MIN_PASSING_SCORE) -> bool:
    return score >= pass_score


# ── Test loader ─────────────────────────────────────────────────────────────

class AssessmentRepository:

    def __init__(self, assessments: List[Assessment] = ()):
        self._items: Dict[str, Assessment] = {}
        for a in assessments:
            self.add(a)

    def add(self, assessment: Assessment) -> Assessment:
        self._items[assessment.id] = assessment
        return assessment

    def get(self, test_id: str) -> Assessment:
        try:
            return self._items[test_id]
        except KeyError:
            raise AssessmentNotFound(test_id) from None

    def list(self) -> List[Assessment]:
        return list(self._items.values())


# ── Result sink ─────────────────────────────────────────────────────────────

class InMemoryResultSink:
    """Scores a submission against the repository and stores the outcome."""

    def __init__(self, repository: AssessmentRepository):
        self._repository = repository
        self._results: Dict[str, ResultRecord] = {}

    async def create_result(self, payload: SubmissionPayload) -> CreateResultResponse:
        try:
            assessment = self._repository.get(payload.test_id)
        except AssessmentNotFound:
            logger.error(f"create_result: unknown test {payload.test_id}")
            return CreateResultResponse(error="Failed to fetch test")

        questions = assessment.questions
        record = ResultRecord(
            **payload.model_dump(),
            id=uuid.uuid4().hex,
            score=calculate_score(questions, payload.answers_by_question_id),
            correct_answers=count_correct(questions, payload.answers_by_question_id),
            total_questions=len(questions),
        )
        self._results[record.id] = record
        logger.info(f"Result {record.id} stored: score {record.score}")
        return CreateResultResponse(result_id=record.id)

    def get(self, result_id: str) -> ResultRecord:
        try:
            return self._results[result_id]
        except KeyError:
            raise ResultNotFound(result_id) from None

    def list(self) -> List[ResultRecord]:
        return list(self._results.values())
