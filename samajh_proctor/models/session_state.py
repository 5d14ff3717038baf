"""
models/session_state.py

State of one proctored test session: the answer sheet, the pause state and
the violation counters. Pydantic models, no I/O.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

import config
from samajh_proctor.models.question_model import Assessment, Question


class PauseCause(str, Enum):
    NONE = "none"
    NO_FACE = "no_face"
    MULTIPLE_FACES = "multiple_faces"
    TAB_SWITCH = "tab_switch"
    CLIENT_ERROR = "client_error"


class FaceStatus(str, Enum):
    OK = "ok"
    NO_FACE = "no_face"
    MULTIPLE_FACES = "multiple_faces"


class TestSession(BaseModel):
    """
    Answer sheet and countdown of a running test.

    Attributes:
        test_id:                Assessment being taken.
        duration_minutes:       Fixed at load.
        time_left_seconds:      Only decremented by the session timer.
        questions:              Fixed at load, never mutated.
        answers:                Selected option per question (None = unanswered),
                                index-aligned with questions.
        marked_for_review:      Review flag per question, same indexing.
        current_question_index: Always inside [0, len(questions)).
        started_at:             UTC time the session was created.
    """
    __test__ = False

    test_id: str
    duration_minutes: int = Field(..., gt=0)
    time_left_seconds: int = Field(..., ge=0)
    questions: List[Question] = Field(..., min_length=1)
    answers: List[Optional[int]]
    marked_for_review: List[bool]
    current_question_index: int = Field(default=0, ge=0)
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode='after')
    def validate_alignment(self) -> 'TestSession':
        n = len(self.questions)
        if len(self.answers) != n or len(self.marked_for_review) != n:
            raise ValueError("answers and marked_for_review must be index-aligned with questions")
        if self.current_question_index >= n:
            raise ValueError("current_question_index out of range")
        return self

    @classmethod
    def start(cls, assessment: Assessment) -> 'TestSession':
        n = len(assessment.questions)
        return cls(
            test_id=assessment.id,
            duration_minutes=assessment.duration_minutes,
            time_left_seconds=assessment.duration_minutes * 60,
            questions=list(assessment.questions),
            answers=[None] * n,
            marked_for_review=[False] * n,
        )

    @property
    def duration_seconds(self) -> int:
        return self.duration_minutes * 60

    @property
    def answered_count(self) -> int:
        return sum(1 for a in self.answers if a is not None)


class PauseState(BaseModel):
    """Only one cause can be active at a time."""
    paused: bool = False
    cause: PauseCause = PauseCause.NONE
    message: Optional[str] = None
    pause_started_at: Optional[float] = None   # monotonic seconds
    total_paused_ms: int = 0


class ViolationCounters(BaseModel):
    """Monotonically increasing for the life of a session."""
    no_face_count: int = 0
    multiple_faces_count: int = 0
    tab_switch_count: int = 0
    client_error_count: int = 0


class ViolationLimits(BaseModel):
    """Reaching a limit forces auto-submission. None means unbounded."""
    no_face: Optional[int] = Field(default=config.MAX_NO_FACE_VIOLATIONS, ge=1)
    multiple_faces: Optional[int] = Field(default=config.MAX_MULTIPLE_FACES_VIOLATIONS, ge=1)
    tab_switch: Optional[int] = Field(default=config.MAX_TAB_SWITCHES, ge=1)
    client_error: Optional[int] = Field(default=config.MAX_CLIENT_ERRORS, ge=1)
