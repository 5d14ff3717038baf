"""
models/result_model.py

Submission payload, result-sink reply, stored result and the client-facing
session snapshot.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from samajh_proctor.models.session_state import FaceStatus, PauseCause, ViolationCounters


class SubmitReason(str, Enum):
    MANUAL = "manual"
    TIME_EXPIRED = "time_expired"
    VIOLATION_LIMIT = "violation_limit"
    TAB_SWITCH_LIMIT = "tab_switch_limit"


class SubmissionPayload(BaseModel):
    """Built once per successful submission and handed to the result sink."""
    test_id: str
    answers_by_question_id: Dict[str, int] = Field(
        default_factory=dict,
        description="Sparse: only answered questions are present"
    )
    time_taken_seconds: int = Field(..., ge=0)
    started_at: datetime
    tab_switch_count: int = 0
    no_face_count: int = 0
    multiple_faces_count: int = 0
    client_error_count: int = 0
    reason: SubmitReason = SubmitReason.MANUAL


class CreateResultResponse(BaseModel):
    """Either a new result id or an error string."""
    result_id: Optional[str] = None
    error: Optional[str] = None

    @model_validator(mode='after')
    def validate_exclusive(self) -> 'CreateResultResponse':
        if bool(self.result_id) == bool(self.error):
            raise ValueError("exactly one of result_id and error must be set")
        return self


class ResultRecord(SubmissionPayload):
    id: str
    score: int = Field(..., ge=0, le=100)
    correct_answers: int = Field(..., ge=0)
    total_questions: int = Field(..., ge=1)
    completed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SessionSnapshot(BaseModel):
    """What the browser renders. Recomputed from the session on every request."""
    test_id: str
    phase: str
    time_left_seconds: int
    duration_seconds: int
    total_questions: int
    current_question_index: int
    current_question: Optional[dict] = None
    answers: List[Optional[int]]
    marked_for_review: List[bool]
    answered_count: int

    paused: bool
    pause_cause: PauseCause
    pause_message: Optional[str] = None
    total_paused_ms: int
    controls_frozen: bool
    counters: ViolationCounters
    limits: Dict[str, Optional[int]]

    content_obscured: bool
    tab_warning_visible: bool
    confirm_before_unload: bool
    notice: Optional[str] = None

    camera_active: bool
    face_status: FaceStatus
    too_dark: bool
    fullscreen_active: bool
    fullscreen_exit_requested: bool

    is_submitting: bool
    submit_error: Optional[str] = None
    pending_submit_reason: Optional[SubmitReason] = None
    result_id: Optional[str] = None
