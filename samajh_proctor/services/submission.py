"""
services/submission.py

Submission pipeline: builds the payload once and hands it to the result sink.

Order of operations:
  1. guard flag (re-entry and post-success submits are rejected)
  2. camera released (failures logged, never fatal)
  3. payload built from the sparse answers and counters
  4. result sink called
  5. success -> exit fullscreen, keep result_id
     failure -> keep error, clear the guard so the user can retry
"""

import logging
from typing import Optional, Protocol

from samajh_proctor.models.result_model import (
    CreateResultResponse, SubmissionPayload, SubmitReason,
)
from samajh_proctor.models.session_state import TestSession, ViolationCounters
from samajh_proctor.services.devices import CameraStream, FullscreenController

logger = logging.getLogger(__name__)


class ResultSink(Protocol):
    async def create_result(self, payload: SubmissionPayload) -> CreateResultResponse: ...


def build_payload(
    session: TestSession,
    counters: ViolationCounters,
    reason: SubmitReason = SubmitReason.MANUAL,
) -> SubmissionPayload:
    """Paused time never counts: the timer does not tick while paused."""
    answers = {
        q.id: a
        for q, a in zip(session.questions, session.answers)
        if a is not None
    }
    return SubmissionPayload(
        test_id=session.test_id,
        answers_by_question_id=answers,
        time_taken_seconds=session.duration_seconds - session.time_left_seconds,
        started_at=session.started_at,
        tab_switch_count=counters.tab_switch_count,
        no_face_count=counters.no_face_count,
        multiple_faces_count=counters.multiple_faces_count,
        client_error_count=counters.client_error_count,
        reason=reason,
    )


class SubmissionPipeline:

    def __init__(
        self,
        sink: ResultSink,
        camera: Optional[CameraStream] = None,
        display: Optional[FullscreenController] = None,
    ):
        self._sink = sink
        self._camera = camera
        self._display = display
        self.is_submitting = False
        self.result_id: Optional[str] = None
        self.error: Optional[str] = None
        self.attempts = 0

    @property
    def completed(self) -> bool:
        return self.result_id is not None

    async def submit(
        self,
        session: TestSession,
        counters: ViolationCounters,
        reason: SubmitReason = SubmitReason.MANUAL,
    ) -> Optional[str]:
        """
        Returns:
            The result id on success; None if rejected by the guard or failed
            (see self.error).
        """
        if self.is_submitting or self.completed:
            logger.info(f"Submit ({reason.value}) ignored: already in progress or done")
            return None
        self.is_submitting = True
        self.error = None
        self.attempts += 1

        self._release_camera()

        try:
            payload = build_payload(session, counters, reason)
            logger.info(
                f"Submitting test {payload.test_id} ({reason.value}): "
                f"{len(payload.answers_by_question_id)} answered, {payload.time_taken_seconds}s"
            )
            response = await self._sink.create_result(payload)
        except Exception as e:
            return self._fail(f"Failed to submit test: {e}")

        if response.error:
            return self._fail(response.error)

        self.result_id = response.result_id
        self._exit_fullscreen()
        logger.info(f"Test {session.test_id} submitted: result {self.result_id}")
        return self.result_id

    def _fail(self, message: str) -> None:
        logger.error(f"Submission failed: {message}")
        self.error = message
        self.is_submitting = False
        return None

    def _release_camera(self) -> None:
        if self._camera is None:
            return
        try:
            self._camera.stop()
        except Exception as e:
            logger.warning(f"Stopping camera tracks failed: {e}")
        try:
            self._camera.detach_preview()
        except Exception as e:
            logger.warning(f"Detaching camera preview failed: {e}")

    def _exit_fullscreen(self) -> None:
        if self._display is None:
            return
        try:
            self._display.exit()
        except Exception as e:
            logger.warning(f"Exiting fullscreen failed: {e}")
