"""
services/proctor_session.py

One proctored test session: answer sheet, countdown, violation monitors and
submission, serialized through a single ordered event queue.

Event sources (browser requests, face monitor, timer expiry) post events;
one consumer task dispatches them in order. The arbiter's pause hook stops
the timer synchronously, so no tick can land inside a pause.

Phases:
  awaiting_permissions -> running -> submitted
                                  -> closed   (navigated away)
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from config import TICK_INTERVAL_SECONDS
from samajh_proctor.models.question_model import Assessment, public_question
from samajh_proctor.models.result_model import SessionSnapshot, SubmitReason
from samajh_proctor.models.session_state import (
    FaceStatus, PauseCause, TestSession, ViolationLimits,
)
from samajh_proctor.services.arbiter import AckOutcome, PauseArbiter, controls_frozen
from samajh_proctor.services.devices import CameraStream, FullscreenController
from samajh_proctor.services.exception_trap import ClientExceptionTrap
from samajh_proctor.services.face_monitor import FacePresenceMonitor
from samajh_proctor.services.submission import ResultSink, SubmissionPipeline
from samajh_proctor.services.tab_monitor import TabVisibilityMonitor
from samajh_proctor.services.timer import SessionTimer

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    AWAITING_PERMISSIONS = "awaiting_permissions"
    RUNNING = "running"
    SUBMITTED = "submitted"
    CLOSED = "closed"


# ── Events ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class FaceViolationReported:
    status: FaceStatus


@dataclass(frozen=True)
class ClientErrorReported:
    message: str


@dataclass(frozen=True)
class VisibilityChanged:
    hidden: bool


@dataclass(frozen=True)
class Acknowledge:
    pass


@dataclass(frozen=True)
class DismissWarning:
    pass


@dataclass(frozen=True)
class DismissNotice:
    pass


@dataclass(frozen=True)
class SelectAnswer:
    question_index: int
    option_index: int


@dataclass(frozen=True)
class ToggleReview:
    question_index: int


@dataclass(frozen=True)
class Navigate:
    action: str                   # next | previous | goto
    index: Optional[int] = None


@dataclass(frozen=True)
class SubmitRequested:
    reason: SubmitReason = SubmitReason.MANUAL


@dataclass(frozen=True)
class CameraFailed:
    reason: str


@dataclass(frozen=True)
class CameraRestarted:
    pass


@dataclass(frozen=True)
class FullscreenChanged:
    active: bool
    error: Optional[str] = None


_FACE_CAUSES = {
    FaceStatus.NO_FACE: PauseCause.NO_FACE,
    FaceStatus.MULTIPLE_FACES: PauseCause.MULTIPLE_FACES,
}


class ProctoredSession:
    """
    Args:
        assessment:    Loaded test (questions + duration).
        sink:          External "create result" collaborator.
        estimator:     Face detector; None disables face monitoring.
        limits:        Violation maximums.
        clock:         Monotonic clock used for pause accounting.
        tick_interval: Seconds per countdown tick.
        camera:        Shared frame source (created if omitted).
    """

    def __init__(
        self,
        assessment: Assessment,
        sink: ResultSink,
        estimator=None,
        limits: Optional[ViolationLimits] = None,
        clock: Callable[[], float] = time.monotonic,
        tick_interval: float = TICK_INTERVAL_SECONDS,
        camera: Optional[CameraStream] = None,
    ):
        self.assessment = assessment
        self.session = TestSession.start(assessment)
        self.camera = camera or CameraStream()
        self.display = FullscreenController()
        self.arbiter = PauseArbiter(
            limits, clock, on_pause=self._on_pause, on_resume=self._on_resume,
        )
        self.timer = SessionTimer(
            self.session, self._on_time_expired, tick_interval, can_tick=self._can_tick,
        )
        self.face_monitor = FacePresenceMonitor(self.camera, estimator, self._on_face_violation)
        self.tab_monitor = TabVisibilityMonitor(self.arbiter, self._on_tab_limit)
        self.trap = ClientExceptionTrap(self._on_client_exception)
        self.pipeline = SubmissionPipeline(sink, self.camera, self.display)

        self.phase = Phase.AWAITING_PERMISSIONS
        self.permissions_granted = False
        self.guidelines_acknowledged = False
        self.notice: Optional[str] = None

        self._queue: Optional[asyncio.Queue] = None
        self._consumer: Optional[asyncio.Task] = None
        self._stop_consumer = False
        self._terminal_reason: Optional[SubmitReason] = None
        # auto-submit that failed and is still owed; retries keep its reason
        self.pending_submit_reason: Optional[SubmitReason] = None

        self._handlers = {
            FaceViolationReported: self._handle_face_violation,
            ClientErrorReported: self._handle_client_error,
            VisibilityChanged: self._handle_visibility,
            Acknowledge: self._handle_acknowledge,
            DismissWarning: self._handle_dismiss_warning,
            DismissNotice: self._handle_dismiss_notice,
            SelectAnswer: self._handle_select_answer,
            ToggleReview: self._handle_toggle_review,
            Navigate: self._handle_navigate,
            SubmitRequested: self._handle_submit,
            CameraFailed: self._handle_camera_failed,
            CameraRestarted: self._handle_camera_restarted,
            FullscreenChanged: self._handle_fullscreen,
        }

    # ── Lifecycle ───────────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self.phase is Phase.RUNNING

    @property
    def frozen(self) -> bool:
        return controls_frozen(self.arbiter.state, self.pipeline.is_submitting)

    def grant_permissions(self, camera_granted: bool) -> None:
        self.permissions_granted = camera_granted
        if not camera_granted:
            self.notice = "Camera access is required to take this test."

    def acknowledge_guidelines(self) -> None:
        self.guidelines_acknowledged = True

    async def start(self) -> None:
        if self.phase is not Phase.AWAITING_PERMISSIONS:
            raise RuntimeError(f"session already {self.phase.value}")
        if not self.permissions_granted:
            raise PermissionError("camera access has not been granted")
        if not self.guidelines_acknowledged:
            raise PermissionError("test guidelines have not been acknowledged")

        self._queue = asyncio.Queue()
        self.phase = Phase.RUNNING
        self.notice = None
        self.trap.install()
        self._consumer = asyncio.get_running_loop().create_task(self._consume())
        self.trap.watch(self._consumer)
        self.timer.arm()
        self.tab_monitor.activate()
        self.trap.watch(self.face_monitor.activate())
        logger.info(
            f"Session started: test {self.session.test_id}, "
            f"{len(self.session.questions)} questions, {self.session.duration_minutes} min"
        )

    async def close(self) -> None:
        """Navigation away: tear everything down without submitting."""
        if self.phase in (Phase.SUBMITTED, Phase.CLOSED):
            return
        await self._teardown(Phase.CLOSED)
        self.camera.stop()
        consumer = self._consumer
        if consumer is not None and consumer is not asyncio.current_task():
            consumer.cancel()
            try:
                await consumer
            except asyncio.CancelledError:
                pass
        self._flush_queue()
        logger.info(f"Session closed: test {self.session.test_id}")

    async def _teardown(self, phase: Phase) -> None:
        self.phase = phase
        self.timer.disarm()
        self.arbiter.close()
        self.tab_monitor.deactivate()
        self.trap.uninstall()
        await self.face_monitor.deactivate()
        self._stop_consumer = True

    # ── Event queue ─────────────────────────────────────────────────────────

    def post(self, event) -> asyncio.Future:
        """Queue an event. The future resolves with the handler's result."""
        fut = asyncio.get_running_loop().create_future()
        if self._queue is None or not self.running or self._stop_consumer:
            fut.set_result(False)
            return fut
        self._queue.put_nowait((event, fut))
        return fut

    async def send(self, event):
        return await self.post(event)

    async def drain(self) -> None:
        if self._queue is not None and self._consumer is not None and not self._consumer.done():
            await self._queue.join()

    async def _consume(self) -> None:
        while not self._stop_consumer:
            event, fut = await self._queue.get()
            try:
                result = await self.dispatch(event)
            except ValueError as e:
                if not fut.done():
                    fut.set_exception(e)
            except Exception as e:
                logger.exception(f"Dispatch of {type(event).__name__} failed")
                self.trap.capture(e)
                if not fut.done():
                    fut.set_result(False)
            else:
                if not fut.done():
                    fut.set_result(result)
            finally:
                self._queue.task_done()
        self._flush_queue()

    def _flush_queue(self) -> None:
        if self._queue is None:
            return
        while not self._queue.empty():
            _, fut = self._queue.get_nowait()
            if not fut.done():
                fut.set_result(False)
            self._queue.task_done()

    async def dispatch(self, event):
        """
        Apply one event.

        Bad input raises ValueError. Any other handler failure is trapped and
        turned into a client-error pause.
        """
        if not self.running:
            logger.debug(f"Ignored {type(event).__name__}: session {self.phase.value}")
            return False
        handler = self._handlers.get(type(event))
        if handler is None:
            raise ValueError(f"unknown event {type(event).__name__}")

        try:
            result = handler(event)
            if inspect.isawaitable(result):
                result = await result
        except ValueError:
            raise
        except Exception as e:
            self.trap.capture(e)
            result = False

        if self._terminal_reason is not None and self.running:
            reason, self._terminal_reason = self._terminal_reason, None
            await self._submit(reason)
        return result

    # ── Callbacks from collaborators ────────────────────────────────────────

    def _on_pause(self, cause: PauseCause) -> None:
        self.timer.disarm()

    def _on_resume(self) -> None:
        if self.running:
            self.timer.arm()

    def _can_tick(self) -> bool:
        return self.running and not self.arbiter.paused and not self.pipeline.completed

    def _on_time_expired(self) -> None:
        self.post(SubmitRequested(SubmitReason.TIME_EXPIRED))

    def _on_face_violation(self, status: FaceStatus) -> None:
        self.post(FaceViolationReported(status))

    def _on_tab_limit(self) -> None:
        self._terminal_reason = SubmitReason.TAB_SWITCH_LIMIT

    def _on_client_exception(self, message: str) -> None:
        self.arbiter.report(PauseCause.CLIENT_ERROR, message)

    # ── Handlers ────────────────────────────────────────────────────────────

    def _handle_face_violation(self, event: FaceViolationReported) -> bool:
        cause = _FACE_CAUSES.get(event.status)
        if cause is None:
            raise ValueError(f"{event.status} is not a violation")
        return self.arbiter.report(cause)

    def _handle_client_error(self, event: ClientErrorReported) -> bool:
        return self.trap.capture(event.message)

    def _handle_visibility(self, event: VisibilityChanged) -> bool:
        self.tab_monitor.handle(event.hidden)
        return True

    def _handle_acknowledge(self, event: Acknowledge) -> AckOutcome:
        outcome = self.arbiter.acknowledge()
        if outcome is AckOutcome.LIMIT_REACHED:
            self._terminal_reason = SubmitReason.VIOLATION_LIMIT
        return outcome

    def _handle_dismiss_warning(self, event: DismissWarning) -> bool:
        self.tab_monitor.dismiss_warning()
        return True

    def _handle_dismiss_notice(self, event: DismissNotice) -> bool:
        self.notice = None
        return True

    def _check_question_index(self, index: int) -> None:
        if not 0 <= index < len(self.session.questions):
            raise ValueError(f"question index {index} out of range")

    def _handle_select_answer(self, event: SelectAnswer) -> bool:
        self._check_question_index(event.question_index)
        options = self.session.questions[event.question_index].options
        if not 0 <= event.option_index < len(options):
            raise ValueError(f"option index {event.option_index} out of range")
        if self.frozen:
            return False
        self.session.answers[event.question_index] = event.option_index
        return True

    def _handle_toggle_review(self, event: ToggleReview) -> bool:
        self._check_question_index(event.question_index)
        if self.frozen:
            return False
        flags = self.session.marked_for_review
        flags[event.question_index] = not flags[event.question_index]
        return True

    def _handle_navigate(self, event: Navigate) -> bool:
        current = self.session.current_question_index
        if event.action == "next":
            target = current + 1
        elif event.action == "previous":
            target = current - 1
        elif event.action == "goto":
            if event.index is None:
                raise ValueError("goto requires an index")
            target = event.index
        else:
            raise ValueError(f"unknown navigation action {event.action!r}")
        if self.frozen:
            return False
        last = len(self.session.questions) - 1
        self.session.current_question_index = max(0, min(target, last))
        return True

    async def _handle_submit(self, event: SubmitRequested) -> Optional[str]:
        reason = event.reason
        if reason is SubmitReason.MANUAL:
            if self.pending_submit_reason is not None:
                reason = self.pending_submit_reason
                logger.info(f"Retrying failed {reason.value} submission")
            elif self.arbiter.paused:
                logger.info("Manual submit ignored while paused")
                return None
        return await self._submit(reason)

    def _handle_camera_failed(self, event: CameraFailed) -> bool:
        self.camera.fail(event.reason)
        self.notice = (
            f"Camera unavailable: {event.reason}. "
            "Face monitoring is off until the camera is restarted."
        )
        return True

    def _handle_camera_restarted(self, event: CameraRestarted) -> bool:
        if not self.camera.restart():
            return False
        self.notice = None
        if not self.face_monitor.active:
            self.trap.watch(self.face_monitor.activate())
        return True

    def _handle_fullscreen(self, event: FullscreenChanged) -> bool:
        self.display.update(event.active, event.error)
        if event.error:
            self.notice = f"Fullscreen could not be entered: {event.error}"
        return True

    async def _submit(self, reason: SubmitReason) -> Optional[str]:
        result_id = await self.pipeline.submit(self.session, self.arbiter.counters, reason)
        if result_id is not None:
            self.pending_submit_reason = None
            await self._teardown(Phase.SUBMITTED)
        elif reason is not SubmitReason.MANUAL and self.pipeline.error:
            self.pending_submit_reason = reason
        return result_id

    # ── Snapshot ────────────────────────────────────────────────────────────

    def snapshot(self) -> SessionSnapshot:
        s = self.session
        pause = self.arbiter.state
        return SessionSnapshot(
            test_id=s.test_id,
            phase=self.phase.value,
            time_left_seconds=s.time_left_seconds,
            duration_seconds=s.duration_seconds,
            total_questions=len(s.questions),
            current_question_index=s.current_question_index,
            current_question=public_question(s.questions[s.current_question_index]),
            answers=list(s.answers),
            marked_for_review=list(s.marked_for_review),
            answered_count=s.answered_count,
            paused=pause.paused,
            pause_cause=pause.cause,
            pause_message=pause.message,
            total_paused_ms=pause.total_paused_ms,
            controls_frozen=self.frozen,
            counters=self.arbiter.counters.model_copy(),
            limits=self.arbiter.limits.model_dump(),
            content_obscured=self.tab_monitor.content_obscured,
            tab_warning_visible=self.tab_monitor.warning_visible,
            confirm_before_unload=self.tab_monitor.confirm_before_unload,
            notice=self.notice,
            camera_active=self.camera.active and self.face_monitor.active,
            face_status=self.face_monitor.status,
            too_dark=self.face_monitor.too_dark,
            fullscreen_active=self.display.active,
            fullscreen_exit_requested=self.display.exit_requested,
            is_submitting=self.pipeline.is_submitting and not self.pipeline.completed,
            submit_error=self.pipeline.error,
            pending_submit_reason=self.pending_submit_reason,
            result_id=self.pipeline.result_id,
        )
