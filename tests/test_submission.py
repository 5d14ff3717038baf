"""
Tests for payload building and the submission pipeline.
"""

import asyncio

import pytest

from conftest import RecordingSink
from samajh_proctor.models.result_model import SubmitReason
from samajh_proctor.models.session_state import TestSession, ViolationCounters
from samajh_proctor.services.devices import CameraStream, FullscreenController
from samajh_proctor.services.submission import SubmissionPipeline, build_payload


@pytest.fixture
def test_session(assessment):
    s = TestSession.start(assessment)
    s.answers = [1, None, 2]
    s.time_left_seconds = 75
    return s


@pytest.fixture
def counters():
    return ViolationCounters(tab_switch_count=2, no_face_count=1)


@pytest.fixture
def camera():
    return CameraStream()


@pytest.fixture
def display():
    return FullscreenController()


@pytest.fixture
def pipeline(sink, camera, display):
    return SubmissionPipeline(sink, camera, display)


class TestBuildPayload:

    def test_sparse_answers_keyed_by_question_id(self, test_session, counters):
        payload = build_payload(test_session, counters)
        assert payload.answers_by_question_id == {"q1": 1, "q3": 2}

    def test_time_and_counters(self, test_session, counters):
        payload = build_payload(test_session, counters, SubmitReason.TIME_EXPIRED)
        assert payload.time_taken_seconds == 45
        assert payload.tab_switch_count == 2
        assert payload.no_face_count == 1
        assert payload.multiple_faces_count == 0
        assert payload.reason is SubmitReason.TIME_EXPIRED
        assert payload.started_at == test_session.started_at


class TestSubmit:

    async def test_success(self, pipeline, sink, test_session, counters, camera, display):
        result_id = await pipeline.submit(test_session, counters)

        assert result_id == "result-1"
        assert pipeline.completed
        assert pipeline.error is None
        assert camera.stopped and not camera.preview_attached
        assert display.exit_requested
        assert len(sink.payloads) == 1

    async def test_concurrent_submits_write_once(self, pipeline, sink, test_session, counters):
        sink.delay = 0.01
        results = await asyncio.gather(
            pipeline.submit(test_session, counters, SubmitReason.MANUAL),
            pipeline.submit(test_session, counters, SubmitReason.TIME_EXPIRED),
            pipeline.submit(test_session, counters, SubmitReason.VIOLATION_LIMIT),
        )
        assert results == ["result-1", None, None]
        assert len(sink.payloads) == 1
        assert sink.payloads[0].reason is SubmitReason.MANUAL

    async def test_submit_after_success_is_ignored(self, pipeline, sink, test_session, counters):
        await pipeline.submit(test_session, counters)
        assert await pipeline.submit(test_session, counters) is None
        assert len(sink.payloads) == 1

    async def test_sink_exception_allows_retry(self, pipeline, sink, test_session, counters, display):
        sink.fail_with = ConnectionError("backend unreachable")

        assert await pipeline.submit(test_session, counters) is None
        assert pipeline.error == "Failed to submit test: backend unreachable"
        assert not pipeline.is_submitting
        assert not display.exit_requested

        sink.fail_with = None
        assert await pipeline.submit(test_session, counters) == "result-2"
        assert pipeline.error is None
        assert pipeline.attempts == 2

    async def test_sink_error_reply(self, pipeline, sink, test_session, counters):
        sink.error_reply = "Failed to fetch test"
        assert await pipeline.submit(test_session, counters) is None
        assert pipeline.error == "Failed to fetch test"
        assert not pipeline.completed

    async def test_camera_stays_stopped_after_failure(self, pipeline, sink, test_session, counters, camera):
        sink.fail_with = RuntimeError("down")
        await pipeline.submit(test_session, counters)
        assert camera.stopped
        assert camera.restart() is False

    async def test_camera_release_errors_are_not_fatal(self, test_session, counters):
        class BrokenCamera:
            def stop(self):
                raise OSError("device busy")

            def detach_preview(self):
                raise OSError("no preview")

        pipeline = SubmissionPipeline(RecordingSink(), BrokenCamera())
        assert await pipeline.submit(test_session, counters) == "result-1"
