"""
api/routes.py — FastAPI endpoints
"""

import asyncio
import logging
import os
import uuid
from typing import List, Optional

from fastapi import APIRouter, File, HTTPException, Request, UploadFile
from pydantic import BaseModel, Field

import config
import api.session as session
from samajh_proctor.models.question_model import Assessment, public_question
from samajh_proctor.models.result_model import SubmitReason
from samajh_proctor.services.devices import decode_frame
from samajh_proctor.services.proctor_session import (
    Acknowledge, CameraFailed, CameraRestarted, ClientErrorReported, DismissNotice,
    DismissWarning, FullscreenChanged, Navigate, Phase, ProctoredSession, SelectAnswer,
    SubmitRequested, ToggleReview, VisibilityChanged,
)
from samajh_proctor.services.question_generator import generate_questions
from samajh_proctor.services.result_service import (
    AssessmentNotFound, ResultNotFound, get_incorrect_questions, is_passed,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# ── Pydantic request bodies ──────────────────────────────────────────────────

class ApiKeyBody(BaseModel):
    api_key: str

class GenerateTestBody(BaseModel):
    topic: str
    difficulties: List[str] = Field(default_factory=lambda: ["intermediate"])
    count: int = config.DEFAULT_QUESTIONS_PER_TEST
    title: Optional[str] = None
    duration_minutes: int = Field(default=config.DEFAULT_TEST_DURATION, gt=0)

class StartTestBody(BaseModel):
    camera_granted: bool = False
    guidelines_acknowledged: bool = False

class AnswerBody(BaseModel):
    question_index: int
    option_index: int

class ReviewBody(BaseModel):
    question_index: int

class NavigateBody(BaseModel):
    action: str = "goto"
    index: Optional[int] = None

class VisibilityBody(BaseModel):
    hidden: bool

class ClientErrorBody(BaseModel):
    message: str = ""

class CameraErrorBody(BaseModel):
    reason: str = "camera unavailable"
    restarted: bool = False

class FullscreenBody(BaseModel):
    active: bool
    error: Optional[str] = None


# ── Helpers ──────────────────────────────────────────────────────────────────

def _sid(request: Request) -> str:
    return request.state.session_id


def _assessment_summary(a: Assessment) -> dict:
    return {
        "id": a.id,
        "title": a.title,
        "topic": a.topic,
        "description": a.description,
        "duration_minutes": a.duration_minutes,
        "status": a.status,
        "question_count": len(a.questions),
    }


def _proctor(request: Request) -> ProctoredSession:
    proctor: Optional[ProctoredSession] = session.get(_sid(request), "proctor")
    if proctor is None:
        raise HTTPException(status_code=404, detail="No test session in progress.")
    return proctor


async def _send(proctor: ProctoredSession, event):
    if not proctor.running:
        raise HTTPException(status_code=409, detail=f"Test session is {proctor.phase.value}.")
    try:
        return await proctor.send(event)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


def _state(proctor: ProctoredSession, **extra) -> dict:
    data = proctor.snapshot().model_dump(mode="json")
    data.update(extra)
    return data


def _make_estimator(request: Request):
    factory = request.app.state.estimator_factory
    if factory is None:
        return None
    try:
        return factory()
    except RuntimeError as e:
        logger.error(f"Face detector unavailable: {e}")
        return None


# ── Authoring ────────────────────────────────────────────────────────────────

@router.post("/api/set-api-key")
async def set_api_key(request: Request, body: ApiKeyBody):
    key = body.api_key.strip()
    if not key:
        raise HTTPException(status_code=400, detail="API key is empty.")
    if not key.startswith("AIza"):
        raise HTTPException(status_code=400, detail="Not a Gemini API key (expected AIza...).")
    session.put(_sid(request), "api_key", key)
    return {"ok": True}


@router.get("/api/tests")
async def list_tests(request: Request):
    repo = request.app.state.repository
    return {"tests": [_assessment_summary(a) for a in repo.list()]}


@router.get("/api/tests/{test_id}")
async def get_test(request: Request, test_id: str):
    try:
        a = request.app.state.repository.get(test_id)
    except AssessmentNotFound:
        raise HTTPException(status_code=404, detail="Test not found.")
    data = _assessment_summary(a)
    data["questions"] = [public_question(q) for q in a.questions]
    return data


@router.post("/api/tests")
async def create_test(request: Request, body: Assessment):
    repo = request.app.state.repository
    try:
        repo.get(body.id)
    except AssessmentNotFound:
        repo.add(body)
        logger.info(f"Test created: {body.id} ({len(body.questions)} questions)")
        return {"id": body.id, "ok": True}
    raise HTTPException(status_code=409, detail="A test with this id already exists.")


@router.post("/api/tests/generate")
async def generate_test(request: Request, body: GenerateTestBody):
    api_key = session.get(_sid(request), "api_key") or os.getenv("GEMINI_API_KEY", "")
    if not api_key:
        raise HTTPException(status_code=400, detail="Gemini API key is not set.")
    try:
        questions = await asyncio.to_thread(
            generate_questions, body.topic, body.difficulties, body.count, api_key
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except RuntimeError:
        raise HTTPException(
            status_code=503,
            detail="AI service error. Please try again shortly.",
        )
    if not questions:
        raise HTTPException(status_code=422, detail="No questions could be generated for this topic.")

    assessment = Assessment(
        id=uuid.uuid4().hex,
        title=body.title or f"{body.topic.strip()} Assessment",
        topic=body.topic.strip(),
        duration_minutes=body.duration_minutes,
        questions=questions,
    )
    request.app.state.repository.add(assessment)
    return {"id": assessment.id, "count": len(questions), "ok": True}


# ── Test taking ──────────────────────────────────────────────────────────────

@router.post("/api/take-test/{test_id}/start")
async def start_test(request: Request, test_id: str, body: StartTestBody):
    sid = _sid(request)
    current: Optional[ProctoredSession] = session.get(sid, "proctor")
    if current is not None and current.running:
        raise HTTPException(status_code=409, detail="Another test is already in progress.")

    try:
        assessment = request.app.state.repository.get(test_id)
    except AssessmentNotFound:
        raise HTTPException(status_code=404, detail="Test not found.")
    if assessment.status != "published":
        raise HTTPException(status_code=403, detail="This test is not available.")

    proctor = ProctoredSession(
        assessment,
        request.app.state.result_sink,
        estimator=_make_estimator(request),
        limits=request.app.state.limits,
        tick_interval=request.app.state.tick_interval,
    )
    proctor.grant_permissions(body.camera_granted)
    if body.guidelines_acknowledged:
        proctor.acknowledge_guidelines()
    try:
        await proctor.start()
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))

    session.put(sid, "proctor", proctor)
    return _state(proctor)


@router.get("/api/take-test/state")
async def get_state(request: Request):
    return _state(_proctor(request))


@router.post("/api/take-test/answer")
async def select_answer(request: Request, body: AnswerBody):
    proctor = _proctor(request)
    applied = await _send(proctor, SelectAnswer(body.question_index, body.option_index))
    return _state(proctor, applied=applied)


@router.post("/api/take-test/review")
async def toggle_review(request: Request, body: ReviewBody):
    proctor = _proctor(request)
    applied = await _send(proctor, ToggleReview(body.question_index))
    return _state(proctor, applied=applied)


@router.post("/api/take-test/navigate")
async def navigate(request: Request, body: NavigateBody):
    proctor = _proctor(request)
    applied = await _send(proctor, Navigate(body.action, body.index))
    return _state(proctor, applied=applied)


@router.post("/api/take-test/frame")
async def push_frame(request: Request, file: UploadFile = File(...)):
    proctor = _proctor(request)
    if not proctor.running:
        raise HTTPException(status_code=409, detail=f"Test session is {proctor.phase.value}.")
    data = await file.read()
    if len(data) > config.MAX_FRAME_BYTES:
        raise HTTPException(status_code=413, detail="Frame too large.")
    try:
        frame = await asyncio.to_thread(decode_frame, data)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    accepted = proctor.camera.push(frame)
    snap = proctor.snapshot()
    return {
        "accepted": accepted,
        "face_status": snap.face_status.value,
        "too_dark": snap.too_dark,
        "paused": snap.paused,
    }


@router.post("/api/take-test/visibility")
async def visibility(request: Request, body: VisibilityBody):
    proctor = _proctor(request)
    await _send(proctor, VisibilityChanged(body.hidden))
    return _state(proctor)


@router.post("/api/take-test/client-error")
async def client_error(request: Request, body: ClientErrorBody):
    proctor = _proctor(request)
    captured = await _send(proctor, ClientErrorReported(body.message))
    return _state(proctor, captured=captured)


@router.post("/api/take-test/camera-error")
async def camera_error(request: Request, body: CameraErrorBody):
    proctor = _proctor(request)
    event = CameraRestarted() if body.restarted else CameraFailed(body.reason)
    await _send(proctor, event)
    return _state(proctor)


@router.post("/api/take-test/fullscreen")
async def fullscreen(request: Request, body: FullscreenBody):
    proctor = _proctor(request)
    await _send(proctor, FullscreenChanged(body.active, body.error))
    return _state(proctor)


@router.post("/api/take-test/acknowledge")
async def acknowledge(request: Request):
    proctor = _proctor(request)
    outcome = await _send(proctor, Acknowledge())
    return _state(proctor, outcome=getattr(outcome, "value", None))


@router.post("/api/take-test/dismiss-warning")
async def dismiss_warning(request: Request):
    proctor = _proctor(request)
    await _send(proctor, DismissWarning())
    return _state(proctor)


@router.post("/api/take-test/dismiss-notice")
async def dismiss_notice(request: Request):
    proctor = _proctor(request)
    await _send(proctor, DismissNotice())
    return _state(proctor)


@router.post("/api/take-test/submit")
async def submit_test(request: Request):
    proctor = _proctor(request)
    if proctor.phase is Phase.SUBMITTED:
        return _state(proctor, ok=True)
    result_id = await _send(proctor, SubmitRequested(SubmitReason.MANUAL))
    if result_id:
        session.put(_sid(request), "last_result_id", result_id)
        return _state(proctor, ok=True)
    if proctor.pipeline.error:
        raise HTTPException(status_code=502, detail=proctor.pipeline.error)
    if proctor.arbiter.paused:
        raise HTTPException(status_code=409, detail="Acknowledge the current warning before submitting.")
    return _state(proctor, ok=proctor.phase is Phase.SUBMITTED)


@router.post("/api/take-test/leave")
async def leave_test(request: Request):
    proctor: Optional[ProctoredSession] = session.take(_sid(request), "proctor")
    if proctor is None:
        raise HTTPException(status_code=404, detail="No test session in progress.")
    await proctor.close()
    return {"ok": True}


# ── Results ──────────────────────────────────────────────────────────────────

@router.get("/api/results/{result_id}")
async def get_result(request: Request, result_id: str):
    sink = request.app.state.result_sink
    try:
        record = sink.get(result_id)
    except ResultNotFound:
        raise HTTPException(status_code=404, detail="Result not found.")

    data = record.model_dump(mode="json")
    data["passed"] = is_passed(record.score)
    try:
        assessment = request.app.state.repository.get(record.test_id)
    except AssessmentNotFound:
        return data
    incorrect = get_incorrect_questions(assessment.questions, record.answers_by_question_id)
    data["title"] = assessment.title
    data["incorrect_questions"] = [
        {
            **public_question(q),
            "correct_answer": q.correct_answer,
            "explanation": q.explanation,
            "user_answer": record.answers_by_question_id.get(q.id),
        }
        for q in incorrect
    ]
    return data


@router.post("/api/reset")
async def reset_session(request: Request):
    proctor: Optional[ProctoredSession] = session.take(_sid(request), "proctor")
    if proctor is not None:
        await proctor.close()
    session.reset(_sid(request))
    return {"ok": True}
