"""
Shared fixtures: a controllable clock, fake face detectors, a recording
result sink and a factory for proctored sessions that never tick on their own.
"""

import asyncio

import numpy as np
import pytest

from samajh_proctor.models.question_model import Assessment, Question
from samajh_proctor.models.result_model import CreateResultResponse
from samajh_proctor.models.session_state import ViolationLimits
from samajh_proctor.services.proctor_session import ProctoredSession

NEVER = 3600.0  # tick interval that never fires during a test


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeEstimator:
    """Async detector returning a configurable face list."""

    def __init__(self, faces=None):
        self.faces = [(10, 10, 50, 50)] if faces is None else faces
        self.calls = 0
        self.closed = False
        self.error = None

    async def estimate_faces(self, frame):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.faces)

    def close(self):
        self.closed = True


class GatedEstimator(FakeEstimator):
    """Holds every classification until release is set."""

    def __init__(self, faces=None):
        super().__init__(faces)
        self.release = asyncio.Event()

    async def estimate_faces(self, frame):
        self.calls += 1
        await self.release.wait()
        return list(self.faces)


class RecordingSink:
    """Result sink that records payloads; failures are scripted."""

    def __init__(self):
        self.payloads = []
        self.fail_with = None       # exception to raise
        self.error_reply = None     # error string to return
        self.delay = 0.0

    async def create_result(self, payload):
        self.payloads.append(payload)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        if self.error_reply is not None:
            return CreateResultResponse(error=self.error_reply)
        return CreateResultResponse(result_id=f"result-{len(self.payloads)}")


def frame(value: int = 128, shape=(48, 64, 3)) -> np.ndarray:
    return np.full(shape, value, dtype=np.uint8)


async def wait_for(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def assessment():
    return Assessment(
        id="test-1",
        title="Python Fundamentals",
        topic="Python",
        duration_minutes=2,
        questions=[
            Question(id="q1", text="2 + 2?", options=["3", "4", "5", "22"], correct_answer=1),
            Question(id="q2", text="len('abc')?", options=["2", "3"], correct_answer=1),
            Question(id="q3", text="type(None)?", options=["NoneType", "object", "null"], correct_answer=0),
        ],
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def estimator():
    return FakeEstimator()


@pytest.fixture
async def make_session(assessment, sink, clock, estimator):
    created = []

    def factory(limits=None, estimator_=estimator, assessment_=assessment):
        proctor = ProctoredSession(
            assessment_,
            sink,
            estimator=estimator_,
            limits=limits or ViolationLimits(no_face=3, multiple_faces=3, tab_switch=3, client_error=None),
            clock=clock,
            tick_interval=NEVER,
        )
        proctor.grant_permissions(True)
        proctor.acknowledge_guidelines()
        created.append(proctor)
        return proctor

    yield factory

    for proctor in created:
        await proctor.close()


@pytest.fixture
async def running(make_session):
    proctor = make_session()
    await proctor.start()
    return proctor
