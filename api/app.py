"""
api/app.py — FastAPI app instance + session middleware + static file serving
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles

from config import SESSION_CLEANUP_INTERVAL, SESSION_TTL, STATIC_DIR, TICK_INTERVAL_SECONDS
from api.routes import router
from api.sample_tests import SAMPLE_TESTS
import api.session as session
from samajh_proctor.services.face_monitor import HaarCascadeEstimator
from samajh_proctor.services.result_service import AssessmentRepository, InMemoryResultSink

logger = logging.getLogger(__name__)

SESSION_COOKIE = "samajh_session"


async def _close_proctors(states) -> int:
    closed = 0
    for state in states:
        proctor = state.get("proctor")
        if proctor is not None:
            await proctor.close()
            closed += 1
    return closed


async def _cleanup_loop() -> None:
    """Drop expired sessions every few minutes, closing any test still running."""
    while True:
        await asyncio.sleep(SESSION_CLEANUP_INTERVAL)
        removed = session.cleanup_expired()
        if removed:
            closed = await _close_proctors(removed)
            logger.info(f"Cleaned up {len(removed)} expired sessions ({closed} open tests closed)")


@asynccontextmanager
async def _lifespan(app: FastAPI):
    task = asyncio.create_task(_cleanup_loop())
    try:
        yield
    finally:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        closed = await _close_proctors(session.drain_all())
        if closed:
            logger.info(f"Shutdown: closed {closed} open tests")


def create_app(
    repository: AssessmentRepository | None = None,
    result_sink=None,
    estimator_factory=HaarCascadeEstimator,
    limits=None,
    tick_interval: float = TICK_INTERVAL_SECONDS,
) -> FastAPI:
    app = FastAPI(title="SAMAJH Proctored Tests", docs_url=None, redoc_url=None, lifespan=_lifespan)

    app.state.repository = repository or AssessmentRepository(SAMPLE_TESTS)
    app.state.result_sink = result_sink or InMemoryResultSink(app.state.repository)
    app.state.estimator_factory = estimator_factory
    app.state.limits = limits
    app.state.tick_interval = tick_interval

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Session middleware: read the session id cookie, issue a new one if missing
    @app.middleware("http")
    async def session_middleware(request: Request, call_next):
        sid = request.cookies.get(SESSION_COOKIE)
        if not sid or session.get_session(sid) is None:
            sid = session.create_session()

        request.state.session_id = sid
        response: Response = await call_next(request)
        response.set_cookie(
            key=SESSION_COOKIE,
            value=sid,
            httponly=True,
            samesite="lax",
            max_age=SESSION_TTL,
        )
        return response

    app.include_router(router)

    if os.path.isdir(STATIC_DIR):
        app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")

    @app.get("/")
    async def serve_index():
        index_path = os.path.join(STATIC_DIR, "index.html")
        if os.path.exists(index_path):
            return FileResponse(index_path)
        return {"error": "index.html not found"}

    return app
