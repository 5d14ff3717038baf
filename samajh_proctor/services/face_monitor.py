"""
services/face_monitor.py

Face-presence monitoring over the shared camera stream.

Each frame is classified as ok / no_face / multiple_faces by an injectable
detector (anything with estimate_faces(frame), sync or async). A brightness
advisory is computed alongside but never reported as a violation.
Single-frame misses are routine for Haar cascades, so a violation is reported
only after FACE_VIOLATION_FRAMES consecutive frames of the same kind.

Polling discipline:
- one analysis in flight at a time; the next frame is awaited only after the
  previous analysis settles
- detector errors are logged and polling continues
- after deactivate() no further frames are analysed and no callback fires
"""

import asyncio
import inspect
import logging
from typing import Callable, List, Optional, Sequence

import cv2
import numpy as np

from config import BRIGHTNESS_THRESHOLD, FACE_VIOLATION_FRAMES
from samajh_proctor.models.session_state import FaceStatus
from samajh_proctor.services.devices import CameraStream

logger = logging.getLogger(__name__)


def mean_luma(frame: np.ndarray) -> float:
    """Rec.601 mean luma (0-255) of a BGR or greyscale frame."""
    if frame.size == 0:
        return 0.0
    if frame.ndim == 2:
        return float(np.mean(frame))
    b, g, r = frame[..., 0], frame[..., 1], frame[..., 2]
    return float(np.mean(0.114 * b + 0.587 * g + 0.299 * r))


def classify(faces: Sequence) -> FaceStatus:
    n = len(faces)
    if n == 0:
        return FaceStatus.NO_FACE
    if n > 1:
        return FaceStatus.MULTIPLE_FACES
    return FaceStatus.OK


class HaarCascadeEstimator:
    """Default detector: OpenCV's bundled frontal-face Haar cascade."""

    def __init__(self, scale_factor: float = 1.1, min_neighbors: int = 5, min_size: int = 60):
        self._cascade = cv2.CascadeClassifier(
            cv2.data.haarcascades + "haarcascade_frontalface_default.xml"
        )
        if self._cascade.empty():
            raise RuntimeError("failed to load haarcascade_frontalface_default.xml")
        self._scale_factor = scale_factor
        self._min_neighbors = min_neighbors
        self._min_size = (min_size, min_size)

    def estimate_faces(self, frame: np.ndarray) -> List[tuple]:
        gray = frame if frame.ndim == 2 else cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
        faces = self._cascade.detectMultiScale(
            gray, self._scale_factor, self._min_neighbors, minSize=self._min_size
        )
        return [tuple(int(v) for v in f) for f in faces]

    def close(self) -> None:
        self._cascade = None


class FacePresenceMonitor:
    """
    Args:
        camera:               Frame source shared with the preview.
        estimator:            Face detector.
        on_violation:         Called with NO_FACE / MULTIPLE_FACES once the status has
                              left OK for violation_frames consecutive frames.
        brightness_threshold: Mean luma below this sets too_dark.
        violation_frames:     Consecutive violating frames of one kind before reporting.
    """

    def __init__(
        self,
        camera: CameraStream,
        estimator,
        on_violation: Callable[[FaceStatus], None],
        brightness_threshold: float = BRIGHTNESS_THRESHOLD,
        violation_frames: int = FACE_VIOLATION_FRAMES,
    ):
        self._camera = camera
        self._estimator = estimator
        self._on_violation = on_violation
        self._brightness_threshold = brightness_threshold
        self._violation_frames = max(1, violation_frames)
        self._task: Optional[asyncio.Task] = None
        self._active = False
        self._in_flight = False
        self._streak = 0
        self._reported = False

        self.status = FaceStatus.OK
        self.too_dark = False
        self.frames_analysed = 0

    @property
    def active(self) -> bool:
        return self._active

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    def activate(self) -> Optional[asyncio.Task]:
        if self._active:
            return self._task
        if self._estimator is None:
            logger.warning("No face detector available; face monitoring disabled")
            return None
        self._active = True
        self.status = FaceStatus.OK
        self._streak = 0
        self._reported = False
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info("Face monitoring started")
        return self._task

    async def deactivate(self, release: bool = True) -> None:
        """Stop polling. With release=True the detector is closed for good."""
        self._active = False
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if release and self._estimator is not None:
            close = getattr(self._estimator, "close", None)
            if callable(close):
                close()
            self._estimator = None
        logger.info("Face monitoring stopped")

    async def analyze(self, frame: np.ndarray) -> Optional[FaceStatus]:
        """
        Classify one frame.

        Returns:
            The new status, or None if skipped (analysis already in flight,
            monitor inactive) or the detector failed.
        """
        if self._in_flight or not self._active:
            return None
        self._in_flight = True
        try:
            self.too_dark = mean_luma(frame) < self._brightness_threshold
            faces = await self._estimate(frame)
            status = classify(faces)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Face detection failed: {type(e).__name__}: {e}")
            return None
        finally:
            self._in_flight = False

        self.frames_analysed += 1
        if self._active:
            self._update(status)
        return status

    async def _estimate(self, frame: np.ndarray) -> Sequence:
        fn = self._estimator.estimate_faces
        if inspect.iscoroutinefunction(fn):
            return await fn(frame)
        return await asyncio.to_thread(fn, frame)

    def _update(self, status: FaceStatus) -> None:
        """One report per excursion out of OK; only an OK frame re-arms it."""
        previous, self.status = self.status, status
        if status is FaceStatus.OK:
            self._streak = 0
            self._reported = False
            return
        self._streak = self._streak + 1 if status is previous else 1
        if not self._reported and self._streak >= self._violation_frames:
            self._reported = True
            logger.warning(f"Face violation detected: {status.value} ({self._streak} frames)")
            self._on_violation(status)

    async def _run(self) -> None:
        while self._active:
            frame = await self._camera.next_frame()
            if frame is None:
                logger.info("Camera stream ended; face monitoring idle")
                break
            await self.analyze(frame)
        self._active = False
