"""
services/devices.py

Device handles of a proctored session: the shared camera stream and the
client's fullscreen state.

The browser pushes webcam frames; CameraStream keeps only the latest one, so
the face monitor never analyses faster than it can process.
"""

import asyncio
import base64
import binascii
import logging
from typing import Optional, Union

import cv2
import numpy as np

logger = logging.getLogger(__name__)


def decode_frame(data: Union[bytes, str]) -> np.ndarray:
    """
    JPEG/PNG bytes or a base64 data URL -> BGR ndarray.

    Raises:
        ValueError: empty or undecodable input.
    """
    if isinstance(data, str):
        raw = data.split(",", 1)[1] if "," in data else data
        try:
            data = base64.b64decode(raw, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"invalid base64 frame: {e}") from e
    if not data:
        raise ValueError("empty frame")
    frame = cv2.imdecode(np.frombuffer(data, np.uint8), cv2.IMREAD_COLOR)
    if frame is None:
        raise ValueError("frame could not be decoded")
    return frame


class CameraStream:
    """
    The single media stream shared by the preview and the face detector.

    Only the session start-up and the submission pipeline stop or restart it.
    stop() is idempotent.
    """

    def __init__(self):
        self._frame: Optional[np.ndarray] = None
        self._new_frame = asyncio.Event()
        self._stopped = False
        self.preview_attached = True
        self.error: Optional[str] = None
        self.frames_received = 0

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def active(self) -> bool:
        return not self._stopped and self.error is None

    def push(self, frame: np.ndarray) -> bool:
        """Offer a frame. Returns False if the stream no longer accepts frames."""
        if not self.active:
            return False
        self._frame = frame
        self.frames_received += 1
        self._new_frame.set()
        return True

    async def next_frame(self) -> Optional[np.ndarray]:
        """Wait for a frame newer than the last one returned. None once stopped."""
        while self.active:
            if self._frame is not None:
                frame, self._frame = self._frame, None
                self._new_frame.clear()
                return frame
            await self._new_frame.wait()
        return None

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._frame = None
        self._new_frame.set()
        logger.info("Camera tracks stopped")

    def detach_preview(self) -> None:
        self.preview_attached = False

    def fail(self, reason: str) -> None:
        """Camera lost or denied; face monitoring stays off until restart()."""
        self.error = reason
        self._frame = None
        self._new_frame.set()
        logger.warning(f"Camera failure: {reason}")

    def restart(self) -> bool:
        """Clear a failure. A stream stopped for submission is never restarted."""
        if self._stopped:
            return False
        self.error = None
        self._new_frame.clear()
        return True


class FullscreenController:
    """Mirror of the client's fullscreen state; failures are advisory."""

    def __init__(self):
        self.active = False
        self.exit_requested = False
        self.error: Optional[str] = None

    def update(self, active: bool, error: Optional[str] = None) -> None:
        self.active = active
        self.error = error
        if error:
            logger.warning(f"Fullscreen failure: {error}")

    def exit(self) -> None:
        self.exit_requested = True
        self.active = False
