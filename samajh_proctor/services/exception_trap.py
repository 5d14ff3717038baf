"""
services/exception_trap.py

Catches errors raised by the session's own tasks and errors reported by the
browser page, and forwards them as client-error violations.
"""

import asyncio
import logging
from typing import Callable, Optional, Union

logger = logging.getLogger(__name__)


def describe(error: Union[BaseException, str]) -> str:
    if isinstance(error, BaseException):
        text = str(error)
        return f"{type(error).__name__}: {text}" if text else type(error).__name__
    return str(error).strip() or "Unknown client error"


class ClientExceptionTrap:
    """
    Args:
        on_exception: Receives the error text. The session decides whether it
                      pauses (it is dropped while already paused).
    """

    def __init__(self, on_exception: Callable[[str], None]):
        self._on_exception = on_exception
        self._installed = False
        self.last_message: Optional[str] = None
        self.captured = 0

    @property
    def installed(self) -> bool:
        return self._installed

    def install(self) -> None:
        self._installed = True

    def uninstall(self) -> None:
        self._installed = False

    def capture(self, error: Union[BaseException, str]) -> bool:
        """Returns False if the trap is not installed (error ignored)."""
        if not self._installed:
            return False
        message = describe(error)
        self.last_message = message
        self.captured += 1
        logger.error(f"Client exception captured: {message}")
        self._on_exception(message)
        return True

    def watch(self, task: Optional[asyncio.Task]) -> None:
        if task is not None:
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()   # marks the exception as retrieved
        if exc is not None:
            self.capture(exc)
