"""
services/timer.py

Countdown for a proctored session.
One asyncio task at most; tick() can also be driven by hand.
"""

import asyncio
import logging
from typing import Callable, Optional

from config import TICK_INTERVAL_SECONDS
from samajh_proctor.models.session_state import TestSession

logger = logging.getLogger(__name__)


class SessionTimer:
    """
    Decrements TestSession.time_left_seconds once per interval while armed.

    Args:
        session:    Session whose countdown this timer owns.
        on_expired: Called once when the countdown reaches zero.
        interval:   Seconds between ticks.
        can_tick:   Gate checked on every tick; a closed gate drops the tick.
    """

    def __init__(
        self,
        session: TestSession,
        on_expired: Callable[[], None],
        interval: float = TICK_INTERVAL_SECONDS,
        can_tick: Optional[Callable[[], bool]] = None,
    ):
        self._session = session
        self._on_expired = on_expired
        self._interval = interval
        self._can_tick = can_tick
        self._task: Optional[asyncio.Task] = None
        self._expired = False

    @property
    def armed(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def expired(self) -> bool:
        return self._expired

    def arm(self) -> None:
        """Start ticking. Arming an armed timer replaces the running interval."""
        self.disarm()
        if self._expired:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    def disarm(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    def tick(self) -> None:
        if self._expired:
            return
        if self._can_tick is not None and not self._can_tick():
            return
        if self._session.time_left_seconds > 0:
            self._session.time_left_seconds -= 1
        if self._session.time_left_seconds == 0:
            self._expired = True
            self.disarm()
            logger.info(f"Time expired for test {self._session.test_id}")
            self._on_expired()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self.tick()
