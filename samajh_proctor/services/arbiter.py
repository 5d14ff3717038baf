"""
services/arbiter.py

Pause/resume state machine for a proctored session.

States: running <-> paused. Face and client-error violations pause the
session until the user acknowledges the displayed cause. Tab switches never
pause; they are counted on detection and only matter once the limit is hit.

Counter bookkeeping:
  - no_face / multiple_faces / client_error: incremented on acknowledgment
  - tab_switch: incremented on detection
"""

import logging
import time
from enum import Enum
from typing import Callable, Dict, Optional

from samajh_proctor.models.session_state import (
    PauseCause, PauseState, ViolationCounters, ViolationLimits,
)

logger = logging.getLogger(__name__)

PAUSING_CAUSES = frozenset({
    PauseCause.NO_FACE, PauseCause.MULTIPLE_FACES, PauseCause.CLIENT_ERROR,
})

_COUNTER_FIELDS: Dict[PauseCause, str] = {
    PauseCause.NO_FACE: "no_face_count",
    PauseCause.MULTIPLE_FACES: "multiple_faces_count",
    PauseCause.TAB_SWITCH: "tab_switch_count",
    PauseCause.CLIENT_ERROR: "client_error_count",
}

_LIMIT_FIELDS: Dict[PauseCause, str] = {
    PauseCause.NO_FACE: "no_face",
    PauseCause.MULTIPLE_FACES: "multiple_faces",
    PauseCause.TAB_SWITCH: "tab_switch",
    PauseCause.CLIENT_ERROR: "client_error",
}


class AckOutcome(str, Enum):
    RESUMED = "resumed"
    LIMIT_REACHED = "limit_reached"
    IGNORED = "ignored"


def controls_frozen(pause: PauseState, submitting: bool = False) -> bool:
    """Navigation, answer selection and review marking are blocked while this is True."""
    return pause.paused or submitting


class PauseArbiter:
    """
    Serializes violation reports into at most one active pause.

    Args:
        limits:    Per-cause maximums.
        clock:     Monotonic clock in seconds (injectable for tests).
        on_pause:  Runs synchronously when a pause starts (stops the timer).
        on_resume: Runs synchronously when a pause ends (restarts the timer).
    """

    def __init__(
        self,
        limits: Optional[ViolationLimits] = None,
        clock: Callable[[], float] = time.monotonic,
        on_pause: Optional[Callable[[PauseCause], None]] = None,
        on_resume: Optional[Callable[[], None]] = None,
    ):
        self.limits = limits or ViolationLimits()
        self.state = PauseState()
        self.counters = ViolationCounters()
        self._clock = clock
        self._on_pause = on_pause
        self._on_resume = on_resume
        self._closed = False

    @property
    def paused(self) -> bool:
        return self.state.paused

    @property
    def closed(self) -> bool:
        return self._closed

    def count(self, cause: PauseCause) -> int:
        return getattr(self.counters, _COUNTER_FIELDS[cause])

    def limit(self, cause: PauseCause) -> Optional[int]:
        return getattr(self.limits, _LIMIT_FIELDS[cause])

    def limit_reached(self, cause: PauseCause) -> bool:
        limit = self.limit(cause)
        return limit is not None and self.count(cause) >= limit

    def report(self, cause: PauseCause, message: Optional[str] = None) -> bool:
        """
        Enter the paused state for a face or client-error violation.

        Returns:
            True if the session is now paused for this cause, False if the
            report was dropped (already paused, or session closed).
        """
        if cause not in PAUSING_CAUSES:
            raise ValueError(f"{cause.value} does not pause the session")
        if self._closed:
            logger.debug(f"Dropped {cause.value}: session closed")
            return False
        if self.state.paused:
            logger.info(
                f"Dropped {cause.value} while paused for {self.state.cause.value}"
            )
            return False

        self.state.paused = True
        self.state.cause = cause
        self.state.message = message
        self.state.pause_started_at = self._clock()
        logger.warning(f"Session paused: {cause.value}" + (f" ({message})" if message else ""))
        if self._on_pause is not None:
            self._on_pause(cause)
        return True

    def acknowledge(self) -> AckOutcome:
        """
        User dismissed the displayed violation.

        The cause's counter is incremented first. At the limit the session
        stays paused and the caller must auto-submit; otherwise the pause time
        is accumulated and the session resumes. Counters never exceed their
        limit: once reached, further acknowledgments are ignored.
        """
        if self._closed or not self.state.paused:
            return AckOutcome.IGNORED

        cause = self.state.cause
        if self.limit_reached(cause):
            # already at the maximum; the pending auto-submit is retried instead
            return AckOutcome.IGNORED
        field = _COUNTER_FIELDS[cause]
        setattr(self.counters, field, getattr(self.counters, field) + 1)
        logger.info(f"Acknowledged {cause.value} ({self.count(cause)}/{self.limit(cause) or '-'})")

        if self.limit_reached(cause):
            logger.warning(f"{cause.value} limit reached, auto-submitting")
            return AckOutcome.LIMIT_REACHED

        pause_ms = int((self._clock() - self.state.pause_started_at) * 1000)
        self.state.total_paused_ms += max(0, pause_ms)
        self.state.pause_started_at = None
        self.state.cause = PauseCause.NONE
        self.state.message = None
        self.state.paused = False
        if self._on_resume is not None:
            self._on_resume()
        return AckOutcome.RESUMED

    def record_tab_switch(self) -> bool:
        """Count a tab switch. Returns True when the tab-switch limit is reached (no count past it)."""
        if self._closed:
            return False
        if self.limit_reached(PauseCause.TAB_SWITCH):
            return True
        self.counters.tab_switch_count += 1
        logger.warning(
            f"Tab switch {self.counters.tab_switch_count}/{self.limits.tab_switch or '-'}"
        )
        return self.limit_reached(PauseCause.TAB_SWITCH)

    def close(self) -> None:
        self._closed = True
