"""
services/tab_monitor.py

Tab-visibility monitoring. A hidden tab is counted immediately, obscures the
question content and shows a dismissible warning; the timer keeps running.
At the limit the session is auto-submitted.
"""

import logging
from typing import Callable

from samajh_proctor.services.arbiter import PauseArbiter

logger = logging.getLogger(__name__)


class TabVisibilityMonitor:

    def __init__(self, arbiter: PauseArbiter, on_limit: Callable[[], None]):
        self._arbiter = arbiter
        self._on_limit = on_limit
        self._active = False
        self.content_obscured = False
        self.warning_visible = False
        self.limit_hit = False

    @property
    def active(self) -> bool:
        return self._active

    @property
    def confirm_before_unload(self) -> bool:
        return self._active

    def activate(self) -> None:
        self._active = True

    def deactivate(self) -> None:
        self._active = False
        self.content_obscured = False
        self.warning_visible = False

    def handle(self, hidden: bool) -> None:
        if not self._active:
            return
        if not hidden:
            self.content_obscured = False
            return

        self.content_obscured = True
        if self._arbiter.record_tab_switch():
            self.limit_hit = True
            self.warning_visible = False
            self._on_limit()
        else:
            self.warning_visible = True

    def dismiss_warning(self) -> None:
        self.warning_visible = False
