"""
Tests for tab-visibility monitoring.
"""

import pytest

from samajh_proctor.models.session_state import PauseCause, ViolationLimits
from samajh_proctor.services.arbiter import PauseArbiter
from samajh_proctor.services.tab_monitor import TabVisibilityMonitor


@pytest.fixture
def limit_calls():
    return []


@pytest.fixture
def arbiter(clock):
    return PauseArbiter(ViolationLimits(tab_switch=3), clock)


@pytest.fixture
def monitor(arbiter, limit_calls):
    monitor = TabVisibilityMonitor(arbiter, lambda: limit_calls.append(True))
    monitor.activate()
    return monitor


def test_hidden_counts_obscures_and_warns(monitor, arbiter):
    monitor.handle(hidden=True)

    assert arbiter.counters.tab_switch_count == 1
    assert monitor.content_obscured
    assert monitor.warning_visible
    assert not arbiter.paused


def test_visible_unobscures_but_keeps_warning(monitor):
    monitor.handle(hidden=True)
    monitor.handle(hidden=False)

    assert not monitor.content_obscured
    assert monitor.warning_visible

    monitor.dismiss_warning()
    assert not monitor.warning_visible


def test_visible_event_is_not_counted(monitor, arbiter):
    monitor.handle(hidden=False)
    assert arbiter.counters.tab_switch_count == 0


def test_limit_triggers_auto_submit(monitor, arbiter, limit_calls):
    for _ in range(3):
        monitor.handle(hidden=True)
        monitor.handle(hidden=False)

    assert limit_calls == [True]
    assert monitor.limit_hit
    assert not monitor.warning_visible
    assert arbiter.counters.tab_switch_count == 3


def test_counted_while_paused(monitor, arbiter):
    arbiter.report(PauseCause.MULTIPLE_FACES)
    monitor.handle(hidden=True)
    assert arbiter.counters.tab_switch_count == 1
    assert arbiter.state.cause is PauseCause.MULTIPLE_FACES


def test_inactive_monitor_ignores_events(monitor, arbiter):
    monitor.deactivate()
    monitor.handle(hidden=True)

    assert arbiter.counters.tab_switch_count == 0
    assert not monitor.content_obscured
    assert not monitor.confirm_before_unload


def test_confirm_before_unload_while_active(monitor):
    assert monitor.confirm_before_unload
