"""
Tests for the pause/resume arbiter.
"""

import pytest

from samajh_proctor.models.session_state import PauseCause, PauseState, ViolationLimits
from samajh_proctor.services.arbiter import AckOutcome, PauseArbiter, controls_frozen


@pytest.fixture
def hooks():
    return {"pause": [], "resume": 0}


@pytest.fixture
def arbiter(clock, hooks):
    def on_resume():
        hooks["resume"] += 1

    return PauseArbiter(
        ViolationLimits(no_face=3, multiple_faces=3, tab_switch=3, client_error=None),
        clock,
        on_pause=hooks["pause"].append,
        on_resume=on_resume,
    )


class TestReport:

    def test_face_violation_pauses(self, arbiter, clock, hooks):
        assert arbiter.report(PauseCause.NO_FACE) is True
        assert arbiter.paused
        assert arbiter.state.cause is PauseCause.NO_FACE
        assert arbiter.state.pause_started_at == clock.now
        assert hooks["pause"] == [PauseCause.NO_FACE]

    def test_counter_not_incremented_on_detection(self, arbiter):
        arbiter.report(PauseCause.MULTIPLE_FACES)
        assert arbiter.counters.multiple_faces_count == 0

    def test_second_violation_while_paused_is_dropped(self, arbiter, clock, hooks):
        arbiter.report(PauseCause.NO_FACE)
        started = arbiter.state.pause_started_at
        clock.advance(3)

        assert arbiter.report(PauseCause.MULTIPLE_FACES) is False
        assert arbiter.report(PauseCause.CLIENT_ERROR, "boom") is False

        assert arbiter.state.cause is PauseCause.NO_FACE
        assert arbiter.state.pause_started_at == started
        assert arbiter.state.message is None
        assert len(hooks["pause"]) == 1

    def test_tab_switch_is_not_a_pausing_cause(self, arbiter):
        with pytest.raises(ValueError):
            arbiter.report(PauseCause.TAB_SWITCH)
        assert not arbiter.paused

    def test_client_error_keeps_message(self, arbiter):
        arbiter.report(PauseCause.CLIENT_ERROR, "TypeError: x is undefined")
        assert arbiter.state.message == "TypeError: x is undefined"

    def test_closed_arbiter_ignores_reports(self, arbiter):
        arbiter.close()
        assert arbiter.report(PauseCause.NO_FACE) is False
        assert not arbiter.paused


class TestAcknowledge:

    def test_resume_accumulates_pause_time(self, arbiter, clock, hooks):
        arbiter.report(PauseCause.NO_FACE)
        clock.advance(5)

        assert arbiter.acknowledge() is AckOutcome.RESUMED

        assert not arbiter.paused
        assert arbiter.state.cause is PauseCause.NONE
        assert arbiter.state.pause_started_at is None
        assert arbiter.state.total_paused_ms == 5000
        assert arbiter.counters.no_face_count == 1
        assert hooks["resume"] == 1

    def test_pause_time_sums_over_cycles(self, arbiter, clock):
        for seconds in (1.5, 2.0, 0.25):
            arbiter.report(PauseCause.CLIENT_ERROR, "err")
            clock.advance(seconds)
            arbiter.acknowledge()
        assert arbiter.state.total_paused_ms == 3750
        assert arbiter.counters.client_error_count == 3

    def test_acknowledge_when_running_is_ignored(self, arbiter, hooks):
        assert arbiter.acknowledge() is AckOutcome.IGNORED
        assert hooks["resume"] == 0

    def test_limit_reached_stays_paused(self, arbiter, clock, hooks):
        for _ in range(2):
            arbiter.report(PauseCause.NO_FACE)
            assert arbiter.acknowledge() is AckOutcome.RESUMED

        arbiter.report(PauseCause.NO_FACE)
        assert arbiter.acknowledge() is AckOutcome.LIMIT_REACHED

        assert arbiter.paused
        assert arbiter.counters.no_face_count == 3
        assert hooks["resume"] == 2

    def test_acknowledge_past_limit_is_ignored(self, arbiter, hooks):
        for _ in range(3):
            arbiter.report(PauseCause.MULTIPLE_FACES)
            arbiter.acknowledge()

        assert arbiter.acknowledge() is AckOutcome.IGNORED
        assert arbiter.acknowledge() is AckOutcome.IGNORED

        assert arbiter.counters.multiple_faces_count == 3
        assert arbiter.paused
        assert hooks["resume"] == 2

    def test_counters_are_independent(self, arbiter):
        for cause in (PauseCause.NO_FACE, PauseCause.MULTIPLE_FACES, PauseCause.NO_FACE):
            arbiter.report(cause)
            arbiter.acknowledge()
        assert arbiter.counters.no_face_count == 2
        assert arbiter.counters.multiple_faces_count == 1

    def test_unbounded_client_errors(self, arbiter):
        for _ in range(10):
            arbiter.report(PauseCause.CLIENT_ERROR, "e")
            assert arbiter.acknowledge() is AckOutcome.RESUMED


class TestTabSwitch:

    def test_counted_on_detection(self, arbiter):
        assert arbiter.record_tab_switch() is False
        assert arbiter.counters.tab_switch_count == 1
        assert not arbiter.paused

    def test_limit(self, arbiter):
        assert [arbiter.record_tab_switch() for _ in range(3)] == [False, False, True]

    def test_never_counts_past_limit(self, arbiter):
        for _ in range(5):
            arbiter.record_tab_switch()
        assert arbiter.record_tab_switch() is True
        assert arbiter.counters.tab_switch_count == 3

    def test_counted_while_paused(self, arbiter):
        arbiter.report(PauseCause.NO_FACE)
        arbiter.record_tab_switch()
        assert arbiter.counters.tab_switch_count == 1
        assert arbiter.state.cause is PauseCause.NO_FACE


class TestControlsFrozen:

    def test_running(self):
        assert controls_frozen(PauseState()) is False

    def test_paused(self):
        assert controls_frozen(PauseState(paused=True, cause=PauseCause.NO_FACE)) is True

    def test_submitting(self):
        assert controls_frozen(PauseState(), submitting=True) is True


def test_default_clock_is_monotonic():
    arbiter = PauseArbiter()
    arbiter.report(PauseCause.NO_FACE)
    assert arbiter.acknowledge() is AckOutcome.RESUMED
    assert arbiter.state.total_paused_ms >= 0
