"""End-to-end behaviour of the tracking session aggregator."""

from __future__ import annotations

from dataclasses import replace
import logging
import random

import pytest

from activity_tracker.errors import (
    PermissionDeniedError,
    PersistenceWriteError,
    SessionStateError,
    TransientGpsError,
    ValidationError,
)
from activity_tracker.gateways.memory import (
    InMemoryBroadcastChannel,
    InMemoryPersistenceGateway,
)
from activity_tracker.providers import ReplayLocationProvider
from activity_tracker.session import FixDecision, SessionStatus

from conftest import T0, make_fix, north_of


class FlakyTrackpointGateway(InMemoryPersistenceGateway):
    def append_trackpoint(self, activity_id, fix):
        raise PersistenceWriteError("503 from backend")


class FailingFinalizeGateway(InMemoryPersistenceGateway):
    def __init__(self, failures: int = 1) -> None:
        super().__init__()
        self.failures = failures

    def finalize_activity(self, activity_id, summary):
        if self.failures > 0:
            self.failures -= 1
            self.finalize_calls += 1
            raise PersistenceWriteError("timeout")
        super().finalize_activity(activity_id, summary)


class DeniedProvider(ReplayLocationProvider):
    def subscribe(self, options, on_fix, on_error):
        raise PermissionError("User denied Geolocation")


def test_start_creates_zeroed_activity(session, gateway, provider):
    assert session.status is SessionStatus.TRACKING
    assert session.session_id in gateway.activities
    assert gateway.activities[session.session_id]["sport_type"] == "ski"
    assert provider.subscribed
    snap = session.snapshot()
    assert snap.distance_km == 0 and snap.trajectory == ()


def test_scenario_a_first_move_recorded_at_80_kmh(session, gateway):
    assert session.process_fix(make_fix(0, 0.0, 0.0, altitude=100, accuracy=5)) is FixDecision.ACCEPTED
    assert session.process_fix(make_fix(5, 0.0, 0.001, altitude=100, accuracy=5)) is FixDecision.ACCEPTED

    snap = session.snapshot()
    assert snap.current_speed_kmh == pytest.approx(80.06, rel=1e-3)
    assert snap.max_speed_kmh == pytest.approx(80.06, rel=1e-3)
    assert snap.avg_speed_kmh == pytest.approx(80.06, rel=1e-3)
    assert snap.distance_km == pytest.approx(0.1112, abs=1e-4)
    assert snap.trajectory == ((0.0, 0.0), (0.0, 0.001))
    assert len(gateway.trackpoints[session.session_id]) == 2


def test_scenario_b_too_soon_changes_nothing(session, gateway):
    session.process_fix(make_fix(0, 0.0, 0.0, altitude=100, accuracy=5))
    before = session.snapshot()
    decision = session.process_fix(make_fix(2, 0.0, 0.001, altitude=140, accuracy=5))
    assert decision is FixDecision.TOO_SOON
    assert session.snapshot() == before
    assert session.state.max_altitude_m == 100
    assert len(gateway.trackpoints[session.session_id]) == 1


def test_scenario_c_stationary_refines_altitude_only(session, gateway):
    session.process_fix(make_fix(0, 0.0, 0.0, altitude=100, accuracy=20))
    decision = session.process_fix(make_fix(10, north_of(3.0), 0.0, altitude=94, accuracy=20))
    assert decision is FixDecision.STATIONARY
    state = session.state
    assert state.min_altitude_m == 94
    assert state.max_altitude_m == 100
    assert state.elevation_gain_m == 0
    snap = session.snapshot()
    assert snap.current_speed_kmh == 0
    assert snap.current_altitude_m == 94
    assert len(snap.trajectory) == 1
    assert len(gateway.trackpoints[session.session_id]) == 1


def test_scenario_d_reported_glitch_capped_by_distance(session):
    session.process_fix(make_fix(0, 0.0, 0.0))
    decision = session.process_fix(make_fix(10, north_of(50.0), 0.0, speed=100.0))
    assert decision is FixDecision.ACCEPTED
    assert session.snapshot().current_speed_kmh == pytest.approx(18.0, rel=1e-6)
    assert session.state.accepted_fixes[-1].fused_speed_mps == pytest.approx(5.0)


def test_scenario_e_outlier_excluded_from_average_and_storage(session, gateway):
    session.process_fix(make_fix(0, 0.0, 0.0, altitude=50))
    session.process_fix(make_fix(10, north_of(50.0), 0.0, altitude=55))  # 18 km/h
    # 20 m in 80 s == 0.9 km/h
    decision = session.process_fix(make_fix(90, north_of(70.0), 0.0, altitude=60))
    assert decision is FixDecision.OUTLIER
    snap = session.snapshot()
    assert snap.current_speed_kmh == 0
    assert snap.avg_speed_kmh == pytest.approx(18.0)
    assert len(snap.trajectory) == 2
    assert session.state.max_altitude_m == 60
    assert session.state.elevation_gain_m == pytest.approx(5.0)
    assert session.state.counters.outlier == 1
    assert len(gateway.trackpoints[session.session_id]) == 2


def test_average_is_mean_of_non_outlier_samples(session):
    session.process_fix(make_fix(0, 0.0, 0.0))
    session.process_fix(make_fix(10, north_of(50.0), 0.0))  # 18 km/h
    session.process_fix(make_fix(20, north_of(150.0), 0.0))  # 36 km/h
    snap = session.snapshot()
    assert snap.avg_speed_kmh == pytest.approx(27.0)
    assert snap.max_speed_kmh == pytest.approx(36.0)
    assert session.state.moving_time_s == pytest.approx(20.0)


def test_invariants_hold_over_random_walk(session):
    rng = random.Random(1234)
    seconds = 0.0
    lat = 45.0
    altitude = 1800.0
    last_distance = 0.0
    last_max = 0.0
    for _ in range(400):
        seconds += rng.choice([1.0, 2.0, 3.0, 5.0, 8.0])
        lat = north_of(rng.uniform(-5.0, 120.0), lat)
        altitude += rng.uniform(-15.0, 15.0)
        session.process_fix(
            make_fix(
                seconds,
                lat,
                7.0,
                altitude=altitude if rng.random() > 0.1 else None,
                speed=rng.choice([None, rng.uniform(0, 40)]),
                accuracy=rng.choice([None, 4.0, 12.0, 30.0]),
            )
        )
        state = session.state
        assert state.cumulative_distance_m >= last_distance
        assert state.max_speed_kmh >= last_max
        if state.min_altitude_m is not None:
            assert state.min_altitude_m <= state.max_altitude_m
        last_distance = state.cumulative_distance_m
        last_max = state.max_speed_kmh

    state = session.state
    assert state.cumulative_distance_m == pytest.approx(
        sum(fix.distance_from_previous_m for fix in state.accepted_fixes)
    )
    assert all(fix.distance_from_previous_m >= 0 for fix in state.accepted_fixes)
    assert state.max_speed_kmh == pytest.approx(max(state.speed_samples))
    assert state.avg_speed_kmh == pytest.approx(
        sum(state.speed_samples) / len(state.speed_samples)
    )
    assert state.trajectory == [fix.fix.latlon for fix in state.accepted_fixes]
    stamps = [fix.timestamp for fix in state.accepted_fixes]
    assert stamps == sorted(stamps)


def test_tick_advances_duration_only_while_tracking(session, provider):
    for _ in range(3):
        session.tick()
    session.pause()
    assert not provider.subscribed
    session.tick()
    assert session.process_fix(make_fix(0, 1.0, 1.0)) is FixDecision.DROPPED
    assert provider.push(make_fix(0, 1.0, 1.0)) is False
    assert session.dropped_fixes == 1
    session.resume()
    assert provider.subscribed
    assert provider.subscribe_count == 2
    session.tick()
    assert session.snapshot().duration_s == 4
    assert session.state.trajectory == []


def test_toggle_pause_mirrors_single_button(session):
    assert session.toggle_pause() is SessionStatus.PAUSED
    assert session.state.is_paused
    assert session.toggle_pause() is SessionStatus.TRACKING
    assert not session.state.is_paused


def test_invalid_transitions_raise(make_session):
    idle = make_session()
    with pytest.raises(SessionStateError):
        idle.pause()
    with pytest.raises(SessionStateError):
        idle.stop()
    idle.start("hike")
    with pytest.raises(SessionStateError):
        idle.start("hike")
    with pytest.raises(SessionStateError):
        idle.resume()


def test_stop_produces_summary_and_is_idempotent(session, gateway, clock, provider):
    session.process_fix(make_fix(0, 0.0, 0.0, altitude=2300))
    session.process_fix(make_fix(10, north_of(50.0), 0.0, altitude=2310))
    session.process_fix(make_fix(20, north_of(150.0), 0.0, altitude=2280))
    for _ in range(20):
        session.tick()
    clock.advance(20)

    summary = session.stop()
    assert session.status is SessionStatus.STOPPED
    assert not provider.subscribed
    assert summary.total_distance_m == pytest.approx(150.0, abs=0.01)
    assert summary.total_time_s == 20
    assert summary.moving_time_s == pytest.approx(20.0)
    assert summary.average_speed_mps == pytest.approx(7.5)
    assert summary.max_speed_mps == pytest.approx(10.0)
    assert summary.elevation_gain_m == pytest.approx(10.0)
    assert summary.elevation_loss_m == 0.0
    assert summary.vertical_drop_m == pytest.approx(30.0)
    assert (summary.min_altitude_m, summary.max_altitude_m) == (2280, 2310)
    assert summary.trackpoint_count == 3
    assert summary.polyline
    assert summary.started_at == T0
    assert summary.ended_at > summary.started_at

    row = gateway.activities[summary.activity_id]
    assert row["total_distance_m"] == summary.total_distance_m
    assert row["elevation_loss_m"] == 0.0

    assert session.stop() is summary
    assert gateway.finalize_calls == 1


def test_no_fix_mutates_state_after_stop(session):
    session.process_fix(make_fix(0, 0.0, 0.0))
    session.stop()
    counters_before = replace(session.state.counters)
    assert session.process_fix(make_fix(10, north_of(50.0), 0.0)) is FixDecision.DROPPED
    session.tick()
    assert session.snapshot().duration_s == 0
    assert len(session.state.trajectory) == 1
    assert session.state.counters == counters_before
    assert session.dropped_fixes == 1


def test_finalize_failure_surfaces_and_retry_uses_memory(make_session):
    gateway = FailingFinalizeGateway()
    session = make_session(gateway=gateway)
    session.start("bike")
    session.process_fix(make_fix(0, 0.0, 0.0))
    session.process_fix(make_fix(10, north_of(50.0), 0.0))

    with pytest.raises(PersistenceWriteError):
        session.stop()
    summary = session.stop()
    assert summary.total_distance_m == pytest.approx(50.0, abs=0.01)
    assert gateway.finalize_calls == 2
    assert gateway.summaries[summary.activity_id] is summary


def test_trackpoint_write_failures_are_dropped(make_session, caplog):
    session = make_session(gateway=FlakyTrackpointGateway())
    session.start("offroad")
    with caplog.at_level(logging.WARNING, logger="TrackingSession"):
        session.process_fix(make_fix(0, 0.0, 0.0))
        decision = session.process_fix(make_fix(10, north_of(50.0), 0.0))
    assert decision is FixDecision.ACCEPTED
    assert session.state.counters.failed_writes == 2
    assert len(session.state.trajectory) == 2
    assert "dropped trackpoint write" in caplog.text.lower()


def test_live_session_publishes_accepted_fixes(make_session, broadcast):
    session = make_session()
    sid = session.start("ski", share_live=True)
    session.process_fix(make_fix(0, 0.0, 0.0))
    session.process_fix(make_fix(1, 0.0, 0.001))  # too soon, not published
    session.process_fix(make_fix(10, north_of(50.0), 0.0))
    published = broadcast.for_session(sid)
    assert [fix.latitude for fix in published] == [0.0, north_of(50.0)]


def test_live_share_code_resolves_until_stop(make_session, broadcast, clock):
    session = make_session()
    sid = session.start("ski", share_live=True)
    code = session.share_code
    assert code
    assert broadcast.find_by_code(code)["activity_id"] == sid

    clock.advance(60)
    session.stop()
    assert broadcast.find_by_code(code) is None
    row = broadcast.live_sessions[code]
    assert row["is_active"] is False
    assert row["ended_at"] == clock.now().isoformat()
    session.stop()
    assert len(broadcast.live_sessions) == 1


def test_live_share_closed_when_permission_revoked(make_session, provider, broadcast):
    session = make_session()
    session.start("hike", share_live=True)
    code = session.share_code
    provider.push(PermissionError("revoked"))
    session.drain(timeout=2)
    assert session.status is SessionStatus.FAILED
    assert broadcast.find_by_code(code) is None


def test_share_open_failure_does_not_block_tracking(make_session, caplog):
    class NoShareChannel(InMemoryBroadcastChannel):
        def open_share(self, activity_id):
            raise PersistenceWriteError("live_sessions unavailable")

    channel = NoShareChannel()
    session = make_session(broadcast=channel)
    with caplog.at_level(logging.WARNING, logger="TrackingSession"):
        sid = session.start("bike", share_live=True)
    assert session.status is SessionStatus.TRACKING
    assert session.share_code is None
    assert "opening live share failed" in caplog.text.lower()
    session.process_fix(make_fix(0, 0.0, 0.0))
    assert len(channel.for_session(sid)) == 1


def test_unshared_session_has_no_share_code(session, broadcast):
    assert session.share_code is None
    session.stop()
    assert broadcast.live_sessions == {}


def test_unshared_session_does_not_publish(session, broadcast):
    session.process_fix(make_fix(0, 0.0, 0.0))
    assert broadcast.messages == []


def test_validation_happens_before_allocation(make_session, gateway):
    session = make_session()
    with pytest.raises(ValidationError):
        session.start("snowboard")
    with pytest.raises(ValidationError):
        make_session(broadcast=None).start("ski", share_live=True)
    assert gateway.activities == {}
    assert session.status is SessionStatus.IDLE


def test_create_activity_failure_leaves_session_idle(make_session, provider):
    class NoCreateGateway(InMemoryPersistenceGateway):
        def create_activity(self, sport_type, started_at):
            raise ConnectionError("offline")

    session = make_session(gateway=NoCreateGateway())
    with pytest.raises(PersistenceWriteError):
        session.start("hike")
    assert session.status is SessionStatus.IDLE
    assert not provider.subscribed


def test_permission_denied_on_subscribe_is_fatal(make_session, gateway):
    session = make_session(provider=DeniedProvider())
    with pytest.raises(PermissionDeniedError):
        session.start("hike")
    assert session.status is SessionStatus.FAILED
    assert isinstance(session.fatal_error, PermissionDeniedError)

    summary = session.stop()
    assert session.status is SessionStatus.FAILED
    assert summary.trackpoint_count == 0
    assert gateway.finalize_calls == 1
    assert gateway.summaries[summary.activity_id] is summary


def test_permission_denied_while_tracking_keeps_collected_data(make_session, provider, gateway):
    seen = []
    session = make_session(on_location_error=seen.append)
    sid = session.start("ski")
    provider.push(make_fix(0, 0.0, 0.0))
    provider.push(make_fix(10, north_of(50.0), 0.0))
    provider.push(PermissionError("revoked"))
    provider.push(make_fix(20, north_of(150.0), 0.0))
    session.drain(timeout=2)

    assert session.status is SessionStatus.FAILED
    assert isinstance(session.fatal_error, PermissionDeniedError)
    assert not provider.subscribed
    assert [type(err) for err in seen] == [PermissionDeniedError]
    assert len(session.snapshot().trajectory) == 2

    summary = session.stop()
    assert session.stop() is summary
    assert summary.total_distance_m == pytest.approx(50.0, abs=0.01)
    assert summary.trackpoint_count == 2
    assert gateway.finalize_calls == 1
    assert gateway.activities[sid]["total_distance_m"] == summary.total_distance_m


class FlakyResumeProvider(ReplayLocationProvider):
    """Raise a GPS timeout on the chosen subscribe attempts (1-based)."""

    def __init__(self, failing_attempts):
        super().__init__()
        self.failing_attempts = set(failing_attempts)
        self.attempts = 0

    def subscribe(self, options, on_fix, on_error):
        self.attempts += 1
        if self.attempts in self.failing_attempts:
            raise TimeoutError("gps timeout")
        super().subscribe(options, on_fix, on_error)


def test_transient_error_on_resume_keeps_tracking(make_session, gateway, caplog):
    provider = FlakyResumeProvider(failing_attempts={2})
    seen = []
    session = make_session(provider=provider, on_location_error=seen.append)
    session.start("bike")
    session.process_fix(make_fix(0, 0.0, 0.0))
    session.pause()
    with caplog.at_level(logging.WARNING, logger="TrackingSession"):
        session.resume()

    assert session.status is SessionStatus.TRACKING
    assert session.fatal_error is None
    assert session.state.counters.transient_errors == 1
    assert [type(err) for err in seen] == [TransientGpsError]
    assert not provider.subscribed
    assert "transient gps error" in caplog.text.lower()

    # The next resume subscribes again.
    session.pause()
    session.resume()
    assert provider.subscribed

    summary = session.stop()
    assert session.status is SessionStatus.STOPPED
    assert summary.trackpoint_count == 1
    assert gateway.finalize_calls == 1


def test_transient_error_on_start_still_starts(make_session, gateway):
    provider = FlakyResumeProvider(failing_attempts={1})
    session = make_session(provider=provider)
    sid = session.start("hike")
    assert session.status is SessionStatus.TRACKING
    assert sid in gateway.activities
    assert session.state.counters.transient_errors == 1
    assert not provider.subscribed
    session.toggle_pause()
    session.toggle_pause()
    assert provider.subscribed


def test_transient_error_is_warned_and_skipped(session, provider, caplog):
    with caplog.at_level(logging.WARNING, logger="TrackingSession"):
        provider.push(make_fix(0, 0.0, 0.0))
        provider.push(TransientGpsError("position unavailable"))
        provider.push(make_fix(10, north_of(50.0), 0.0))
        assert session.drain(timeout=2)
    assert session.status is SessionStatus.TRACKING
    assert session.state.counters.transient_errors == 1
    assert len(session.state.trajectory) == 2
    assert "transient gps error" in caplog.text.lower()


def test_subscribe_options_passed_to_provider(session, provider):
    assert provider.options is not None
    assert provider.options.high_accuracy is True
