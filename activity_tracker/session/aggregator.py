"""Tracking session: the stateful core of the live GPS pipeline.

A session owns one :class:`SessionState` and drives the filter, speed
estimator and elevation tracker for every fix delivered by the location
provider. Accepted fixes are appended to the trajectory and handed to the
persistence gateway (and the broadcast channel for live-shared sessions) on
a background dispatcher, so slow writes never hold up the next fix.

Lifecycle::

    IDLE -> TRACKING <-> PAUSED -> STOPPED
                   \\-> FAILED (location permission denied)

Both terminal states are finalized by :meth:`TrackingSession.stop`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging
import threading
from typing import Callable, Optional

from polyline import encode as polyline_encode

from ..clock import Clock, SystemClock
from ..config import MPS_TO_KMH, TICK_INTERVAL_SECONDS
from ..errors import (
    LocationError,
    PermissionDeniedError,
    PersistenceWriteError,
    SessionStateError,
    ValidationError,
)
from ..gateways.base import BroadcastChannel, PersistenceGateway
from ..models import AcceptedFix, ActivitySummary, LiveSnapshot, RawFix
from ..pipeline.elevation import ElevationTracker
from ..pipeline.fix_filter import FilterConfig, FixFilter, RejectStationary, RejectTooSoon
from ..pipeline.speed import Outlier, SpeedConfig, SpeedEstimator
from ..providers import LocationProvider, SubscribeOptions
from ..sport_types import SportType, parse_sport_type
from .dispatcher import BackgroundDispatcher, Dispatcher
from .state import FixDecision, SessionState, SessionStatus
from .subscriptions import ActiveSubscriptions

__all__ = ["TrackerConfig", "TrackingSession"]

LocationErrorCallback = Callable[[LocationError], None]

_EMPTY_SNAPSHOT = LiveSnapshot(
    duration_s=0,
    current_speed_kmh=0.0,
    avg_speed_kmh=0.0,
    max_speed_kmh=0.0,
    distance_km=0.0,
    elevation_gain_m=0.0,
    current_altitude_m=None,
    trajectory=(),
)


@dataclass(slots=True)
class TrackerConfig:
    filter: FilterConfig = field(default_factory=FilterConfig)
    speed: SpeedConfig = field(default_factory=SpeedConfig)
    subscribe_options: SubscribeOptions = field(default_factory=SubscribeOptions)
    # None disables the background ticker; callers then drive tick() themselves.
    tick_interval_s: Optional[float] = TICK_INTERVAL_SECONDS


class TrackingSession:
    """Single-use tracking session for one activity."""

    def __init__(
        self,
        provider: LocationProvider,
        gateway: PersistenceGateway,
        *,
        broadcast: BroadcastChannel | None = None,
        clock: Clock | None = None,
        config: TrackerConfig | None = None,
        dispatcher: Dispatcher | None = None,
        on_location_error: LocationErrorCallback | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config or TrackerConfig()
        self._log = logger or logging.getLogger(self.__class__.__name__)
        self._provider = provider
        self._gateway = gateway
        self._broadcast = broadcast
        self._clock = clock or SystemClock()
        self._dispatcher = dispatcher
        self._on_location_error = on_location_error
        self._filter = FixFilter(self.config.filter)
        self._speed = SpeedEstimator(self.config.speed)
        self._elevation = ElevationTracker()

        self._lock = threading.RLock()
        self._stop_lock = threading.Lock()
        self._status = SessionStatus.IDLE
        self._state: SessionState | None = None
        self._subscriptions: ActiveSubscriptions | None = None
        self._share_live = False
        self._share_code: str | None = None
        self._share_closed = False
        self._fatal_error: LocationError | None = None
        self._ended_at: datetime | None = None
        self._summary: ActivitySummary | None = None
        self._finalized = False
        # Fixes that arrived outside TRACKING; kept off SessionState so a
        # stopped session's state is never touched again.
        self._dropped_fixes = 0

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------
    @property
    def status(self) -> SessionStatus:
        with self._lock:
            return self._status

    @property
    def session_id(self) -> str | None:
        with self._lock:
            return self._state.session_id if self._state else None

    @property
    def state(self) -> SessionState | None:
        """Live state object; callers must treat it as read-only."""

        return self._state

    @property
    def share_code(self) -> str | None:
        """Code viewers use to follow a live-shared session."""

        with self._lock:
            return self._share_code

    @property
    def fatal_error(self) -> LocationError | None:
        return self._fatal_error

    @property
    def dropped_fixes(self) -> int:
        with self._lock:
            return self._dropped_fixes

    def snapshot(self) -> LiveSnapshot:
        with self._lock:
            if self._state is None:
                return _EMPTY_SNAPSHOT
            return self._state.snapshot()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self, sport_type: SportType | str, *, share_live: bool = False) -> str:
        """Begin tracking and return the session (activity) id.

        With ``share_live`` the session is also registered on the broadcast
        channel; the resulting code is available from :attr:`share_code`.
        A transient GPS failure while subscribing is logged and tracking
        starts anyway; the subscription is retried on the next resume.

        Raises:
            ValidationError: Unknown sport, or live sharing without a channel.
            SessionStateError: The session was already started.
            PersistenceWriteError: The initial activity record could not be created.
            PermissionDeniedError: Location access was denied; the session is FAILED.
        """

        sport = parse_sport_type(sport_type)
        if share_live and self._broadcast is None:
            raise ValidationError("Live sharing requires a broadcast channel")
        with self._lock:
            if self._status is not SessionStatus.IDLE:
                raise SessionStateError(f"Cannot start a session that is {self._status.value}")
            # Reserve the session before any I/O so concurrent starts fail fast.
            self._status = SessionStatus.TRACKING
        started_at = self._clock.now()
        try:
            activity_id = self._gateway.create_activity(sport, started_at)
        except Exception as exc:
            with self._lock:
                self._status = SessionStatus.IDLE
            if isinstance(exc, PersistenceWriteError):
                raise
            raise PersistenceWriteError(f"Create activity failed: {exc}") from exc

        share_code = self._open_share(activity_id) if share_live else None
        with self._lock:
            self._state = SessionState(
                session_id=activity_id, sport_type=sport, started_at=started_at
            )
            self._share_live = share_live
            self._share_code = share_code
            if self._dispatcher is None:
                self._dispatcher = BackgroundDispatcher()
            subscriptions = self._subscriptions = ActiveSubscriptions(
                self._provider,
                self.config.subscribe_options,
                on_fix=self.process_fix,
                on_error=self._handle_location_error,
                on_tick=self.tick,
                tick_interval_s=self.config.tick_interval_s,
                name=f"tracker-{activity_id[:8]}",
            )
        try:
            subscriptions.acquire()
        except PermissionDeniedError as exc:
            self._fail(exc)
            raise
        except LocationError as exc:
            self._handle_location_error(exc)
        self._log.info(
            "Tracking started session=%s sport=%s live=%s",
            activity_id,
            sport.value,
            share_live,
        )
        return activity_id

    def pause(self) -> None:
        with self._lock:
            if self._status is not SessionStatus.TRACKING:
                raise SessionStateError(f"Cannot pause a session that is {self._status.value}")
            self._require_state().is_paused = True
            self._status = SessionStatus.PAUSED
            subscriptions = self._subscriptions
        if subscriptions is not None:
            subscriptions.suspend()
        self._log.info("Tracking paused session=%s", self.session_id)

    def resume(self) -> None:
        """Resume tracking.

        Raises:
            SessionStateError: The session is not paused.
            PermissionDeniedError: Location access was revoked; the session is FAILED.
        """

        with self._lock:
            if self._status is not SessionStatus.PAUSED:
                raise SessionStateError(f"Cannot resume a session that is {self._status.value}")
            self._require_state().is_paused = False
            self._status = SessionStatus.TRACKING
            subscriptions = self._subscriptions
        if subscriptions is not None:
            try:
                subscriptions.resume()
            except PermissionDeniedError as exc:
                self._fail(exc)
                raise
            except LocationError as exc:
                self._handle_location_error(exc)
        self._log.info("Tracking resumed session=%s", self.session_id)

    def toggle_pause(self) -> SessionStatus:
        """Pause when tracking, resume when paused; returns the new status."""

        if self.status is SessionStatus.PAUSED:
            self.resume()
        else:
            self.pause()
        return self.status

    def stop(self) -> ActivitySummary:
        """End the session and write the final summary.

        Also finalizes a session that FAILED on a location permission error,
        from the data collected before the failure. Idempotent: once the
        finalize write has succeeded, later calls return the same summary
        without writing again. If the finalize write failed, the next call
        retries it from the in-memory state.

        Raises:
            SessionStateError: The session was never started.
            PersistenceWriteError: The finalize write failed.
        """

        with self._stop_lock:
            with self._lock:
                if self._status is SessionStatus.IDLE:
                    raise SessionStateError("Cannot stop a session that was never started")
                if self._summary is None and self._status is not SessionStatus.FAILED:
                    self._require_state().is_paused = False
                    self._status = SessionStatus.STOPPED
                    self._ended_at = self._clock.now()
            summary = self._summary
            if summary is None:
                self._teardown()
                with self._lock:
                    summary = self._summary = self._build_summary()
            if self._finalized:
                return summary
            self._finalize(summary)
            self._finalized = True
            self._log.info(
                "Activity saved session=%s status=%s distance=%.1fm duration=%ss points=%d",
                summary.activity_id,
                self.status.value,
                summary.total_distance_m,
                summary.total_time_s,
                summary.trackpoint_count,
            )
            return summary

    def drain(self, timeout: float | None = None) -> bool:
        """Wait until every fix delivered so far has been processed."""

        subscriptions = self._subscriptions
        if subscriptions is None:
            return True
        return subscriptions.drain(timeout)

    # ------------------------------------------------------------------
    # Fix processing
    # ------------------------------------------------------------------
    def tick(self) -> None:
        with self._lock:
            if self._status is not SessionStatus.TRACKING or self._state is None:
                return
            self._state.duration_s += 1

    def process_fix(self, raw: RawFix) -> FixDecision:
        with self._lock:
            state = self._state
            if self._status is not SessionStatus.TRACKING or state is None:
                self._dropped_fixes += 1
                self._log.debug("Dropping fix while %s", self._status.value)
                return FixDecision.DROPPED

            verdict = self._filter.evaluate(state.last_accepted_fix, raw)
            if isinstance(verdict, RejectTooSoon):
                state.counters.too_soon += 1
                self._log.debug("Fix too soon (%.2fs)", verdict.elapsed_s)
                return FixDecision.TOO_SOON
            if isinstance(verdict, RejectStationary):
                state.counters.stationary += 1
                self._record_rejected(state, raw)
                self._log.debug(
                    "Stationary fix %.1fm < %.1fm", verdict.distance_m, verdict.threshold_m
                )
                return FixDecision.STATIONARY

            if state.last_accepted_fix is None:
                accepted = AcceptedFix(
                    fix=raw,
                    distance_from_previous_m=0.0,
                    fused_speed_mps=0.0,
                    elevation_delta_m=0.0,
                )
            else:
                speed = self._speed.fuse(
                    verdict.distance_m, verdict.elapsed_s, raw.reported_speed_mps
                )
                if isinstance(speed, Outlier):
                    state.counters.outlier += 1
                    self._record_rejected(state, raw)
                    self._log.debug("Speed outlier %.1f km/h", speed.kmh)
                    return FixDecision.OUTLIER
                accepted = AcceptedFix(
                    fix=raw,
                    distance_from_previous_m=verdict.distance_m,
                    fused_speed_mps=speed.mps,
                    elevation_delta_m=self._elevation.delta(state.elevation, raw.altitude_m),
                )
                state.record_speed(speed.kmh)
                state.moving_time_s += verdict.elapsed_s

            state.elevation = self._elevation.update(state.elevation, raw.altitude_m)
            state.append(accepted)
            activity_id = state.session_id
            dispatcher = self._dispatcher
            share_live = self._share_live

        if dispatcher is not None:
            dispatcher.submit(self._append_trackpoint, activity_id, accepted)
            if share_live:
                dispatcher.submit(self._publish, activity_id, accepted)
        return FixDecision.ACCEPTED

    def _record_rejected(self, state: SessionState, raw: RawFix) -> None:
        state.current_speed_kmh = 0.0
        state.elevation = self._elevation.update(
            state.elevation, raw.altitude_m, accumulate_gain=False
        )

    # ------------------------------------------------------------------
    # Collaborator calls
    # ------------------------------------------------------------------
    def _append_trackpoint(self, activity_id: str, accepted: AcceptedFix) -> None:
        try:
            self._gateway.append_trackpoint(activity_id, accepted)
        except Exception as exc:
            with self._lock:
                if self._state is not None:
                    self._state.counters.failed_writes += 1
            self._log.warning(
                "Dropped trackpoint write session=%s at %s: %s",
                activity_id,
                accepted.timestamp.isoformat(),
                exc,
            )

    def _publish(self, session_id: str, accepted: AcceptedFix) -> None:
        if self._broadcast is None:
            return
        try:
            self._broadcast.publish(session_id, accepted)
        except Exception as exc:
            self._log.warning("Live broadcast failed session=%s: %s", session_id, exc)

    def _open_share(self, activity_id: str) -> str | None:
        if self._broadcast is None:
            return None
        try:
            share_code = self._broadcast.open_share(activity_id)
        except Exception as exc:
            self._log.warning(
                "Opening live share failed session=%s; fixes are still broadcast: %s",
                activity_id,
                exc,
            )
            return None
        self._log.info("Live share opened session=%s code=%s", activity_id, share_code)
        return share_code

    def _close_share(self) -> None:
        with self._lock:
            if self._share_code is None or self._share_closed or self._state is None:
                return
            self._share_closed = True
            activity_id = self._state.session_id
            ended_at = self._ended_at or self._clock.now()
        if self._broadcast is None:
            return
        try:
            self._broadcast.close_share(activity_id, ended_at)
        except Exception as exc:
            self._log.warning("Closing live share failed session=%s: %s", activity_id, exc)

    def _finalize(self, summary: ActivitySummary) -> None:
        try:
            self._gateway.finalize_activity(summary.activity_id, summary)
        except PersistenceWriteError as exc:
            self._log.error("Finalize failed session=%s: %s", summary.activity_id, exc)
            raise
        except Exception as exc:
            self._log.error(
                "Finalize failed session=%s: %s", summary.activity_id, exc, exc_info=True
            )
            raise PersistenceWriteError(f"Finalize activity failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Errors and teardown
    # ------------------------------------------------------------------
    def _handle_location_error(self, error: LocationError) -> None:
        if isinstance(error, PermissionDeniedError):
            self._log.error("Location permission denied; ending session: %s", error)
            self._fail(error)
        else:
            with self._lock:
                if self._state is not None and self._status in (
                    SessionStatus.TRACKING,
                    SessionStatus.PAUSED,
                ):
                    self._state.counters.transient_errors += 1
            self._log.warning("Transient GPS error; skipping fix: %s", error)
        if self._on_location_error is not None:
            self._on_location_error(error)

    def _fail(self, error: LocationError) -> None:
        with self._lock:
            if self._status in (SessionStatus.STOPPED, SessionStatus.FAILED):
                return
            self._status = SessionStatus.FAILED
            self._fatal_error = error
            self._ended_at = self._clock.now()
        self._teardown()

    def _teardown(self) -> None:
        """Release subscriptions, wait for queued writes and close any live share."""

        subscriptions = self._subscriptions
        if subscriptions is not None:
            subscriptions.release()
        if self._dispatcher is not None:
            self._dispatcher.shutdown()
        self._close_share()

    def _require_state(self) -> SessionState:
        if self._state is None:
            raise SessionStateError("Session has not been started")
        return self._state

    def _build_summary(self) -> ActivitySummary:
        state = self._require_state()
        ended_at = self._ended_at or self._clock.now()
        return ActivitySummary(
            activity_id=state.session_id,
            sport_type=state.sport_type,
            started_at=state.started_at,
            ended_at=ended_at,
            total_distance_m=state.cumulative_distance_m,
            total_time_s=state.duration_s,
            moving_time_s=state.moving_time_s,
            average_speed_mps=state.avg_speed_kmh / MPS_TO_KMH,
            max_speed_mps=state.max_speed_kmh / MPS_TO_KMH,
            elevation_gain_m=state.elevation.gain_m,
            elevation_loss_m=state.elevation.loss_m,
            vertical_drop_m=state.elevation.vertical_drop_m,
            min_altitude_m=state.elevation.min_altitude_m,
            max_altitude_m=state.elevation.max_altitude_m,
            trackpoint_count=len(state.accepted_fixes),
            polyline=polyline_encode(state.trajectory) if state.trajectory else "",
        )
