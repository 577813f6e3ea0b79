"""Mutable per-session state owned by the tracking session."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from ..models import AcceptedFix, LatLon, LiveSnapshot
from ..pipeline.elevation import ElevationStats
from ..sport_types import SportType

__all__ = ["SessionStatus", "FixDecision", "FixCounters", "SessionState"]


class SessionStatus(str, Enum):
    IDLE = "idle"
    TRACKING = "tracking"
    PAUSED = "paused"
    STOPPED = "stopped"
    FAILED = "failed"


class FixDecision(str, Enum):
    """What the session did with a single raw fix."""

    ACCEPTED = "accepted"
    TOO_SOON = "too_soon"
    STATIONARY = "stationary"
    OUTLIER = "outlier"
    DROPPED = "dropped"


@dataclass(slots=True)
class FixCounters:
    accepted: int = 0
    too_soon: int = 0
    stationary: int = 0
    outlier: int = 0
    transient_errors: int = 0
    failed_writes: int = 0


@dataclass(slots=True)
class SessionState:
    """Cumulative metrics for one tracking run.

    Only the owning :class:`~activity_tracker.session.aggregator.TrackingSession`
    mutates this object, always under its lock. Everything handed to readers
    goes through :meth:`snapshot`.
    """

    session_id: str
    sport_type: SportType
    started_at: datetime
    is_paused: bool = False
    last_accepted_fix: Optional[AcceptedFix] = None
    cumulative_distance_m: float = 0.0
    duration_s: int = 0
    moving_time_s: float = 0.0
    speed_samples: List[float] = field(default_factory=list)
    speed_sum_kmh: float = 0.0
    max_speed_kmh: float = 0.0
    current_speed_kmh: float = 0.0
    elevation: ElevationStats = field(default_factory=ElevationStats)
    trajectory: List[LatLon] = field(default_factory=list)
    accepted_fixes: List[AcceptedFix] = field(default_factory=list)
    counters: FixCounters = field(default_factory=FixCounters)

    @property
    def avg_speed_kmh(self) -> float:
        if not self.speed_samples:
            return 0.0
        return self.speed_sum_kmh / len(self.speed_samples)

    @property
    def elevation_gain_m(self) -> float:
        return self.elevation.gain_m

    @property
    def min_altitude_m(self) -> Optional[float]:
        return self.elevation.min_altitude_m

    @property
    def max_altitude_m(self) -> Optional[float]:
        return self.elevation.max_altitude_m

    def record_speed(self, speed_kmh: float) -> None:
        self.speed_samples.append(speed_kmh)
        self.speed_sum_kmh += speed_kmh
        if speed_kmh > self.max_speed_kmh:
            self.max_speed_kmh = speed_kmh

    def append(self, accepted: AcceptedFix) -> None:
        self.cumulative_distance_m += accepted.distance_from_previous_m
        self.current_speed_kmh = accepted.fused_speed_kmh
        self.last_accepted_fix = accepted
        self.accepted_fixes.append(accepted)
        self.trajectory.append(accepted.fix.latlon)
        self.counters.accepted += 1

    def snapshot(self) -> LiveSnapshot:
        return LiveSnapshot(
            duration_s=self.duration_s,
            current_speed_kmh=self.current_speed_kmh,
            avg_speed_kmh=self.avg_speed_kmh,
            max_speed_kmh=self.max_speed_kmh,
            distance_km=self.cumulative_distance_m / 1000.0,
            elevation_gain_m=self.elevation.gain_m,
            current_altitude_m=self.elevation.current_altitude_m,
            trajectory=tuple(self.trajectory),
        )
