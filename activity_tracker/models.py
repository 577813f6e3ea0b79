"""Dataclasses describing GPS fixes, live snapshots and activity summaries."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from .config import MPS_TO_KMH
from .sport_types import SportType

LatLon = Tuple[float, float]


@dataclass(frozen=True, slots=True)
class RawFix:
    """A single position sample as delivered by the location provider.

    Attributes:
        latitude: Latitude in decimal degrees.
        longitude: Longitude in decimal degrees.
        timestamp: Timezone-aware time the fix was taken.
        altitude_m: Altitude in meters, when the device reports one.
        reported_speed_mps: Device-reported speed in meters/second.
        accuracy_m: Horizontal accuracy radius in meters.
    """

    latitude: float
    longitude: float
    timestamp: datetime
    altitude_m: Optional[float] = None
    reported_speed_mps: Optional[float] = None
    accuracy_m: Optional[float] = None

    @property
    def latlon(self) -> LatLon:
        return (self.latitude, self.longitude)


@dataclass(frozen=True, slots=True)
class AcceptedFix:
    """A raw fix that passed noise filtering, with its derived metrics."""

    fix: RawFix
    distance_from_previous_m: float
    fused_speed_mps: float
    elevation_delta_m: float

    @property
    def latitude(self) -> float:
        return self.fix.latitude

    @property
    def longitude(self) -> float:
        return self.fix.longitude

    @property
    def timestamp(self) -> datetime:
        return self.fix.timestamp

    @property
    def altitude_m(self) -> Optional[float]:
        return self.fix.altitude_m

    @property
    def accuracy_m(self) -> Optional[float]:
        return self.fix.accuracy_m

    @property
    def fused_speed_kmh(self) -> float:
        return self.fused_speed_mps * MPS_TO_KMH

    def to_record(self, activity_id: str) -> Dict[str, Any]:
        """Return the backend ``trackpoints`` row for this fix."""

        return {
            "activity_id": activity_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "altitude_m": self.altitude_m,
            "recorded_at": self.timestamp.isoformat(),
            "speed_mps": self.fused_speed_mps,
        }


@dataclass(frozen=True, slots=True)
class LiveSnapshot:
    """Read-only view of a session, refreshed on every fix and tick."""

    duration_s: int
    current_speed_kmh: float
    avg_speed_kmh: float
    max_speed_kmh: float
    distance_km: float
    elevation_gain_m: float
    current_altitude_m: Optional[float]
    trajectory: Tuple[LatLon, ...]


@dataclass(frozen=True, slots=True)
class ActivitySummary:
    """Final metrics written when a session stops."""

    activity_id: str
    sport_type: SportType
    started_at: datetime
    ended_at: datetime
    total_distance_m: float
    total_time_s: int
    moving_time_s: float
    average_speed_mps: float
    max_speed_mps: float
    elevation_gain_m: float
    elevation_loss_m: float
    vertical_drop_m: float
    min_altitude_m: Optional[float]
    max_altitude_m: Optional[float]
    trackpoint_count: int
    polyline: str = ""

    def to_record(self) -> Dict[str, Any]:
        """Return the backend ``activities`` columns for the finalize write."""

        return {
            "sport_type": self.sport_type.value,
            "start_time": self.started_at.isoformat(),
            "end_time": self.ended_at.isoformat(),
            "total_distance_m": self.total_distance_m,
            "total_time_s": self.total_time_s,
            "moving_time_s": self.moving_time_s,
            "average_speed_mps": self.average_speed_mps,
            "max_speed_mps": self.max_speed_mps,
            "elevation_gain_m": self.elevation_gain_m,
            "elevation_loss_m": self.elevation_loss_m,
            "vertical_drop_m": self.vertical_drop_m,
            "min_altitude_m": self.min_altitude_m,
            "max_altitude_m": self.max_altitude_m,
        }
