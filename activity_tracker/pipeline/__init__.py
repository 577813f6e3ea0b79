"""Per-fix processing components: filtering, distance, speed and elevation."""

from .elevation import ElevationStats, ElevationTracker
from .fix_filter import (
    Accept,
    FilterConfig,
    FilterVerdict,
    FixFilter,
    RejectStationary,
    RejectTooSoon,
)
from .geo import distance_between, haversine_m
from .speed import FusedSpeed, Outlier, SpeedConfig, SpeedEstimator, SpeedResult

__all__ = [
    "Accept",
    "ElevationStats",
    "ElevationTracker",
    "FilterConfig",
    "FilterVerdict",
    "FixFilter",
    "FusedSpeed",
    "Outlier",
    "RejectStationary",
    "RejectTooSoon",
    "SpeedConfig",
    "SpeedEstimator",
    "SpeedResult",
    "distance_between",
    "haversine_m",
]
