"""Speed fusion with outlier rejection."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Union

from ..config import MPS_TO_KMH, SPEED_CEILING_KMH, SPEED_FLOOR_KMH

__all__ = ["SpeedConfig", "FusedSpeed", "Outlier", "SpeedResult", "SpeedEstimator"]


@dataclass(frozen=True, slots=True)
class SpeedConfig:
    """Bounds (km/h) outside which a fused speed is discarded."""

    floor_kmh: float = field(default_factory=lambda: SPEED_FLOOR_KMH)
    ceiling_kmh: float = field(default_factory=lambda: SPEED_CEILING_KMH)


@dataclass(frozen=True, slots=True)
class FusedSpeed:
    mps: float
    kmh: float
    calculated_mps: float


@dataclass(frozen=True, slots=True)
class Outlier:
    kmh: float


SpeedResult = Union[FusedSpeed, Outlier]


class SpeedEstimator:
    """Combine device-reported and distance-derived speed.

    The fused value is the minimum of the two sources, which biases against
    spikes coming from either one. Readings below the floor (jitter while
    standing still) or above the ceiling (satellite glitches) are returned as
    :class:`Outlier` rather than raised.
    """

    def __init__(self, config: SpeedConfig | None = None) -> None:
        self.config = config or SpeedConfig()

    def fuse(
        self,
        distance_m: float,
        elapsed_s: float,
        reported_speed_mps: Optional[float] = None,
    ) -> SpeedResult:
        if elapsed_s <= 0:
            return Outlier(kmh=0.0)
        calculated_mps = distance_m / elapsed_s
        fused_mps = calculated_mps
        # Negative values are the device's "unknown" sentinel.
        if reported_speed_mps is not None and reported_speed_mps >= 0:
            fused_mps = min(calculated_mps, reported_speed_mps)
        fused_kmh = fused_mps * MPS_TO_KMH
        if fused_kmh < self.config.floor_kmh or fused_kmh > self.config.ceiling_kmh:
            return Outlier(kmh=fused_kmh)
        return FusedSpeed(mps=fused_mps, kmh=fused_kmh, calculated_mps=calculated_mps)
